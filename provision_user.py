#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# Copyright 2025 Minorli
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Provision a timestamp-named user/schema and load it with grants and artifacts.

Reads config.ini ([ORACLE_CONNECTION], [GRANTS], [SETTINGS]) and:
1) Optionally switches the session into [SETTINGS] target_container.
2) CREATE USER with a sanitized generated name, shortening it on ORA-00972.
3) Grants CREATE SESSION, then the configured roles and system privileges
   (individual failures are counted, not fatal).
4) Compiles the built-in artifacts (GET_TIMESTAMP, Java lower-case source
   and its PL/SQL wrapper) and runs their smoke tests.
5) With --drop-after: DROP USER ... CASCADE and confirm via DBA_USERS.

Usage:
    python3 provision_user.py [config.ini] [--drop-after] [--skip-artifacts]
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from provision_common import (
    CONFIG_DEFAULT_PATH,
    DEFAULT_USER_PREFIX,
    ConfigError,
    DropNotConfirmedError,
    ProvisionError,
    ServerError,
    WrongContainerError,
    init_console_logging,
    load_config,
    log_section,
    parse_bool_flag,
    print_summary_table,
    resolve_log_level,
)
from artifacts import CompileResult, compile_artifacts, default_artifacts
from grants import GrantBatchResult, apply_grants, build_grant_statement
from identifiers import (
    create_with_length_ladder,
    format_password,
    require_identifier,
    sanitize_identifier,
)
from name_generator import generate_prefixed_timestamp
from oracle_session import install_cancel_handlers, open_session, safe_first_line
from tool_version import __version__

log = logging.getLogger(__name__)

DATABASE_NAME_SQL = "SELECT NAME FROM V$DATABASE"
CURRENT_CONTAINER_SQL = "SELECT SYS_CONTEXT('USERENV', 'CON_NAME') FROM dual"
USER_COUNT_SQL = "SELECT COUNT(*) FROM DBA_USERS WHERE USERNAME = :name"


@dataclass
class PrincipalRun:
    requested_name: str
    username: str = ""
    container: str = ""
    role_grants: GrantBatchResult = field(default_factory=GrantBatchResult)
    privilege_grants: GrantBatchResult = field(default_factory=GrantBatchResult)
    artifacts: List[CompileResult] = field(default_factory=list)
    dropped: bool = False

    def summary_rows(self) -> List[Tuple[str, str]]:
        rows = [
            ("User", self.username or self.requested_name),
            ("Container", self.container or "-"),
            ("Roles", f"ok={self.role_grants.succeeded}, failed={self.role_grants.failed}"),
            ("System privileges", f"ok={self.privilege_grants.succeeded}, failed={self.privilege_grants.failed}"),
        ]
        for result in self.artifacts:
            value = result.status
            if result.smoke_value is not None:
                value += f" (smoke: {result.smoke_value})"
            rows.append((f"{result.object_type} {result.name}", value))
        rows.append(("Dropped", "yes" if self.dropped else "no"))
        return rows


def report_database_name(session) -> Optional[str]:
    try:
        name = session.query_scalar(DATABASE_NAME_SQL)
    except ServerError as exc:
        log.warning("[USER] could not read V$DATABASE: %s", safe_first_line(exc.message))
        return None
    log.info("[USER] database: %s", name)
    return name


def switch_container(session, target: str) -> str:
    target = require_identifier(sanitize_identifier(target), "target container")
    session.execute(f"ALTER SESSION SET CONTAINER = {target}")
    current = str(session.query_scalar(CURRENT_CONTAINER_SQL) or "")
    if current.upper() != target:
        raise WrongContainerError(f"session is in {current or 'unknown'} after switching to {target}")
    log.info("[USER] OK current container: %s", current)
    return current


def build_create_user_statement(password: str) -> Callable[[str], str]:
    password_literal = format_password(password)

    def _build(name: str) -> str:
        return f"CREATE USER {name} IDENTIFIED BY {password_literal}"

    return _build


def create_principal(session, name: str, password: str, caps: Sequence[int]) -> str:
    username = create_with_length_ladder(
        session, name, build_create_user_statement(password), caps, label="CREATE USER"
    )
    log.info("[USER] OK created user %s", username)
    return username


def drop_principal(session, username: str) -> None:
    session.execute(f"DROP USER {username} CASCADE")
    remaining = int(session.query_scalar(USER_COUNT_SQL, {"name": username.upper()}, default=0) or 0)
    if remaining != 0:
        raise DropNotConfirmedError(f"DBA_USERS still shows {remaining} row(s) for {username}")
    log.info("[USER] OK drop confirmed: %s removed from DBA_USERS", username)


@contextmanager
def created_principal(
    session,
    run: PrincipalRun,
    password: str,
    caps: Sequence[int],
    drop_after: bool = False,
) -> Iterator[str]:
    """Create the user; with drop_after=True it is dropped on every exit path."""
    run.username = create_principal(session, run.requested_name, password, caps)
    try:
        yield run.username
    except BaseException:
        if drop_after:
            log.warning("[USER] run failed, dropping %s", run.username)
            try:
                with session.shielded():
                    drop_principal(session, run.username)
                run.dropped = True
            except ProvisionError as cleanup_exc:
                log.error("[USER] drop after failure also failed: %s", cleanup_exc)
        raise
    if drop_after:
        log_section("Drop user")
        with session.shielded():
            drop_principal(session, run.username)
        run.dropped = True


def grant_logon(session, username: str, container_clause: bool) -> bool:
    try:
        session.execute(build_grant_statement("CREATE SESSION", username, container_clause))
    except ServerError as exc:
        log.warning("[USER] grant CREATE SESSION failed (continuing): %s", safe_first_line(exc.message))
        return False
    return True


def provision_principal(
    session,
    run: PrincipalRun,
    password: str,
    caps: Sequence[int],
    roles: Sequence[str],
    privileges: Sequence[str],
    target_container: str = "",
    compile_objects: bool = True,
    include_java: bool = True,
    drop_after: bool = False,
) -> PrincipalRun:
    report_database_name(session)
    container_clause = False
    if target_container:
        run.container = switch_container(session, target_container)
        container_clause = True

    log_section("Create user")
    with created_principal(session, run, password, caps, drop_after) as username:
        grant_logon(session, username, container_clause)

        log_section("Grants")
        run.role_grants = apply_grants(session, roles, username, "GRANT ROLE", container_clause)
        run.privilege_grants = apply_grants(session, privileges, username, "GRANT SYS", container_clause)

        if compile_objects:
            log_section("Artifacts")
            run.artifacts = compile_artifacts(session, username, default_artifacts(username, include_java))
    return run


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision a timestamp-named Oracle user/schema.")
    parser.add_argument("config", nargs="?", default=CONFIG_DEFAULT_PATH, help="config.ini path")
    parser.add_argument("--drop-after", action="store_true", help="drop the user at the end of the run")
    parser.add_argument("--skip-artifacts", action="store_true", help="do not compile the built-in artifacts")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config_path = Path(args.config).expanduser()
    try:
        cfg = load_config(config_path)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    settings = cfg.settings
    init_console_logging(resolve_log_level(settings.get("log_level")))
    log.info("provision_user v%s", __version__)

    password = (settings.get("user_password") or "").strip()
    if not password:
        log.error("FAIL [USER] [SETTINGS] user_password is required")
        return 1

    prefix = (settings.get("user_prefix") or DEFAULT_USER_PREFIX).strip()
    requested = sanitize_identifier(generate_prefixed_timestamp(prefix))
    if not requested:
        log.error("FAIL [USER] generated user name is empty")
        return 1
    run = PrincipalRun(requested_name=requested)

    cancel_event = threading.Event()
    install_cancel_handlers(cancel_event)

    try:
        with open_session(cfg.connection, cancel_event, settings.get("oracle_client_lib_dir")) as session:
            provision_principal(
                session,
                run,
                password=password,
                caps=cfg.identifier_caps,
                roles=cfg.granted_roles,
                privileges=cfg.system_privileges,
                target_container=(settings.get("target_container") or "").strip(),
                compile_objects=not args.skip_artifacts and parse_bool_flag(settings.get("compile_artifacts"), True),
                include_java=parse_bool_flag(settings.get("include_java_artifacts"), True),
                drop_after=args.drop_after or parse_bool_flag(settings.get("drop_user_after_run"), False),
            )
    except (ProvisionError, ValueError) as exc:
        log.error("FAIL %s: %s", type(exc).__name__, safe_first_line(str(exc), 400))
        return 1

    print_summary_table("User provisioning", run.summary_rows())
    return 0


if __name__ == "__main__":
    sys.exit(main())
