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
Create a pluggable database from PDB$SEED and optionally tear it down again.

Reads config.ini ([ORACLE_CONNECTION], [PDB], [SETTINGS]) and:
1) Confirms the session is in CDB$ROOT and that PDB$SEED datafiles live in
   <root datafile dir>/PDBSEED/.
2) Generates a PDB name and aborts if DBA_PDBS already has it.
3) CREATE PLUGGABLE DATABASE ... FILE_NAME_CONVERT, OPEN READ WRITE, SAVE STATE.
4) With --teardown: CLOSE IMMEDIATE, DISCARD STATE, DROP ... INCLUDING DATAFILES,
   then re-checks DBA_PDBS.

Usage:
    python3 pdb_lifecycle.py [config.ini] [--teardown]
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from provision_common import (
    CONFIG_DEFAULT_PATH,
    DEFAULT_PDB_ADMIN_USER,
    DEFAULT_SEED_DIR_NAME,
    DEFAULT_SYSTEM_FILE_NAME,
    ConfigError,
    DropNotConfirmedError,
    InvalidTransitionError,
    NameCollisionError,
    OpenModeError,
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
from identifiers import escape_sql_literal, format_password, require_identifier, sanitize_identifier
from name_generator import generate_pdb_name
from oracle_session import install_cancel_handlers, open_session, safe_first_line
from seed_paths import SeedLocation, verify_seed_path
from tool_version import __version__

log = logging.getLogger(__name__)

ROOT_CONTAINER = "CDB$ROOT"
OPEN_MODE_READ_WRITE = "READ WRITE"

CURRENT_CONTAINER_SQL = "SELECT SYS_CONTEXT('USERENV', 'CON_NAME') FROM dual"
PDB_COUNT_SQL = "SELECT COUNT(*) FROM DBA_PDBS WHERE PDB_NAME = UPPER(:name)"
PDB_OPEN_MODE_SQL = "SELECT NAME, OPEN_MODE FROM V$PDBS WHERE NAME = UPPER(:name)"
PDB_SAVED_STATE_SQL = """
    SELECT STATE, RESTRICTED
    FROM DBA_PDB_SAVED_STATES
    WHERE CON_NAME = UPPER(:name)
"""


class PdbState:
    """Lifecycle states of one provisioned PDB, in transition order."""
    UNVERIFIED = "UNVERIFIED"
    VERIFIED = "VERIFIED"
    NAME_RESERVED = "NAME_RESERVED"
    CREATED = "CREATED"
    OPEN = "OPEN"
    STATE_SAVED = "STATE_SAVED"
    CLOSING = "CLOSING"
    STATE_DISCARDED = "STATE_DISCARDED"
    DROPPED = "DROPPED"


# States in which the PDB exists and a teardown has something to remove.
TEARDOWN_FROM_STATES = {
    PdbState.CREATED,
    PdbState.OPEN,
    PdbState.STATE_SAVED,
    PdbState.CLOSING,
    PdbState.STATE_DISCARDED,
}


class PdbLifecycle:
    def __init__(
        self,
        session,
        admin_user: str,
        admin_password: str,
        seed_dir_name: str = DEFAULT_SEED_DIR_NAME,
        system_file_name: str = DEFAULT_SYSTEM_FILE_NAME,
        name_generator: Callable[[], str] = generate_pdb_name,
    ):
        self.session = session
        self.admin_user = require_identifier(sanitize_identifier(admin_user), "PDB admin user")
        self.admin_password = admin_password
        self.seed_dir_name = seed_dir_name
        self.system_file_name = system_file_name
        self.name_generator = name_generator
        self.state = PdbState.UNVERIFIED
        self.name: Optional[str] = None
        self.location: Optional[SeedLocation] = None
        self.destination_dir: Optional[str] = None
        self.open_mode: Optional[str] = None
        self.saved_state: Optional[Tuple[str, str]] = None
        self.history: List[str] = [self.state]

    def _require_state(self, *allowed: str) -> None:
        if self.state not in allowed:
            raise InvalidTransitionError(
                f"cannot leave state {self.state}; expected one of {', '.join(allowed)}"
            )

    def _move(self, new_state: str) -> None:
        log.debug("[PDB] %s -> %s", self.state, new_state)
        self.state = new_state
        self.history.append(new_state)

    def verify(self) -> SeedLocation:
        self._require_state(PdbState.UNVERIFIED)
        container = self.session.query_scalar(CURRENT_CONTAINER_SQL)
        if not container or str(container).upper() != ROOT_CONTAINER:
            raise WrongContainerError(
                f"not connected to {ROOT_CONTAINER} (current: {container}); connect to the root container first"
            )
        log.info("[PDB] OK connected to container %s", container)
        self.location = verify_seed_path(self.session, self.seed_dir_name, self.system_file_name)
        self._move(PdbState.VERIFIED)
        return self.location

    def reserve_name(self) -> str:
        self._require_state(PdbState.VERIFIED)
        name = require_identifier(self.name_generator().upper(), "PDB name")
        existing = int(self.session.query_scalar(PDB_COUNT_SQL, {"name": name}, default=0) or 0)
        if existing > 0:
            raise NameCollisionError(f"PDB {name} already exists; aborting")
        self.name = name
        log.info("[PDB] OK name available: %s", name)
        self._move(PdbState.NAME_RESERVED)
        return name

    def build_create_statement(self) -> str:
        seed_dir = self.location.seed_dir
        dest_dir = self.location.destination_dir(self.name)
        return (
            f"CREATE PLUGGABLE DATABASE {self.name} "
            f"ADMIN USER {self.admin_user} IDENTIFIED BY {format_password(self.admin_password)} "
            f"FILE_NAME_CONVERT = ('{escape_sql_literal(seed_dir)}', '{escape_sql_literal(dest_dir)}')"
        )

    def create(self) -> None:
        self._require_state(PdbState.NAME_RESERVED)
        statement = self.build_create_statement()
        self.session.execute(statement)
        self.destination_dir = self.location.destination_dir(self.name)
        self._move(PdbState.CREATED)
        log.info("[PDB] OK created %s", self.name)
        log.info("[PDB]   seed from: %s", self.location.seed_dir)
        log.info("[PDB]   files to:  %s", self.destination_dir)

    def open(self) -> None:
        self._require_state(PdbState.CREATED)
        self.session.execute(f"ALTER PLUGGABLE DATABASE {self.name} OPEN READ WRITE")
        self._move(PdbState.OPEN)
        log.info("[PDB] OK opened %s read write", self.name)

    def save_state(self) -> str:
        self._require_state(PdbState.OPEN)
        self.session.execute(f"ALTER PLUGGABLE DATABASE {self.name} SAVE STATE")
        row = self.session.query_one(PDB_OPEN_MODE_SQL, {"name": self.name})
        if row is None:
            raise OpenModeError(f"V$PDBS has no row for {self.name} after SAVE STATE")
        open_mode = str(row[1] or "").upper()
        if open_mode != OPEN_MODE_READ_WRITE:
            raise OpenModeError(f"{self.name} open mode is {open_mode or 'unknown'}, expected {OPEN_MODE_READ_WRITE}")
        self.open_mode = open_mode
        self._move(PdbState.STATE_SAVED)
        log.info("[PDB] OK state saved; V$PDBS: %s %s", row[0], open_mode)
        return open_mode

    def report_saved_state(self) -> Optional[Tuple[str, str]]:
        """Informational only: the view may be missing for this edition or privilege set."""
        try:
            row = self.session.query_one(PDB_SAVED_STATE_SQL, {"name": self.name})
        except ServerError as exc:
            log.info("[PDB] could not read DBA_PDB_SAVED_STATES: %s", safe_first_line(exc.message))
            return None
        if row is None:
            log.info("[PDB] no DBA_PDB_SAVED_STATES record for %s", self.name)
            return None
        self.saved_state = (str(row[0]), str(row[1]))
        log.info("[PDB] saved state recorded: STATE=%s, RESTRICTED=%s", row[0], row[1])
        return self.saved_state

    def provision(self) -> None:
        self.verify()
        self.reserve_name()
        self.create()
        self.open()
        self.save_state()
        self.report_saved_state()

    @property
    def needs_teardown(self) -> bool:
        return self.state in TEARDOWN_FROM_STATES

    def teardown(self) -> None:
        self._require_state(*TEARDOWN_FROM_STATES)
        if self.state in (PdbState.OPEN, PdbState.STATE_SAVED):
            self.session.execute(f"ALTER PLUGGABLE DATABASE {self.name} CLOSE IMMEDIATE")
            self._move(PdbState.CLOSING)
            log.info("[PDB] OK closed %s", self.name)
        if self.state == PdbState.CLOSING:
            self.session.execute(f"ALTER PLUGGABLE DATABASE {self.name} DISCARD STATE")
            self._move(PdbState.STATE_DISCARDED)
            log.info("[PDB] OK discarded saved state of %s", self.name)
        self.session.execute(f"DROP PLUGGABLE DATABASE {self.name} INCLUDING DATAFILES")
        remaining = int(self.session.query_scalar(PDB_COUNT_SQL, {"name": self.name}, default=0) or 0)
        if remaining != 0:
            raise DropNotConfirmedError(f"DBA_PDBS still shows {remaining} row(s) for {self.name}")
        self._move(PdbState.DROPPED)
        log.info("[PDB] OK drop confirmed: %s removed from DBA_PDBS", self.name)

    @contextmanager
    def provisioned(self, teardown: bool = False) -> Iterator["PdbLifecycle"]:
        """Provision the PDB; with teardown=True it is removed on every exit path."""
        try:
            self.provision()
            yield self
        except BaseException:
            if teardown and self.needs_teardown:
                log.warning("[PDB] run failed in state %s, tearing down %s", self.state, self.name)
                try:
                    with self.session.shielded():
                        self.teardown()
                except ProvisionError as cleanup_exc:
                    log.error("[PDB] teardown after failure also failed: %s", cleanup_exc)
            raise
        if teardown:
            log_section("Teardown")
            with self.session.shielded():
                self.teardown()

    def summary_rows(self) -> List[Tuple[str, str]]:
        rows = [
            ("PDB name", self.name or "-"),
            ("Final state", self.state),
            ("Admin user", self.admin_user),
        ]
        if self.location is not None:
            rows.append(("Seed directory", self.location.seed_dir))
        if self.destination_dir:
            rows.append(("Datafile directory", self.destination_dir))
        if self.open_mode:
            rows.append(("Open mode", self.open_mode))
        if self.saved_state:
            rows.append(("Saved state", f"{self.saved_state[0]} (restricted={self.saved_state[1]})"))
        return rows


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a pluggable database from PDB$SEED.")
    parser.add_argument("config", nargs="?", default=CONFIG_DEFAULT_PATH, help="config.ini path")
    parser.add_argument(
        "--teardown",
        action="store_true",
        help="close, discard state and drop the new PDB at the end of the run",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config_path = Path(args.config).expanduser()
    try:
        cfg = load_config(config_path)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    init_console_logging(resolve_log_level(cfg.settings.get("log_level")))
    log.info("pdb_lifecycle v%s", __version__)

    admin_password = (cfg.pdb.get("admin_password") or "").strip()
    if not admin_password:
        log.error("FAIL [PDB] admin_password is required")
        return 1
    teardown = args.teardown or parse_bool_flag(cfg.pdb.get("teardown_after_create"), default=False)

    cancel_event = threading.Event()
    install_cancel_handlers(cancel_event)

    try:
        with open_session(cfg.connection, cancel_event, cfg.settings.get("oracle_client_lib_dir")) as session:
            lifecycle = PdbLifecycle(
                session,
                admin_user=cfg.pdb.get("admin_user") or DEFAULT_PDB_ADMIN_USER,
                admin_password=admin_password,
                seed_dir_name=(cfg.pdb.get("seed_dir_name") or DEFAULT_SEED_DIR_NAME).strip(),
                system_file_name=(cfg.pdb.get("system_file_name") or DEFAULT_SYSTEM_FILE_NAME).strip(),
            )
            log_section("Provision PDB")
            with lifecycle.provisioned(teardown=teardown):
                pass
    except (ProvisionError, ValueError) as exc:
        log.error("FAIL %s: %s", type(exc).__name__, safe_first_line(str(exc), 400))
        return 1

    print_summary_table("PDB provisioning", lifecycle.summary_rows())
    return 0


if __name__ == "__main__":
    sys.exit(main())
