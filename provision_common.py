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
Shared plumbing for the provisioning entry scripts.

Holds the error taxonomy, config.ini loading and console logging so that
pdb_lifecycle.py and provision_user.py report failures the same way.
"""

from __future__ import annotations

import configparser
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

CONFIG_DEFAULT_PATH = "config.ini"

DEFAULT_MAX_IDENTIFIER_LEN = 128
DEFAULT_LEGACY_IDENTIFIER_LEN = 30
DEFAULT_USER_PREFIX = "user_slash_schema"
DEFAULT_PDB_ADMIN_USER = "pdb_admin"
DEFAULT_SEED_DIR_NAME = "PDBSEED"
DEFAULT_SYSTEM_FILE_NAME = "SYSTEM01.DBF"

LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_SECTION_WIDTH = 80

LIST_SPLIT_RE = re.compile(r"[,\n]")

log = logging.getLogger(__name__)


class ProvisionError(Exception):
    """Base class for every fatal provisioning condition."""


class ConfigError(ProvisionError):
    """Missing or malformed config.ini."""


class ConnectivityError(ProvisionError):
    """Connection could not be established or used."""


class RunCancelled(ProvisionError):
    """The run-wide cancellation signal was raised."""


class ServerError(ProvisionError):
    """A statement failed on the server; carries the server message."""

    def __init__(self, message: str, statement: str = ""):
        super().__init__(message)
        self.message = message
        self.statement = statement


class IdentifierLengthError(ProvisionError):
    """Length fallback could not produce an accepted identifier."""

    def __init__(self, message: str, last_error: Optional[ServerError] = None):
        super().__init__(message)
        self.last_error = last_error


class PreconditionError(ProvisionError):
    """A check that gates mutating statements did not hold."""


class WrongContainerError(PreconditionError):
    pass


class PathUndeterminedError(PreconditionError):
    """A datafile location query returned no rows."""


class PathMismatchError(PreconditionError):
    def __init__(self, expected: str, actual: str):
        super().__init__(f"seed path mismatch: expected {expected}, actual {actual}")
        self.expected = expected
        self.actual = actual


class NameCollisionError(PreconditionError):
    pass


class ArtifactInvalidError(ProvisionError):
    def __init__(self, message: str, diagnostics=None):
        super().__init__(message)
        self.diagnostics = list(diagnostics or [])


class ArtifactStatusUnknownError(ProvisionError):
    pass


class PostConditionError(ProvisionError):
    """The server accepted a statement but the catalog disagrees."""


class OpenModeError(PostConditionError):
    pass


class DropNotConfirmedError(PostConditionError):
    pass


class InvalidTransitionError(ProvisionError):
    pass


@dataclass
class ConnectionSettings:
    user: str
    password: str
    host: str = ""
    port: int = 1521
    service_name: str = ""
    sysdba: bool = False
    dsn: str = ""

    def resolve_dsn(self) -> str:
        if self.dsn:
            return self.dsn
        return f"{self.host}:{self.port}/{self.service_name}"


@dataclass
class ProvisionConfig:
    connection: ConnectionSettings
    settings: Dict[str, str]
    pdb: Dict[str, str]
    granted_roles: List[str] = field(default_factory=list)
    system_privileges: List[str] = field(default_factory=list)
    max_identifier_length: int = DEFAULT_MAX_IDENTIFIER_LEN
    legacy_identifier_length: int = DEFAULT_LEGACY_IDENTIFIER_LEN

    @property
    def identifier_caps(self) -> List[int]:
        return [self.max_identifier_length, self.legacy_identifier_length]


def _build_console_handler(level: int) -> logging.Handler:
    handler = RichHandler(
        level=level,
        show_time=True,
        omit_repeated_times=False,
        show_level=True,
        show_path=False,
        rich_tracebacks=False,
        log_time_format=LOG_TIME_FORMAT
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def init_console_logging(level: int = logging.INFO) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if isinstance(handler, logging.FileHandler):
            continue
        root_logger.removeHandler(handler)
    root_logger.addHandler(_build_console_handler(level))


def resolve_log_level(level_name: Optional[str]) -> int:
    name = (level_name or "INFO").strip().upper()
    level = getattr(logging, name, None)
    if isinstance(level, int):
        return level
    return logging.INFO


def log_section(title: str, fill_char: str = "=") -> None:
    clean = f" {title.strip()} "
    if len(clean) >= LOG_SECTION_WIDTH:
        log.info("%s", title.strip())
        return
    log.info("%s", clean.center(LOG_SECTION_WIDTH, fill_char))


def print_summary_table(title: str, rows: List[Tuple[str, str]], console: Optional[Console] = None) -> None:
    table = Table(title=title, show_header=True)
    table.add_column("Item", justify="left", no_wrap=True)
    table.add_column("Value", justify="left")
    for key, value in rows:
        table.add_row(key, value)
    (console or Console()).print(table)


def parse_bool_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    text = value.strip().lower()
    if not text:
        return default
    return text in {"1", "true", "yes", "y", "on"}


def split_name_list(raw: Optional[str]) -> List[str]:
    """Split a comma/newline separated config value, keeping order."""
    if not raw:
        return []
    return [item.strip() for item in LIST_SPLIT_RE.split(raw) if item.strip()]


def parse_positive_int(raw: Optional[str], default: int, key: str) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("Invalid %s=%r, using default %d", key, raw, default)
        return default
    if value <= 0:
        log.warning("Non-positive %s=%r, using default %d", key, raw, default)
        return default
    return value


def load_connection_settings(parser: configparser.ConfigParser) -> ConnectionSettings:
    if "ORACLE_CONNECTION" not in parser:
        raise ConfigError("config.ini must include [ORACLE_CONNECTION].")
    section = parser["ORACLE_CONNECTION"]
    dsn = (section.get("dsn") or "").strip()
    required = ["user", "password"]
    if not dsn:
        required += ["host", "port", "service_name"]
    missing = [key for key in required if not (section.get(key) or "").strip()]
    if missing:
        raise ConfigError(f"[ORACLE_CONNECTION] missing keys: {', '.join(missing)}")

    port_raw = (section.get("port") or "1521").strip()
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise ConfigError(f"[ORACLE_CONNECTION] port is not an integer: {port_raw}") from exc

    return ConnectionSettings(
        user=section["user"].strip(),
        password=section["password"],
        host=(section.get("host") or "").strip(),
        port=port,
        service_name=(section.get("service_name") or "").strip(),
        sysdba=parse_bool_flag(section.get("sysdba"), default=False),
        dsn=dsn,
    )


def load_config(config_path: Path) -> ProvisionConfig:
    # Interpolation off so passwords may contain '%'.
    parser = configparser.ConfigParser(interpolation=None)
    try:
        read_ok = parser.read(config_path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as exc:
        raise ConfigError(f"Malformed config file {config_path}: {exc}") from exc
    if not read_ok:
        raise ConfigError(f"Config file not found or unreadable: {config_path}")

    connection = load_connection_settings(parser)
    settings = dict(parser["SETTINGS"]) if parser.has_section("SETTINGS") else {}
    pdb = dict(parser["PDB"]) if parser.has_section("PDB") else {}
    grants = dict(parser["GRANTS"]) if parser.has_section("GRANTS") else {}

    max_len = parse_positive_int(
        settings.get("max_identifier_length"), DEFAULT_MAX_IDENTIFIER_LEN, "max_identifier_length"
    )
    legacy_len = parse_positive_int(
        settings.get("legacy_identifier_length"), DEFAULT_LEGACY_IDENTIFIER_LEN, "legacy_identifier_length"
    )
    if legacy_len > max_len:
        raise ConfigError(
            f"legacy_identifier_length ({legacy_len}) exceeds max_identifier_length ({max_len})"
        )

    return ProvisionConfig(
        connection=connection,
        settings=settings,
        pdb=pdb,
        granted_roles=split_name_list(grants.get("granted_roles")),
        system_privileges=split_name_list(grants.get("system_privileges")),
        max_identifier_length=max_len,
        legacy_identifier_length=legacy_len,
    )
