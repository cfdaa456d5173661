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
Thin python-oracledb session used by every provisioning step.

Every round-trip goes through OracleSession so that server failures surface
as ServerError with the server text, and so that the run-wide cancellation
event is checked before each call.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

import oracledb

from provision_common import (
    ConnectionSettings,
    ConnectivityError,
    RunCancelled,
    ServerError,
)

log = logging.getLogger(__name__)

Params = Optional[Union[Sequence[Any], dict]]


def safe_first_line(text: Optional[str], limit: int = 200, default: str = "") -> str:
    if not text:
        return default
    lines = text.strip().splitlines()
    if not lines:
        return default
    return lines[0][:limit]


class OracleSession:
    """Blocking statement/query wrapper around one oracledb connection."""

    def __init__(self, conn, cancel_event: Optional[threading.Event] = None):
        self.conn = conn
        self.cancel_event = cancel_event or threading.Event()
        self._shielded = 0

    def _check_cancelled(self) -> None:
        if self._shielded:
            return
        if self.cancel_event.is_set():
            raise RunCancelled("run cancelled before next server round-trip")

    @contextmanager
    def shielded(self) -> Iterator["OracleSession"]:
        """Run cleanup statements even after cancellation was requested."""
        self._shielded += 1
        try:
            yield self
        finally:
            self._shielded -= 1

    def execute(self, statement: str, params: Params = None) -> int:
        self._check_cancelled()
        log.debug("execute: %s", statement)
        try:
            with self.conn.cursor() as cursor:
                if params is None:
                    cursor.execute(statement)
                else:
                    cursor.execute(statement, params)
                if getattr(cursor, "warning", None) is not None:
                    log.debug("server warning: %s", cursor.warning)
                return cursor.rowcount
        except oracledb.Error as exc:
            raise ServerError(str(exc), statement) from exc

    def query_rows(self, statement: str, params: Params = None) -> List[Tuple[Any, ...]]:
        self._check_cancelled()
        log.debug("query: %s", statement)
        try:
            with self.conn.cursor() as cursor:
                if params is None:
                    cursor.execute(statement)
                else:
                    cursor.execute(statement, params)
                return [tuple(row) for row in cursor.fetchall()]
        except oracledb.Error as exc:
            raise ServerError(str(exc), statement) from exc

    def query_one(self, statement: str, params: Params = None) -> Optional[Tuple[Any, ...]]:
        """First row of the result, or None when the query returns no rows."""
        self._check_cancelled()
        log.debug("query: %s", statement)
        try:
            with self.conn.cursor() as cursor:
                if params is None:
                    cursor.execute(statement)
                else:
                    cursor.execute(statement, params)
                row = cursor.fetchone()
                return tuple(row) if row is not None else None
        except oracledb.Error as exc:
            raise ServerError(str(exc), statement) from exc

    def query_scalar(self, statement: str, params: Params = None, default: Any = None) -> Any:
        row = self.query_one(statement, params)
        if row is None:
            return default
        return row[0]

    def close(self) -> None:
        try:
            self.conn.close()
        except oracledb.Error as exc:
            log.warning("close connection failed: %s", safe_first_line(str(exc)))


def init_oracle_client(lib_dir: Optional[str]) -> None:
    client_dir = (lib_dir or "").strip()
    if not client_dir:
        return
    try:
        oracledb.init_oracle_client(lib_dir=str(Path(client_dir).expanduser()))
    except oracledb.Error as exc:
        raise ConnectivityError(f"Failed to init Oracle Instant Client: {exc}") from exc


def connect(settings: ConnectionSettings):
    mode = oracledb.AUTH_MODE_SYSDBA if settings.sysdba else oracledb.AUTH_MODE_DEFAULT
    try:
        conn = oracledb.connect(
            user=settings.user,
            password=settings.password,
            dsn=settings.resolve_dsn(),
            mode=mode,
        )
    except oracledb.Error as exc:
        raise ConnectivityError(
            f"Failed to connect to {settings.resolve_dsn()} as {settings.user}: {safe_first_line(str(exc))}"
        ) from exc
    conn.autocommit = True
    return conn


@contextmanager
def open_session(
    settings: ConnectionSettings,
    cancel_event: Optional[threading.Event] = None,
    lib_dir: Optional[str] = None,
) -> Iterator[OracleSession]:
    init_oracle_client(lib_dir)
    session = OracleSession(connect(settings), cancel_event)
    try:
        yield session
    finally:
        session.close()


def install_cancel_handlers(cancel_event: threading.Event) -> None:
    """
    Route SIGINT/SIGTERM to the run-wide cancellation event.

    The first signal only sets the event; a second one gets the default
    behaviour, so a hung round-trip can still be interrupted.
    """

    def _handler(signum, _frame):
        log.warning("received signal %s, cancelling after the current round-trip (repeat to abort)", signum)
        cancel_event.set()
        signal.signal(signum, signal.SIG_DFL)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
