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
Oracle identifier handling.

  - sanitize_identifier: map any string onto [A-Z0-9_$#] with a leading letter
  - classify_server_error: the single place that reads ORA codes for the ladder
  - create_with_length_ladder: retry a CREATE with shorter names on ORA-00972
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional, Sequence

from provision_common import IdentifierLengthError, ServerError
from oracle_session import safe_first_line

log = logging.getLogger(__name__)

IDENT_INVALID_CHARS_RE = re.compile(r"[^A-Z0-9_$#]")
IDENT_SIMPLE_RE = re.compile(r"^[A-Z][A-Z0-9_$#]*$")
IDENT_FILLER_PREFIX = "U"


class ErrorClass:
    """Classification of statement failures for the length ladder."""
    LENGTH_VIOLATION = "length_violation"  # ORA-00972 -> truncate and retry
    OTHER = "other"                        # anything else -> fatal


LENGTH_VIOLATION_MARKERS = ("ORA-00972", "IDENTIFIER IS TOO LONG")


def classify_server_error(message: str) -> str:
    if not message:
        return ErrorClass.OTHER
    upper = message.upper()
    if any(marker in upper for marker in LENGTH_VIOLATION_MARKERS):
        return ErrorClass.LENGTH_VIOLATION
    return ErrorClass.OTHER


def sanitize_identifier(raw: str) -> str:
    text = IDENT_INVALID_CHARS_RE.sub("_", (raw or "").upper())
    if text and not ("A" <= text[0] <= "Z"):
        text = f"{IDENT_FILLER_PREFIX}_{text}"
    return text


def is_valid_identifier(name: str, max_len: Optional[int] = None) -> bool:
    if not name or not IDENT_SIMPLE_RE.match(name):
        return False
    return max_len is None or len(name) <= max_len


def require_identifier(name: str, what: str = "identifier") -> str:
    if not name:
        raise ValueError(f"empty {what}")
    if not IDENT_SIMPLE_RE.match(name):
        raise ValueError(f"invalid {what}: {name!r}")
    return name


def truncate_identifier(name: str, max_len: int) -> str:
    if len(name) <= max_len:
        return name
    return name[:max_len]


def format_password(password: str) -> str:
    escaped = password.replace('"', '""')
    return f"\"{escaped}\""


def escape_sql_literal(value: str) -> str:
    return (value or "").replace("'", "''")


def create_with_length_ladder(
    session,
    name: str,
    build_statement: Callable[[str], str],
    caps: Sequence[int],
    classifier: Callable[[str], str] = classify_server_error,
    label: str = "CREATE",
) -> str:
    """
    Execute build_statement(name), shortening name on identifier-too-long.

    caps is ordered longest first (modern cap, then legacy cap). Each length
    violation moves one rung down; a rung that would not shorten the name, or
    any other failure, ends the ladder. Returns the name that was accepted.
    """
    current = name
    rungs = list(caps)
    attempt = 0
    while True:
        attempt += 1
        statement = build_statement(current)
        try:
            session.execute(statement)
        except ServerError as exc:
            if classifier(exc.message) != ErrorClass.LENGTH_VIOLATION:
                log.error("[%s] failed (attempt %d): %s", label, attempt, safe_first_line(exc.message))
                raise
            if not rungs:
                raise IdentifierLengthError(
                    f"{label} failed after all length fallbacks for {current}: {safe_first_line(exc.message)}",
                    last_error=exc,
                ) from exc
            cap = rungs.pop(0)
            shorter = truncate_identifier(current, cap)
            if shorter == current:
                raise IdentifierLengthError(
                    f"{label} rejected {current} as too long but it already fits {cap} chars: "
                    f"{safe_first_line(exc.message)}",
                    last_error=exc,
                ) from exc
            log.warning("[%s] identifier too long; retrying with %s (cap %d)", label, shorter, cap)
            current = shorter
            continue
        if current != name:
            log.info("[%s] accepted shortened identifier %s", label, current)
        return current
