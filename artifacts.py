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
Compile PL/SQL and Java artifacts into a user's schema and verify them.

The flow per artifact:
  1) ALTER SESSION SET CURRENT_SCHEMA to the owner
  2) submit the CREATE statement
  3) read ALL_OBJECTS.STATUS
  4) VALID   -> run the optional smoke-test query
     INVALID -> dump ALL_ERRORS ordered by SEQUENCE and fail
"""

from __future__ import annotations

import logging
import textwrap
from dataclasses import dataclass
from typing import Any, List, Optional

from provision_common import ArtifactInvalidError, ArtifactStatusUnknownError

log = logging.getLogger(__name__)

STATUS_VALID = "VALID"
STATUS_INVALID = "INVALID"

OBJECT_STATUS_SQL = """
    SELECT STATUS
    FROM ALL_OBJECTS
    WHERE OWNER = :owner
      AND OBJECT_TYPE = :object_type
      AND UPPER(OBJECT_NAME) = :name
"""

COMPILE_ERRORS_SQL = """
    SELECT LINE, POSITION, TEXT
    FROM ALL_ERRORS
    WHERE OWNER = :owner
      AND TYPE = :object_type
      AND UPPER(NAME) = :name
    ORDER BY SEQUENCE
"""


@dataclass
class Artifact:
    name: str
    object_type: str  # FUNCTION, PROCEDURE, JAVA SOURCE
    statement: str
    smoke_test: Optional[str] = None


@dataclass
class DiagnosticEntry:
    line: int
    position: int
    text: str


@dataclass
class CompileResult:
    owner: str
    name: str
    object_type: str
    status: str
    smoke_value: Any = None


def ensure_terminated(statement: str) -> str:
    trimmed = (statement or "").strip()
    if not trimmed or not trimmed.endswith(";"):
        return trimmed + ";"
    return trimmed


def build_java_source_statement(name: str, java_source: str) -> str:
    return f'CREATE OR REPLACE AND COMPILE JAVA SOURCE NAMED "{name}" AS\n{java_source.strip()}'


def fetch_compile_errors(session, owner: str, object_type: str, name: str) -> List[DiagnosticEntry]:
    rows = session.query_rows(
        COMPILE_ERRORS_SQL,
        {"owner": owner.upper(), "object_type": object_type.upper(), "name": name.upper()},
    )
    return [DiagnosticEntry(int(line), int(position), str(text or "").rstrip()) for line, position, text in rows]


def fetch_object_status(session, owner: str, object_type: str, name: str) -> Optional[str]:
    status = session.query_scalar(
        OBJECT_STATUS_SQL,
        {"owner": owner.upper(), "object_type": object_type.upper(), "name": name.upper()},
    )
    return str(status).upper() if status is not None else None


def compile_artifact(session, owner: str, artifact: Artifact) -> CompileResult:
    owner_u = owner.upper()
    name_u = artifact.name.upper()
    type_u = artifact.object_type.upper()

    session.execute(f"ALTER SESSION SET CURRENT_SCHEMA = {owner}")
    session.execute(ensure_terminated(artifact.statement))

    status = fetch_object_status(session, owner_u, type_u, name_u)
    if status is None:
        raise ArtifactStatusUnknownError(f"{type_u} {owner_u}.{name_u} not found in ALL_OBJECTS after create")
    log.info("[ARTIFACT] %s %s.%s status: %s", type_u, owner_u, name_u, status)

    if status != STATUS_VALID:
        diagnostics = fetch_compile_errors(session, owner_u, type_u, name_u)
        for entry in diagnostics:
            log.error("[ARTIFACT]   [%d:%d] %s", entry.line, entry.position, entry.text)
        if not diagnostics:
            log.warning("[ARTIFACT] %s.%s is %s but ALL_ERRORS has no entries", owner_u, name_u, status)
        raise ArtifactInvalidError(f"{type_u} {owner_u}.{name_u} is {status}", diagnostics)

    result = CompileResult(owner_u, name_u, type_u, status)
    if artifact.smoke_test and artifact.smoke_test.strip():
        result.smoke_value = session.query_scalar(artifact.smoke_test)
        log.info("[ARTIFACT] smoke test %s -> %r", name_u, result.smoke_value)
    return result


GET_TIMESTAMP_DDL = textwrap.dedent("""
    CREATE OR REPLACE FUNCTION get_timestamp
       RETURN TIMESTAMP WITH TIME ZONE
    AS
    BEGIN
       RETURN CURRENT_TIMESTAMP;
    END get_timestamp;
""").strip()

LOWER_CASE_JAVA = textwrap.dedent("""
    public class get_lower_case_value {
        public static String get_lower_case_value(String s) {
            if (s == null) return null;
            return s.toLowerCase();
        }
    }
""").strip()

LOWER_CASE_WRAPPER_DDL = textwrap.dedent("""
    CREATE OR REPLACE FUNCTION get_lower_case_value_pl(p_in VARCHAR2)
      RETURN VARCHAR2 DETERMINISTIC
    AS LANGUAGE JAVA
    NAME 'get_lower_case_value.get_lower_case_value(java.lang.String) return java.lang.String';
""").strip()


def default_artifacts(owner: str, include_java: bool = True) -> List[Artifact]:
    items = [
        Artifact(
            name="get_timestamp",
            object_type="FUNCTION",
            statement=GET_TIMESTAMP_DDL,
            smoke_test=f"SELECT {owner}.get_timestamp FROM dual",
        )
    ]
    if include_java:
        items.append(Artifact(
            name="get_lower_case_value",
            object_type="JAVA SOURCE",
            statement=build_java_source_statement("get_lower_case_value", LOWER_CASE_JAVA),
        ))
        items.append(Artifact(
            name="get_lower_case_value_pl",
            object_type="FUNCTION",
            statement=LOWER_CASE_WRAPPER_DDL,
            smoke_test="SELECT get_lower_case_value_pl('AbC') FROM dual",
        ))
    return items


def compile_artifacts(session, owner: str, artifacts: List[Artifact]) -> List[CompileResult]:
    results = []
    for artifact in artifacts:
        results.append(compile_artifact(session, owner, artifact))
    return results
