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
Apply role and system privilege grants to a freshly created user.

A failing grant (role missing in this edition, privilege not grantable in a
PDB, ...) is logged and counted; the rest of the batch still runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from provision_common import ServerError
from oracle_session import safe_first_line

log = logging.getLogger(__name__)


@dataclass
class GrantBatchResult:
    succeeded: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.succeeded + self.failed


def build_grant_statement(name: str, grantee: str, container_clause: bool = False) -> str:
    stmt = f"GRANT {name} TO {grantee}"
    if container_clause:
        stmt += " CONTAINER=CURRENT"
    return stmt


def apply_grants(
    session,
    names: Iterable[str],
    grantee: str,
    label: str = "GRANT",
    container_clause: bool = False,
) -> GrantBatchResult:
    result = GrantBatchResult()
    for raw in names:
        name = (raw or "").strip()
        if not name:
            continue
        statement = build_grant_statement(name, grantee, container_clause)
        try:
            session.execute(statement)
        except ServerError as exc:
            result.failed += 1
            result.failures.append((name, exc.message))
            log.warning("[%s] FAIL %-35s -> %s (%s)", label, name, grantee, safe_first_line(exc.message))
            continue
        result.succeeded += 1
        log.info("[%s] OK   %-35s -> %s", label, name, grantee)
    log.info("[%s] done: ok=%d, failed=%d", label, result.succeeded, result.failed)
    return result
