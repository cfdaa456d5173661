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
Confirm PDB$SEED lives where FILE_NAME_CONVERT will look for it.

The CDB$ROOT datafile directory is read from V$DATAFILE, the expected seed
directory is derived as <root><seed dir><sep>, and the actual seed directory
is read from V$DATAFILE as well. Both are normalized before comparison.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from provision_common import (
    DEFAULT_SEED_DIR_NAME,
    DEFAULT_SYSTEM_FILE_NAME,
    PathMismatchError,
    PathUndeterminedError,
)

log = logging.getLogger(__name__)

ORACLE_REGEX_SPECIALS = set("\\.^$*+?()[]{}|")

# Second guard next to CON_ID = 1: datafiles under any PDB* directory
# belong to the seed or to other PDBs.
PDB_DIR_EXCLUDE_PATTERN = r"[\\/]PDB[^\\/]*"

ROOT_DIR_SQL = """
    SELECT DISTINCT
           SUBSTR(NAME, 1, REGEXP_INSTR(NAME, :file_pattern, 1, 1, 0, 'i') - 1)
    FROM V$DATAFILE
    WHERE CON_ID = 1
      AND REGEXP_LIKE(NAME, :file_pattern, 'i')
      AND NOT REGEXP_LIKE(NAME, :exclude_pattern, 'i')
    ORDER BY 1
"""

SEED_DIR_SQL = """
    SELECT DISTINCT
           SUBSTR(NAME, 1, REGEXP_INSTR(NAME, :file_pattern, 1, 1, 0, 'i') - 1)
    FROM V$DATAFILE
    WHERE REGEXP_LIKE(NAME, :seed_pattern, 'i')
    ORDER BY 1
"""


@dataclass
class SeedLocation:
    root_dir: str
    expected_seed_dir: str
    seed_dir: str  # as reported, native separators; FILE_NAME_CONVERT source
    separator: str
    expected_normalized: str
    actual_normalized: str

    def destination_dir(self, pdb_name: str) -> str:
        return normalize_dir(self.root_dir + pdb_name, self.separator)


def escape_oracle_regex(text: str) -> str:
    return "".join(f"\\{ch}" if ch in ORACLE_REGEX_SPECIALS else ch for ch in text)


def detect_separator(path: str) -> str:
    return "\\" if "\\" in (path or "") else "/"


def normalize_dir(path: str, separator: str) -> str:
    other = "/" if separator == "\\" else "\\"
    text = (path or "").replace(other, separator)
    if not text.endswith(separator):
        text += separator
    return text


def normalize_for_compare(path: str) -> str:
    return normalize_dir(path, "/").upper()


def compare_seed_paths(root_dir: str, actual_seed_dir: str, seed_dir_name: str = DEFAULT_SEED_DIR_NAME) -> SeedLocation:
    separator = detect_separator(root_dir)
    root = normalize_dir(root_dir, separator)
    expected = normalize_dir(root + seed_dir_name, separator)
    expected_norm = normalize_for_compare(expected)
    actual_norm = normalize_for_compare(actual_seed_dir)
    log.info("[SEED] expected: %s", expected_norm)
    log.info("[SEED] actual:   %s", actual_norm)
    if expected_norm != actual_norm:
        raise PathMismatchError(expected_norm, actual_norm)
    seed_dir = normalize_dir(actual_seed_dir, separator)
    return SeedLocation(root, expected, seed_dir, separator, expected_norm, actual_norm)


def query_root_dir(session, system_file_name: str = DEFAULT_SYSTEM_FILE_NAME) -> Optional[str]:
    row = session.query_one(
        ROOT_DIR_SQL,
        {"file_pattern": escape_oracle_regex(system_file_name), "exclude_pattern": PDB_DIR_EXCLUDE_PATTERN},
    )
    return row[0] if row and row[0] else None


def query_seed_dir(
    session,
    seed_dir_name: str = DEFAULT_SEED_DIR_NAME,
    system_file_name: str = DEFAULT_SYSTEM_FILE_NAME,
) -> Optional[str]:
    file_pattern = escape_oracle_regex(system_file_name)
    seed_pattern = rf"[\\/]{escape_oracle_regex(seed_dir_name)}[\\/]{file_pattern}"
    row = session.query_one(SEED_DIR_SQL, {"file_pattern": file_pattern, "seed_pattern": seed_pattern})
    return row[0] if row and row[0] else None


def verify_seed_path(
    session,
    seed_dir_name: str = DEFAULT_SEED_DIR_NAME,
    system_file_name: str = DEFAULT_SYSTEM_FILE_NAME,
) -> SeedLocation:
    root_dir = query_root_dir(session, system_file_name)
    if not root_dir:
        raise PathUndeterminedError("no rows from V$DATAFILE for the CDB$ROOT datafile directory")
    log.info("[SEED] root datafile directory: %s", root_dir)

    actual = query_seed_dir(session, seed_dir_name, system_file_name)
    if not actual:
        raise PathUndeterminedError(f"no rows from V$DATAFILE for the {seed_dir_name} datafile directory")
    log.info("[SEED] seed datafile directory: %s", actual)

    location = compare_seed_paths(root_dir, actual, seed_dir_name)
    log.info("[SEED] OK expected seed path equals actual seed path")
    return location
