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
"""Timestamp-derived tokens for user and PDB names."""

from __future__ import annotations

from datetime import datetime
from typing import Optional


def format_timestamp_token(now: datetime, with_micros: bool = False) -> str:
    # Fixed-width fields keep tokens sortable: 2025_010_016_009_005_007
    token = (
        f"{now.year:04d}_{now.month:03d}_{now.day:03d}_"
        f"{now.hour:03d}_{now.minute:03d}_{now.second:03d}"
    )
    if with_micros:
        token += f"_{now.microsecond:06d}"
    return token


def generate_prefixed_timestamp(prefix: str, now: Optional[datetime] = None) -> str:
    stamp = format_timestamp_token(now or datetime.now(), with_micros=True)
    prefix = (prefix or "").strip()
    return f"{prefix}_{stamp}" if prefix else stamp


def generate_pdb_name(now: Optional[datetime] = None) -> str:
    """PDB name such as PDB_2025_010_016_009_005_007 (28 chars, under the legacy cap)."""
    return f"PDB_{format_timestamp_token(now or datetime.now())}"
