#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Shared tool version for all entry scripts.

Keep this as the single source of truth for version tags shown by:
- pdb_lifecycle.py
- provision_user.py
"""

__version__ = "0.3.1"
