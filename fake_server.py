"""In-memory stand-in for an Oracle CDB, used by the unit tests.

It understands just the statements and catalog queries the provisioning
modules issue and keeps enough state (PDBs, users, grants, compiled objects)
to check them end to end.
"""

import re
from contextlib import contextmanager
from datetime import datetime, timezone

from provision_common import ServerError

ORA_IDENT_TOO_LONG = "ORA-00972: identifier is too long"
ORA_ROLE_MISSING = "ORA-01919: role '{name}' does not exist"
ORA_TABLE_MISSING = "ORA-00942: table or view does not exist"

WINDOWS_DATAFILES = [
    r"C:\APP\ORADATA\ORCL\SYSTEM01.DBF",
    r"C:\APP\ORADATA\ORCL\SYSAUX01.DBF",
    (r"C:\APP\ORADATA\ORCL\PDBSEED\SYSTEM01.DBF", 2),
    (r"C:\APP\ORADATA\ORCL\PDBSEED\SYSAUX01.DBF", 2),
    (r"C:\APP\ORADATA\ORCL\ORCLPDB\SYSTEM01.DBF", 3),
]

LINUX_DATAFILES = [
    "/u01/oradata/ORCL/system01.dbf",
    ("/u01/oradata/ORCL/pdbseed/system01.dbf", 2),
    ("/u01/oradata/ORCL/pdb_old/system01.dbf", 3),
]

PLSQL_NAME_RE = re.compile(
    r"CREATE\s+OR\s+REPLACE\s+(FUNCTION|PROCEDURE)\s+(\w+)", re.IGNORECASE
)
JAVA_NAME_RE = re.compile(
    r'CREATE\s+OR\s+REPLACE\s+AND\s+COMPILE\s+JAVA\s+SOURCE\s+NAMED\s+"?([\w$#]+)"?', re.IGNORECASE
)


class FakeOracleServer:
    def __init__(self, datafiles=None, container="CDB$ROOT", ident_limit=128):
        self.container = container
        self.database_name = "ORCL"
        # Entries are a path (CDB$ROOT, CON_ID 1) or a (path, con_id) pair.
        self.datafiles = [
            (item, 1) if isinstance(item, str) else tuple(item)
            for item in (WINDOWS_DATAFILES if datafiles is None else datafiles)
        ]
        self.ident_limit = ident_limit
        self.pdbs = {}
        self.users = set()
        self.grants = []
        self.missing_grants = set()
        self.objects = {}
        self.errors = {}
        self.current_schema = None
        self.saved_states_view_missing = False
        self.drop_is_noop = False
        self.open_mode_after_open = "READ WRITE"
        self.executed = []
        self.queries = []
        self._failures = []
        self.shield_depth = 0

    # -- test hooks -------------------------------------------------------

    def fail_on(self, pattern, message, times=None):
        """Make statements matching pattern raise ServerError(message)."""
        self._failures.append([re.compile(pattern, re.IGNORECASE), message, times])

    def add_pdb(self, name, open_mode="READ WRITE"):
        self.pdbs[name.upper()] = {"open_mode": open_mode, "saved": False}

    @contextmanager
    def shielded(self):
        self.shield_depth += 1
        try:
            yield self
        finally:
            self.shield_depth -= 1

    def _maybe_fail(self, statement):
        for rule in self._failures:
            pattern, message, times = rule
            if not pattern.search(statement):
                continue
            if times is not None:
                if times <= 0:
                    continue
                rule[2] = times - 1
            raise ServerError(message, statement)

    # -- session interface ------------------------------------------------

    def execute(self, statement, params=None):
        self.executed.append(statement)
        self._maybe_fail(statement)
        text = statement.strip()
        upper = text.upper()

        m = re.match(r"CREATE PLUGGABLE DATABASE (\S+)", upper)
        if m:
            self.pdbs[m.group(1)] = {"open_mode": "MOUNTED", "saved": False}
            return 0
        m = re.match(r"ALTER PLUGGABLE DATABASE (\S+) (.+)$", upper)
        if m:
            pdb = self.pdbs[m.group(1)]
            action = m.group(2)
            if action == "OPEN READ WRITE":
                pdb["open_mode"] = self.open_mode_after_open
            elif action == "SAVE STATE":
                pdb["saved"] = True
            elif action == "CLOSE IMMEDIATE":
                pdb["open_mode"] = "MOUNTED"
            elif action == "DISCARD STATE":
                pdb["saved"] = False
            return 0
        m = re.match(r"DROP PLUGGABLE DATABASE (\S+) INCLUDING DATAFILES", upper)
        if m:
            if not self.drop_is_noop:
                self.pdbs.pop(m.group(1), None)
            return 0
        m = re.match(r"CREATE USER (\S+) IDENTIFIED BY", upper)
        if m:
            if len(m.group(1)) > self.ident_limit:
                raise ServerError(ORA_IDENT_TOO_LONG, statement)
            self.users.add(m.group(1))
            return 0
        m = re.match(r"DROP USER (\S+) CASCADE", upper)
        if m:
            self.users.discard(m.group(1))
            for key in [key for key in self.objects if key[0] == m.group(1)]:
                self.objects.pop(key)
            return 0
        m = re.match(r"GRANT (.+?) TO (\S+)", upper)
        if m:
            name = m.group(1).strip()
            if name in self.missing_grants:
                raise ServerError(ORA_ROLE_MISSING.format(name=name), statement)
            self.grants.append((name, m.group(2)))
            return 0
        m = re.match(r"ALTER SESSION SET CURRENT_SCHEMA = (\S+)", upper)
        if m:
            self.current_schema = m.group(1)
            return 0
        m = re.match(r"ALTER SESSION SET CONTAINER = (\S+)", upper)
        if m:
            self.container = m.group(1)
            return 0
        m = JAVA_NAME_RE.match(text)
        if m:
            self._compile(self.current_schema, "JAVA SOURCE", m.group(1), text)
            return 0
        m = PLSQL_NAME_RE.match(text)
        if m:
            self._compile(self.current_schema, m.group(1).upper(), m.group(2), text)
            return 0
        raise ServerError(f"ORA-00900: invalid SQL statement (fake): {text[:60]}", statement)

    def _compile(self, owner, object_type, name, text):
        key = (owner, object_type, name.upper())
        problems = []
        if text.count("(") != text.count(")"):
            problems.append((1, text.find("(") + 1, "PLS-00103: Encountered the symbol \"RETURN\""))
        if object_type != "JAVA SOURCE" and "LANGUAGE JAVA" not in text.upper():
            if not re.search(r"\bBEGIN\b.*\bEND\b", text, re.IGNORECASE | re.DOTALL):
                problems.append((1, 1, "PLS-00103: Encountered the symbol \"end-of-file\""))
        self.objects[key] = {"status": "INVALID" if problems else "VALID", "text": text}
        self.errors[key] = problems

    def query_rows(self, statement, params=None):
        self.queries.append((statement, params))
        self._maybe_fail(statement)
        params = params or {}
        upper = " ".join(statement.upper().split())

        if "SYS_CONTEXT('USERENV', 'CON_NAME')" in upper:
            return [(self.container,)]
        if "FROM V$DATABASE" in upper:
            return [(self.database_name,)]
        if "FROM V$DATAFILE" in upper:
            return self._datafile_dirs(upper, params)
        if "FROM DBA_PDBS" in upper:
            return [(1 if params["name"].upper() in self.pdbs else 0,)]
        if "FROM V$PDBS" in upper:
            pdb = self.pdbs.get(params["name"].upper())
            return [(params["name"].upper(), pdb["open_mode"])] if pdb else []
        if "FROM DBA_PDB_SAVED_STATES" in upper:
            if self.saved_states_view_missing:
                raise ServerError(ORA_TABLE_MISSING, statement)
            pdb = self.pdbs.get(params["name"].upper())
            return [("OPEN", "NO")] if pdb and pdb["saved"] else []
        if "FROM DBA_USERS" in upper:
            return [(1 if params["name"].upper() in self.users else 0,)]
        if "FROM ALL_OBJECTS" in upper:
            obj = self.objects.get((params["owner"], params["object_type"], params["name"]))
            return [(obj["status"],)] if obj else []
        if "FROM ALL_ERRORS" in upper:
            return list(self.errors.get((params["owner"], params["object_type"], params["name"]), []))
        m = re.match(r"SELECT (?:\w+\.)?GET_LOWER_CASE_VALUE_PL\('(.*)'\) FROM DUAL", statement.strip(), re.IGNORECASE)
        if m:
            return [(m.group(1).lower(),)]
        if re.match(r"SELECT (?:\w+\.)?GET_TIMESTAMP FROM DUAL", upper):
            return [(datetime(2025, 10, 16, 9, 5, 7, tzinfo=timezone.utc),)]
        raise ServerError(f"ORA-00942: unsupported query in fake: {upper[:60]}", statement)

    def _datafile_dirs(self, upper, params):
        file_re = re.compile(params["file_pattern"], re.IGNORECASE)
        if "exclude_pattern" in params:
            select_re = file_re
            exclude_re = re.compile(params["exclude_pattern"], re.IGNORECASE)
        else:
            select_re = re.compile(params["seed_pattern"], re.IGNORECASE)
            exclude_re = None
        root_only = "CON_ID = 1" in upper
        dirs = set()
        for name, con_id in self.datafiles:
            if root_only and con_id != 1:
                continue
            if not select_re.search(name):
                continue
            if exclude_re is not None and exclude_re.search(name):
                continue
            dirs.add(name[:file_re.search(name).start()])
        return [(item,) for item in sorted(dirs)]

    def query_one(self, statement, params=None):
        rows = self.query_rows(statement, params)
        return rows[0] if rows else None

    def query_scalar(self, statement, params=None, default=None):
        row = self.query_one(statement, params)
        return default if row is None else row[0]
