import logging
import tempfile
import textwrap
import unittest
from pathlib import Path
from unittest import mock

import provision_common as pc

BASE = """
[ORACLE_CONNECTION]
user = sys
password = p%ss
host = db1
port = 1521
service_name = ORCL
"""


class TestLoadConfig(unittest.TestCase):
    def write(self, body):
        tmp = tempfile.NamedTemporaryFile("w", suffix=".ini", delete=False, encoding="utf-8")
        tmp.write(textwrap.dedent(body))
        tmp.close()
        self.addCleanup(Path(tmp.name).unlink)
        return Path(tmp.name)

    def test_minimal_config(self):
        cfg = pc.load_config(self.write(BASE))
        self.assertEqual(cfg.connection.password, "p%ss")
        self.assertFalse(cfg.connection.sysdba)
        self.assertEqual(cfg.connection.resolve_dsn(), "db1:1521/ORCL")
        self.assertEqual(cfg.granted_roles, [])
        self.assertEqual(cfg.identifier_caps, [128, 30])

    def test_grant_lists_keep_order(self):
        cfg = pc.load_config(self.write(BASE + """
[GRANTS]
granted_roles = RESOURCE, CONNECT,,
system_privileges =
    CREATE TABLE
    CREATE VIEW, CREATE SEQUENCE
"""))
        self.assertEqual(cfg.granted_roles, ["RESOURCE", "CONNECT"])
        self.assertEqual(cfg.system_privileges, ["CREATE TABLE", "CREATE VIEW", "CREATE SEQUENCE"])

    def test_dsn_replaces_host_keys(self):
        cfg = pc.load_config(self.write("""
[ORACLE_CONNECTION]
user = u
password = p
dsn = tcps://db1:2484/ORCL
"""))
        self.assertEqual(cfg.connection.resolve_dsn(), "tcps://db1:2484/ORCL")

    def test_missing_section(self):
        with self.assertRaises(pc.ConfigError):
            pc.load_config(self.write("[SETTINGS]\nlog_level = INFO\n"))

    def test_missing_keys(self):
        with self.assertRaises(pc.ConfigError) as ctx:
            pc.load_config(self.write("[ORACLE_CONNECTION]\nuser = u\npassword = p\n"))
        self.assertIn("host", str(ctx.exception))

    def test_bad_port(self):
        with self.assertRaises(pc.ConfigError):
            pc.load_config(self.write(BASE.replace("port = 1521", "port = abc")))

    def test_malformed_file(self):
        with self.assertRaises(pc.ConfigError):
            pc.load_config(self.write("user = no section header\n"))

    def test_non_utf8_file(self):
        tmp = tempfile.NamedTemporaryFile("wb", suffix=".ini", delete=False)
        tmp.write(BASE.replace("p%ss", "päss").encode("latin-1"))
        tmp.close()
        self.addCleanup(Path(tmp.name).unlink)
        with self.assertRaises(pc.ConfigError):
            pc.load_config(Path(tmp.name))

    def test_missing_file(self):
        with self.assertRaises(pc.ConfigError):
            pc.load_config(Path("/nonexistent/config.ini"))

    def test_identifier_caps_override(self):
        cfg = pc.load_config(self.write(BASE + """
[SETTINGS]
max_identifier_length = 64
legacy_identifier_length = nope
"""))
        self.assertEqual(cfg.identifier_caps, [64, 30])

    def test_legacy_cap_above_max(self):
        with self.assertRaises(pc.ConfigError):
            pc.load_config(self.write(BASE + """
[SETTINGS]
max_identifier_length = 20
"""))


class TestHelpers(unittest.TestCase):
    def test_parse_bool_flag(self):
        self.assertTrue(pc.parse_bool_flag(" Yes "))
        self.assertFalse(pc.parse_bool_flag("off", default=True))
        self.assertTrue(pc.parse_bool_flag("", default=True))
        self.assertFalse(pc.parse_bool_flag(None))

    def test_parse_positive_int(self):
        self.assertEqual(pc.parse_positive_int("12", 5, "k"), 12)
        self.assertEqual(pc.parse_positive_int("-1", 5, "k"), 5)
        self.assertEqual(pc.parse_positive_int(None, 5, "k"), 5)

    def test_resolve_log_level(self):
        self.assertEqual(pc.resolve_log_level("debug"), logging.DEBUG)
        self.assertEqual(pc.resolve_log_level("bogus"), logging.INFO)
        self.assertEqual(pc.resolve_log_level(None), logging.INFO)

    def test_init_console_logging_replaces_stream_handlers(self):
        root = logging.getLogger()
        saved = list(root.handlers), root.level
        self.addCleanup(lambda: (setattr(root, "handlers", saved[0]), root.setLevel(saved[1])))
        root.handlers = [logging.StreamHandler()]
        pc.init_console_logging(logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertEqual(type(root.handlers[0]).__name__, "RichHandler")
        self.assertEqual(root.level, logging.DEBUG)

    def test_print_summary_table(self):
        console = mock.Mock()
        pc.print_summary_table("Run", [("User", "U1"), ("Dropped", "no")], console)
        table = console.print.call_args[0][0]
        self.assertEqual(table.title, "Run")
        self.assertEqual(table.row_count, 2)

    def test_error_hierarchy(self):
        self.assertTrue(issubclass(pc.PathMismatchError, pc.PreconditionError))
        self.assertTrue(issubclass(pc.DropNotConfirmedError, pc.PostConditionError))
        err = pc.ServerError("ORA-00942", "SELECT 1")
        self.assertEqual((err.message, err.statement), ("ORA-00942", "SELECT 1"))


if __name__ == "__main__":
    unittest.main()
