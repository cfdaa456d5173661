import threading
import unittest
from unittest import mock

import oracledb

import oracle_session as osess
from provision_common import ConnectionSettings, ConnectivityError, RunCancelled, ServerError


def make_conn(rows=None, error=None):
    cursor = mock.MagicMock()
    cursor.rowcount = 1
    cursor.warning = None
    cursor.fetchall.return_value = rows or []
    cursor.fetchone.return_value = rows[0] if rows else None
    if error is not None:
        cursor.execute.side_effect = error
    conn = mock.MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


class TestSafeFirstLine(unittest.TestCase):
    def test_first_line_truncated(self):
        self.assertEqual(osess.safe_first_line("ORA-1\nmore", limit=3), "ORA")

    def test_default(self):
        self.assertEqual(osess.safe_first_line(None, default="-"), "-")
        self.assertEqual(osess.safe_first_line("   ", default="-"), "-")


class TestOracleSession(unittest.TestCase):
    def test_execute_returns_rowcount(self):
        conn, cursor = make_conn()
        session = osess.OracleSession(conn)
        self.assertEqual(session.execute("GRANT CONNECT TO U1"), 1)
        cursor.execute.assert_called_once_with("GRANT CONNECT TO U1")

    def test_execute_with_binds(self):
        conn, cursor = make_conn()
        osess.OracleSession(conn).execute("DELETE FROM t WHERE id = :id", {"id": 1})
        cursor.execute.assert_called_once_with("DELETE FROM t WHERE id = :id", {"id": 1})

    def test_database_error_is_wrapped(self):
        conn, _cursor = make_conn(error=oracledb.DatabaseError("ORA-01031: insufficient privileges"))
        with self.assertRaises(ServerError) as ctx:
            osess.OracleSession(conn).execute("DROP USER U1 CASCADE")
        self.assertIn("ORA-01031", ctx.exception.message)
        self.assertEqual(ctx.exception.statement, "DROP USER U1 CASCADE")

    def test_query_helpers(self):
        conn, _cursor = make_conn(rows=[("A", 1), ("B", 2)])
        session = osess.OracleSession(conn)
        self.assertEqual(session.query_rows("SELECT 1"), [("A", 1), ("B", 2)])
        self.assertEqual(session.query_one("SELECT 1"), ("A", 1))
        self.assertEqual(session.query_scalar("SELECT 1"), "A")

    def test_query_without_rows(self):
        conn, _cursor = make_conn(rows=[])
        session = osess.OracleSession(conn)
        self.assertIsNone(session.query_one("SELECT 1 FROM dual WHERE 1 = 0"))
        self.assertEqual(session.query_scalar("SELECT 1 FROM dual WHERE 1 = 0", default=0), 0)

    def test_cancelled_before_round_trip(self):
        conn, cursor = make_conn()
        event = threading.Event()
        event.set()
        session = osess.OracleSession(conn, event)
        with self.assertRaises(RunCancelled):
            session.execute("DROP USER U1 CASCADE")
        cursor.execute.assert_not_called()

    def test_shielded_ignores_cancellation(self):
        conn, cursor = make_conn()
        event = threading.Event()
        event.set()
        session = osess.OracleSession(conn, event)
        with session.shielded():
            session.execute("DROP USER U1 CASCADE")
        cursor.execute.assert_called_once()
        with self.assertRaises(RunCancelled):
            session.query_one("SELECT 1 FROM dual")


class TestConnect(unittest.TestCase):
    def test_connect_sysdba_with_autocommit(self):
        settings = ConnectionSettings("sys", "pw", "db1", 1522, "ORCL", sysdba=True)
        with mock.patch.object(osess.oracledb, "connect") as connect:
            conn = osess.connect(settings)
        connect.assert_called_once_with(
            user="sys", password="pw", dsn="db1:1522/ORCL", mode=oracledb.AUTH_MODE_SYSDBA
        )
        self.assertTrue(conn.autocommit)

    def test_connect_failure(self):
        settings = ConnectionSettings("u", "pw", dsn="db1/ORCL")
        with mock.patch.object(osess.oracledb, "connect", side_effect=oracledb.OperationalError("DPY-6005")):
            with self.assertRaises(ConnectivityError):
                osess.connect(settings)

    def test_open_session_closes_on_error(self):
        conn = mock.MagicMock()
        settings = ConnectionSettings("u", "pw", dsn="db1/ORCL")
        with mock.patch.object(osess, "connect", return_value=conn):
            with self.assertRaises(RuntimeError):
                with osess.open_session(settings):
                    raise RuntimeError("boom")
        conn.close.assert_called_once()

    def test_init_client_skipped_without_dir(self):
        with mock.patch.object(osess.oracledb, "init_oracle_client") as init:
            osess.init_oracle_client("  ")
        init.assert_not_called()

    def test_cancel_handler_sets_event_then_restores_default(self):
        event = threading.Event()
        with mock.patch.object(osess.signal, "signal") as install:
            osess.install_cancel_handlers(event)
            handler = install.call_args_list[0][0][1]
            handler(osess.signal.SIGINT, None)
        self.assertTrue(event.is_set())
        install.assert_called_with(osess.signal.SIGINT, osess.signal.SIG_DFL)


if __name__ == "__main__":
    unittest.main()
