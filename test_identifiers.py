import unittest
from unittest import mock

import identifiers as ids
from provision_common import IdentifierLengthError, ServerError

TOO_LONG = "ORA-00972: identifier is too long"


def build_stmt(name):
    return f"CREATE USER {name} IDENTIFIED BY \"f\""


class TestSanitizeIdentifier(unittest.TestCase):
    def test_uppercases_and_replaces_invalid_chars(self):
        self.assertEqual(ids.sanitize_identifier("user/schema 2025-10"), "USER_SCHEMA_2025_10")

    def test_keeps_dollar_and_hash(self):
        self.assertEqual(ids.sanitize_identifier("a$b#c"), "A$B#C")

    def test_prefixes_non_letter_start(self):
        self.assertEqual(ids.sanitize_identifier("2025_010"), "U_2025_010")
        self.assertEqual(ids.sanitize_identifier("_x"), "U__X")

    def test_empty_stays_empty(self):
        self.assertEqual(ids.sanitize_identifier(""), "")
        self.assertEqual(ids.sanitize_identifier(None), "")

    def test_idempotent(self):
        samples = [
            "", "abc", "1abc", "user_slash_schema_2025_010_016_009_005_007_123456",
            "ümlaut-name", "$start", "#", "___", "MiXeD CaSe.name", "9", "A",
        ]
        for raw in samples:
            once = ids.sanitize_identifier(raw)
            self.assertEqual(ids.sanitize_identifier(once), once, raw)

    def test_require_identifier_rejects_empty(self):
        with self.assertRaises(ValueError):
            ids.require_identifier("")
        with self.assertRaises(ValueError):
            ids.require_identifier("1ABC")
        self.assertEqual(ids.require_identifier("ABC"), "ABC")


class TestClassifyServerError(unittest.TestCase):
    def test_length_violation(self):
        self.assertEqual(ids.classify_server_error(TOO_LONG), ids.ErrorClass.LENGTH_VIOLATION)
        self.assertEqual(
            ids.classify_server_error("ora-00972: Identifier is too long"),
            ids.ErrorClass.LENGTH_VIOLATION,
        )

    def test_other(self):
        self.assertEqual(ids.classify_server_error("ORA-01920: user name conflicts"), ids.ErrorClass.OTHER)
        self.assertEqual(ids.classify_server_error(""), ids.ErrorClass.OTHER)


class TestLengthLadder(unittest.TestCase):
    def test_first_attempt_success_keeps_name(self):
        session = mock.Mock()
        name = "U" * 128
        result = ids.create_with_length_ladder(session, name, build_stmt, [128, 30])
        self.assertEqual(result, name)
        session.execute.assert_called_once_with(build_stmt(name))

    def test_truncates_to_modern_cap(self):
        session = mock.Mock()
        session.execute.side_effect = [ServerError(TOO_LONG), None]
        name = "A" * 140
        result = ids.create_with_length_ladder(session, name, build_stmt, [128, 30])
        self.assertEqual(result, "A" * 128)
        self.assertEqual(session.execute.call_count, 2)

    def test_falls_back_to_legacy_cap(self):
        session = mock.Mock()
        session.execute.side_effect = [ServerError(TOO_LONG), ServerError(TOO_LONG), None]
        name = "B" * 140
        result = ids.create_with_length_ladder(session, name, build_stmt, [128, 30])
        self.assertEqual(result, "B" * 30)
        self.assertEqual(session.execute.call_args_list[-1], mock.call(build_stmt("B" * 30)))

    def test_generic_failure_after_length_failure_stops(self):
        session = mock.Mock()
        generic = ServerError("ORA-01031: insufficient privileges")
        session.execute.side_effect = [ServerError(TOO_LONG), generic, None]
        with self.assertRaises(ServerError) as ctx:
            ids.create_with_length_ladder(session, "C" * 140, build_stmt, [128, 30])
        self.assertIs(ctx.exception, generic)
        self.assertEqual(session.execute.call_count, 2)

    def test_generic_failure_first_is_fatal(self):
        session = mock.Mock()
        session.execute.side_effect = ServerError("ORA-01920: user name 'X' conflicts")
        with self.assertRaises(ServerError):
            ids.create_with_length_ladder(session, "X", build_stmt, [128, 30])
        session.execute.assert_called_once()

    def test_unchanged_truncation_is_hard_failure(self):
        session = mock.Mock()
        session.execute.side_effect = ServerError(TOO_LONG)
        with self.assertRaises(IdentifierLengthError):
            ids.create_with_length_ladder(session, "D" * 40, build_stmt, [128, 30])
        session.execute.assert_called_once()

    def test_failure_at_legacy_cap_is_fatal(self):
        session = mock.Mock()
        session.execute.side_effect = ServerError(TOO_LONG)
        with self.assertRaises(IdentifierLengthError) as ctx:
            ids.create_with_length_ladder(session, "E" * 140, build_stmt, [128, 30])
        self.assertEqual(session.execute.call_count, 3)
        self.assertIsNotNone(ctx.exception.last_error)

    def test_custom_classifier(self):
        session = mock.Mock()
        session.execute.side_effect = [ServerError("name too big"), None]
        result = ids.create_with_length_ladder(
            session,
            "F" * 20,
            build_stmt,
            [10],
            classifier=lambda msg: ids.ErrorClass.LENGTH_VIOLATION if "too big" in msg else ids.ErrorClass.OTHER,
        )
        self.assertEqual(result, "F" * 10)


class TestQuoting(unittest.TestCase):
    def test_format_password(self):
        self.assertEqual(ids.format_password('p"w'), '"p""w"')

    def test_escape_sql_literal(self):
        self.assertEqual(ids.escape_sql_literal("O'Brien"), "O''Brien")


if __name__ == "__main__":
    unittest.main()
