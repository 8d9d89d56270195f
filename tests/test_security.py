"""Security tests for identifier validation and escaping."""

import unittest

from pbi_local_mcp.exceptions import InvalidIdentifierError
from pbi_local_mcp.security import (
    DefinitionName,
    EscapedIdentifier,
    IdentifierValidator,
    QuoteStyle,
    SecurityLevel,
    audit_log_security_event,
    escape,
    is_valid_identifier,
)


class TestIdentifierValidator(unittest.TestCase):
    """Test suite for identifier validation."""

    def test_valid_identifiers(self) -> None:
        """Test that ordinary model object names are accepted."""
        valid_names = [
            "Sales",
            "_internal",
            "Sales Territory",
            "Fact_Sales_2024",
            "O'Brien",
            "Total Sales (YTD)",
            "Umsatz Österreich",
            "a" * 128,
        ]

        for name in valid_names:
            self.assertTrue(is_valid_identifier(name), f"Valid name rejected: {name}")

    def test_invalid_identifiers(self) -> None:
        """Test that names failing the grammar are rejected."""
        invalid_names = [
            "",
            None,
            42,
            "a" * 129,
            "1Sales",
            "9",
            "Sales;DROP",
            ";",
            " Sales",
            "Sales ",
            "Sales\n",
            "Sal\tes",
            "Sales\x00",
        ]

        for name in invalid_names:
            self.assertFalse(is_valid_identifier(name), f"Invalid name accepted: {name!r}")

    def test_escape_rejects_invalid_identifiers(self) -> None:
        """Test that escape fails with InvalidIdentifierError for every invalid name."""
        for name in ["", "a" * 129, "1abc", "x;y"]:
            with self.assertRaises(InvalidIdentifierError):
                escape(name)

    def test_invalid_identifier_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            IdentifierValidator.identifier("2fast")

    def test_escape_doubles_quotes(self) -> None:
        """Test each quoting convention."""
        self.assertEqual(escape("Sales"), '"Sales"')
        self.assertEqual(escape('Say "hi"'), '"Say ""hi"""')
        self.assertEqual(escape("O'Brien", QuoteStyle.STRING), '"O\'Brien"')
        self.assertEqual(escape("O'Brien", QuoteStyle.TABLE), "'O''Brien'")
        self.assertEqual(escape("O'Brien", QuoteStyle.SQL), "'O''Brien'")

    def test_injection_attempt_stays_inside_literal(self) -> None:
        """Test that a quote-breaking name renders as one harmless literal."""
        payload = 'a" OR "1"="1'
        escaped = escape(payload)

        self.assertEqual(escaped, '"a"" OR ""1""=""1"')
        inner = escaped[1:-1]
        # Every quote inside the literal is part of a doubled pair
        self.assertNotIn('"', inner.replace('""', ''))
        self.assertEqual(inner.replace('""', '"'), payload)

    def test_table_reference_injection(self) -> None:
        payload = "Sales'), ROW(\"x\", 1"
        escaped = escape(payload, QuoteStyle.TABLE)

        inner = escaped[1:-1]
        self.assertNotIn("'", inner.replace("''", ""))

    def test_escaped_identifier_renders_all_styles(self) -> None:
        ident = IdentifierValidator.identifier("O'Brien")

        self.assertIsInstance(ident, EscapedIdentifier)
        self.assertEqual(ident.raw, "O'Brien")
        self.assertEqual(ident.as_string, '"O\'Brien"')
        self.assertEqual(ident.as_table, "'O''Brien'")
        self.assertEqual(ident.as_sql, "'O''Brien'")
        self.assertEqual(ident, IdentifierValidator.identifier("O'Brien"))

    def test_escaped_identifier_cannot_be_constructed_directly(self) -> None:
        """Test that only the validator produces EscapedIdentifier values."""
        with self.assertRaises(TypeError):
            EscapedIdentifier("Sales")
        with self.assertRaises(TypeError):
            EscapedIdentifier("Sales", object())

    def test_definition_names(self) -> None:
        name = IdentifierValidator.definition_name("TotalSales")
        self.assertIsInstance(name, DefinitionName)
        self.assertEqual(name.bare, "TotalSales")
        self.assertEqual(name.as_bracketed, "[TotalSales]")

        for bad in ["Total Sales", "x.y", "[x]", "f(x)", "1st", "", "a{b}"]:
            with self.assertRaises(InvalidIdentifierError, msg=bad):
                IdentifierValidator.definition_name(bad)


class TestSecurityAuditLogging(unittest.TestCase):
    """Test suite for security audit logging."""

    def test_invalid_identifier_is_audited(self) -> None:
        with self.assertLogs("pbi_local_mcp.security", level="WARNING") as logs:
            with self.assertRaises(InvalidIdentifierError):
                IdentifierValidator.identifier("bad;name")

        self.assertEqual(len(logs.output), 1)
        self.assertIn("SECURITY_AUDIT: INVALID_IDENTIFIER", logs.output[0])

    def test_audit_log_security_event(self) -> None:
        with self.assertLogs("pbi_local_mcp.security", level="WARNING") as logs:
            audit_log_security_event("TEST_EVENT", {"value": "x"}, SecurityLevel.HIGH)

        self.assertIn("Risk: high", logs.output[0])


if __name__ == "__main__":
    unittest.main()
