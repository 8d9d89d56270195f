"""Identifier validation and escaping for DAX and DMV query text.

Every caller-supplied name (table, column, measure, search text) passes
through ``IdentifierValidator`` before it is embedded in a query. The
query builder only accepts ``EscapedIdentifier`` values, which can only be
produced by the validator.
"""

import logging
import re
from enum import Enum
from typing import Any, Dict

from .constants import DEFINITION_NAME_PATTERN, IDENTIFIER_PATTERN, MAX_IDENTIFIER_LENGTH
from .exceptions import InvalidIdentifierError

logger = logging.getLogger(__name__)


class SecurityLevel(Enum):
    """Security levels for audited events."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class QuoteStyle(Enum):
    """Quoting conventions used when embedding a name in query text."""
    STRING = "string"   # DAX string literal: "Sales"
    TABLE = "table"     # DAX table reference: 'Sales'
    SQL = "sql"         # DMV string literal: 'Sales'

    @property
    def quote(self) -> str:
        return '"' if self is QuoteStyle.STRING else "'"


def _quote(name: str, style: QuoteStyle) -> str:
    quote = style.quote
    return quote + name.replace(quote, quote * 2) + quote


_CONSTRUCTION_TOKEN = object()


class EscapedIdentifier:
    """A validated caller-supplied name, rendered on demand.

    Instances can only be created through ``IdentifierValidator.identifier``.
    """

    __slots__ = ("_name",)

    def __init__(self, name: str, _token: Any = None):
        if _token is not _CONSTRUCTION_TOKEN:
            raise TypeError("EscapedIdentifier instances are created by IdentifierValidator.identifier()")
        self._name = name

    @property
    def raw(self) -> str:
        """The validated, unquoted name (for logging only)."""
        return self._name

    def render(self, style: QuoteStyle = QuoteStyle.STRING) -> str:
        return _quote(self._name, style)

    @property
    def as_string(self) -> str:
        """DAX string literal, e.g. ``"O'Brien"``."""
        return self.render(QuoteStyle.STRING)

    @property
    def as_table(self) -> str:
        """DAX table reference, e.g. ``'O''Brien'``."""
        return self.render(QuoteStyle.TABLE)

    @property
    def as_sql(self) -> str:
        """DMV string literal, e.g. ``'O''Brien'``."""
        return self.render(QuoteStyle.SQL)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, EscapedIdentifier) and other._name == self._name

    def __hash__(self) -> int:
        return hash(self._name)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._name!r})"


class DefinitionName(EscapedIdentifier):
    """A name restricted to word characters, safe to emit without quotes."""

    __slots__ = ()

    @property
    def bare(self) -> str:
        return self._name

    @property
    def as_bracketed(self) -> str:
        """Column or measure reference, e.g. ``[TotalSales]``."""
        return f"[{self._name}]"


class IdentifierValidator:
    """Validates and escapes caller-supplied model object names."""

    VALID_IDENTIFIER = re.compile(IDENTIFIER_PATTERN)
    VALID_DEFINITION_NAME = re.compile(DEFINITION_NAME_PATTERN)

    @classmethod
    def is_valid_identifier(cls, name: Any) -> bool:
        """Check a table, column or measure name against the identifier grammar."""
        if not isinstance(name, str) or not name:
            return False

        if len(name) > MAX_IDENTIFIER_LENGTH:
            return False

        return cls.VALID_IDENTIFIER.fullmatch(name) is not None

    @classmethod
    def identifier(cls, name: Any, kind: str = "identifier") -> EscapedIdentifier:
        """Validate ``name`` and wrap it for use by the query builder.

        Raises:
            InvalidIdentifierError: If ``name`` fails the identifier grammar.
        """
        if not cls.is_valid_identifier(name):
            audit_log_security_event(
                "INVALID_IDENTIFIER",
                {"kind": kind, "value": str(name)[:50]},
                SecurityLevel.MEDIUM,
            )
            raise InvalidIdentifierError(f"Invalid {kind}: {str(name)[:50]!r}", identifier=name)
        return EscapedIdentifier(name, _CONSTRUCTION_TOKEN)

    @classmethod
    def definition_name(cls, name: Any) -> "DefinitionName":
        """Validate a VAR, TABLE, COLUMN or MEASURE name declared in a DEFINE block."""
        if not cls.is_valid_identifier(name) or cls.VALID_DEFINITION_NAME.fullmatch(name) is None:
            audit_log_security_event(
                "INVALID_DEFINITION_NAME",
                {"value": str(name)[:50]},
                SecurityLevel.MEDIUM,
            )
            raise InvalidIdentifierError(f"Invalid definition name: {str(name)[:50]!r}", identifier=name)
        return DefinitionName(name, _CONSTRUCTION_TOKEN)

    @classmethod
    def escape(cls, name: Any, style: QuoteStyle = QuoteStyle.STRING) -> str:
        """Validate ``name`` and return it quoted in ``style`` with embedded quotes doubled."""
        return cls.identifier(name).render(style)


def audit_log_security_event(
    event_type: str,
    details: Dict[str, Any],
    risk_level: SecurityLevel = SecurityLevel.MEDIUM
) -> None:
    """Log security-related events for auditing."""
    logger.warning(
        f"SECURITY_AUDIT: {event_type} | Risk: {risk_level.value} | Details: {details}"
    )


# Module-level helpers
is_valid_identifier = IdentifierValidator.is_valid_identifier
escape = IdentifierValidator.escape
