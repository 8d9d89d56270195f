"""Query builder: one composition function per analytical capability.

Caller-supplied names arrive as ``EscapedIdentifier`` values; everything
else embedded here is either a fixed template or opaque expression text
that the caller explicitly asked to run.
"""

import re
from typing import NamedTuple, Optional, Sequence

from .constants import METADATA_VIEWS, PREVIEW_MAX_ROWS, TABLE_EXPRESSION_PREFIXES
from .exceptions import InvalidIdentifierError
from .models import Dialect, QueryRequest
from .security import DefinitionName, EscapedIdentifier

_EVALUATE_PREFIX = re.compile(r'^\s*EVALUATE\b', re.IGNORECASE)
_DEFINE_PREFIX = re.compile(r'^\s*DEFINE\b', re.IGNORECASE)

# DEFINE block ordering
DEFINITION_ORDER = ("VAR", "TABLE", "COLUMN", "MEASURE")


def _dax(text: str) -> QueryRequest:
    return QueryRequest(text=text, dialect=Dialect.EXPRESSION_QUERY)


def _dmv(text: str) -> QueryRequest:
    return QueryRequest(text=text, dialect=Dialect.SYSTEM_METADATA)


def _contains(name: EscapedIdentifier, column: str) -> str:
    """Case-insensitive substring predicate."""
    return f"SEARCH({name.as_string}, {column}, 1, 0) > 0"


def starts_with_evaluate(text: str) -> bool:
    return _EVALUATE_PREFIX.match(text) is not None


def clamp_preview_rows(top_n: Optional[int]) -> int:
    """Clamp a requested preview size to ``PREVIEW_MAX_ROWS``.

    Non-positive or missing values fall back to the maximum.
    """
    if top_n is None or top_n <= 0:
        return PREVIEW_MAX_ROWS
    return min(top_n, PREVIEW_MAX_ROWS)


# --- Model listing ---

def list_tables(name_filter: Optional[EscapedIdentifier] = None) -> QueryRequest:
    if name_filter is None:
        return _dax("EVALUATE INFO.VIEW.TABLES()")
    return _dax(f"EVALUATE FILTER(INFO.VIEW.TABLES(), {_contains(name_filter, '[Name]')})")


def list_measures(table_filter: Optional[EscapedIdentifier] = None) -> QueryRequest:
    if table_filter is None:
        return _dax("EVALUATE INFO.VIEW.MEASURES()")
    return _dax(f"EVALUATE FILTER(INFO.VIEW.MEASURES(), {_contains(table_filter, '[Table]')})")


# --- Detail lookups ---

def get_table_details(table: EscapedIdentifier) -> QueryRequest:
    """Table row plus relationship and measure counts in one round trip."""
    name = table.as_string
    return _dax(
        "EVALUATE\n"
        f"VAR t = FILTER(INFO.VIEW.TABLES(), [Name] = {name})\n"
        f"VAR r = COUNTROWS(FILTER(INFO.VIEW.RELATIONSHIPS(), [FromTable] = {name} || [ToTable] = {name}))\n"
        f"VAR m = COUNTROWS(FILTER(INFO.VIEW.MEASURES(), [Table] = {name}))\n"
        'RETURN ADDCOLUMNS(t, "RelationshipCount", r + 0, "MeasureCount", m + 0)'
    )


def get_measure_details(measure: EscapedIdentifier) -> QueryRequest:
    """Measure row plus the number of objects it depends on."""
    name = measure.as_string
    return _dax(
        "EVALUATE\n"
        f"VAR t = FILTER(INFO.VIEW.MEASURES(), [Name] = {name})\n"
        f'VAR d = COUNTROWS(FILTER(INFO.DEPENDENCIES(), [OBJECT_TYPE] = "MEASURE" && [OBJECT] = {name}))\n'
        'RETURN ADDCOLUMNS(t, "Dependencies", d + 0)'
    )


def get_table_columns(table: EscapedIdentifier) -> QueryRequest:
    return _dax(f"EVALUATE FILTER(INFO.VIEW.COLUMNS(), {_contains(table, '[Table]')})")


def get_table_relationships(table: EscapedIdentifier) -> QueryRequest:
    return _dax(
        "EVALUATE FILTER(INFO.VIEW.RELATIONSHIPS(), "
        f"{_contains(table, '[FromTable]')} || {_contains(table, '[ToTable]')})"
    )


# --- Row access ---

def preview_table(table: EscapedIdentifier, top_n: Optional[int] = PREVIEW_MAX_ROWS) -> QueryRequest:
    return _dax(f"EVALUATE TOPN({clamp_preview_rows(top_n)}, {table.as_table})")


def evaluate_expression(text: str) -> QueryRequest:
    """Pass EVALUATE queries through unchanged; wrap scalars in a one-row table."""
    if starts_with_evaluate(text):
        return _dax(text)
    return _dax(f'EVALUATE ROW("Value", {text.strip()})')


class DefineEntry(NamedTuple):
    """One validated DEFINE-block entry."""
    kind: str
    name: DefinitionName
    expression: str
    table: Optional[EscapedIdentifier] = None

    def render(self) -> str:
        if self.kind in ("COLUMN", "MEASURE"):
            if self.table is None:
                raise InvalidIdentifierError(f"{self.kind} {self.name.raw} requires a table name")
            target = f"{self.table.as_table}{self.name.as_bracketed}"
        elif self.kind in ("VAR", "TABLE"):
            target = self.name.bare
        else:
            raise InvalidIdentifierError(f"Unknown definition type: {self.kind}")
        return f"{self.kind} {target} = {self.expression.strip()}"


def _evaluate_statement(query: str, top_n: int) -> str:
    if starts_with_evaluate(query):
        return query
    upper = query.upper()
    if upper.startswith(TABLE_EXPRESSION_PREFIXES):
        if top_n > 0:
            return f"EVALUATE TOPN({top_n}, {query})"
        return f"EVALUATE {query}"
    return f'EVALUATE ROW("Value", {query})'


def run_query(query: str, definitions: Sequence[DefineEntry] = (), top_n: int = 0) -> QueryRequest:
    """Compose a full DAX query from a statement and optional DEFINE entries.

    Args:
        query: An EVALUATE statement, a table expression or a scalar expression.
            Text already starting with DEFINE is used as is when no entries are given.
        definitions: Entries emitted in VAR, TABLE, COLUMN, MEASURE order.
        top_n: Row cap applied to bare table expressions; 0 disables it.
    """
    stripped = query.strip()
    if not definitions and _DEFINE_PREFIX.match(stripped):
        return _dax(stripped)

    statement = _evaluate_statement(stripped, top_n)
    if not definitions:
        return _dax(statement)

    rendered = [(entry.kind, entry.render()) for entry in definitions]
    rendered.sort(key=lambda item: DEFINITION_ORDER.index(item[0]))
    lines = ["DEFINE"] + [f"    {text}" for _, text in rendered] + [statement]
    return _dax("\n".join(lines))


# --- DMV ---

def list_catalogs() -> QueryRequest:
    return _dmv("SELECT [CATALOG_NAME], [DESCRIPTION], [DATE_MODIFIED] FROM $SYSTEM.DBSCHEMA_CATALOGS")


def get_model_metadata(view: str, name: Optional[EscapedIdentifier] = None) -> QueryRequest:
    """SELECT from an allow-listed ``$SYSTEM`` view, optionally filtered by name."""
    key = view.strip().upper() if isinstance(view, str) else ""
    if key not in METADATA_VIEWS:
        raise InvalidIdentifierError(
            f"Unknown metadata view {str(view)[:50]!r}; expected one of {', '.join(METADATA_VIEWS)}",
            identifier=view,
        )
    rowset, name_column = METADATA_VIEWS[key]
    text = f"SELECT * FROM $SYSTEM.{rowset}"
    if name is not None:
        text += f" WHERE [{name_column}] = {name.as_sql}"
    return _dmv(text)


# --- Resources ---

def schema_summary() -> QueryRequest:
    """Object counts of the model in one row."""
    return _dax(
        'EVALUATE ROW('
        '"TableCount", COUNTROWS(INFO.VIEW.TABLES()) + 0, '
        '"ColumnCount", COUNTROWS(INFO.VIEW.COLUMNS()) + 0, '
        '"MeasureCount", COUNTROWS(INFO.VIEW.MEASURES()) + 0, '
        '"RelationshipCount", COUNTROWS(INFO.VIEW.RELATIONSHIPS()) + 0)'
    )


def function_interface_names() -> QueryRequest:
    return _dax('EVALUATE DISTINCT(SELECTCOLUMNS(INFO.FUNCTIONS(), "INTERFACE_NAME", [INTERFACE_NAME]))')
