"""Tool facade: validate identifiers, build the query, execute, wrap the result."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import queries
from .connection import TabularConnection
from .exceptions import ClassifiedError
from .models import (
    EvaluateRequest,
    ListMeasuresRequest,
    ListTablesRequest,
    MeasureRequest,
    MetadataRequest,
    PreviewRequest,
    QueryRequest,
    RunQueryRequest,
    TableRequest,
    ToolResponse,
)
from .security import EscapedIdentifier, IdentifierValidator

logger = logging.getLogger(__name__)


def _optional_identifier(name: Optional[str], kind: str) -> Optional[EscapedIdentifier]:
    """Blank filters mean no filter."""
    if name is None or name == "":
        return None
    return IdentifierValidator.identifier(name, kind)


class DaxTools:
    """One async operation per analytical capability.

    Identifier validation failures raise ``InvalidIdentifierError`` before
    the connection is touched. Every other failure comes back inside the
    returned ``ToolResponse``.
    """

    def __init__(self, connection: TabularConnection):
        self.connection = connection

    async def _run(self, operation: str, query: QueryRequest) -> ToolResponse:
        try:
            result = await self.connection.execute(query, operation=operation)
        except ClassifiedError as e:
            logger.debug(f"{operation} failed with {e.kind_name}")
            return ToolResponse.failure(query, e)
        logger.info(f"{operation} returned {result.row_count} rows")
        return ToolResponse.success(query, result)

    async def list_tables(self, request: ListTablesRequest) -> ToolResponse:
        name_filter = _optional_identifier(request.name_filter, "table name filter")
        return await self._run("list_tables", queries.list_tables(name_filter))

    async def list_measures(self, request: ListMeasuresRequest) -> ToolResponse:
        table_filter = _optional_identifier(request.table_name, "table name")
        return await self._run("list_measures", queries.list_measures(table_filter))

    async def get_table_details(self, request: TableRequest) -> ToolResponse:
        table = IdentifierValidator.identifier(request.table_name, "table name")
        return await self._run("get_table_details", queries.get_table_details(table))

    async def get_measure_details(self, request: MeasureRequest) -> ToolResponse:
        measure = IdentifierValidator.identifier(request.measure_name, "measure name")
        return await self._run("get_measure_details", queries.get_measure_details(measure))

    async def get_table_columns(self, request: TableRequest) -> ToolResponse:
        table = IdentifierValidator.identifier(request.table_name, "table name")
        return await self._run("get_table_columns", queries.get_table_columns(table))

    async def get_table_relationships(self, request: TableRequest) -> ToolResponse:
        table = IdentifierValidator.identifier(request.table_name, "table name")
        return await self._run("get_table_relationships", queries.get_table_relationships(table))

    async def preview_table_data(self, request: PreviewRequest) -> ToolResponse:
        table = IdentifierValidator.identifier(request.table_name, "table name")
        return await self._run("preview_table_data", queries.preview_table(table, request.top_n))

    async def evaluate_dax(self, request: EvaluateRequest) -> ToolResponse:
        return await self._run("evaluate_dax", queries.evaluate_expression(request.expression))

    async def run_query(self, request: RunQueryRequest) -> ToolResponse:
        """Run a DAX statement with an optional DEFINE block."""
        entries = []
        for definition in request.definitions:
            table = None
            if definition.table_name:
                table = IdentifierValidator.identifier(definition.table_name, "table name")
            entries.append(queries.DefineEntry(
                kind=definition.type,
                name=IdentifierValidator.definition_name(definition.name),
                expression=definition.expression,
                table=table,
            ))
        query = queries.run_query(request.query, entries, request.top_n)
        return await self._run("run_query", query)

    async def list_catalogs(self) -> ToolResponse:
        return await self._run("list_catalogs", queries.list_catalogs())

    async def get_model_metadata(self, request: MetadataRequest) -> ToolResponse:
        name = _optional_identifier(request.name, "object name")
        return await self._run("get_model_metadata", queries.get_model_metadata(request.view, name))

    def server_info(self, version: str, tools: List[str]) -> Dict[str, Any]:
        """Liveness and connection status; never touches the engine."""
        return {
            "status": "ok",
            "utc_time": datetime.now(timezone.utc).isoformat(),
            "version": version,
            "connection": self.connection.status(),
            "tools": tools,
        }
