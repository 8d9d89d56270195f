"""MCP server application using FastMCP."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastmcp import FastMCP, Context
from fastmcp.exceptions import ResourceError, ToolError
from pydantic import ValidationError

from .constants import PREVIEW_MAX_ROWS, DEFAULT_RUN_QUERY_TOP_N
from .errors import ErrorKind
from .exceptions import ClassifiedError, InvalidIdentifierError
from .models import (
    EvaluateRequest,
    ListMeasuresRequest,
    ListTablesRequest,
    MeasureRequest,
    MetadataRequest,
    PreviewRequest,
    RunQueryRequest,
    TableRequest,
    ToolResponse,
)
from .resources import (
    DAX_TEMPLATES,
    INSTANCES_URI,
    INTERFACE_NAMES_URI,
    SCHEMA_SUMMARY_URI,
    SERVER_INFO_URI,
    ResourceProvider,
)
from .tools import DaxTools
from . import __version__, __server_name__ as SERVER_NAME

logger = logging.getLogger(__name__)

INSTRUCTIONS = """
# Power BI Local MCP Server

Read-only access to the tabular model of a running Power BI Desktop (Analysis Services) instance.

## 🔧 TOOLS

- **list_tables / list_measures** - browse the model, optionally filtered by a case-insensitive substring
- **get_table_details / get_measure_details** - one row per object with relationship, measure and dependency counts
- **get_table_columns / get_table_relationships** - columns and relationships of a table
- **preview_table_data** - first rows of a table (at most 10)
- **evaluate_dax** - run an EVALUATE query, or a scalar expression wrapped as a one-row table
- **run_query** - DAX query with an optional DEFINE block of VAR, TABLE, COLUMN and MEASURE definitions
- **list_catalogs / get_model_metadata** - DMV metadata rowsets ($SYSTEM views)
- **get_server_info** - server status and connection details

## 📚 RESOURCES

- **powerbi://server/info** - port, catalog, startup time and version
- **powerbi://instances** - running Power BI Desktop instances and their catalogs
- **powerbi://schema/summary** - table, column, measure and relationship counts
- **powerbi://functions/interface-names** - INTERFACE_NAME values of INFO.FUNCTIONS()
- **dax://templates/{topn,distinct,calculate,filter,summarize}** - parameterized DAX query templates

## 📋 RESPONSES

Each tool returns `content` parts: the exact query that was executed, then either the JSON
result rows or a JSON error `{"error": kind, "message": ...}`. Error kinds:
InvalidDaxFilterExpression, DaxExecutionError, InsufficientPermissions, AdomdClientError,
UnexpectedError. Invalid object names are rejected as InvalidIdentifier before any query runs.
"""

TOOL_NAMES = [
    "list_tables",
    "list_measures",
    "get_table_details",
    "get_measure_details",
    "get_table_columns",
    "get_table_relationships",
    "preview_table_data",
    "evaluate_dax",
    "run_query",
    "list_catalogs",
    "get_model_metadata",
    "get_server_info",
]

RESOURCE_URIS = [SERVER_INFO_URI, INSTANCES_URI, SCHEMA_SUMMARY_URI, INTERFACE_NAMES_URI] + [
    template["uri"] for template in DAX_TEMPLATES.values()
]


async def _invoke(ctx: Context, operation: str, call: Callable[[], Awaitable[ToolResponse]]) -> Dict[str, Any]:
    """Run a facade call and turn caller-input errors into tool errors."""
    try:
        response = await call()
    except InvalidIdentifierError as e:
        await ctx.info(f"{operation} rejected an invalid identifier")
        raise ToolError(f"{ErrorKind.INVALID_IDENTIFIER.value}: {e}") from e
    except ValidationError as e:
        raise ToolError(f"InvalidArgument: {e.errors()[0].get('msg', str(e))}") from e

    error = response.error
    if error is not None:
        await ctx.info(f"{operation} failed with {error['error']}; the query text is included in the response")
    else:
        payload = response.payload
        await ctx.info(f"{operation} returned {len(payload) if isinstance(payload, list) else 0} rows")
    return response.model_dump()


async def _read(uri: str, call: Callable[[], Awaitable[Any]]) -> Any:
    """Read a resource, reporting engine failures as resource errors."""
    try:
        return await call()
    except ClassifiedError as e:
        logger.warning(f"Failed reading resource {uri}: {e}")
        raise ResourceError(f"Failed to read resource '{uri}': {e}") from e


def create_server(dax_tools: DaxTools, resources: Optional[ResourceProvider] = None) -> FastMCP:
    """Create the FastMCP server exposing ``dax_tools`` and the read-only resources."""
    mcp = FastMCP(name=SERVER_NAME, instructions=INSTRUCTIONS)
    resources = resources or ResourceProvider(dax_tools)

    @mcp.tool()
    async def list_tables(ctx: Context, name_filter: Optional[str] = None) -> Dict[str, Any]:
        """List tables in the model.

        Args:
            name_filter: Case-insensitive substring of the table name (optional)
        """
        return await _invoke(ctx, "list_tables", lambda: dax_tools.list_tables(
            ListTablesRequest(name_filter=name_filter)))

    @mcp.tool()
    async def list_measures(ctx: Context, table_name: Optional[str] = None) -> Dict[str, Any]:
        """List measures, optionally only those of tables matching ``table_name``."""
        return await _invoke(ctx, "list_measures", lambda: dax_tools.list_measures(
            ListMeasuresRequest(table_name=table_name)))

    @mcp.tool()
    async def get_table_details(ctx: Context, table_name: str) -> Dict[str, Any]:
        """Details of one table with its RelationshipCount and MeasureCount."""
        return await _invoke(ctx, "get_table_details", lambda: dax_tools.get_table_details(
            TableRequest(table_name=table_name)))

    @mcp.tool()
    async def get_measure_details(ctx: Context, measure_name: str) -> Dict[str, Any]:
        """Details of one measure, including its expression and dependency count."""
        return await _invoke(ctx, "get_measure_details", lambda: dax_tools.get_measure_details(
            MeasureRequest(measure_name=measure_name)))

    @mcp.tool()
    async def get_table_columns(ctx: Context, table_name: str) -> Dict[str, Any]:
        """Columns of tables whose name contains ``table_name``."""
        return await _invoke(ctx, "get_table_columns", lambda: dax_tools.get_table_columns(
            TableRequest(table_name=table_name)))

    @mcp.tool()
    async def get_table_relationships(ctx: Context, table_name: str) -> Dict[str, Any]:
        """Relationships from or to tables whose name contains ``table_name``."""
        return await _invoke(ctx, "get_table_relationships", lambda: dax_tools.get_table_relationships(
            TableRequest(table_name=table_name)))

    @mcp.tool()
    async def preview_table_data(ctx: Context, table_name: str, top_n: int = PREVIEW_MAX_ROWS) -> Dict[str, Any]:
        """Preview rows of a table.

        Args:
            table_name: Table to preview
            top_n: Number of rows (default: 10, max: 10)
        """
        return await _invoke(ctx, "preview_table_data", lambda: dax_tools.preview_table_data(
            PreviewRequest(table_name=table_name, top_n=top_n)))

    @mcp.tool()
    async def evaluate_dax(ctx: Context, expression: str) -> Dict[str, Any]:
        """Evaluate a DAX query or scalar expression.

        Text starting with EVALUATE runs unchanged; anything else is treated as a
        scalar and returned as a single "Value" row.
        """
        return await _invoke(ctx, "evaluate_dax", lambda: dax_tools.evaluate_dax(
            EvaluateRequest(expression=expression)))

    @mcp.tool()
    async def run_query(
        ctx: Context,
        query: str,
        definitions: Optional[List[Dict[str, Any]]] = None,
        top_n: int = DEFAULT_RUN_QUERY_TOP_N,
    ) -> Dict[str, Any]:
        """Run a DAX query with optional DEFINE-block definitions.

        Args:
            query: EVALUATE statement, table expression or scalar expression
            definitions: Items of {"type": VAR|TABLE|COLUMN|MEASURE, "name", "expression", "table_name"};
                COLUMN and MEASURE need table_name
            top_n: Row cap for bare table expressions (0 for none)
        """
        return await _invoke(ctx, "run_query", lambda: dax_tools.run_query(
            RunQueryRequest(query=query, definitions=definitions or [], top_n=top_n)))

    @mcp.tool()
    async def list_catalogs(ctx: Context) -> Dict[str, Any]:
        """List catalogs (datasets) hosted by the connected engine."""
        return await _invoke(ctx, "list_catalogs", dax_tools.list_catalogs)

    @mcp.tool()
    async def get_model_metadata(ctx: Context, view: str, name: Optional[str] = None) -> Dict[str, Any]:
        """Query a $SYSTEM metadata view.

        Args:
            view: One of CATALOGS, TABLES, COLUMNS, MEASURES, RELATIONSHIPS, PARTITIONS, HIERARCHIES, ROLES
            name: Exact object name to filter on (optional)
        """
        return await _invoke(ctx, "get_model_metadata", lambda: dax_tools.get_model_metadata(
            MetadataRequest(view=view, name=name)))

    @mcp.tool()
    async def get_server_info(ctx: Context) -> Dict[str, Any]:
        """Server version, UTC time and connection status."""
        info = dax_tools.server_info(__version__, TOOL_NAMES)
        await ctx.info(f"{SERVER_NAME} v{__version__} is running")
        return info

    @mcp.resource(SERVER_INFO_URI, name="server_info", mime_type="application/json")
    def server_info_resource() -> Dict[str, Any]:
        """Power BI connection and server metadata."""
        return resources.server_info(__version__)

    @mcp.resource(INSTANCES_URI, name="instances", mime_type="application/json")
    async def instances_resource() -> List[Dict[str, Any]]:
        """Discovered local Power BI Desktop instances (cached 5s)."""
        return await resources.instances()

    @mcp.resource(SCHEMA_SUMMARY_URI, name="schema_summary", mime_type="application/json")
    async def schema_summary_resource() -> Dict[str, int]:
        """Lightweight model schema summary (tables, columns, measures, relationships)."""
        return await _read(SCHEMA_SUMMARY_URI, resources.schema_summary)

    @mcp.resource(INTERFACE_NAMES_URI, name="function_interface_names", mime_type="application/json")
    async def interface_names_resource() -> List[str]:
        """INTERFACE_NAME values of the DAX functions (cached)."""
        return await _read(INTERFACE_NAMES_URI, resources.function_interface_names)

    for key, template in DAX_TEMPLATES.items():
        _register_template(mcp, key, template)

    logger.info(f"Registered {len(TOOL_NAMES)} MCP tools and {len(RESOURCE_URIS)} resources")
    return mcp


def _register_template(mcp: FastMCP, key: str, template: Dict[str, Any]) -> None:
    def read_template() -> Dict[str, Any]:
        return ResourceProvider.template(key)

    mcp.resource(
        template["uri"],
        name=f"dax_template_{key}",
        description=template["description"],
        mime_type="application/json",
    )(read_template)
