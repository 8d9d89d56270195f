"""Read-only MCP resources: server metadata, discovered instances, schema summary and DAX templates."""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import discovery, queries
from .constants import INSTANCES_CACHE_SECONDS, INTERFACE_NAMES_CACHE_SECONDS
from .tools import DaxTools

logger = logging.getLogger(__name__)

SERVER_INFO_URI = "powerbi://server/info"
INSTANCES_URI = "powerbi://instances"
SCHEMA_SUMMARY_URI = "powerbi://schema/summary"
INTERFACE_NAMES_URI = "powerbi://functions/interface-names"
TEMPLATE_URI_PREFIX = "dax://templates/"


def _template(key: str, name: str, description: str, template: str, sample: str,
              parameters: List[Tuple[str, str, str]]) -> Dict[str, Any]:
    return {
        "uri": TEMPLATE_URI_PREFIX + key,
        "name": name,
        "description": description,
        "template": template,
        "sample": sample,
        "parameters": [
            {"name": p_name, "description": p_description, "required": True, "default": p_default}
            for p_name, p_description, p_default in parameters
        ],
    }


# Static catalogue of parameterized DAX queries; @Name marks a placeholder
DAX_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "topn": _template(
        "topn", "Top N template", "Return top N rows ordered by an expression",
        "EVALUATE TOPN(@N, @Table, @OrderExpression)",
        "EVALUATE TOPN(10, 'Sales', [Total Sales])",
        [("N", "Number of rows to return", "10"),
         ("Table", "Source table reference", "'Sales'"),
         ("OrderExpression", "Ordering expression (descending)", "[Total Sales]")],
    ),
    "distinct": _template(
        "distinct", "Distinct values template", "Return distinct values from a column",
        'EVALUATE DISTINCT(SELECTCOLUMNS(@Table, "Value", @Column))',
        "EVALUATE DISTINCT(SELECTCOLUMNS('Customers', \"Value\", 'Customers'[Country]))",
        [("Table", "Source table", "'Customers'"),
         ("Column", "Column reference", "'Customers'[Country]")],
    ),
    "calculate": _template(
        "calculate", "CALCULATE with filter", "Apply a filter to an expression using CALCULATE",
        'EVALUATE ROW("Value", CALCULATE(@Expression, @Filter))',
        "EVALUATE ROW(\"Value\", CALCULATE([Total Sales], 'Calendar'[Year]=2024))",
        [("Expression", "Base measure or expression", "[Total Sales]"),
         ("Filter", "Filter predicate", "'Calendar'[Year]=2024")],
    ),
    "filter": _template(
        "filter", "FILTER wrapper", "Filter a table expression with a predicate",
        "EVALUATE FILTER(@Table, @Predicate)",
        "EVALUATE FILTER('Sales', [Total Sales] > 1000)",
        [("Table", "Table expression", "'Sales'"),
         ("Predicate", "Filter predicate", "[Total Sales] > 1000")],
    ),
    "summarize": _template(
        "summarize", "Summarize template", "Summarize a table by grouping columns and aggregating measures",
        'EVALUATE SUMMARIZE(@Table, @GroupByColumns, "Value", @MeasureExpression)',
        "EVALUATE SUMMARIZE('Sales', 'Sales'[Region], \"Value\", [Total Sales])",
        [("Table", "Base table", "'Sales'"),
         ("GroupByColumns", "Grouping columns (comma-separated)", "'Sales'[Region]"),
         ("MeasureExpression", "Aggregation measure/expression", "[Total Sales]")],
    ),
}


class ResourceProvider:
    """Computes resource contents. Engine failures propagate as ``ClassifiedError``."""

    def __init__(
        self,
        dax_tools: DaxTools,
        discover: Optional[Callable[[], List[discovery.EngineInstance]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.dax_tools = dax_tools
        self._discover = discover or discovery.discover_instances
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self.started_utc = datetime.now(timezone.utc).isoformat()

    def _cached(self, key: str) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry is None or entry[0] <= self._clock():
            return None
        return entry[1]

    def _store(self, key: str, value: Any, ttl: float) -> Any:
        self._cache[key] = (self._clock() + ttl, value)
        return value

    def server_info(self, version: str) -> Dict[str, Any]:
        endpoint = self.dax_tools.connection.endpoint
        return {
            "port": endpoint.port,
            "catalog": endpoint.catalog,
            "startup_utc": self.started_utc,
            "version": version,
        }

    async def instances(self) -> List[Dict[str, Any]]:
        """Running Power BI Desktop engines with their catalogs."""
        cached = self._cached(INSTANCES_URI)
        if cached is not None:
            return cached
        logger.debug("Instance list cache miss")
        loop = asyncio.get_running_loop()
        found = await loop.run_in_executor(None, self._discover)
        instances = [
            {"port": i.port, "workspace": str(i.workspace), "catalogs": list(i.catalogs)}
            for i in found
        ]
        return self._store(INSTANCES_URI, instances, INSTANCES_CACHE_SECONDS)

    async def schema_summary(self) -> Dict[str, int]:
        result = await self.dax_tools.connection.execute(queries.schema_summary(), operation="schema_summary")
        row = result.rows[0] if result.rows else {}
        # ROW() columns come back bracketed, e.g. "[TableCount]"
        return {name.strip("[]"): int(value or 0) for name, value in row.items()}

    async def function_interface_names(self) -> List[str]:
        """Distinct INTERFACE_NAME values of INFO.FUNCTIONS(), sorted case-insensitively."""
        cached = self._cached(INTERFACE_NAMES_URI)
        if cached is not None:
            return cached
        logger.debug("Function interface names cache miss")
        result = await self.dax_tools.connection.execute(
            queries.function_interface_names(), operation="function_interface_names"
        )
        names: Dict[str, str] = {}
        for row in result.rows:
            value = row.get("[INTERFACE_NAME]", row.get("INTERFACE_NAME"))
            if value is not None:
                names.setdefault(str(value).lower(), str(value))
        ordered = sorted(names.values(), key=str.lower)
        return self._store(INTERFACE_NAMES_URI, ordered, INTERFACE_NAMES_CACHE_SECONDS)

    @staticmethod
    def template(key: str) -> Dict[str, Any]:
        return DAX_TEMPLATES[key.lower()]
