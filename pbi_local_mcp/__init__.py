"""Power BI Local MCP - read-only DAX and DMV queries against a local Power BI Desktop model."""

__version__ = "0.3.0"
__author__ = "pbi-local-mcp Contributors"
__email__ = "contributors@example.com"
__description__ = "MCP server for running read-only DAX and DMV queries against a local Power BI Desktop instance"
__server_name__ = "pbi-local-mcp"

# Export main components for easier imports
from .connection import TabularConnection
from .config import config_manager
from .errors import ErrorKind, classify
from .models import EngineEndpoint, QueryRequest, ResultSet, ToolResponse
from .security import IdentifierValidator
from .tools import DaxTools

__all__ = [
    "TabularConnection",
    "DaxTools",
    "EngineEndpoint",
    "QueryRequest",
    "ResultSet",
    "ToolResponse",
    "IdentifierValidator",
    "ErrorKind",
    "classify",
    "config_manager",
    "__version__",
    "__server_name__",
    "__description__",
]
