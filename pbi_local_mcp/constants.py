"""Constants for the Power BI local MCP server."""

# Engine endpoint
DEFAULT_ENGINE_HOST = "localhost"
MIN_PORT = 1
MAX_PORT = 65535
MAX_CATALOG_LENGTH = 100

# Environment / settings file keys written by the discovery command
ENV_PORT = "PBI_PORT"
ENV_CATALOG = "PBI_DB_ID"
DEFAULT_ENV_FILE = ".env"

# ADOMD.NET client library
ADOMD_ASSEMBLY = "Microsoft.AnalysisServices.AdomdClient"
DEFAULT_ADOMD_LIBRARY_PATH = r"C:\Program Files\Microsoft.NET\ADOMD.NET\160"

# Connection and timeout settings (seconds)
QUERY_TIMEOUT = 60
DISCOVERY_TIMEOUT = 30

# Data sampling limits
PREVIEW_MAX_ROWS = 10
DEFAULT_RUN_QUERY_TOP_N = 10

# Identifier validation
MAX_IDENTIFIER_LENGTH = 128
# Non-empty, no leading digit or whitespace, no trailing whitespace,
# no statement separator and no control characters.
IDENTIFIER_PATTERN = r'^(?![0-9\s])[^;\x00-\x1f\x7f]+(?<!\s)$'
# Names declared in a DEFINE block are emitted unquoted
DEFINITION_NAME_PATTERN = r'^[^\W\d]\w*$'

# Vocabulary marking an engine failure as a malformed query
SYNTAX_ERROR_MARKERS = ("syntax", "parser", "lexical")

# Query text is truncated to this length in logs and error details
QUERY_LOG_MAX_LENGTH = 200

# Leading keywords of a DAX expression that already yields a table
TABLE_EXPRESSION_PREFIXES = ("'", "SELECTCOLUMNS", "ADDCOLUMNS", "SUMMARIZE", "FILTER", "VALUES", "ALL")

# DMV views exposed through get_model_metadata, with the column used by the name filter
METADATA_VIEWS = {
    "CATALOGS": ("DBSCHEMA_CATALOGS", "CATALOG_NAME"),
    "TABLES": ("TMSCHEMA_TABLES", "Name"),
    "COLUMNS": ("TMSCHEMA_COLUMNS", "ExplicitName"),
    "MEASURES": ("TMSCHEMA_MEASURES", "Name"),
    "RELATIONSHIPS": ("TMSCHEMA_RELATIONSHIPS", "Name"),
    "PARTITIONS": ("TMSCHEMA_PARTITIONS", "Name"),
    "HIERARCHIES": ("TMSCHEMA_HIERARCHIES", "Name"),
    "ROLES": ("TMSCHEMA_ROLES", "Name"),
}

# Power BI Desktop workspace discovery
PORT_FILE_NAME = "msmdsrv.port.txt"
WORKSPACE_DIR_PREFIX = "AnalysisServicesWorkspace"
LOCALAPPDATA_WORKSPACE_ROOTS = [
    ("Microsoft", "Power BI Desktop", "AnalysisServicesWorkspaces"),
    ("Packages", "Microsoft.MicrosoftPowerBIDesktop_8wekyb3d8bbwe", "LocalState", "AnalysisServicesWorkspaces"),
]
USERPROFILE_WORKSPACE_ROOTS = [
    ("Microsoft", "Power BI Desktop Store App", "AnalysisServicesWorkspaces"),
]

# Supported MCP transports
SUPPORTED_TRANSPORTS = ["stdio", "http", "sse"]

# MCP resources: how long discovered instances and function names are reused (seconds)
INSTANCES_CACHE_SECONDS = 5
INTERFACE_NAMES_CACHE_SECONDS = 60
