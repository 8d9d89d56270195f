"""Configuration management for the Power BI local MCP server."""

import os
import logging
from typing import Callable, Mapping, Optional, Any
from dataclasses import asdict, dataclass
from dotenv import load_dotenv, dotenv_values

from .constants import DEFAULT_ENV_FILE, ENV_CATALOG, ENV_PORT, QUERY_TIMEOUT, SUPPORTED_TRANSPORTS
from .exceptions import ConfigurationError
from .models import EngineEndpoint
from .utils import sanitize_for_logging

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """Server configuration settings."""
    log_level: str
    mcp_transport: str = "stdio"  # stdio for desktop MCP clients
    mcp_server_host: str = "localhost"
    mcp_server_port: int = 9000
    adomd_library_path: Optional[str] = None
    query_timeout: int = QUERY_TIMEOUT

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.mcp_transport not in SUPPORTED_TRANSPORTS:
            logger.warning(f"Invalid MCP_TRANSPORT value '{self.mcp_transport}'. Defaulting to 'stdio'.")
            self.mcp_transport = "stdio"

        if self.query_timeout <= 0:
            logger.warning(f"Invalid QUERY_TIMEOUT value '{self.query_timeout}'. Defaulting to {QUERY_TIMEOUT}.")
            self.query_timeout = QUERY_TIMEOUT


def _first_set(*values: Any) -> Any:
    """First value that is neither None nor blank."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value.strip() if isinstance(value, str) else value
    return None


def parse_port(value: Any) -> int:
    """Parse a port number, raising ConfigurationError if it is not an integer."""
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid {ENV_PORT} value: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"Invalid {ENV_PORT} value: {value!r} is not a port number") from None


class ConfigManager:
    """Manages application configuration."""

    def __init__(self, env_file: Optional[str] = None):
        """Initialize configuration manager."""
        self.env_file = env_file or os.path.join(os.getcwd(), DEFAULT_ENV_FILE)
        self._server_config: Optional[ServerConfig] = None

    def get_server_config(self) -> ServerConfig:
        """Get server configuration."""
        if self._server_config is None:
            load_dotenv(self.env_file)
            try:
                query_timeout = int(os.getenv("QUERY_TIMEOUT", str(QUERY_TIMEOUT)))
                server_port = int(os.getenv("MCP_SERVER_PORT", "9000"))
            except ValueError as e:
                raise ConfigurationError(f"Invalid numeric setting: {e}") from e
            self._server_config = ServerConfig(
                log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
                mcp_transport=os.getenv("MCP_TRANSPORT", "stdio").lower(),
                mcp_server_host=os.getenv("MCP_SERVER_HOST", "localhost"),
                mcp_server_port=server_port,
                adomd_library_path=os.getenv("ADOMD_LIBRARY_PATH"),
                query_timeout=query_timeout,
            )
            logger.info("Server configuration loaded")
            logger.debug(f"Server settings: {sanitize_for_logging(asdict(self._server_config))}")
        return self._server_config

    def read_settings_file(self, env_file: Optional[str] = None) -> Mapping[str, Optional[str]]:
        """Key-value pairs persisted by the discovery command, without touching os.environ."""
        path = env_file or self.env_file
        if not os.path.isfile(path):
            return {}
        return dotenv_values(path)

    def resolve_endpoint(
        self,
        port: Optional[Any] = None,
        catalog: Optional[str] = None,
        env_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        catalog_resolver: Optional[Callable[[int], str]] = None,
    ) -> EngineEndpoint:
        """Resolve the engine endpoint.

        Each field is taken from the first source that sets it: explicit
        arguments, then environment variables, then the settings file.

        Args:
            port: Port given on the command line
            catalog: Catalog id given on the command line
            env_file: Settings file to read (defaults to the manager's file)
            environ: Environment mapping (defaults to os.environ)
            catalog_resolver: Called with the port when no source sets a catalog

        Raises:
            ConfigurationError: If a value is missing or invalid
        """
        environ = os.environ if environ is None else environ
        settings = self.read_settings_file(env_file)

        raw_port = _first_set(port, environ.get(ENV_PORT), settings.get(ENV_PORT))
        if raw_port is None:
            raise ConfigurationError(
                f"{ENV_PORT} not set. Pass --port, set {ENV_PORT}, or run the discover command"
            )
        resolved_port = parse_port(raw_port)

        resolved_catalog = _first_set(catalog, environ.get(ENV_CATALOG), settings.get(ENV_CATALOG))
        if resolved_catalog is None and catalog_resolver is not None:
            # Validate the port before handing it to discovery
            EngineEndpoint(resolved_port, "pending")
            resolved_catalog = catalog_resolver(resolved_port)
        if resolved_catalog is None:
            raise ConfigurationError(
                f"{ENV_CATALOG} not set. Pass --db-id, set {ENV_CATALOG}, or run the discover command"
            )

        endpoint = EngineEndpoint(resolved_port, resolved_catalog)
        logger.info(f"Engine endpoint resolved: {endpoint.data_source} (catalog {endpoint.catalog})")
        return endpoint


# Global configuration manager instance
config_manager = ConfigManager()
