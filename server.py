#!/usr/bin/env python3
"""Startup script for the Power BI local MCP server."""

import argparse
import logging
import signal
import sys
from typing import List, Optional

from pbi_local_mcp.config import ConfigManager
from pbi_local_mcp.connection import TabularConnection
from pbi_local_mcp.constants import DEFAULT_ENV_FILE, SUPPORTED_TRANSPORTS
from pbi_local_mcp.discovery import first_catalog, run_interactive
from pbi_local_mcp.exceptions import ConfigurationError
from pbi_local_mcp.main import RESOURCE_URIS, TOOL_NAMES, create_server
from pbi_local_mcp.tools import DaxTools
from pbi_local_mcp.utils import setup_logging
from pbi_local_mcp import __version__, __server_name__ as SERVER_NAME

logger = logging.getLogger("server")


def setup_signal_handlers():
    """Setup signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pbi-local-mcp", description=f"{SERVER_NAME} v{__version__}")
    parser.add_argument("command", nargs="?", choices=["serve", "discover"], default="serve",
                        help="serve the MCP tools (default) or discover running Power BI Desktop instances")
    parser.add_argument("--port", type=int, help="engine port (overrides PBI_PORT)")
    parser.add_argument("--db-id", dest="db_id", help="catalog id (overrides PBI_DB_ID)")
    parser.add_argument("--env-file", default=DEFAULT_ENV_FILE, help="settings file (default: .env)")
    parser.add_argument("--transport", choices=SUPPORTED_TRANSPORTS, help="MCP transport (overrides MCP_TRANSPORT)")
    parser.add_argument("--auto-catalog", action="store_true",
                        help="bind to the first catalog on the port when no catalog id is configured")
    parser.add_argument("--log-level", help="logging level (overrides LOG_LEVEL)")
    return parser


def print_startup_info(config, connection: TabularConnection):
    """Print server startup information."""
    logger.info("=" * 60)
    logger.info(f"{SERVER_NAME} v{__version__}")
    logger.info("Read-only DAX and DMV queries against a local Power BI Desktop model")
    logger.info("=" * 60)
    logger.info("🔧 Available MCP Tools:")
    for tool in TOOL_NAMES:
        logger.info(f"  • {tool}")
    logger.info("")
    logger.info("📚 Resources:")
    for uri in RESOURCE_URIS:
        logger.info(f"  • {uri}")
    logger.info("")
    logger.info("📋 Configuration:")
    logger.info(f"  • Log Level: {config.log_level}")
    logger.info(f"  • Engine: {connection.endpoint.data_source}")
    logger.info(f"  • Catalog: {connection.endpoint.catalog}")
    logger.info(f"  • Command Timeout: {config.query_timeout}s")
    logger.info(f"  • Transport: {config.mcp_transport}")
    logger.info("")


def main(argv: Optional[List[str]] = None) -> int:
    """Start the Power BI local MCP server."""
    args = build_parser().parse_args(argv)
    config_manager = ConfigManager(env_file=args.env_file)

    try:
        config = config_manager.get_server_config()
    except ConfigurationError as e:
        setup_logging("INFO")
        logger.error(f"❌ Configuration error: {e}")
        return 1
    if args.log_level:
        config.log_level = args.log_level.upper()
    if args.transport:
        config.mcp_transport = args.transport
    setup_logging(config.log_level, structured=False)

    if args.command == "discover":
        endpoint = run_interactive(args.env_file)
        return 0 if endpoint is not None else 1

    try:
        endpoint = config_manager.resolve_endpoint(
            port=args.port,
            catalog=args.db_id,
            catalog_resolver=first_catalog if args.auto_catalog else None,
        )
    except ConfigurationError as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1

    connection = TabularConnection(
        endpoint,
        command_timeout=config.query_timeout,
        library_path=config.adomd_library_path,
    )
    try:
        setup_signal_handlers()
        print_startup_info(config, connection)
        mcp = create_server(DaxTools(connection))

        logger.info(f"🚀 Starting {SERVER_NAME} MCP server with {config.mcp_transport} transport...")
        if config.mcp_transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(transport=config.mcp_transport, host=config.mcp_server_host, port=config.mcp_server_port)

    except KeyboardInterrupt:
        logger.info("⏹️  Server stopped by user (Ctrl+C)")
    except Exception as e:
        logger.error(f"❌ Critical server error: {type(e).__name__}: {e}")
        return 1
    finally:
        connection.close()
        logger.info("✅ Server shutdown complete")

    return 0


if __name__ == "__main__":
    exit_code = main()
    sys.exit(exit_code)
