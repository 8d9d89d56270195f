"""Utility functions for the Power BI local MCP server."""

import decimal
import logging
import sys
from typing import Any

from .constants import QUERY_LOG_MAX_LENGTH


def setup_logging(log_level: str = "INFO", structured: bool = False) -> logging.Logger:
    """
    Setup logging configuration for the application.

    Log records go to stderr; stdout carries the MCP stdio transport.

    Args:
        log_level: The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        structured: Whether to use structured logging format (JSON)

    Returns:
        Logger instance for the root logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    if structured:
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    return root_logger


def sanitize_for_logging(data: Any) -> Any:
    """
    Sanitize sensitive data for logging by redacting passwords, secrets, and API keys.

    Args:
        data: Data structure (dict, list, or primitive) to sanitize

    Returns:
        Sanitized copy of the data with sensitive fields redacted
    """
    if isinstance(data, dict):
        sanitized = {}
        sensitive_keys = {
            'password', 'passwd', 'pwd', 'secret', 'api_key', 'apikey',
            'token', 'auth', 'authorization', 'credentials', 'private_key'
        }

        for key, value in data.items():
            if any(sensitive in key.lower() for sensitive in sensitive_keys):
                sanitized[key] = '***REDACTED***'
            elif isinstance(value, (dict, list)):
                sanitized[key] = sanitize_for_logging(value)
            else:
                sanitized[key] = value

        return sanitized
    elif isinstance(data, list):
        return [sanitize_for_logging(item) for item in data]
    else:
        return data


def serialize_value(value: Any) -> Any:
    """Convert a cell value into a JSON-friendly scalar."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, decimal.Decimal):
        return float(value)
    if hasattr(value, 'isoformat'):  # date, time, datetime
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return str(value)


def truncate_query(query: str, max_length: int = QUERY_LOG_MAX_LENGTH) -> str:
    """Shorten query text for log lines."""
    if len(query) <= max_length:
        return query
    return query[:max_length] + "..."
