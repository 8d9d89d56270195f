"""Error taxonomy and classification of engine failures."""

import logging
import sys
import traceback
from datetime import datetime, timezone
from enum import Enum

from .constants import SYNTAX_ERROR_MARKERS
from .exceptions import ClassifiedError, EngineError, EngineResponseError


class ErrorKind(str, Enum):
    """Failure kinds a calling tool can act on."""
    INVALID_IDENTIFIER = "InvalidIdentifier"
    INVALID_DAX_FILTER_EXPRESSION = "InvalidDaxFilterExpression"
    INSUFFICIENT_PERMISSIONS = "InsufficientPermissions"
    DAX_EXECUTION_ERROR = "DaxExecutionError"
    ADOMD_CLIENT_ERROR = "AdomdClientError"
    UNEXPECTED_ERROR = "UnexpectedError"


diagnostics_logger = logging.getLogger("pbi_local_mcp.diagnostics")
diagnostics_logger.setLevel(logging.ERROR)
diagnostics_logger.propagate = False
diagnostics_handler = logging.StreamHandler(sys.stderr)
diagnostics_handler.setFormatter(logging.Formatter("%(message)s"))
diagnostics_logger.addHandler(diagnostics_handler)


def _mentions_syntax(exc: BaseException) -> bool:
    """Check the exception and its chained causes for parser vocabulary."""
    seen = set()
    current = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        message = f"{current} {getattr(current, 'detail', None) or ''}".lower()
        if any(marker in message for marker in SYNTAX_ERROR_MARKERS):
            return True
        current = current.__cause__ or current.__context__
    return False


def write_diagnostic(operation: str, exc: BaseException) -> None:
    """Write one line describing an unclassified failure to stderr."""
    timestamp = datetime.now(timezone.utc).isoformat()
    detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    detail = " | ".join(line.strip() for line in detail.splitlines() if line.strip())
    diagnostics_logger.error(f"[{timestamp}] [{operation}] {detail}")


def classify(exc: BaseException, operation: str = "execute") -> ClassifiedError:
    """Map an exception onto the error taxonomy. First match wins."""
    if isinstance(exc, ClassifiedError):
        return exc

    if isinstance(exc, PermissionError):
        return ClassifiedError(ErrorKind.INSUFFICIENT_PERMISSIONS, "Insufficient permissions to access the engine")

    if isinstance(exc, EngineResponseError):
        if _mentions_syntax(exc):
            return ClassifiedError(ErrorKind.INVALID_DAX_FILTER_EXPRESSION, str(exc))
        return ClassifiedError(ErrorKind.DAX_EXECUTION_ERROR, str(exc))

    if isinstance(exc, EngineError):
        return ClassifiedError(ErrorKind.ADOMD_CLIENT_ERROR, str(exc))

    write_diagnostic(operation, exc)
    return ClassifiedError(ErrorKind.UNEXPECTED_ERROR, str(exc))
