"""Exception hierarchy for the Power BI local MCP server."""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(GatewayError):
    """Engine endpoint or server settings are missing or invalid."""


class InvalidIdentifierError(GatewayError, ValueError):
    """A caller-supplied name failed identifier validation."""

    kind = "InvalidIdentifier"

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier


class EngineError(GatewayError):
    """Failure raised by the engine client library.

    Subclasses distinguish failures reported by the engine itself from
    access failures; this base class covers everything else the client
    library can raise (dropped sessions, bad connection strings, ...).
    """

    def __init__(self, message: str, query: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.query = query
        # Message of the client library's inner exception, if any
        self.detail = detail


class EngineResponseError(EngineError):
    """The engine accepted the command and reported an error executing it."""


class EnginePermissionError(EngineError, PermissionError):
    """The engine or transport refused access."""


class ClassifiedError(GatewayError):
    """A failure mapped onto the public error taxonomy.

    This is the only exception type that leaves the connection handle.
    """

    def __init__(self, kind: Any, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{self.kind_name}: {message}")

    @property
    def kind_name(self) -> str:
        return getattr(self.kind, "value", self.kind)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.kind_name, "message": self.message}
