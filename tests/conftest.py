"""Shared fixtures: an in-memory engine session standing in for ADOMD.NET."""

import io
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock, Mock

import pytest

from pbi_local_mcp.connection import TabularConnection
from pbi_local_mcp.errors import diagnostics_handler
from pbi_local_mcp.exceptions import EngineError
from pbi_local_mcp.models import EngineEndpoint, ResultSet
from pbi_local_mcp.tools import DaxTools

Response = Union[ResultSet, List[Dict[str, Any]], BaseException, Callable[[str], Any]]


def as_result_set(rows: Union[ResultSet, List[Dict[str, Any]]]) -> ResultSet:
    if isinstance(rows, ResultSet):
        return rows
    columns = list(rows[0].keys()) if rows else []
    return ResultSet(columns=columns, rows=list(rows))


class FakeSession:
    """Records every call and answers from scripted responses.

    ``responses`` maps exact query text to rows, a ResultSet, an exception
    to raise, or a callable taking the query text. ``handler`` answers any
    query without an exact entry.
    """

    def __init__(self, connection_string: str = "", responses: Optional[Dict[str, Response]] = None):
        self.connection_string = connection_string
        self.responses: Dict[str, Response] = dict(responses or {})
        self.handler: Optional[Callable[[str], Any]] = None
        self.delay = 0.0
        self.open_delay = 0.0
        self.block = False
        self.open_error: Optional[BaseException] = None
        self.close_error: Optional[BaseException] = None

        self.open_count = 0
        self.close_count = 0
        self.cancel_count = 0
        self.executed: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0

        self._open = False
        self._counter_lock = threading.Lock()
        self._cancel_event = threading.Event()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self.open_count += 1
        if self.open_delay:
            time.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        self._open = True

    def drop(self) -> None:
        """Simulate the engine closing the session."""
        self._open = False

    def _respond(self, text: str) -> ResultSet:
        response = self.responses.get(text, self.handler)
        if response is None:
            return ResultSet()
        if callable(response) and not isinstance(response, BaseException):
            response = response(text)
        if isinstance(response, BaseException):
            raise response
        return as_result_set(response)

    def _execute(self, dialect: str, text: str, timeout: int) -> ResultSet:
        with self._counter_lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.executed.append((dialect, text, timeout))
            if self.block:
                if self._cancel_event.wait(5):
                    raise EngineError("The operation was cancelled by the user.", text)
            elif self.delay:
                time.sleep(self.delay)
            return self._respond(text)
        finally:
            with self._counter_lock:
                self.in_flight -= 1

    def execute_dax(self, text: str, timeout: int, cancelled: Optional[threading.Event] = None) -> ResultSet:
        return self._execute("DAX", text, timeout)

    def execute_dmv(self, text: str, timeout: int, cancelled: Optional[threading.Event] = None) -> ResultSet:
        return self._execute("DMV", text, timeout)

    def cancel(self) -> None:
        self.cancel_count += 1
        self._cancel_event.set()

    def close(self) -> None:
        self.close_count += 1
        self._open = False
        if self.close_error is not None:
            raise self.close_error


def create_mock_context():
    """Create a mock MCP Context for testing."""
    mock_ctx = Mock()
    mock_ctx.info = AsyncMock()
    mock_ctx.warning = AsyncMock()
    mock_ctx.error = AsyncMock()
    return mock_ctx


@pytest.fixture
def endpoint() -> EngineEndpoint:
    return EngineEndpoint(port=52184, catalog="0b8f1c9e-6f4c-4c0e-9a57-5d7d1d4c2f10")


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def connection(endpoint, fake_session):
    conn = TabularConnection(endpoint, session_factory=lambda: fake_session, command_timeout=60)
    yield conn
    conn.close()


@pytest.fixture
def dax_tools(connection) -> DaxTools:
    return DaxTools(connection)


@pytest.fixture
def mock_ctx():
    return create_mock_context()


@pytest.fixture
def diagnostics():
    """Capture the one-line diagnostics written for unexpected errors."""
    stream = io.StringIO()
    previous = diagnostics_handler.setStream(stream)
    yield stream
    diagnostics_handler.setStream(previous)
