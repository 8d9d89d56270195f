"""Connection handle owning the single engine session."""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from .adomd import AdomdSession, build_connection_string
from .constants import QUERY_TIMEOUT
from .errors import ErrorKind, classify
from .exceptions import ClassifiedError
from .models import Dialect, EngineEndpoint, QueryRequest, ResultSet
from .utils import truncate_query

logger = logging.getLogger(__name__)


class TabularConnection:
    """Lazily opened, serialized access to one engine endpoint.

    All engine calls run on a dedicated single-worker thread and are
    guarded by an asyncio lock, so at most one command is in flight at a
    time. Waiters are served in lock acquisition order.
    """

    def __init__(
        self,
        endpoint: EngineEndpoint,
        session_factory: Optional[Callable[[], Any]] = None,
        command_timeout: int = QUERY_TIMEOUT,
        library_path: Optional[str] = None,
    ):
        self.endpoint = endpoint
        self.command_timeout = command_timeout
        if session_factory is None:
            connection_string = build_connection_string(endpoint)

            def session_factory():
                return AdomdSession(connection_string, library_path)

        self._session_factory = session_factory
        self._session = None
        self._lock = asyncio.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="adomd")
        self.queries_executed = 0
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._session is not None and self._session.is_open

    def _ensure_open(self):
        if self._session is None:
            self._session = self._session_factory()
        if not self._session.is_open:
            logger.info(f"Opening engine connection to {self.endpoint.data_source} (catalog {self.endpoint.catalog})")
            self._session.open()
            logger.info("Engine connection opened")
        return self._session

    def _run(self, request: QueryRequest, cancelled: threading.Event) -> Optional[ResultSet]:
        # Runs on the worker thread; opening can take long enough for the caller to give up
        if cancelled.is_set():
            return None
        session = self._ensure_open()
        if cancelled.is_set():
            return None
        if request.dialect is Dialect.SYSTEM_METADATA:
            return session.execute_dmv(request.text, self.command_timeout, cancelled)
        return session.execute_dax(request.text, self.command_timeout, cancelled)

    def _log_query(self, request: QueryRequest, operation: str) -> None:
        logger.info(f"🔍 {request.dialect.value} QUERY [{operation}]: {truncate_query(request.text)}")

    async def execute(self, request: QueryRequest, operation: str = "execute") -> ResultSet:
        """Execute a query and return its rows.

        Raises:
            ClassifiedError: For every failure of the engine or client library.
            asyncio.CancelledError: If the calling task is cancelled; the
                in-flight engine command is aborted before this propagates.
        """
        async with self._lock:
            if self._closed:
                raise ClassifiedError(ErrorKind.ADOMD_CLIENT_ERROR, "The engine connection has been closed")
            self._log_query(request, operation)
            loop = asyncio.get_running_loop()
            cancelled = threading.Event()
            future = None
            try:
                future = loop.run_in_executor(self._executor, self._run, request, cancelled)
                result = await asyncio.shield(future)
            except asyncio.CancelledError:
                cancelled.set()
                if future is not None:
                    await self._abort(future)
                raise
            except Exception as e:
                raise classify(e, operation) from e

            self.queries_executed += 1
            logger.debug(f"{operation} returned {result.row_count} rows")
            return result

    async def _abort(self, future: "asyncio.Future") -> None:
        """Cancel the engine command behind ``future`` and wait for the worker to stop."""
        if self._session is not None:
            self._session.cancel()
        await asyncio.wait({future})
        if not future.cancelled() and future.exception() is not None:
            logger.info(f"Engine command ended after cancellation: {future.exception()}")

    def status(self) -> Dict[str, Any]:
        return {
            "data_source": self.endpoint.data_source,
            "catalog": self.endpoint.catalog,
            "is_open": self.is_open,
            "queries_executed": self.queries_executed,
            "command_timeout": self.command_timeout,
        }

    def close(self) -> None:
        """Close the session. Best effort: failures are logged, not raised."""
        self._closed = True
        session, self._session = self._session, None
        if session is not None:
            try:
                session.close()
                logger.info("Engine connection closed")
            except Exception as e:
                logger.warning(f"Error closing engine connection: {e}")
        self._executor.shutdown(wait=False)
