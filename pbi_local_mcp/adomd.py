"""ADOMD.NET session adapter loaded through pythonnet.

The .NET client library is imported lazily on first open, so the rest of
the package (and its tests) never needs a .NET runtime.
"""

import logging
import os
import threading
from typing import Any, Optional

from .constants import ADOMD_ASSEMBLY, DEFAULT_ADOMD_LIBRARY_PATH
from .exceptions import EngineError, EnginePermissionError, EngineResponseError
from .models import EngineEndpoint, ResultSet
from .utils import serialize_value

logger = logging.getLogger(__name__)

_load_lock = threading.Lock()
_adomd_loaded = False

_PERMISSION_EXCEPTIONS = {"UnauthorizedAccessException", "SecurityException"}
_RESPONSE_EXCEPTIONS = {"AdomdErrorResponseException"}


def _quote_property(value: str) -> str:
    if any(ch in value for ch in ';="\''):
        return '"' + value.replace('"', '""') + '"'
    return value


def build_connection_string(endpoint: EngineEndpoint) -> str:
    """ADOMD connection string for an endpoint."""
    return f"Data Source={endpoint.data_source};Initial Catalog={_quote_property(endpoint.catalog)}"


def build_server_connection_string(port: int, host: str = "localhost") -> str:
    """Connection string without a catalog, used to enumerate catalogs."""
    return f"Data Source={host}:{port}"


def load_adomd(library_path: Optional[str] = None) -> None:
    """Load the ADOMD.NET assembly into the .NET runtime."""
    global _adomd_loaded
    with _load_lock:
        if _adomd_loaded:
            return

        import clr  # pythonnet

        path = library_path or os.getenv("ADOMD_LIBRARY_PATH") or DEFAULT_ADOMD_LIBRARY_PATH
        dll_path = os.path.join(path, f"{ADOMD_ASSEMBLY}.dll")
        try:
            if os.path.isfile(dll_path):
                clr.AddReference(dll_path)
            else:
                # Fall back to the GAC / probing path
                clr.AddReference(ADOMD_ASSEMBLY)
        except Exception as e:
            raise EngineError(
                f"Could not load {ADOMD_ASSEMBLY}. Install ADOMD.NET or set ADOMD_LIBRARY_PATH: {e}"
            ) from e

        _adomd_loaded = True
        logger.info(f"Loaded {ADOMD_ASSEMBLY} from {dll_path if os.path.isfile(dll_path) else 'assembly probing path'}")


def _exception_names(exc: BaseException) -> set:
    return {cls.__name__ for cls in type(exc).__mro__}


def _dotnet_message(exc: BaseException) -> str:
    message = getattr(exc, "Message", None)
    return str(message) if message else str(exc)


def translate_exception(exc: BaseException, query: Optional[str] = None) -> Optional[EngineError]:
    """Map a .NET exception raised by ADOMD onto the engine exception hierarchy.

    Returns None for exceptions that did not come from the client library.
    """
    if isinstance(exc, EngineError):
        return exc

    names = _exception_names(exc)
    message = _dotnet_message(exc)
    inner = getattr(exc, "InnerException", None)
    detail = _dotnet_message(inner) if inner is not None else None

    if names & _PERMISSION_EXCEPTIONS:
        return EnginePermissionError(message, query, detail)
    if names & _RESPONSE_EXCEPTIONS:
        return EngineResponseError(message, query, detail)
    if any(name.startswith("Adomd") for name in names):
        return EngineError(message, query, detail)
    return None


def _to_python(value: Any) -> Any:
    """Convert a .NET cell value into a JSON-friendly Python scalar."""
    type_name = type(value).__name__
    if type_name == "DBNull":
        return None
    if type_name == "DateTime":
        return str(value.ToString("o"))
    if type_name == "Decimal" and hasattr(value, "ToString"):
        from System import Convert
        return float(Convert.ToDouble(value))
    return serialize_value(value)


class AdomdSession:
    """One ADOMD.NET connection plus the command currently running on it."""

    def __init__(self, connection_string: str, library_path: Optional[str] = None):
        self.connection_string = connection_string
        self.library_path = library_path
        self._connection = None
        self._command = None
        self._command_lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        if self._connection is None:
            return False
        return str(self._connection.State) == "Open"

    def open(self) -> None:
        """Open the connection."""
        load_adomd(self.library_path)
        from Microsoft.AnalysisServices.AdomdClient import AdomdConnection

        try:
            connection = AdomdConnection(self.connection_string)
            connection.Open()
        except Exception as e:
            translated = translate_exception(e)
            if translated is None:
                raise
            raise translated from e
        self._connection = connection

    def _start_command(self, text: str, timeout: int, cancelled: Optional[threading.Event]):
        """Create the command unless the caller already gave up.

        Checked under the same lock as ``cancel`` so a cancel request either
        sees the command or prevents it from being created.
        """
        with self._command_lock:
            if cancelled is not None and cancelled.is_set():
                raise EngineError("The operation was cancelled before it started.", text)
            from Microsoft.AnalysisServices.AdomdClient import AdomdCommand

            command = AdomdCommand(text, self._connection)
            command.CommandTimeout = timeout
            self._command = command
            return command

    def _finish_command(self) -> None:
        with self._command_lock:
            self._command = None

    def execute_dax(self, text: str, timeout: int, cancelled: Optional[threading.Event] = None) -> ResultSet:
        """Run a DAX query through a data reader."""
        try:
            command = self._start_command(text, timeout, cancelled)
            reader = command.ExecuteReader()
            try:
                columns = [str(reader.GetName(i)) for i in range(reader.FieldCount)]
                rows = []
                while reader.Read():
                    rows.append({
                        name: None if reader.IsDBNull(i) else _to_python(reader.GetValue(i))
                        for i, name in enumerate(columns)
                    })
            finally:
                reader.Close()
        except EngineError:
            raise
        except Exception as e:
            translated = translate_exception(e, text)
            if translated is None:
                raise
            raise translated from e
        finally:
            self._finish_command()
        return ResultSet(columns=columns, rows=rows)

    def execute_dmv(self, text: str, timeout: int, cancelled: Optional[threading.Event] = None) -> ResultSet:
        """Run a DMV rowset query by filling a DataTable."""
        from Microsoft.AnalysisServices.AdomdClient import AdomdDataAdapter
        from System.Data import DataTable

        try:
            command = self._start_command(text, timeout, cancelled)
            adapter = AdomdDataAdapter(command)
            table = DataTable()
            adapter.Fill(table)
            columns = [str(column.ColumnName) for column in table.Columns]
            rows = [
                {name: None if row.IsNull(i) else _to_python(row[i]) for i, name in enumerate(columns)}
                for row in table.Rows
            ]
        except EngineError:
            raise
        except Exception as e:
            translated = translate_exception(e, text)
            if translated is None:
                raise
            raise translated from e
        finally:
            self._finish_command()
        return ResultSet(columns=columns, rows=rows)

    def cancel(self) -> None:
        """Abort the command in flight, if any. Safe to call from another thread."""
        with self._command_lock:
            command = self._command
        if command is None:
            return
        try:
            command.Cancel()
            logger.info("Cancelled in-flight engine command")
        except Exception as e:
            logger.warning(f"Failed to cancel engine command: {e}")

    def close(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.Close()
        finally:
            self._connection = None
