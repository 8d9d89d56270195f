"""Data model shared by the query builder, connection handle and tool facade."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    DEFAULT_ENGINE_HOST,
    DEFAULT_RUN_QUERY_TOP_N,
    MAX_CATALOG_LENGTH,
    MAX_PORT,
    MIN_PORT,
    PREVIEW_MAX_ROWS,
)
from .exceptions import ClassifiedError, ConfigurationError


@dataclass(frozen=True)
class EngineEndpoint:
    """The (port, catalog) pair identifying one engine instance and model."""
    port: int
    catalog: str
    host: str = DEFAULT_ENGINE_HOST

    def __post_init__(self):
        """Validate the endpoint before any connection attempt."""
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ConfigurationError(f"Engine port must be an integer, got {self.port!r}")
        if not MIN_PORT <= self.port <= MAX_PORT:
            raise ConfigurationError(f"Engine port must be between {MIN_PORT} and {MAX_PORT}, got {self.port}")
        if not isinstance(self.catalog, str) or not self.catalog.strip():
            raise ConfigurationError("Catalog id must be a non-empty string")
        if len(self.catalog) > MAX_CATALOG_LENGTH:
            raise ConfigurationError(f"Catalog id must be at most {MAX_CATALOG_LENGTH} characters")

    @property
    def data_source(self) -> str:
        return f"{self.host}:{self.port}"


class Dialect(Enum):
    """Query dialects understood by the engine."""
    EXPRESSION_QUERY = "DAX"
    SYSTEM_METADATA = "DMV"

    @property
    def media_type(self) -> str:
        return "application/dax" if self is Dialect.EXPRESSION_QUERY else "application/sql"


@dataclass(frozen=True)
class QueryRequest:
    """Final query text plus the dialect it targets."""
    text: str
    dialect: Dialect = Dialect.EXPRESSION_QUERY


@dataclass
class ResultSet:
    """Rows returned by the engine; column order is the engine's."""
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_json(self) -> str:
        return json.dumps(self.rows, indent=2, default=str)


# --- Tool response envelope ---

class ContentPart(BaseModel):
    """One typed part of a tool response."""
    type: str
    text: str


class ToolResponse(BaseModel):
    """Envelope carrying the executed query text alongside its result."""
    content: List[ContentPart]

    @classmethod
    def success(cls, query: QueryRequest, result: ResultSet) -> "ToolResponse":
        return cls(content=[
            ContentPart(type=query.dialect.media_type, text=query.text),
            ContentPart(type="application/json", text=result.to_json()),
        ])

    @classmethod
    def failure(cls, query: QueryRequest, error: ClassifiedError) -> "ToolResponse":
        return cls(content=[
            ContentPart(type=query.dialect.media_type, text=query.text),
            ContentPart(type="application/json", text=json.dumps(error.to_dict(), indent=2)),
        ])

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def error(self) -> Optional[Dict[str, Any]]:
        """The error part of a failure response, or None on success."""
        payload = self.payload
        if isinstance(payload, dict) and "error" in payload:
            return payload
        return None

    @property
    def payload(self) -> Any:
        """Decoded JSON part of the response."""
        for part in self.content:
            if part.type == "application/json":
                return json.loads(part.text)
        return None


# --- Per-operation request structs ---

class ListTablesRequest(BaseModel):
    name_filter: Optional[str] = None


class ListMeasuresRequest(BaseModel):
    table_name: Optional[str] = None


class TableRequest(BaseModel):
    table_name: str


class MeasureRequest(BaseModel):
    measure_name: str


class PreviewRequest(BaseModel):
    table_name: str
    top_n: int = PREVIEW_MAX_ROWS


class EvaluateRequest(BaseModel):
    expression: str

    @field_validator("expression")
    @classmethod
    def expression_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Expression cannot be empty")
        return v


class Definition(BaseModel):
    """A DEFINE-block entry for run_query."""
    type: Literal["VAR", "TABLE", "COLUMN", "MEASURE"]
    name: str
    expression: str
    table_name: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("expression")
    @classmethod
    def expression_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Definition expression cannot be empty")
        return v


class RunQueryRequest(BaseModel):
    query: str
    definitions: List[Definition] = Field(default_factory=list)
    top_n: int = DEFAULT_RUN_QUERY_TOP_N

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Query cannot be empty")
        return v


class MetadataRequest(BaseModel):
    view: str
    name: Optional[str] = None
