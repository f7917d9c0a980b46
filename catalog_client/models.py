from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CatalogModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


def _as_str(value: Any) -> Any:
    # Ids arrive as UUID strings from the real API and as integers from some fixtures
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# --- Borrow requests and waitlist ---

class BorrowStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BorrowRequest(CatalogModel):
    """A patron's request to borrow one book. Status is owned by the server."""
    id: str
    user_id: str
    book_id: str
    status: BorrowStatus
    created_at: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "requestedAt", "created_at"),
    )
    rejection_reason: Optional[str] = None
    processed_at: Optional[str] = None

    @field_validator("id", "user_id", "book_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _as_str(value)

    @property
    def is_pending(self) -> bool:
        return self.status is BorrowStatus.PENDING


class BorrowSubmission(CatalogModel):
    """Server acknowledgement of a newly created borrow request."""
    request_id: Optional[str] = None
    message: Optional[str] = None

    @field_validator("request_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _as_str(value)


class WaitlistEntry(CatalogModel):
    user_id: str
    book_id: str
    position: int

    @field_validator("user_id", "book_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _as_str(value)


# --- Search history ---

class SearchHistoryEntry(CatalogModel):
    id: str
    user_id: str
    type: str
    query: Optional[str] = None
    book_id: Optional[str] = None
    created_at: Optional[str] = None
    book: Optional[Dict[str, Any]] = None

    @field_validator("id", "user_id", "book_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _as_str(value)


# --- Admin health snapshot ---

class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    FAILED = "failed"


class SystemStatus(CatalogModel):
    ingestion: HealthStatus
    maintenance: HealthStatus
    ai_classification: HealthStatus
    overall: HealthStatus


class DailyMetrics(CatalogModel):
    books_ingested: int = 0
    books_skipped: int = 0
    books_failed: int = 0
    books_classified: int = 0
    classification_failures: int = 0
    date: Optional[str] = None


class IngestionProgress(CatalogModel):
    source: str = "unknown"
    last_page: int = 0
    last_cursor: Optional[str] = None
    total_ingested: int = 0
    last_run_at: Optional[str] = None
    last_run_status: str = "unknown"


class StorageHealth(CatalogModel):
    total_pdfs: int = 0
    estimated_size_mb: float = 0
    orphaned_files: Optional[int] = None
    corrupt_files: Optional[int] = None


class ErrorEntry(CatalogModel):
    timestamp: str
    type: str
    message: str
    identifier: Optional[str] = None


class ActionEntry(CatalogModel):
    timestamp: str
    action: str
    result: str


class ErrorSummary(CatalogModel):
    ingestion_errors: List[ErrorEntry] = Field(default_factory=list)
    maintenance_actions: List[ActionEntry] = Field(default_factory=list)
    last_ai_error: Optional[ErrorEntry] = None


class HealthSnapshot(CatalogModel):
    """Immutable point-in-time view of the catalog's operational health.

    Always replaced wholesale by a newer snapshot, never merged.
    """
    system_status: SystemStatus
    daily_metrics: DailyMetrics
    ingestion_progress: IngestionProgress
    storage_health: StorageHealth
    error_summary: ErrorSummary
    timestamp: str
    response_time_ms: Optional[int] = None
