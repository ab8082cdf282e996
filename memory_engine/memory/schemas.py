"""
Memory system data models.

Defines MemoryRecord, its typed metadata, and the bookkeeping types used by
the feedback loop and the maintenance engine.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


# Type aliases
MemoryCategory = Literal[
    "preference",
    "implementation_detail",
    "troubleshooting",
    "component_context",
    "project_overview",
    "task_history",
    "entity_fact",
    "conversation_insight",
    "workflow_pattern",
]
CATEGORIES: tuple = get_args(MemoryCategory)

# Categories outside the user-facing enumeration
SYSTEM_CATEGORY = "system"
UNCATEGORIZED = "uncategorized"

FactType = Literal["static", "dynamic"]
FeedbackRating = Literal["positive", "negative", "neutral"]
OperationKind = Literal["add", "search", "list"]

METADATA_SCHEMA_VERSION = 1


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_valid_category(category: Optional[str]) -> bool:
    """Check membership in the fixed category enumeration."""
    return category in CATEGORIES


class MemoryMetadata(BaseModel):
    """
    Typed metadata attached to every memory record.

    Field aliases are the keys stored on the remote service, so records
    written by earlier versions (``t_valid_from``, ``is_current``,
    ``factKey`` ...) load without migration. Unknown keys are kept.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    schema_version: int = METADATA_SCHEMA_VERSION

    # Categorization
    category: Optional[str] = None
    subcategory: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    source: Optional[str] = None
    related_entities: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    # Temporal
    fact_key: Optional[str] = Field(None, alias="factKey")
    valid_from: Optional[datetime] = Field(None, alias="t_valid_from")
    valid_until: Optional[datetime] = Field(None, alias="t_valid_until")
    ingested_at: Optional[datetime] = Field(None, alias="t_ingested")
    supersedes_id: Optional[str] = Field(None, alias="supersedes_memory_id")
    superseded_by: Optional[str] = None
    is_current: bool = True
    fact_type: Optional[FactType] = None

    # Tombstones
    archived_memory_id: Optional[str] = None
    invalidates_memory_id: Optional[str] = None
    archive_reason: Optional[str] = None

    @field_validator("valid_from", "valid_until", "ingested_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def is_tombstone(self) -> bool:
        """True for archival and invalidation markers."""
        return bool(self.archived_memory_id or self.invalidates_memory_id)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize for the remote service (aliased keys, ISO timestamps)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, raw: Any) -> "MemoryMetadata":
        """
        Parse metadata fetched from the remote service.

        Malformed values are dropped field by field instead of rejecting
        the whole record; anything that is not a mapping becomes empty
        metadata.
        """
        if not isinstance(raw, dict):
            return cls()

        # Errors may be reported under either the field name or its alias
        aliases = {name: f.alias for name, f in cls.model_fields.items() if f.alias}
        spellings: Dict[str, set] = {}
        for name, alias in aliases.items():
            spellings[name] = spellings[alias] = {name, alias}

        data = dict(raw)
        for _ in range(len(data) + 1):
            try:
                return cls.model_validate(data)
            except ValidationError as e:
                bad_keys = set()
                for err in e.errors():
                    if not err.get("loc"):
                        continue
                    key = err["loc"][0]
                    bad_keys |= spellings.get(key, {key})
                bad_keys &= set(data)
                if not bad_keys:
                    break
                for key in bad_keys:
                    data.pop(key, None)
        return cls()


class MemoryRecord(BaseModel):
    """
    A single immutable memory as returned by the remote service.

    ``score`` is the service's own similarity score and is only present on
    search results.
    """

    id: str = Field(..., description="Opaque identifier assigned by the remote store")
    content: str = Field(..., description="Remembered text")
    created_at: Optional[datetime] = Field(None, description="Creation time (UTC)")
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)
    score: Optional[float] = Field(None, description="Search similarity, if any")

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def category(self) -> str:
        return self.metadata.category or UNCATEGORIZED

    @property
    def similarity(self) -> float:
        """Search score with a missing value treated as 0."""
        return self.score if self.score is not None else 0.0

    def created_ts(self) -> float:
        """Unix timestamp of creation, 0 when unknown."""
        if self.created_at is None:
            return 0.0
        return self.created_at.timestamp()

    def snippet(self, max_chars: int = 100) -> str:
        """Get truncated text for display."""
        if len(self.content) <= max_chars:
            return self.content
        return self.content[:max_chars - 3] + "..."


class ScoreBreakdown(BaseModel):
    """Per-signal scores that make up a combined relevance score."""

    semantic: float = 0.0
    recency: float = 0.0
    importance: float = 0.0
    effectiveness: float = 0.0


class ScoredMemory(BaseModel):
    """A memory with its combined relevance score."""

    record: MemoryRecord
    score: float
    breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)
    profile: Literal["base", "feedback"] = "base"


class EffectivenessRecord(BaseModel):
    """Retrieval and feedback counters for one memory."""

    memory_id: str
    times_retrieved: int = 0
    times_helpful: int = 0
    times_unhelpful: int = 0
    effectiveness_score: float = Field(0.5, ge=0.0, le=1.0)
    last_used: Optional[datetime] = None
    last_feedback: Optional[datetime] = None


class UsageFeedbackEvent(BaseModel):
    """Feedback for one batch of memories shown together."""

    id: str
    conversation_id: Optional[str] = None
    memory_ids: List[str] = Field(default_factory=list)
    rating: Optional[FeedbackRating] = None
    task_completed: bool = False
    feedback_text: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class FailedOperationRecord(BaseModel):
    """Diagnostic snapshot of a remote call that exhausted its retries."""

    id: str
    operation: OperationKind
    namespace: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    error: str
    timestamp: datetime = Field(default_factory=utc_now)
    retry_count: int = 0


class FactUpsertResult(BaseModel):
    """Outcome of writing a temporal fact."""

    new_id: Optional[str] = None
    superseded_id: Optional[str] = None


class PruneCandidates(BaseModel):
    """Disjoint buckets of records eligible for archival."""

    superseded: List[MemoryRecord] = Field(default_factory=list)
    low_effectiveness: List[MemoryRecord] = Field(default_factory=list)
    stale: List[MemoryRecord] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.superseded) + len(self.low_effectiveness) + len(self.stale)

    def summary(self) -> Dict[str, int]:
        return {
            "superseded": len(self.superseded),
            "low_effectiveness": len(self.low_effectiveness),
            "stale": len(self.stale),
            "total": self.total,
        }


class SimilarGroup(BaseModel):
    """A primary record and the near-duplicates found for it."""

    primary: MemoryRecord
    duplicates: List[MemoryRecord] = Field(default_factory=list)


class MaintenanceResult(BaseModel):
    """Summary of a maintenance pass."""

    analyzed: int = 0
    pruned: int = 0
    consolidated: int = 0
    errors: List[str] = Field(default_factory=list)
