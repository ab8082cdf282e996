"""
Pydantic schemas for the memory API endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from memory_engine.memory.schemas import (
    EffectivenessRecord,
    FailedOperationRecord,
    FeedbackRating,
    MemoryRecord,
    ScoredMemory,
    SimilarGroup,
)


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = Field(..., description="ok or degraded")
    backend: str = Field(..., description="Remote memory backend name")
    healthy: bool = Field(..., description="Whether the remote probe succeeded")
    failed_queue_size: int = Field(0, description="Operations waiting in the failure queue")
    last_error: Optional[str] = Field(None, description="Most recent remote error")


# ===== Search & add =====


class SearchMemoryRequest(BaseModel):
    """Request to rank memories for a query."""

    query: str = Field(..., description="Query text", min_length=1)
    limit: int = Field(5, description="Maximum number of results", ge=1, le=100)
    profile: Optional[Literal["base", "feedback"]] = Field(
        None, description="Weight profile (default: feedback once ratings exist)"
    )
    namespace: Optional[str] = Field(None, description="Namespace (default: user namespace)")
    record_usage: bool = Field(False, description="Record the returned batch for later feedback")
    conversation_id: Optional[str] = Field(None, description="Conversation the batch belongs to")

    class Config:
        json_schema_extra = {
            "example": {
                "query": "Which theme does the user prefer?",
                "limit": 5,
                "record_usage": True,
                "conversation_id": "conv_abc123",
            }
        }


class SearchMemoryResponse(BaseModel):
    """Ranked memories with the prompt block built from them."""

    memories: List[ScoredMemory] = Field(..., description="Ranked memories, best first")
    count: int = Field(..., description="Number of results returned")
    context: str = Field("", description="Formatted memory block for prompt injection")
    usage_event_id: Optional[str] = Field(None, description="Event id for /memory/feedback")


class AddMemoryRequest(BaseModel):
    """Request to store a memory."""

    text: str = Field(..., description="Memory text", min_length=1, max_length=4000)
    category: Optional[str] = Field(None, description="One of the fixed memory categories")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional metadata")
    namespace: Optional[str] = Field(None, description="Namespace (default: user namespace)")


class AddMemoryResponse(BaseModel):
    """Response after storing a memory."""

    memory_id: Optional[str] = Field(None, description="Id assigned by the remote store")
    stored: bool = Field(..., description="Whether the remote write succeeded")
    message: str = Field(..., description="Status message")


# ===== Categories =====


class CategorizedAddRequest(BaseModel):
    """Request to store a categorized memory."""

    content: str = Field(..., description="Memory text", min_length=1)
    category: str = Field(..., description="One of the fixed memory categories")
    subcategory: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    source: Optional[str] = None
    related_entities: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    namespace: Optional[str] = None


class CategoryStatsResponse(BaseModel):
    """Memory counts per category."""

    categories: List[str] = Field(..., description="Known categories")
    stats: Dict[str, int] = Field(..., description="Count per category, plus uncategorized")
    total: int = Field(..., description="Total memories counted")


class MemoryListResponse(BaseModel):
    """Plain list of memory records."""

    memories: List[MemoryRecord]
    count: int


# ===== Facts =====


class FactUpsertRequest(BaseModel):
    """Request to write a new version of a fact."""

    content: str = Field(..., description="Fact text", min_length=1)
    category: str = Field(..., description="Memory category")
    entity: Optional[str] = Field(None, description="Entity the fact is about")
    fact_key: Optional[str] = Field(None, description="Stable key, e.g. user.theme")
    valid_from: Optional[datetime] = Field(None, description="When the fact became true")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    namespace: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "content": "User prefers dark mode",
                "category": "preference",
                "entity": "user",
                "fact_key": "user.theme",
            }
        }


class FactResponse(BaseModel):
    """Current version (and optionally history) of a fact."""

    current: Optional[MemoryRecord] = None
    history: List[MemoryRecord] = Field(default_factory=list)


class InvalidateFactRequest(BaseModel):
    """Request to invalidate a fact."""

    memory_id: str = Field(..., description="Memory to invalidate")
    reason: Optional[str] = Field(None, description="Why the fact is no longer valid")
    namespace: Optional[str] = None


class InvalidateFactResponse(BaseModel):
    """Response after invalidating a fact."""

    invalidated: bool
    tombstone_id: Optional[str] = None


# ===== Feedback =====


class FeedbackRequest(BaseModel):
    """Rating for one batch of retrieved memories."""

    event_id: str = Field(..., description="Id returned when the batch was recorded")
    rating: FeedbackRating = Field(..., description="positive, negative or neutral")
    task_completed: bool = False
    feedback_text: Optional[str] = None


class FeedbackResponse(BaseModel):
    """Response after applying feedback."""

    applied: bool
    message: str


class EffectivenessResponse(BaseModel):
    """Effectiveness of one memory, or the most/least effective ids."""

    record: Optional[EffectivenessRecord] = None
    most_effective: List[str] = Field(default_factory=list)
    least_effective: List[str] = Field(default_factory=list)


# ===== Maintenance =====


class MaintenanceRequest(BaseModel):
    """Request to run a maintenance pass."""

    dry_run: bool = Field(True, description="Only count what would be archived")
    namespace: Optional[str] = None


class MaintenanceReport(BaseModel):
    """Pruning candidates and near-duplicate groups, without writing."""

    candidates: Dict[str, int]
    superseded: List[str] = Field(default_factory=list)
    low_effectiveness: List[str] = Field(default_factory=list)
    stale: List[str] = Field(default_factory=list)
    similar_groups: List[SimilarGroup] = Field(default_factory=list)


# ===== Failure queue =====


class FailedOperationsResponse(BaseModel):
    """Snapshot of the failure queue."""

    operations: List[FailedOperationRecord]
    count: int


class ReplayResponse(BaseModel):
    """Outcome of replaying the failure queue."""

    succeeded: int
    remaining: int


class ClearResponse(BaseModel):
    """Outcome of clearing the failure queue."""

    cleared: int
