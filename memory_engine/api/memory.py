"""
Memory API endpoints.

Ranking, categorized storage, temporal facts, feedback, maintenance and
failure-queue management on top of the MemoryEngine facade.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from memory_engine.exceptions import EffectivenessStoreError
from memory_engine.memory.integrate import MemoryEngine, create_memory_engine
from memory_engine.memory.schemas import (
    CATEGORIES,
    FactUpsertResult,
    MaintenanceResult,
    is_valid_category,
)
from memory_engine.memory.scoring import format_memory_context
from memory_engine.telemetry import get_logger

from .schemas import (
    AddMemoryRequest,
    AddMemoryResponse,
    CategorizedAddRequest,
    CategoryStatsResponse,
    ClearResponse,
    EffectivenessResponse,
    FactResponse,
    FactUpsertRequest,
    FailedOperationsResponse,
    FeedbackRequest,
    FeedbackResponse,
    InvalidateFactRequest,
    InvalidateFactResponse,
    MaintenanceReport,
    MaintenanceRequest,
    MemoryListResponse,
    ReplayResponse,
    SearchMemoryRequest,
    SearchMemoryResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/memory", tags=["memory"])


# Engine instance (created on first use, replaced in tests via dependency_overrides)
_engine: Optional[MemoryEngine] = None


def get_engine() -> MemoryEngine:
    """Get or create the memory engine singleton."""
    global _engine
    if _engine is None:
        _engine = create_memory_engine()
    return _engine


async def close_engine() -> None:
    """Release the engine's HTTP client and database connection."""
    global _engine
    if _engine is not None:
        await _engine.aclose()
        _engine = None


def _store_error(action: str, e: EffectivenessStoreError) -> HTTPException:
    logger.error("memory_api_store_error", action=action, error=str(e))
    return HTTPException(status_code=500, detail=f"{action} failed: {e}")


# ============================================================================
# Search & add
# ============================================================================

@router.post("/search", response_model=SearchMemoryResponse)
async def search_memories(
    request: SearchMemoryRequest,
    engine: MemoryEngine = Depends(get_engine),
):
    """
    Rank memories for a query.

    With ``record_usage`` the returned batch is recorded so that a later
    POST /memory/feedback with ``usage_event_id`` can rate it.

    Example:
        POST /api/memory/search
        {"query": "preferred theme", "limit": 3, "record_usage": true}
    """
    memories = await engine.rank(
        request.query,
        limit=request.limit,
        profile=request.profile,
        namespace=request.namespace,
    )

    event_id = None
    if request.record_usage and memories:
        try:
            event_id = await engine.record_usage(
                [m.record.id for m in memories], request.conversation_id
            )
        except EffectivenessStoreError as e:
            raise _store_error("Usage recording", e)

    return SearchMemoryResponse(
        memories=memories,
        count=len(memories),
        context=format_memory_context(memories),
        usage_event_id=event_id,
    )


@router.post("/add", response_model=AddMemoryResponse)
async def add_memory(
    request: AddMemoryRequest,
    engine: MemoryEngine = Depends(get_engine),
):
    """Store a memory, optionally under one of the fixed categories."""
    if request.category is not None:
        fields = {
            k: v for k, v in request.metadata.items()
            if k not in ("content", "category", "namespace")
        }
        try:
            memory_id = await engine.catalog.add_categorized(
                request.text, request.category, request.namespace, **fields
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        memory_id = await engine.catalog.add_memory(
            request.text, request.metadata, request.namespace
        )

    if memory_id is None:
        return AddMemoryResponse(
            memory_id=None,
            stored=False,
            message="Memory service unavailable; write queued as a failed operation",
        )
    return AddMemoryResponse(
        memory_id=memory_id or None,
        stored=True,
        message="Memory added successfully",
    )


# ============================================================================
# Categories
# ============================================================================

@router.get("/categories")
async def get_categories(
    category: Optional[str] = None,
    query: Optional[str] = None,
    limit: int = 20,
    namespace: Optional[str] = None,
    engine: MemoryEngine = Depends(get_engine),
):
    """
    Category statistics, or the memories of one category.

    Query Parameters:
        category: Restrict to one category (omit for per-category counts)
        query: Search within the category instead of listing it
        limit: Maximum results
        namespace: Namespace (default: user namespace)
    """
    if category is None:
        stats = await engine.catalog.category_stats(namespace)
        return CategoryStatsResponse(
            categories=list(CATEGORIES),
            stats=stats,
            total=sum(stats.values()),
        )

    if not is_valid_category(category):
        raise HTTPException(status_code=400, detail=f"Invalid category: {category}")

    if query:
        memories = await engine.catalog.search_by_category(query, category, limit, namespace)
    else:
        memories = await engine.catalog.memories_by_category(category, limit, namespace)
    return MemoryListResponse(memories=memories, count=len(memories))


@router.post("/categories", response_model=AddMemoryResponse)
async def add_categorized_memory(
    request: CategorizedAddRequest,
    engine: MemoryEngine = Depends(get_engine),
):
    """Store a memory under one of the fixed categories."""
    try:
        memory_id = await engine.catalog.add_categorized(
            request.content,
            request.category,
            request.namespace,
            subcategory=request.subcategory,
            confidence=request.confidence,
            source=request.source,
            related_entities=request.related_entities,
            tags=request.tags,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return AddMemoryResponse(
        memory_id=memory_id or None,
        stored=memory_id is not None,
        message="Memory added successfully" if memory_id is not None else "Memory service unavailable",
    )


# ============================================================================
# Temporal facts
# ============================================================================

@router.get("/facts", response_model=FactResponse)
async def get_fact(
    query: str,
    category: Optional[str] = None,
    history: bool = False,
    namespace: Optional[str] = None,
    engine: MemoryEngine = Depends(get_engine),
):
    """Current version of a fact; with ``history`` also every version, oldest first."""
    current = await engine.get_current_fact(query, category, namespace)
    versions = await engine.get_fact_history(query, category, namespace) if history else []
    return FactResponse(current=current, history=versions)


@router.post("/facts", response_model=FactUpsertResult)
async def upsert_fact(
    request: FactUpsertRequest,
    engine: MemoryEngine = Depends(get_engine),
):
    """Write a new version of a fact, superseding the current one."""
    return await engine.upsert_fact(
        request.content,
        request.category,
        entity=request.entity,
        fact_key=request.fact_key,
        valid_from=request.valid_from,
        metadata=request.metadata,
        namespace=request.namespace,
    )


@router.delete("/facts", response_model=InvalidateFactResponse)
async def invalidate_fact(
    request: InvalidateFactRequest,
    engine: MemoryEngine = Depends(get_engine),
):
    """Append an invalidation record for a fact."""
    tombstone_id = await engine.invalidate_fact(
        request.memory_id, request.reason, request.namespace
    )
    return InvalidateFactResponse(
        invalidated=tombstone_id is not None,
        tombstone_id=tombstone_id or None,
    )


# ============================================================================
# Feedback
# ============================================================================

@router.get("/feedback", response_model=EffectivenessResponse)
async def get_feedback(
    memory_id: Optional[str] = None,
    limit: int = 10,
    engine: MemoryEngine = Depends(get_engine),
):
    """Effectiveness of one memory, or the most and least effective ids."""
    try:
        if memory_id is not None:
            record = await engine.get_effectiveness(memory_id)
            if record is None:
                raise HTTPException(status_code=404, detail=f"No effectiveness data for {memory_id}")
            return EffectivenessResponse(record=record)

        return EffectivenessResponse(
            most_effective=await engine.most_effective(limit),
            least_effective=await engine.least_effective(limit),
        )
    except EffectivenessStoreError as e:
        raise _store_error("Effectiveness lookup", e)


@router.post("/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    request: FeedbackRequest,
    engine: MemoryEngine = Depends(get_engine),
):
    """Apply a rating to every memory of a recorded usage batch."""
    try:
        applied = await engine.record_feedback(
            request.event_id,
            request.rating,
            task_completed=request.task_completed,
            feedback_text=request.feedback_text,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EffectivenessStoreError as e:
        raise _store_error("Feedback", e)

    if not applied:
        raise HTTPException(status_code=404, detail=f"Usage event not found: {request.event_id}")
    return FeedbackResponse(applied=True, message="Feedback recorded")


# ============================================================================
# Maintenance
# ============================================================================

@router.get("/maintenance", response_model=MaintenanceReport)
async def maintenance_report(
    namespace: Optional[str] = None,
    threshold: Optional[float] = None,
    engine: MemoryEngine = Depends(get_engine),
):
    """Pruning candidates and near-duplicate groups, without writing."""
    candidates = await engine.identify_candidates(namespace)
    groups = await engine.find_similar(threshold, namespace)
    return MaintenanceReport(
        candidates=candidates.summary(),
        superseded=[r.id for r in candidates.superseded],
        low_effectiveness=[r.id for r in candidates.low_effectiveness],
        stale=[r.id for r in candidates.stale],
        similar_groups=groups,
    )


@router.post("/maintenance", response_model=MaintenanceResult)
async def run_maintenance(
    request: MaintenanceRequest,
    engine: MemoryEngine = Depends(get_engine),
):
    """Archive candidates and consolidate duplicates (dry run by default)."""
    return await engine.run_maintenance(dry_run=request.dry_run, namespace=request.namespace)


# ============================================================================
# Failure queue
# ============================================================================

@router.get("/failed", response_model=FailedOperationsResponse)
async def list_failed(engine: MemoryEngine = Depends(get_engine)):
    """Operations that exhausted their retries, oldest first."""
    operations = engine.failed_operations()
    return FailedOperationsResponse(operations=operations, count=len(operations))


@router.post("/failed", response_model=ReplayResponse)
async def replay_failed(engine: MemoryEngine = Depends(get_engine)):
    """Re-attempt every queued operation once."""
    succeeded = await engine.replay_failed()
    return ReplayResponse(succeeded=succeeded, remaining=len(engine.failed_operations()))


@router.delete("/failed", response_model=ClearResponse)
async def clear_failed(engine: MemoryEngine = Depends(get_engine)):
    """Drop every queued operation."""
    return ClearResponse(cleared=engine.clear_failed())
