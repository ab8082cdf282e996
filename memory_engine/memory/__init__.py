"""
Memory subsystem for long-term conversation recall.

Provides:
- Typed memory records and metadata
- Effectiveness tracking fed by user feedback
- Temporal facts with supersession chains (``temporal``)
- Multi-factor relevance ranking (``scoring``)
- Pruning and consolidation (``maintenance``)
- The ``MemoryEngine`` facade (``integrate``)

Modules that talk to the remote service import ``memory_engine.remote``,
which in turn depends on the schemas here, so they are imported from
their own modules rather than re-exported.
"""

from .schemas import (
    CATEGORIES,
    EffectivenessRecord,
    FactUpsertResult,
    FailedOperationRecord,
    MaintenanceResult,
    MemoryCategory,
    MemoryMetadata,
    MemoryRecord,
    PruneCandidates,
    ScoreBreakdown,
    ScoredMemory,
    SimilarGroup,
    UsageFeedbackEvent,
)
from .effectiveness import EffectivenessStore

__all__ = [
    "CATEGORIES",
    "EffectivenessRecord",
    "FactUpsertResult",
    "FailedOperationRecord",
    "MaintenanceResult",
    "MemoryCategory",
    "MemoryMetadata",
    "MemoryRecord",
    "PruneCandidates",
    "ScoreBreakdown",
    "ScoredMemory",
    "SimilarGroup",
    "UsageFeedbackEvent",
    "EffectivenessStore",
]
