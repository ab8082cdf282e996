"""Exception hierarchy for the memory engine."""


class MemoryEngineError(Exception):
    """Base exception for the memory engine."""
    pass


class MemoryServiceError(MemoryEngineError):
    """Remote semantic-memory call failed or returned an unusable response."""
    pass


class EffectivenessStoreError(MemoryEngineError):
    """Relational bookkeeping for memory effectiveness failed."""
    pass
