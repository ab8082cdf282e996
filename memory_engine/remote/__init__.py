"""
Remote semantic-memory service access.

Provides:
- Abstract client interface and the mem0 HTTP client
- In-process append-only service for offline use
- Retry/backoff wrapper with a bounded failure queue
"""

from .client import MemoryServiceClient, Mem0HttpClient, parse_memory, parse_memory_list
from .local import LocalMemoryService, token_overlap, tokenize
from .resilience import FailedOperationQueue, ResilientMemoryService, backoff_delay

__all__ = [
    "MemoryServiceClient",
    "Mem0HttpClient",
    "parse_memory",
    "parse_memory_list",
    "LocalMemoryService",
    "token_overlap",
    "tokenize",
    "FailedOperationQueue",
    "ResilientMemoryService",
    "backoff_delay",
]
