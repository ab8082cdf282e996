"""
Long-term memory engine for a conversational assistant.

Ranks memories from a remote semantic-memory service, learns from user
feedback, keeps facts current over time and prunes the append-only store.
"""

from .config.settings import Settings
from .memory.integrate import MemoryEngine, create_memory_engine

__version__ = "0.3.0"

__all__ = ["Settings", "MemoryEngine", "create_memory_engine", "__version__"]
