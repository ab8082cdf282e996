"""Application settings and configuration schema."""

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class RetryCfg(BaseModel):
    """Retry/backoff policy for remote memory calls."""
    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0
    failed_queue_size: int = Field(100, ge=1)


class WeightProfile(BaseModel):
    """Linear blend of the relevance signals."""
    semantic: float
    recency: float
    importance: float
    effectiveness: float = 0.0

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "WeightProfile":
        total = self.semantic + self.recency + self.importance + self.effectiveness
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"profile weights must sum to 1.0, got {total:.3f}")
        return self


class ScoringCfg(BaseModel):
    """Configuration for relevance ranking."""
    recency_window_days: float = 7.0
    importance: float = 0.5
    default_effectiveness: float = 0.5
    effective_boost: float = 0.7
    effective_pool_size: int = 100
    base: WeightProfile = WeightProfile(semantic=0.60, recency=0.25, importance=0.15)
    feedback: WeightProfile = WeightProfile(
        semantic=0.45, recency=0.20, importance=0.15, effectiveness=0.20
    )


class EffectivenessCfg(BaseModel):
    """Evidence thresholds for effectiveness queries."""
    most_effective_min_retrievals: int = 2
    least_effective_min_retrievals: int = 3
    least_effective_threshold: float = 0.3


class MaintenanceCfg(BaseModel):
    """Pruning and consolidation thresholds."""
    low_effectiveness_min_retrievals: int = 5
    low_effectiveness_threshold: float = 0.2
    stale_after_days: float = 30.0
    similarity_threshold: float = 0.85


class RemoteCfg(BaseModel):
    """Remote semantic-memory service."""
    backend: Literal["mem0", "local"] = "mem0"
    base_url: str = "https://api.mem0.ai"
    api_key: Optional[str] = None
    timeout: float = 30.0
    user_namespace: str = "echo_user"
    self_namespace: str = "echo_self"


class Paths(BaseModel):
    """File and directory paths configuration."""
    effectiveness_db: str = "data/memory/effectiveness.db"


class Settings(BaseModel):
    """Main application settings."""
    retry: RetryCfg = RetryCfg()
    scoring: ScoringCfg = ScoringCfg()
    effectiveness: EffectivenessCfg = EffectivenessCfg()
    maintenance: MaintenanceCfg = MaintenanceCfg()
    remote: RemoteCfg = RemoteCfg()
    paths: Paths = Paths()

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        - MEM0_API_KEY: API key for the hosted memory service
        - MEMORY_SERVICE_URL: base URL of the memory service
        - MEMORY_BACKEND: ``mem0`` or ``local``
        - MEMORY_DB_PATH: sqlite file for effectiveness bookkeeping
        - MEMORY_USER_NAMESPACE / MEMORY_SELF_NAMESPACE: namespace ids
        """
        settings = cls()

        # Values pasted from deployment dashboards often carry trailing newlines
        def env(name: str) -> Optional[str]:
            value = os.getenv(name)
            if value is None:
                return None
            value = value.strip()
            return value or None

        remote = settings.remote.model_copy(update={
            key: value for key, value in {
                "api_key": env("MEM0_API_KEY"),
                "base_url": env("MEMORY_SERVICE_URL"),
                "backend": env("MEMORY_BACKEND"),
                "user_namespace": env("MEMORY_USER_NAMESPACE"),
                "self_namespace": env("MEMORY_SELF_NAMESPACE"),
            }.items() if value is not None
        })
        # Re-validate so an unknown backend name is rejected
        remote = RemoteCfg.model_validate(remote.model_dump())

        paths = settings.paths
        db_path = env("MEMORY_DB_PATH")
        if db_path:
            paths = Paths(effectiveness_db=db_path)

        return settings.model_copy(update={"remote": remote, "paths": paths})
