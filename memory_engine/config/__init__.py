"""Configuration schema for the memory engine."""

from .settings import (
    EffectivenessCfg,
    MaintenanceCfg,
    Paths,
    RemoteCfg,
    RetryCfg,
    ScoringCfg,
    Settings,
    WeightProfile,
)

__all__ = [
    "EffectivenessCfg",
    "MaintenanceCfg",
    "Paths",
    "RemoteCfg",
    "RetryCfg",
    "ScoringCfg",
    "Settings",
    "WeightProfile",
]
