"""
Shared fixtures for the memory engine unit tests.
"""
import pytest

from memory_engine.config.settings import EffectivenessCfg, MaintenanceCfg, RetryCfg, ScoringCfg
from memory_engine.memory.effectiveness import EffectivenessStore
from memory_engine.remote.resilience import ResilientMemoryService


@pytest.fixture
def service(local_service, sleep):
    """Resilient wrapper over the local service."""
    return ResilientMemoryService(local_service, RetryCfg(), sleep=sleep)


@pytest.fixture
def effectiveness(db, clock):
    return EffectivenessStore(db, EffectivenessCfg(), clock=clock)


@pytest.fixture
def namespace():
    return "echo_user"


@pytest.fixture
def scoring_cfg():
    return ScoringCfg()


@pytest.fixture
def maintenance_cfg():
    return MaintenanceCfg()
