"""Shared test fixtures for pagelab tests."""

import pytest

from pagelab.experiments.models import Experiment, Variant
from pagelab.state_backend import InMemoryBackend


@pytest.fixture(autouse=True)
def _clear_singleton_caches():
    """Reset all @lru_cache singletons between tests.

    Prevents cached Settings and state backends leaking across test modules.
    """
    yield
    from pagelab.config import get_settings

    get_settings.cache_clear()

    try:
        from pagelab.state_backend import get_state_backend

        get_state_backend.cache_clear()
    except (ImportError, AttributeError):
        pass

    try:
        from pagelab.api.middleware import _access_logger

        _access_logger.handlers.clear()
    except (ImportError, AttributeError):
        pass


class RecordingSink:
    """Sink double: records batches, optionally failing every send."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.batches: list[list] = []
        self.attempts = 0

    async def send_batch(self, events) -> None:
        self.attempts += 1
        if self.fail:
            raise ConnectionError("ingestion endpoint unreachable")
        self.batches.append(list(events))

    @property
    def events(self) -> list:
        return [e for batch in self.batches for e in batch]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return RecordingSink(fail=True)


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def hero_experiment():
    """50/50 hero copy test; visitor ``v1`` buckets into ``A`` for id 10."""
    return Experiment(
        id=10,
        name="hero_copy",
        is_active=True,
        variants=[
            Variant(id="A", name="Control", weight=50, content={"headline": "Old"}),
            Variant(id="B", name="Challenger", weight=50, content={"headline": "New"}),
        ],
    )
