from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from tribepick.filtering.engine import reset_filter_metrics
from tribepick.models import failure as failure_module
from tribepick.models.filters import FilterConfiguration
from tribepick.models.session import DecisionSession
from tribepick.services.session_locks import reset_lock_registry

# Friday 2026-03-06 18:00 UTC
T0 = datetime(2026, 3, 6, 18, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def clear_finalized_responses():
    """Clear the finalized responses set between tests.

    This prevents test isolation issues where Python reuses memory
    addresses for new objects, causing id() collisions with previously
    finalized responses.
    """
    failure_module._finalized_responses.clear()
    yield
    failure_module._finalized_responses.clear()


@pytest.fixture(autouse=True)
def fresh_global_state():
    """Reset process-wide registries so tests never share locks or metrics."""
    reset_lock_registry()
    reset_filter_metrics()
    yield
    reset_lock_registry()
    reset_filter_metrics()


class FakeClock:
    """Settable clock for services that take a `clock` callable."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_session() -> Callable[..., DecisionSession]:
    """Factory for CONFIGURING sessions with sensible defaults."""

    def _make(
        participants: tuple[str, ...] = ("alice", "bob"),
        k: int = 1,
        m: int = 1,
        items: int = 10,
        turn_timeout: timedelta = timedelta(hours=1),
        session_timeout: timedelta = timedelta(hours=24),
        session_id: str = "session-1",
    ) -> DecisionSession:
        return DecisionSession(
            id=session_id,
            participants=list(participants),
            source_item_ids=[f"item-{i}" for i in range(items)],
            filter_config=FilterConfiguration(),
            requested_k=k,
            requested_m=m,
            turn_timeout=turn_timeout,
            session_timeout=session_timeout,
            created_at=T0,
            last_activity_at=T0,
        )

    return _make
