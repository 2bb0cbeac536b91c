from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Settable UTC clock passed as a ``now`` callable."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc))
