from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest


START = datetime(2025, 2, 20, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced UTC clock injected wherever services read the time."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
