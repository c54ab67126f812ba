from __future__ import annotations

from datetime import datetime, date, timedelta, timezone
from typing import Optional


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite devolve datetime sem tz mesmo com DateTime(timezone=True)
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class Clock:
    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """Relógio parado, para testes e reprocessamentos."""

    def __init__(self, moment: datetime):
        self.moment = as_utc(moment)

    def now(self) -> datetime:
        return self.moment

    def advance(self, **delta) -> None:
        self.moment = self.moment + timedelta(**delta)


system_clock = SystemClock()
