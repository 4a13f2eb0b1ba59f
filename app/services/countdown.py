"""Release countdown helpers for watchlist cards."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time

# Cadence at which the UI re-evaluates a ticking countdown.
TICK_SECONDS = 1


@dataclass(frozen=True, slots=True)
class Countdown:
    """Time left until a release, broken into display units."""

    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    is_released: bool = False
    is_unscheduled: bool = False

    @property
    def ticking(self) -> bool:
        """Whether the caller should keep recomputing every ``TICK_SECONDS``."""
        return not (self.is_released or self.is_unscheduled)


def parse_release_date(raw: date | str | None) -> date | None:
    """Read a release date given as ``date`` or ISO ``YYYY-MM-DD`` text."""

    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    year, month, day = (int(part) for part in str(raw)[:10].split("-"))
    return date(year, month, day)


def countdown(release_date: date | str | None, now: datetime | None = None) -> Countdown:
    """Compute the countdown from ``now`` to local midnight of ``release_date``.

    The release instant is built from the calendar fields so an ISO date is
    never read as UTC midnight and shifted by the local offset. An aware
    ``now`` is compared against midnight in the machine's local zone.
    """

    release_day = parse_release_date(release_date)
    if release_day is None:
        return Countdown(is_unscheduled=True)

    release_instant = datetime.combine(release_day, time.min)
    if now is None:
        now = datetime.now()
    elif now.tzinfo is not None:
        release_instant = release_instant.astimezone()

    diff = (release_instant - now).total_seconds()
    if diff <= 0:
        return Countdown(is_released=True)

    remaining = math.floor(diff)
    days, remaining = divmod(remaining, 86400)
    hours, remaining = divmod(remaining, 3600)
    minutes, seconds = divmod(remaining, 60)
    return Countdown(days=days, hours=hours, minutes=minutes, seconds=seconds)


def relative_release_label(release_date: date | str | None, *, today: date | None = None) -> str | None:
    """주어진 출시일과 오늘 날짜를 비교해 카드에 붙일 짧은 라벨을 만든다."""

    release_day = parse_release_date(release_date)
    if release_day is None:
        return None
    today = today or date.today()
    delta = (release_day - today).days
    if delta < 0:
        return "Released"
    if delta == 0:
        return "Today!"
    if delta == 1:
        return "Tomorrow"
    if delta <= 7:
        return f"{delta} days"
    if delta <= 30:
        return f"{math.ceil(delta / 7)} weeks"
    return None
