"""Refill and noise handling for level series.

Two strategies are provided. :func:`drop_refills` removes refill-affected
samples so a regression line can be fitted through what remains.
:func:`summarize_daily_decreases` keeps every sample and instead sums only
the real decreases per local calendar day, which ignores refills by
construction and damps intra-day oscillation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Sequence

import pytz

from app.schemas import Channel, RefillEvent
from services.channels import LevelPoint


def drop_refills(points: Sequence[LevelPoint], threshold: float) -> List[LevelPoint]:
    """Drop samples that jump above the last kept sample by more than ``threshold``.

    The first sample is always kept. Dropped samples never become the anchor
    for the next comparison. Samples flagged as refills by the device are
    dropped regardless of the jump size.
    """
    if not points:
        return []

    kept = [points[0]]
    for point in points[1:]:
        if point.is_refill:
            continue
        if point.value - kept[-1].value > threshold:
            continue
        kept.append(point)
    return kept


@dataclass
class DailyDecreaseSummary:
    """Per-day consumption totals built from consecutive decreases."""

    day_totals: Dict[date, float] = field(default_factory=dict)

    @property
    def total_days(self) -> int:
        return len(self.day_totals)

    @property
    def days_with_data(self) -> int:
        return sum(1 for total in self.day_totals.values() if total > 0)

    @property
    def daily_rate(self) -> float:
        contributing = [total for total in self.day_totals.values() if total > 0]
        if not contributing:
            return 0.0
        return sum(contributing) / len(contributing)

    @property
    def coverage(self) -> float:
        """Share of observed days that contributed consumption."""
        if not self.day_totals:
            return 0.0
        return self.days_with_data / self.total_days


def _decrease(older: LevelPoint, newer: LevelPoint, noise_floor: float) -> float:
    if newer.is_refill:
        return 0.0
    delta = older.value - newer.value
    return delta if delta > noise_floor else 0.0


def summarize_daily_decreases(
    points: Sequence[LevelPoint],
    noise_floor: float,
    timezone: str = "UTC",
) -> DailyDecreaseSummary:
    """Bucket ``points`` by local date and sum the decreases above ``noise_floor``.

    The drop between the last sample of one day and the first sample of the
    next calendar day is credited to the later day.
    """
    tz = pytz.timezone(timezone)
    buckets: Dict[date, List[LevelPoint]] = {}
    for point in points:
        local_day = point.timestamp.astimezone(tz).date()
        buckets.setdefault(local_day, []).append(point)

    summary = DailyDecreaseSummary()
    previous_day: date | None = None
    previous_last: LevelPoint | None = None

    for day in sorted(buckets):
        day_points = buckets[day]
        total = 0.0

        if previous_last is not None and previous_day == day - timedelta(days=1):
            total += _decrease(previous_last, day_points[0], noise_floor)

        for older, newer in zip(day_points, day_points[1:]):
            total += _decrease(older, newer, noise_floor)

        summary.day_totals[day] = total
        previous_day = day
        previous_last = day_points[-1]

    return summary


def detect_refills(
    points: Sequence[LevelPoint], threshold: float, channel: Channel
) -> List[RefillEvent]:
    """Report every sample whose rise over its predecessor reaches ``threshold``."""
    events: List[RefillEvent] = []
    for previous, current in zip(points, points[1:]):
        increase = current.value - previous.value
        if increase >= threshold or (current.is_refill and increase > 0):
            events.append(
                RefillEvent(
                    timestamp=current.timestamp,
                    level_before=previous.value,
                    level_after=current.value,
                    increase=round(increase, 2),
                    channel=channel,
                )
            )
    return events
