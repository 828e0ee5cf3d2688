"""Value types fed into the consumption engine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True, slots=True)
class Reading:
    """A single telemetry sample for one tank.

    ``level_percent`` may be ``None`` or a spurious ``0`` on some devices;
    ``level_volume`` is absent on percent-only sensors.
    """

    timestamp: datetime
    level_percent: Optional[float] = None
    level_volume: Optional[float] = None
    is_refill: bool = False


@dataclass(frozen=True, slots=True)
class TankContext:
    """Per-call facts about the tank that the readings alone do not carry."""

    current_level_percent: Optional[float] = None
    current_level_volume: Optional[float] = None
    capacity: Optional[float] = None
    analysis_days: int = 7
    as_of: Optional[datetime] = None

    @property
    def has_capacity(self) -> bool:
        return self.capacity is not None and self.capacity > 0


def as_utc(moment: datetime) -> datetime:
    """Return ``moment`` as an aware UTC datetime; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
