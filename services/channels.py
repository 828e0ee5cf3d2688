"""Data quality classification for the percent and volume channels."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from app.schemas import Channel
from models.records import Reading, as_utc

# Share of readings that must carry a usable value for a channel to be trusted.
RELIABILITY_RATIO = 0.5


@dataclass(frozen=True, slots=True)
class LevelPoint:
    """One reading projected onto the active channel."""

    timestamp: datetime
    value: float
    is_refill: bool = False


@dataclass(frozen=True)
class ChannelAssessment:
    percent_reliable: bool
    volume_reliable: bool
    channel: Channel


def _has_percent(reading: Reading) -> bool:
    return reading.level_percent is not None and reading.level_percent > 0


def _has_volume(reading: Reading) -> bool:
    return reading.level_volume is not None and reading.level_volume > 0


def _usable_share(readings: Sequence[Reading], predicate) -> float:
    if not readings:
        return 0.0
    usable = sum(1 for reading in readings if predicate(reading))
    return usable / len(readings)


def is_percent_reliable(readings: Sequence[Reading]) -> bool:
    """Percent data is reliable when at least half the readings are non-zero."""
    return bool(readings) and _usable_share(readings, _has_percent) >= RELIABILITY_RATIO


def is_volume_reliable(readings: Sequence[Reading]) -> bool:
    """Volume data is reliable when at least half the readings carry a positive volume."""
    return bool(readings) and _usable_share(readings, _has_volume) >= RELIABILITY_RATIO


def assess_channels(
    readings: Sequence[Reading], capacity: Optional[float] = None
) -> ChannelAssessment:
    """Pick the channel that should drive the computation.

    Percent wins whenever it is reliable. Volume is only a fallback, and only
    when the capacity is known so that percent equivalents can be derived.
    """
    percent_ok = is_percent_reliable(readings)
    volume_ok = is_volume_reliable(readings)

    if percent_ok:
        channel = Channel.percent
    elif volume_ok and capacity is not None and capacity > 0:
        channel = Channel.volume
    else:
        channel = Channel.none

    return ChannelAssessment(
        percent_reliable=percent_ok,
        volume_reliable=volume_ok,
        channel=channel,
    )


def build_series(readings: Sequence[Reading], channel: Channel) -> List[LevelPoint]:
    """Project readings onto ``channel``, skipping samples without a usable value.

    ``readings`` must already be sorted by timestamp.
    """
    if channel is Channel.percent:
        return [
            LevelPoint(
                timestamp=as_utc(reading.timestamp),
                value=float(reading.level_percent),  # type: ignore[arg-type]
                is_refill=reading.is_refill,
            )
            for reading in readings
            if _has_percent(reading)
        ]
    if channel is Channel.volume:
        return [
            LevelPoint(
                timestamp=as_utc(reading.timestamp),
                value=float(reading.level_volume),  # type: ignore[arg-type]
                is_refill=reading.is_refill,
            )
            for reading in readings
            if _has_volume(reading)
        ]
    return []


def percent_scale(channel: Channel, capacity: Optional[float]) -> float:
    """Factor that converts channel units into percent of capacity."""
    if channel is Channel.volume and capacity:
        return 100.0 / capacity
    return 1.0
