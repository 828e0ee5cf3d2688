"""Least-squares trend fitting and trend classification."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from app.schemas import Trend
from services.channels import LevelPoint

SECONDS_PER_DAY = 24 * 60 * 60

# Percent-per-day rate below which a tank counts as stable.
STABLE_RATE_PERCENT = 0.5
# Shift in mean level between window halves that signals a change in consumption.
TREND_SHIFT_PERCENT = 5.0


@dataclass(frozen=True)
class LinearFit:
    """Result of fitting ``level = intercept + slope * days``."""

    slope: float
    intercept: float
    r_squared: float
    point_count: int


def fit_linear_trend(points: Sequence[LevelPoint]) -> Optional[LinearFit]:
    """Fit an ordinary least-squares line through ``points``.

    ``x`` is elapsed days since the first point. Returns ``None`` when the
    points do not span any time, since no slope can be derived.
    """
    if len(points) < 2:
        return None

    origin = points[0].timestamp
    days = np.array(
        [(point.timestamp - origin).total_seconds() / SECONDS_PER_DAY for point in points],
        dtype=float,
    )
    levels = np.array([point.value for point in points], dtype=float)

    dx = days - days.mean()
    dy = levels - levels.mean()
    sxx = float(np.dot(dx, dx))
    if sxx <= 0.0:
        return None

    sxy = float(np.dot(dx, dy))
    syy = float(np.dot(dy, dy))

    slope = sxy / sxx
    intercept = float(levels.mean()) - slope * float(days.mean())
    r_squared = (sxy * sxy) / (sxx * syy) if syy > 0.0 else 0.0

    return LinearFit(
        slope=slope,
        intercept=intercept,
        r_squared=min(max(r_squared, 0.0), 1.0),
        point_count=len(points),
    )


def classify_trend(signed_rate: float, levels: Sequence[float]) -> Trend:
    """Classify consumption direction from a signed level rate in percent per day.

    ``levels`` are percent values in time order. A falling mean level in the
    second half of the window means consumption is speeding up.
    """
    if len(levels) < 3:
        return Trend.unknown

    mid = len(levels) // 2
    first_half = sum(levels[:mid]) / mid
    second_half = sum(levels[mid:]) / (len(levels) - mid)
    shift = second_half - first_half

    if abs(signed_rate) < STABLE_RATE_PERCENT:
        return Trend.stable
    if shift < -TREND_SHIFT_PERCENT:
        return Trend.increasing
    if shift > TREND_SHIFT_PERCENT:
        return Trend.decreasing
    return Trend.stable if signed_rate < 0 else Trend.unknown
