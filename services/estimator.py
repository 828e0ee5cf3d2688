"""Consumption estimation engine.

Turns a window of level readings for one tank into a daily consumption
rate, a days-remaining projection, a trend and a confidence tier. The
engine is a pure function of its inputs: it performs no I/O and keeps no
state between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Iterable, List, Optional

from app.schemas import Channel, Confidence, ConsumptionResult, Strategy
from models.records import Reading, TankContext, as_utc
from services.channels import LevelPoint, assess_channels, build_series, percent_scale
from services.filters import drop_refills, summarize_daily_decreases
from services.rates import classify_trend, fit_linear_trend

logger = logging.getLogger(__name__)

# Percent-per-day rate above which the percent projection is trusted.
MIN_PROJECTION_RATE_PERCENT = 0.1


@dataclass(frozen=True)
class EstimatorConfig:
    strategy: Strategy = Strategy.regression
    refill_threshold_percent: float = 10.0
    refill_threshold_volume: float = 250.0
    noise_floor_percent: float = 0.5
    noise_floor_volume: float = 5.0
    min_readings: int = 3
    max_days_remaining: float = 365.0
    timezone: str = "UTC"

    def refill_threshold(self, channel: Channel) -> float:
        if channel is Channel.volume:
            return self.refill_threshold_volume
        return self.refill_threshold_percent

    def noise_floor(self, channel: Channel) -> float:
        if channel is Channel.volume:
            return self.noise_floor_volume
        return self.noise_floor_percent

    def with_overrides(
        self,
        strategy: Optional[Strategy] = None,
        refill_threshold_percent: Optional[float] = None,
    ) -> "EstimatorConfig":
        changes = {}
        if strategy is not None:
            changes["strategy"] = strategy
        if refill_threshold_percent is not None:
            changes["refill_threshold_percent"] = refill_threshold_percent
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class RateEstimate:
    """Rate in channel units per day plus the fit-quality signal backing it."""

    rate: float
    signed_rate: float
    fit_quality: float
    points: List[LevelPoint]


def determine_confidence(
    sample_count: int, fit_quality: Optional[float], analysis_days: int
) -> Confidence:
    if fit_quality is None:
        return Confidence.low
    if sample_count >= 7 and fit_quality > 0.7 and analysis_days >= 7:
        return Confidence.high
    if sample_count >= 5 and fit_quality > 0.5:
        return Confidence.medium
    return Confidence.low


def project_days_remaining(
    daily_percent: Optional[float],
    daily_volume: Optional[float],
    current_percent: Optional[float],
    current_volume: Optional[float],
    capacity: Optional[float],
    channel: Channel = Channel.percent,
    max_days: float = 365.0,
) -> Optional[float]:
    """Project days until empty, clamped to ``[0, max_days]``.

    The percent projection is used when the percent rate is meaningful.
    Only a volume-channel estimate falls back to a volume projection,
    deriving the current volume from the percent level and capacity when
    needed. A percent-channel rate at or below the floor has no projection.
    """
    raw: Optional[float] = None

    if (
        daily_percent is not None
        and daily_percent > MIN_PROJECTION_RATE_PERCENT
        and current_percent is not None
    ):
        raw = current_percent / daily_percent
    elif (
        channel is Channel.volume
        and daily_volume is not None
        and daily_volume > 0
        and capacity is not None
        and capacity > 0
    ):
        volume = current_volume
        if volume is None and current_percent is not None:
            volume = current_percent / 100.0 * capacity
        if volume is not None:
            raw = volume / daily_volume

    if raw is None:
        return None
    return min(max(raw, 0.0), max_days)


def empty_result(sample_count: int, strategy: Optional[Strategy] = None) -> ConsumptionResult:
    return ConsumptionResult(sample_count=sample_count, strategy=strategy)


class ConsumptionEstimator:
    """Runs classification, filtering, rate estimation and scoring in order."""

    def __init__(self, config: Optional[EstimatorConfig] = None) -> None:
        self.config = config or EstimatorConfig()

    def estimate(self, readings: Iterable[Reading], context: TankContext) -> ConsumptionResult:
        config = self.config
        ordered = sorted(readings, key=lambda reading: as_utc(reading.timestamp))

        if len(ordered) < config.min_readings:
            return empty_result(len(ordered), config.strategy)

        assessment = assess_channels(ordered, context.capacity)
        if assessment.channel is Channel.none:
            logger.debug(
                "No reliable level channel",
                extra={"reason": "unreliable_channel", "sample_count": len(ordered)},
            )
            return empty_result(len(ordered), config.strategy)

        channel = assessment.channel
        series = build_series(ordered, channel)

        if config.strategy is Strategy.summation:
            points = series
        else:
            points = drop_refills(series, config.refill_threshold(channel))
        if len(points) < config.min_readings:
            return empty_result(len(points), config.strategy)

        if config.strategy is Strategy.summation:
            estimate = self._estimate_by_summation(points, channel)
        else:
            estimate = self._estimate_by_regression(points)
        if estimate is None:
            logger.debug(
                "Readings span no time",
                extra={"reason": "zero_time_span", "sample_count": len(points)},
            )
            return empty_result(len(points), config.strategy)

        return self._score(estimate, channel, context, ordered)

    @staticmethod
    def _estimate_by_regression(points: List[LevelPoint]) -> Optional[RateEstimate]:
        fit = fit_linear_trend(points)
        if fit is None:
            return None
        return RateEstimate(
            rate=abs(fit.slope),
            signed_rate=fit.slope,
            fit_quality=fit.r_squared,
            points=points,
        )

    def _estimate_by_summation(
        self, series: List[LevelPoint], channel: Channel
    ) -> RateEstimate:
        summary = summarize_daily_decreases(
            series,
            noise_floor=self.config.noise_floor(channel),
            timezone=self.config.timezone,
        )
        rate = summary.daily_rate
        return RateEstimate(
            rate=rate,
            signed_rate=-rate,
            fit_quality=summary.coverage,
            points=list(series),
        )

    def _score(
        self,
        estimate: RateEstimate,
        channel: Channel,
        context: TankContext,
        ordered: List[Reading],
    ) -> ConsumptionResult:
        config = self.config
        capacity = context.capacity if context.has_capacity else None

        if channel is Channel.volume:
            daily_volume: Optional[float] = estimate.rate
            daily_percent = estimate.rate / capacity * 100.0  # type: ignore[operator]
        else:
            daily_percent = estimate.rate
            daily_volume = estimate.rate / 100.0 * capacity if capacity else None

        scale = percent_scale(channel, capacity)
        trend = classify_trend(
            estimate.signed_rate * scale,
            [point.value * scale for point in estimate.points],
        )

        current_percent, current_volume = self._current_levels(estimate, channel, context)
        days_remaining = project_days_remaining(
            daily_percent,
            daily_volume,
            current_percent,
            current_volume,
            capacity,
            channel=channel,
            max_days=config.max_days_remaining,
        )

        sample_count = len(estimate.points)
        confidence = determine_confidence(sample_count, estimate.fit_quality, context.analysis_days)

        as_of = context.as_of or ordered[-1].timestamp
        empty_date: Optional[date] = None
        if days_remaining is not None and days_remaining < config.max_days_remaining:
            empty_date = (as_utc(as_of) + timedelta(days=days_remaining)).date()

        return ConsumptionResult(
            daily_consumption_volume=round(daily_volume, 2) if daily_volume is not None else None,
            daily_consumption_percent=round(daily_percent, 2),
            days_remaining=round(days_remaining, 1) if days_remaining is not None else None,
            estimated_empty_date=empty_date,
            trend=trend,
            confidence=confidence,
            sample_count=sample_count,
            fit_quality=round(estimate.fit_quality, 4),
            channel=channel,
            strategy=config.strategy,
        )

    @staticmethod
    def _current_levels(
        estimate: RateEstimate, channel: Channel, context: TankContext
    ) -> tuple[Optional[float], Optional[float]]:
        """Current percent and volume, falling back to the newest sample."""
        current_percent = context.current_level_percent
        current_volume = context.current_level_volume
        newest = estimate.points[-1].value if estimate.points else None

        if channel is Channel.percent:
            if current_percent is None:
                current_percent = newest
        else:
            # Percent is unreliable on this device, so a zero current level is noise.
            if current_percent is not None and current_percent <= 0:
                current_percent = None
            if current_volume is None and current_percent is None:
                current_volume = newest
        return current_percent, current_volume


def estimate_consumption(
    readings: Iterable[Reading],
    context: TankContext,
    config: Optional[EstimatorConfig] = None,
) -> ConsumptionResult:
    """Convenience wrapper around :class:`ConsumptionEstimator`."""
    return ConsumptionEstimator(config).estimate(readings, context)
