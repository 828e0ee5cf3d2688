"""Pydantic schemas shared by the engine, the stores and the HTTP API layer."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Trend(str, Enum):
    """Direction of consumption (not of the fill level)."""

    increasing = "increasing"
    decreasing = "decreasing"
    stable = "stable"
    unknown = "unknown"


class Confidence(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class Channel(str, Enum):
    """Measurement channel that drove a computation."""

    percent = "percent"
    volume = "volume"
    none = "none"


class Strategy(str, Enum):
    """Rate estimation algorithm."""

    regression = "regression"
    summation = "summation"


class ConsumptionResult(BaseModel):
    """Output of one run of the consumption engine for one tank."""

    model_config = ConfigDict(frozen=True)

    daily_consumption_volume: Optional[float] = None
    daily_consumption_percent: Optional[float] = None
    days_remaining: Optional[float] = Field(default=None, ge=0, le=365)
    estimated_empty_date: Optional[date] = None
    trend: Trend = Trend.unknown
    confidence: Confidence = Confidence.low
    sample_count: int = Field(default=0, ge=0)
    fit_quality: Optional[float] = Field(
        default=None,
        ge=0,
        le=1,
        description="R squared in regression mode, day coverage in summation mode.",
    )
    channel: Channel = Channel.none
    strategy: Optional[Strategy] = None

    @property
    def is_empty(self) -> bool:
        return self.daily_consumption_percent is None and self.daily_consumption_volume is None


class AssetUpsert(BaseModel):
    """Tank metadata accepted when registering or updating an asset."""

    name: Optional[str] = None
    capacity: Optional[float] = Field(default=None, gt=0)
    current_level_percent: Optional[float] = Field(default=None, ge=0)
    current_level_volume: Optional[float] = Field(default=None, ge=0)
    refill_threshold_percent: Optional[float] = Field(default=None, gt=0)
    is_disabled: bool = False


class AssetRecord(AssetUpsert):
    """Persisted tank record including the last consumption figures."""

    asset_id: str
    daily_consumption_volume: Optional[float] = None
    daily_consumption_percent: Optional[float] = None
    days_remaining: Optional[float] = None
    estimated_empty_date: Optional[date] = None
    consumption_trend: Optional[Trend] = None
    consumption_confidence: Optional[Confidence] = None
    consumption_computed_at: Optional[datetime] = None


class RecalculationSummary(BaseModel):
    """Counters reported by a batch recalculation."""

    processed: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)


class RefillEvent(BaseModel):
    """A level jump attributed to a delivery rather than consumption."""

    timestamp: datetime
    level_before: float
    level_after: float
    increase: float
    channel: Channel


class ReadingError(BaseModel):
    """Details about a CSV row that failed validation or parsing."""

    row_number: int = Field(..., ge=1)
    reason: str


class ReadingUploadResponse(BaseModel):
    """Outcome of ingesting a CSV of readings for one asset."""

    asset_id: str
    accepted: int = Field(..., ge=0)
    errors: List[ReadingError] = Field(default_factory=list)
