"""Consumption orchestration: fetch a window, run the engine, persist the result."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Callable, List, Optional, Protocol, TextIO

from app.schemas import (
    AssetRecord,
    AssetUpsert,
    Channel,
    ConsumptionResult,
    ReadingUploadResponse,
    RecalculationSummary,
    RefillEvent,
    Strategy,
)
from datastore.asset_store import build_default_table
from models.records import Reading, TankContext, as_utc
from services.channels import assess_channels, build_series
from services.estimator import ConsumptionEstimator, EstimatorConfig
from services.filters import detect_refills
from settings import get_settings
from storage.reading_store import build_default_reading_store, parse_readings_csv

logger = logging.getLogger(__name__)


class ReadingSource(Protocol):
    def fetch(
        self, asset_id: str, since: datetime, until: Optional[datetime] = None
    ) -> List[Reading]: ...

    def append(self, asset_id: str, readings: List[Reading]) -> int: ...


class AssetSink(Protocol):
    def get_item(self, key: str) -> Optional[AssetRecord]: ...

    def put_item(self, item: AssetRecord) -> None: ...

    def list_active(self) -> List[AssetRecord]: ...

    def update_consumption(
        self, asset_id: str, result: ConsumptionResult, computed_at: datetime
    ) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConsumptionService:
    """Coordinates the reading store, the asset store and the estimation engine."""

    def __init__(
        self,
        readings: ReadingSource,
        assets: AssetSink,
        config: Optional[EstimatorConfig] = None,
        analysis_days: int = 7,
        workers: int = 4,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.readings = readings
        self.assets = assets
        self.config = config or EstimatorConfig()
        self.analysis_days = analysis_days
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._clock = clock

    def get_asset(self, asset_id: str) -> AssetRecord:
        asset = self.assets.get_item(asset_id)
        if asset is None:
            raise KeyError(f"Asset {asset_id!r} not found.")
        return asset

    def upsert_asset(self, asset_id: str, payload: AssetUpsert) -> AssetRecord:
        existing = self.assets.get_item(asset_id)
        if existing is None:
            record = AssetRecord(asset_id=asset_id, **payload.model_dump())
        else:
            record = existing.model_copy(update=payload.model_dump(exclude_unset=True))
        self.assets.put_item(record)
        return record

    def ingest_readings(self, asset_id: str, stream: TextIO) -> ReadingUploadResponse:
        """Parse a CSV upload into the reading store and refresh the current level."""
        asset = self.get_asset(asset_id)
        readings, errors = parse_readings_csv(stream, asset_id=asset_id)
        if not readings and not errors:
            raise ValueError("Uploaded file contains no readings.")

        accepted = self.readings.append(asset_id, readings)

        latest = max(readings, key=lambda reading: as_utc(reading.timestamp), default=None)
        if latest is not None:
            update = {}
            if latest.level_percent is not None:
                update["current_level_percent"] = latest.level_percent
            if latest.level_volume is not None:
                update["current_level_volume"] = latest.level_volume
            if update:
                self.assets.put_item(asset.model_copy(update=update))

        logger.info(
            "Ingested readings",
            extra={"asset_id": asset_id, "sample_count": accepted, "failed": len(errors)},
        )
        return ReadingUploadResponse(asset_id=asset_id, accepted=accepted, errors=errors)

    def estimate_consumption(
        self,
        asset_id: str,
        analysis_days: Optional[int] = None,
        strategy: Optional[Strategy] = None,
    ) -> ConsumptionResult:
        """Run the engine over the asset's recent readings.

        Raises ``KeyError`` for unknown assets; store failures propagate.
        """
        asset = self.get_asset(asset_id)
        days = analysis_days or self.analysis_days
        now = self._clock()
        window = self.readings.fetch(asset_id, since=now - timedelta(days=days), until=now)

        context = TankContext(
            current_level_percent=asset.current_level_percent,
            current_level_volume=asset.current_level_volume,
            capacity=asset.capacity,
            analysis_days=days,
            as_of=now,
        )
        estimator = ConsumptionEstimator(
            self.config.with_overrides(
                strategy=strategy,
                refill_threshold_percent=asset.refill_threshold_percent,
            )
        )
        result = estimator.estimate(window, context)

        logger.info(
            "Estimated consumption",
            extra={
                "asset_id": asset_id,
                "strategy": result.strategy,
                "channel": result.channel,
                "sample_count": result.sample_count,
                "confidence": result.confidence,
            },
        )
        return result

    def apply_consumption(self, asset_id: str, result: ConsumptionResult) -> bool:
        updated = self.assets.update_consumption(asset_id, result, computed_at=self._clock())
        if not updated:
            logger.warning(
                "Consumption not stored", extra={"asset_id": asset_id, "reason": "unknown_asset"}
            )
        return updated

    def recalculate_all(
        self,
        analysis_days: Optional[int] = None,
        strategy: Optional[Strategy] = None,
    ) -> RecalculationSummary:
        """Estimate and persist consumption for every active asset.

        One asset failing never stops the others; it is counted as failed.
        """
        start_time = time.perf_counter()
        assets = self.assets.list_active()

        futures: List[Future[bool]] = [
            self.executor.submit(self._recalculate_one, asset.asset_id, analysis_days, strategy)
            for asset in assets
        ]

        summary = RecalculationSummary()
        for future in futures:
            summary.processed += 1
            if future.result():
                summary.updated += 1
            else:
                summary.failed += 1

        processing_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "Consumption recalculation complete",
            extra={
                "processed": summary.processed,
                "updated": summary.updated,
                "failed": summary.failed,
                "processing_ms": processing_ms,
            },
        )
        return summary

    def detect_refills(
        self,
        asset_id: str,
        days: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[RefillEvent]:
        """Refill events in the window; ``threshold`` is in the active channel's units."""
        asset = self.get_asset(asset_id)
        now = self._clock()
        window = self.readings.fetch(
            asset_id, since=now - timedelta(days=days or self.analysis_days), until=now
        )
        ordered = sorted(window, key=lambda reading: as_utc(reading.timestamp))

        channel = assess_channels(ordered, asset.capacity).channel
        if channel is Channel.none:
            return []

        config = self.config.with_overrides(refill_threshold_percent=asset.refill_threshold_percent)
        limit = threshold if threshold is not None else config.refill_threshold(channel)
        return detect_refills(build_series(ordered, channel), limit, channel)

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _recalculate_one(
        self, asset_id: str, analysis_days: Optional[int], strategy: Optional[Strategy]
    ) -> bool:
        try:
            result = self.estimate_consumption(asset_id, analysis_days, strategy)
            return self.apply_consumption(asset_id, result)
        except Exception:  # one asset must not abort the batch
            logger.exception("Failed to recalculate asset", extra={"asset_id": asset_id})
            return False


@lru_cache
def build_default_service(workers: Optional[int] = None) -> ConsumptionService:
    """Factory that wires the service with the default stores."""
    settings = get_settings()
    config = EstimatorConfig(
        strategy=Strategy(settings.consumption_strategy),
        refill_threshold_percent=settings.refill_threshold_percent,
        refill_threshold_volume=settings.refill_threshold_volume,
        noise_floor_percent=settings.noise_floor_percent,
        noise_floor_volume=settings.noise_floor_volume,
        timezone=settings.timezone,
    )
    return ConsumptionService(
        readings=build_default_reading_store(),
        assets=build_default_table(),
        config=config,
        analysis_days=settings.analysis_days,
        workers=workers or settings.recalc_workers,
    )
