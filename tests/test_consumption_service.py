from __future__ import annotations

import io
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from app.schemas import AssetUpsert, Confidence, Strategy, Trend
from datastore.asset_store import MockAssetTable
from models.records import Reading
from services.consumption import ConsumptionService
from services.estimator import empty_result
from storage.reading_store import MockReadingStore, ReadingStoreError

NOW = datetime(2024, 3, 8, 0, 0, tzinfo=timezone.utc)
START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
STEADY = [80, 77, 74, 71, 68, 65, 62]


def _daily(levels: List[float]) -> List[Reading]:
    return [
        Reading(timestamp=START + timedelta(days=index), level_percent=level)
        for index, level in enumerate(levels)
    ]


class FailingReadingStore(MockReadingStore):
    def __init__(self, broken: str) -> None:
        super().__init__()
        self.broken = broken

    def fetch(
        self, asset_id: str, since: datetime, until: Optional[datetime] = None
    ) -> List[Reading]:
        if asset_id == self.broken:
            raise ReadingStoreError("storage offline")
        return super().fetch(asset_id, since, until)


class BarrierReadingStore(MockReadingStore):
    def __init__(self, parties: int) -> None:
        super().__init__()
        self.barrier = threading.Barrier(parties)

    def fetch(
        self, asset_id: str, since: datetime, until: Optional[datetime] = None
    ) -> List[Reading]:
        self.barrier.wait(timeout=2)
        return super().fetch(asset_id, since, until)


def _service(readings: Optional[MockReadingStore] = None, workers: int = 2) -> ConsumptionService:
    return ConsumptionService(
        readings=readings or MockReadingStore(),
        assets=MockAssetTable(name="assets"),
        workers=workers,
        clock=lambda: NOW,
    )


@pytest.fixture()
def service():
    svc = _service()
    yield svc
    svc.shutdown()


def test_upsert_asset_creates_then_merges(service: ConsumptionService) -> None:
    service.upsert_asset("tank-1", AssetUpsert(name="Depot", capacity=10000))

    updated = service.upsert_asset("tank-1", AssetUpsert(current_level_percent=62))

    assert updated.name == "Depot"
    assert updated.capacity == 10000
    assert updated.current_level_percent == 62
    assert service.get_asset("tank-1") == updated


def test_get_unknown_asset_raises_key_error(service: ConsumptionService) -> None:
    with pytest.raises(KeyError):
        service.get_asset("missing")
    with pytest.raises(KeyError):
        service.estimate_consumption("missing")


def test_estimate_and_apply_consumption(service: ConsumptionService) -> None:
    service.upsert_asset("tank-1", AssetUpsert(capacity=10000, current_level_percent=62))
    service.readings.append("tank-1", _daily(STEADY))

    result = service.estimate_consumption("tank-1")

    assert result.daily_consumption_percent == pytest.approx(3.0)
    assert result.days_remaining == pytest.approx(20.7)
    assert result.confidence is Confidence.high
    assert result.strategy is Strategy.regression

    assert service.apply_consumption("tank-1", result) is True
    stored = service.get_asset("tank-1")
    assert stored.daily_consumption_volume == pytest.approx(300.0)
    assert stored.consumption_trend is Trend.increasing
    assert stored.consumption_computed_at == NOW
    # empty date is projected from the service clock, not the newest reading
    assert stored.estimated_empty_date == (NOW + timedelta(days=62 / 3)).date()


def test_estimate_respects_analysis_window(service: ConsumptionService) -> None:
    service.upsert_asset("tank-1", AssetUpsert(current_level_percent=62))
    service.readings.append("tank-1", _daily(STEADY))

    result = service.estimate_consumption("tank-1", analysis_days=2)

    # only the last two daily readings fall inside the window
    assert result.is_empty
    assert result.sample_count == 2


def test_estimate_strategy_override(service: ConsumptionService) -> None:
    service.upsert_asset("tank-1", AssetUpsert(current_level_percent=62))
    service.readings.append("tank-1", _daily(STEADY))

    result = service.estimate_consumption("tank-1", strategy=Strategy.summation)

    assert result.strategy is Strategy.summation
    assert result.daily_consumption_percent == pytest.approx(3.0)


def test_asset_refill_threshold_overrides_default(service: ConsumptionService) -> None:
    service.readings.append("tank-1", _daily([80, 75, 70, 88, 83, 78, 73]))

    service.upsert_asset("tank-1", AssetUpsert(current_level_percent=70))
    default = service.estimate_consumption("tank-1")
    service.upsert_asset("tank-1", AssetUpsert(refill_threshold_percent=20))
    tolerant = service.estimate_consumption("tank-1")

    assert default.sample_count == 5
    assert tolerant.sample_count == 7


def test_apply_consumption_for_unknown_asset(service: ConsumptionService) -> None:
    assert service.apply_consumption("missing", empty_result(0)) is False


def test_ingest_readings_updates_current_level(service: ConsumptionService) -> None:
    service.upsert_asset("tank-1", AssetUpsert(capacity=1000))
    csv_text = (
        "timestamp,level_percent,level_volume\n"
        "2024-03-06T12:00:00Z,64,640\n"
        "bad,63,630\n"
        "2024-03-07T12:00:00Z,62,620\n"
    )

    response = service.ingest_readings("tank-1", io.StringIO(csv_text))

    assert response.accepted == 2
    assert [error.row_number for error in response.errors] == [3]
    asset = service.get_asset("tank-1")
    assert asset.current_level_percent == 62
    assert asset.current_level_volume == 620
    assert len(service.readings.fetch("tank-1", since=NOW - timedelta(days=7))) == 2


def test_ingest_readings_rejects_empty_upload(service: ConsumptionService) -> None:
    service.upsert_asset("tank-1", AssetUpsert())

    with pytest.raises(ValueError, match="no readings"):
        service.ingest_readings("tank-1", io.StringIO("timestamp,level_percent\n"))

    with pytest.raises(KeyError):
        service.ingest_readings("missing", io.StringIO("timestamp,level_percent\n"))


def test_detect_refills_uses_threshold(service: ConsumptionService) -> None:
    service.upsert_asset("tank-1", AssetUpsert())
    service.readings.append("tank-1", _daily([80, 75, 70, 90, 85, 92, 88]))

    default = service.detect_refills("tank-1")
    sensitive = service.detect_refills("tank-1", threshold=5)

    assert [event.increase for event in default] == [20]
    assert [event.increase for event in sensitive] == [20, 7]


def test_recalculate_all_isolates_failures(caplog: pytest.LogCaptureFixture) -> None:
    service = _service(readings=FailingReadingStore(broken="tank-broken"))
    try:
        service.upsert_asset("tank-ok", AssetUpsert(current_level_percent=62))
        service.upsert_asset("tank-broken", AssetUpsert(current_level_percent=50))
        service.upsert_asset("tank-new", AssetUpsert())
        service.upsert_asset("tank-off", AssetUpsert(is_disabled=True))
        service.readings.append("tank-ok", _daily(STEADY))
        service.readings.append("tank-off", _daily(STEADY))

        with caplog.at_level("ERROR"):
            summary = service.recalculate_all()
    finally:
        service.shutdown()

    assert (summary.processed, summary.updated, summary.failed) == (3, 2, 1)
    assert service.get_asset("tank-ok").days_remaining == pytest.approx(20.7)
    assert service.get_asset("tank-new").consumption_confidence is Confidence.low
    assert service.get_asset("tank-off").consumption_computed_at is None
    assert any(getattr(record, "asset_id", None) == "tank-broken" for record in caplog.records)


def test_recalculate_all_runs_assets_concurrently() -> None:
    service = _service(readings=BarrierReadingStore(parties=2), workers=2)
    try:
        service.upsert_asset("tank-a", AssetUpsert())
        service.upsert_asset("tank-b", AssetUpsert())

        summary = service.recalculate_all()
    finally:
        service.shutdown()

    assert summary.updated == 2
    assert summary.failed == 0


def test_recalculate_all_with_no_assets(service: ConsumptionService) -> None:
    summary = service.recalculate_all()

    assert (summary.processed, summary.updated, summary.failed) == (0, 0, 0)
