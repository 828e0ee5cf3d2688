from __future__ import annotations

import csv
import logging
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Set, TextIO, Tuple

from app.schemas import ReadingError
from models.records import Reading, as_utc
from settings import get_settings

logger = logging.getLogger(__name__)

CSV_FIELDS = ("timestamp", "level_percent", "level_volume", "is_refill")
_LEVEL_FIELDS = ("level_percent", "level_volume")
_TRUE_VALUES = {"1", "true", "yes", "y", "t"}


class ReadingStoreError(RuntimeError):
    """Raised when readings cannot be loaded from or written to storage."""


def parse_timestamp(value: str) -> datetime:
    candidate = value.strip()
    if not candidate:
        raise ValueError("Timestamp is empty.")

    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError as exc:
        raise ValueError("Invalid timestamp format") from exc

    return as_utc(parsed)


def _parse_level(raw: Optional[str]) -> Optional[float]:
    candidate = (raw or "").strip()
    if not candidate:
        return None
    return float(candidate)


def parse_readings_csv(
    stream: TextIO, asset_id: Optional[str] = None
) -> Tuple[List[Reading], List[ReadingError]]:
    """Parse a CSV of readings, collecting row errors instead of raising.

    A header row with ``timestamp`` and at least one level column is
    required; anything else about the file is reported per row.
    """
    reader = csv.DictReader(stream)
    if not reader.fieldnames:
        raise ValueError("CSV file is missing a header row.")

    normalized = {name.lower().strip(): name for name in reader.fieldnames if name}
    missing = []
    if "timestamp" not in normalized:
        missing.append("timestamp")
    if not any(field in normalized for field in _LEVEL_FIELDS):
        missing.append("level_percent|level_volume")
    if missing:
        raise ValueError(f"CSV missing required columns: {', '.join(missing)}")

    timestamp_col = normalized["timestamp"]
    percent_col = normalized.get("level_percent")
    volume_col = normalized.get("level_volume")
    refill_col = normalized.get("is_refill")

    readings: List[Reading] = []
    errors: List[ReadingError] = []

    def skip(row_number: int, reason: str) -> None:
        errors.append(ReadingError(row_number=row_number, reason=reason))
        logger.warning(
            "Skipping row %d: %s",
            row_number,
            reason,
            extra={"asset_id": asset_id, "row_number": row_number, "reason": reason},
        )

    for row_number, row in enumerate(reader, start=2):
        timestamp_raw = (row.get(timestamp_col) or "").strip()
        if not timestamp_raw:
            skip(row_number, "missing timestamp")
            continue

        try:
            timestamp = parse_timestamp(timestamp_raw)
        except ValueError:
            skip(row_number, "invalid timestamp")
            continue

        try:
            level_percent = _parse_level(row.get(percent_col)) if percent_col else None
            level_volume = _parse_level(row.get(volume_col)) if volume_col else None
        except ValueError:
            skip(row_number, "invalid numeric value")
            continue

        if level_percent is None and level_volume is None:
            skip(row_number, "missing level")
            continue

        is_refill = False
        if refill_col:
            is_refill = (row.get(refill_col) or "").strip().lower() in _TRUE_VALUES

        readings.append(
            Reading(
                timestamp=timestamp,
                level_percent=level_percent,
                level_volume=level_volume,
                is_refill=is_refill,
            )
        )

    return readings, errors


def _format_level(value: Optional[float]) -> str:
    return "" if value is None else repr(float(value))


class MockReadingStore:
    """Per-asset reading history, optionally mirrored to one CSV file per asset."""

    def __init__(self, root_path: Optional[Path] = None) -> None:
        self._readings: Dict[str, List[Reading]] = {}
        self._loaded: Set[str] = set()
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)

    def append(self, asset_id: str, readings: Iterable[Reading]) -> int:
        """Add readings for ``asset_id`` and return how many were stored."""
        incoming = [
            Reading(
                timestamp=as_utc(reading.timestamp),
                level_percent=reading.level_percent,
                level_volume=reading.level_volume,
                is_refill=reading.is_refill,
            )
            for reading in readings
        ]
        if not incoming:
            return 0

        with self._lock:
            updated = sorted(
                self._history(asset_id) + incoming, key=lambda reading: reading.timestamp
            )
            self._persist(asset_id, updated)
            self._readings[asset_id] = updated
        return len(incoming)

    def fetch(
        self,
        asset_id: str,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[Reading]:
        """Return readings with ``since <= timestamp <= until``, oldest first."""
        start = as_utc(since)
        end = as_utc(until) if until is not None else None
        with self._lock:
            history = self._history(asset_id)
            return [
                reading
                for reading in history
                if reading.timestamp >= start and (end is None or reading.timestamp <= end)
            ]

    @staticmethod
    def _asset_path(root_path: Path, asset_id: str) -> Path:
        if not asset_id or Path(asset_id).name != asset_id:
            raise ValueError(f"Invalid asset id {asset_id!r}.")
        return root_path / f"{asset_id}.csv"

    def _history(self, asset_id: str) -> List[Reading]:
        if asset_id not in self._loaded:
            self._readings[asset_id] = self._load_from_disk(asset_id)
            self._loaded.add(asset_id)
        return self._readings[asset_id]

    def _load_from_disk(self, asset_id: str) -> List[Reading]:
        if not self.root_path:
            return []
        path = self._asset_path(self.root_path, asset_id)
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8", newline="") as handle:
                readings, errors = parse_readings_csv(handle, asset_id=asset_id)
        except OSError as exc:
            raise ReadingStoreError(f"Could not read readings for asset {asset_id!r}.") from exc
        if errors:
            logger.warning(
                "Ignored %d unreadable stored rows",
                len(errors),
                extra={"asset_id": asset_id},
            )
        readings.sort(key=lambda reading: reading.timestamp)
        return readings

    def _persist(self, asset_id: str, history: List[Reading]) -> None:
        """Write ``history`` to a sibling temp file, then swap it into place."""
        if not self.root_path:
            return
        path = self._asset_path(self.root_path, asset_id)
        staging = path.with_name(f"{path.name}.tmp")
        try:
            with staging.open("w", encoding="utf-8", newline="") as handle:
                writer = csv.writer(handle)
                writer.writerow(CSV_FIELDS)
                for reading in history:
                    writer.writerow(
                        [
                            reading.timestamp.isoformat(),
                            _format_level(reading.level_percent),
                            _format_level(reading.level_volume),
                            "true" if reading.is_refill else "false",
                        ]
                    )
            staging.replace(path)
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise ReadingStoreError(f"Could not write readings for asset {asset_id!r}.") from exc


@lru_cache
def build_default_reading_store(root_path: Optional[str] = None) -> MockReadingStore:
    settings = get_settings()
    store_root = settings.reading_store_root if root_path is None else root_path
    path = Path(store_root) if store_root else None
    return MockReadingStore(root_path=path)
