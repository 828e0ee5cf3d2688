from __future__ import annotations
import json
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from app.schemas import AssetRecord, ConsumptionResult
from settings import get_settings


class AssetStoreError(RuntimeError):
    """Raised when the asset table cannot be persisted."""


class MockAssetTable:

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[str, AssetRecord] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def put_item(self, item: AssetRecord) -> None:
        with self._lock:
            items = dict(self._items)
            items[item.asset_id] = item.model_copy(deep=True)
            self._persist(items)
            self._items = items

    def get_item(self, key: str) -> Optional[AssetRecord]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            return item.model_copy(deep=True)

    def list_active(self) -> List[AssetRecord]:
        """Assets that are not disabled, ordered by id."""

        with self._lock:
            active = [item for item in self._items.values() if not item.is_disabled]
            return [item.model_copy(deep=True) for item in sorted(active, key=lambda a: a.asset_id)]

    def update_consumption(
        self, asset_id: str, result: ConsumptionResult, computed_at: datetime
    ) -> bool:
        """Store the consumption figures on an asset; ``False`` if the asset is unknown."""

        with self._lock:
            item = self._items.get(asset_id)
            if item is None:
                return False
            items = dict(self._items)
            items[asset_id] = item.model_copy(
                update={
                    "daily_consumption_volume": result.daily_consumption_volume,
                    "daily_consumption_percent": result.daily_consumption_percent,
                    "days_remaining": result.days_remaining,
                    "estimated_empty_date": result.estimated_empty_date,
                    "consumption_trend": result.trend,
                    "consumption_confidence": result.confidence,
                    "consumption_computed_at": computed_at,
                }
            )
            self._persist(items)
            self._items = items
            return True

    def _persist(self, items: Dict[str, AssetRecord]) -> None:
        if not self.persistence_path:
            return
        payload = {asset_id: item.model_dump(mode="json") for asset_id, item in items.items()}
        staging = self.persistence_path.with_name(f"{self.persistence_path.name}.tmp")
        try:
            staging.write_text(json.dumps(payload, indent=2, sort_keys=True))
            staging.replace(self.persistence_path)
        except OSError as exc:
            staging.unlink(missing_ok=True)
            raise AssetStoreError(
                f"Could not persist asset table {self.name!r} to {self.persistence_path}."
            ) from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for asset_id, payload in data.items():
            self._items[asset_id] = AssetRecord.model_validate(payload)


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> MockAssetTable:
    settings = get_settings()
    table_name = settings.asset_table_name if name is None else name
    table_path = settings.asset_table_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return MockAssetTable(name=table_name, persistence_path=persistence)
