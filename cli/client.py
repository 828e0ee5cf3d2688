from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the tankwatch service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.http_timeout())

    def close(self) -> None:
        self._client.close()

    def register_asset(self, asset_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/assets/{asset_id}", json=payload)

    def get_asset(self, asset_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/assets/{asset_id}", not_found=f"Asset {asset_id} was not found.")

    def upload_readings(self, asset_id: str, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise typer.BadParameter(f"File {path} does not exist.")
        if not path.is_file():
            raise typer.BadParameter(f"Path {path} is not a file.")

        with path.open("rb") as handle:
            return self._request(
                "POST",
                f"/assets/{asset_id}/readings",
                files={"file": (path.name, handle, "text/csv")},
                not_found=f"Asset {asset_id} was not found.",
            )

    def estimate(
        self,
        asset_id: str,
        days: Optional[int] = None,
        strategy: Optional[str] = None,
        persist: bool = True,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"persist": str(persist).lower()}
        if days is not None:
            params["days"] = days
        if strategy is not None:
            params["strategy"] = strategy
        return self._request(
            "POST",
            f"/assets/{asset_id}/consumption",
            params=params,
            not_found=f"Asset {asset_id} was not found.",
        )

    def refills(
        self, asset_id: str, days: Optional[int] = None, threshold: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if days is not None:
            params["days"] = days
        if threshold is not None:
            params["threshold"] = threshold
        return self._request(
            "GET",
            f"/assets/{asset_id}/refills",
            params=params,
            not_found=f"Asset {asset_id} was not found.",
        )

    def recalculate(self, days: Optional[int] = None, strategy: Optional[str] = None) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if days is not None:
            params["days"] = days
        if strategy is not None:
            params["strategy"] = strategy
        return self._request("POST", "/consumption/recalculate", params=params)

    def _request(self, method: str, url: str, not_found: Optional[str] = None, **kwargs: Any) -> Any:
        try:
            response = self._client.request(method, url, **kwargs)
            if response.status_code == 404 and not_found:
                raise typer.BadParameter(not_found)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(f"Could not reach {self._config.base_url}: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc
        return response.json()

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
