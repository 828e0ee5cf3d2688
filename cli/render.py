from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer

_CONFIDENCE_COLORS = {
    "high": typer.colors.GREEN,
    "medium": typer.colors.YELLOW,
    "low": typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value if value is not None else '-'}")


def render_consumption(payload: Dict[str, Any]) -> None:
    echo_heading("Consumption")
    echo_key_values(
        [
            ("daily_consumption_percent", payload.get("daily_consumption_percent")),
            ("daily_consumption_volume", payload.get("daily_consumption_volume")),
            ("days_remaining", payload.get("days_remaining")),
            ("estimated_empty_date", payload.get("estimated_empty_date")),
            ("trend", payload.get("trend")),
            ("sample_count", payload.get("sample_count")),
            ("fit_quality", payload.get("fit_quality")),
            ("channel", payload.get("channel")),
            ("strategy", payload.get("strategy")),
        ]
    )
    confidence = payload.get("confidence") or "low"
    typer.secho(f"confidence: {confidence}", fg=_CONFIDENCE_COLORS.get(confidence))


def render_asset(payload: Dict[str, Any]) -> None:
    echo_heading(f"Asset {payload.get('asset_id')}")
    echo_key_values(
        [
            ("name", payload.get("name")),
            ("capacity", payload.get("capacity")),
            ("current_level_percent", payload.get("current_level_percent")),
            ("current_level_volume", payload.get("current_level_volume")),
            ("disabled", payload.get("is_disabled")),
        ]
    )
    typer.echo()
    echo_heading("Last consumption")
    if payload.get("consumption_computed_at"):
        echo_key_values(
            [
                ("computed_at", payload.get("consumption_computed_at")),
                ("daily_consumption_percent", payload.get("daily_consumption_percent")),
                ("daily_consumption_volume", payload.get("daily_consumption_volume")),
                ("days_remaining", payload.get("days_remaining")),
                ("trend", payload.get("consumption_trend")),
                ("confidence", payload.get("consumption_confidence")),
            ]
        )
    else:
        typer.echo("Not calculated yet.")


def render_upload(payload: Dict[str, Any]) -> None:
    typer.secho(
        f"Accepted {payload.get('accepted', 0)} readings for {payload.get('asset_id')}.",
        fg=typer.colors.GREEN,
    )
    errors = payload.get("errors") or []
    if errors:
        typer.echo("Skipped rows:")
        for error in errors:
            typer.echo(f"  - row {error.get('row_number')}: {error.get('reason')}")


def render_refills(events: List[Dict[str, Any]]) -> None:
    echo_heading("Refill events")
    if not events:
        typer.echo("No refills detected.")
        return
    for event in events:
        typer.echo(
            f"  - {event.get('timestamp')}: {event.get('level_before')} -> "
            f"{event.get('level_after')} (+{event.get('increase')} {event.get('channel')})"
        )


def render_summary(payload: Dict[str, Any]) -> None:
    echo_heading("Recalculation")
    echo_key_values(
        [
            ("processed", payload.get("processed")),
            ("updated", payload.get("updated")),
            ("failed", payload.get("failed")),
        ]
    )
