from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import (
    render_asset,
    render_consumption,
    render_refills,
    render_summary,
    render_upload,
)


class StrategyChoice(str, Enum):
    regression = "regression"
    summation = "summation"


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the tankwatch consumption service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="HTTP timeout in seconds.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("register")
def register_command(
    ctx: typer.Context,
    asset_id: str = typer.Argument(..., help="Tank identifier."),
    name: Optional[str] = typer.Option(None, "--name", help="Display name."),
    capacity: Optional[float] = typer.Option(None, "--capacity", min=0.0, help="Tank capacity in volume units."),
    level_percent: Optional[float] = typer.Option(None, "--level-percent", min=0.0, help="Current fill level in percent."),
    level_volume: Optional[float] = typer.Option(None, "--level-volume", min=0.0, help="Current fill level in volume units."),
    refill_threshold: Optional[float] = typer.Option(
        None, "--refill-threshold", min=0.0, help="Percent rise treated as a refill for this tank."
    ),
    disabled: bool = typer.Option(False, "--disabled/--enabled", help="Exclude the tank from batch runs."),
) -> None:
    """Register a tank or update its metadata."""
    state = _get_state(ctx)
    payload: Dict[str, Any] = {"is_disabled": disabled}
    for key, value in (
        ("name", name),
        ("capacity", capacity),
        ("current_level_percent", level_percent),
        ("current_level_volume", level_volume),
        ("refill_threshold_percent", refill_threshold),
    ):
        if value is not None:
            payload[key] = value
    record = state.client.register_asset(asset_id, payload)
    render_asset(record)


@app.command("upload")
def upload_command(
    ctx: typer.Context,
    asset_id: str = typer.Argument(..., help="Tank identifier."),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Path to CSV file."),
) -> None:
    """Upload a CSV of level readings for a tank."""
    state = _get_state(ctx)
    typer.echo(f"Uploading {file} to {state.config.base_url} ...")
    payload = state.client.upload_readings(asset_id, file)
    render_upload(payload)


@app.command("estimate")
def estimate_command(
    ctx: typer.Context,
    asset_id: str = typer.Argument(..., help="Tank identifier."),
    days: Optional[int] = typer.Option(None, "--days", "-d", min=1, max=365, help="Analysis horizon in days."),
    strategy: Optional[StrategyChoice] = typer.Option(None, "--strategy", "-s", help="Rate estimation algorithm."),
    persist: bool = typer.Option(True, "--persist/--dry-run", help="Store the result on the tank record."),
) -> None:
    """Estimate daily consumption and days remaining for a tank."""
    state = _get_state(ctx)
    payload = state.client.estimate(
        asset_id,
        days=days,
        strategy=strategy.value if strategy else None,
        persist=persist,
    )
    render_consumption(payload)


@app.command("show")
def show_command(
    ctx: typer.Context,
    asset_id: str = typer.Argument(..., help="Tank identifier."),
) -> None:
    """Show a tank record and its last stored consumption figures."""
    state = _get_state(ctx)
    render_asset(state.client.get_asset(asset_id))


@app.command("refills")
def refills_command(
    ctx: typer.Context,
    asset_id: str = typer.Argument(..., help="Tank identifier."),
    days: Optional[int] = typer.Option(None, "--days", "-d", min=1, max=365),
    threshold: Optional[float] = typer.Option(None, "--threshold", min=0.0, help="Minimum rise in channel units."),
) -> None:
    """List refill events in a tank's recent readings."""
    state = _get_state(ctx)
    render_refills(state.client.refills(asset_id, days=days, threshold=threshold))


@app.command("recalculate")
def recalculate_command(
    ctx: typer.Context,
    days: Optional[int] = typer.Option(None, "--days", "-d", min=1, max=365),
    strategy: Optional[StrategyChoice] = typer.Option(None, "--strategy", "-s"),
) -> None:
    """Recalculate consumption for every active tank."""
    state = _get_state(ctx)
    payload = state.client.recalculate(days=days, strategy=strategy.value if strategy else None)
    render_summary(payload)
    if payload.get("failed"):
        raise typer.Exit(code=1)
