"""Tempo CLI entry point.

Provides command-line access to the energy model and the analysis pipeline:
running the service, computing a morning charge or drain rate, requesting a
one-off analysis and inspecting configuration.
"""

from __future__ import annotations

import asyncio
import importlib.metadata
import json
import logging
from datetime import UTC, datetime
from pathlib import Path

import typer
from typing_extensions import Annotated

from tempo.config import TempoConfig, get_config
from tempo.models import (
    ActivitySample,
    EnvironmentSnapshot,
    FocusTag,
    HealthSnapshot,
    HRVSample,
    HRVTrend,
    SleepSample,
    UserMode,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create CLI app
app = typer.Typer(
    name="tempo",
    help="Tempo - energy battery model and hybrid health analysis",
    add_completion=False,
)


def _load_config(config: str) -> TempoConfig:
    if config and not Path(config).expanduser().exists():
        typer.echo(f"❌ Configuration file not found: {config}", err=True)
        raise typer.Exit(code=1)
    try:
        return get_config(config or None)
    except ValueError as e:
        typer.echo(f"❌ Invalid configuration: {e}", err=True)
        raise typer.Exit(code=1)


def _parse_mode(mode: str) -> UserMode:
    try:
        return UserMode(mode)
    except ValueError:
        valid = ", ".join(m.value for m in UserMode)
        typer.echo(f"❌ Invalid mode: {mode}", err=True)
        typer.echo(f"   Valid modes: {valid}", err=True)
        raise typer.Exit(code=1)


def _parse_tags(tags: list[str]) -> frozenset[FocusTag]:
    parsed = set()
    for tag in tags:
        try:
            parsed.add(FocusTag(tag))
        except ValueError:
            valid = ", ".join(t.value for t in FocusTag)
            typer.echo(f"❌ Invalid tag: {tag}", err=True)
            typer.echo(f"   Valid tags: {valid}", err=True)
            raise typer.Exit(code=1)
    return frozenset(parsed)


@app.command()
def run(
    config: Annotated[
        str, typer.Option("--config", "-c", help="Path to configuration file")
    ] = "",
    mode: Annotated[
        str, typer.Option("--mode", "-m", help="User mode (standard|athlete)")
    ] = "standard",
    otlp_endpoint: Annotated[
        str, typer.Option("--otlp-endpoint", help="OTLP collector endpoint for traces")
    ] = "",
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose output")
    ] = False,
) -> None:
    """Run the energy ticker until interrupted.

    Examples:
        # Run with defaults
        tempo run

        # Run in athlete mode with a config file
        tempo run --mode athlete --config /path/to/tempo.yaml
    """
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    tempo_config = _load_config(config)
    user_mode = _parse_mode(mode)

    from tempo.main import TempoApplication
    from tempo.observability import setup_telemetry, shutdown_telemetry, start_metrics_server

    setup_telemetry(
        environment=tempo_config.environment,
        otlp_endpoint=otlp_endpoint or None,
    )
    application = TempoApplication(tempo_config, mode=user_mode)
    if tempo_config.metrics_enabled:
        start_metrics_server(application.metrics, tempo_config.prometheus_port)

    try:
        asyncio.run(application.run())
    finally:
        shutdown_telemetry()


@app.command()
def charge(
    sleep_hours: Annotated[
        float | None, typer.Option("--sleep-hours", help="Sleep duration in hours")
    ] = None,
    deep_sleep_hours: Annotated[
        float | None, typer.Option("--deep-sleep-hours", help="Deep sleep in hours")
    ] = None,
    efficiency: Annotated[
        float | None, typer.Option("--efficiency", help="Sleep efficiency (0-1)")
    ] = None,
    hrv: Annotated[float | None, typer.Option("--hrv", help="Current HRV (ms)")] = None,
    hrv_baseline: Annotated[
        float | None, typer.Option("--hrv-baseline", help="Personal HRV baseline (ms)")
    ] = None,
    hrv_trend: Annotated[
        str, typer.Option("--hrv-trend", help="HRV trend (improving|stable|declining)")
    ] = "stable",
    previous_level: Annotated[
        float | None, typer.Option("--previous-level", help="Level at the end of yesterday")
    ] = None,
    mode: Annotated[
        str, typer.Option("--mode", "-m", help="User mode (standard|athlete)")
    ] = "standard",
    config: Annotated[
        str, typer.Option("--config", "-c", help="Path to configuration file")
    ] = "",
) -> None:
    """Compute the morning charge from last night's sleep and HRV."""
    from tempo.energy import EnergyModel

    tempo_config = _load_config(config)
    model = EnergyModel(tempo_config.energy)

    sleep = None
    if sleep_hours is not None or deep_sleep_hours is not None or efficiency is not None:
        sleep = SleepSample(
            duration_hours=sleep_hours,
            deep_sleep_hours=deep_sleep_hours,
            efficiency=efficiency,
        )
    hrv_sample = None
    if hrv is not None:
        hrv_sample = HRVSample(current=hrv, baseline=hrv_baseline, trend=HRVTrend(hrv_trend))

    level = model.compute_morning_charge(sleep, hrv_sample, previous_level, _parse_mode(mode))
    typer.echo(f"🔋 Morning charge: {level:.1f}%")


@app.command()
def drain(
    active_energy: Annotated[
        float | None, typer.Option("--active-energy", help="Active energy today (kcal)")
    ] = None,
    hrv: Annotated[float | None, typer.Option("--hrv", help="Current HRV (ms)")] = None,
    hrv_baseline: Annotated[
        float | None, typer.Option("--hrv-baseline", help="Personal HRV baseline (ms)")
    ] = None,
    heart_rate: Annotated[
        float | None, typer.Option("--heart-rate", help="Current heart rate (bpm)")
    ] = None,
    temperature: Annotated[
        float | None, typer.Option("--temperature", help="Temperature (C)")
    ] = None,
    humidity: Annotated[float | None, typer.Option("--humidity", help="Humidity (%)")] = None,
    pressure_change: Annotated[
        float | None, typer.Option("--pressure-change", help="Pressure change (hPa)")
    ] = None,
    air_quality: Annotated[
        float | None, typer.Option("--air-quality", help="Air quality index")
    ] = None,
    mode: Annotated[
        str, typer.Option("--mode", "-m", help="User mode (standard|athlete)")
    ] = "standard",
    config: Annotated[
        str, typer.Option("--config", "-c", help="Path to configuration file")
    ] = "",
) -> None:
    """Compute the current drain rate from activity, stress and environment."""
    from tempo.energy import EnergyModel

    tempo_config = _load_config(config)
    model = EnergyModel(tempo_config.energy)

    health = HealthSnapshot(
        hrv=HRVSample(current=hrv, baseline=hrv_baseline) if hrv is not None else None,
        heart_rate=heart_rate,
        activity=ActivitySample(active_energy_kcal=active_energy)
        if active_energy is not None
        else None,
    )
    environment = EnvironmentSnapshot(
        temperature=temperature,
        humidity=humidity,
        pressure_change=pressure_change,
        air_quality=air_quality,
    )
    rate = model.compute_drain_rate(
        health.active_energy,
        health.stress_level,
        model.environment_factor(environment),
        _parse_mode(mode),
    )
    typer.echo(f"📉 Drain rate: {rate:.2f}%/h")


@app.command()
def analyze(
    user_id: Annotated[str, typer.Argument(help="User identifier")],
    level: Annotated[float, typer.Option("--level", "-l", help="Battery level (0-100)")] = 75.0,
    drain_rate: Annotated[
        float, typer.Option("--drain-rate", help="Drain rate in %/h (negative)")
    ] = -5.0,
    tag: Annotated[
        list[str], typer.Option("--tag", "-t", help="Active focus tag (repeatable)")
    ] = [],  # noqa: B006
    offline: Annotated[
        bool, typer.Option("--offline", help="Skip the remote analysis service")
    ] = False,
    config: Annotated[
        str, typer.Option("--config", "-c", help="Path to configuration file")
    ] = "",
) -> None:
    """Request a single analysis for a given battery level and print it as JSON."""
    from tempo.main import TempoApplication
    from tempo.models import BatterySnapshot

    tempo_config = _load_config(config)
    if offline:
        tempo_config.remote.enabled = False
    tags = _parse_tags(tag)

    async def _analyze() -> str:
        battery = BatterySnapshot(
            current_level=level,
            morning_charge=level,
            drain_rate=drain_rate,
            last_updated=datetime.now(UTC),
        )
        application = TempoApplication(tempo_config, initial_battery=battery)
        await application.initialize()
        try:
            context = application.build_context(user_id, tags)
            result = await application.request_analysis(context)
            return result.model_dump_json(indent=2)
        finally:
            await application.stop()

    typer.echo(asyncio.run(_analyze()))


@app.command(name="config")
def show_config(
    config: Annotated[
        str, typer.Option("--config", "-c", help="Path to configuration file")
    ] = "",
) -> None:
    """Show the effective configuration (secrets masked)."""
    tempo_config = _load_config(config)
    typer.echo(json.dumps(tempo_config.model_dump(mode="json"), indent=2))


@app.command()
def version() -> None:
    """Show Tempo version information."""
    try:
        ver = importlib.metadata.version("tempo-energy")
        typer.echo(f"Tempo version: {ver}")
    except importlib.metadata.PackageNotFoundError:
        from tempo import __version__

        typer.echo(f"Tempo version: {__version__}")


def main() -> None:
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
