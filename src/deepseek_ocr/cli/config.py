from __future__ import annotations

from typing import Any

import typer

from ..config import FIELDS_BY_KEY, coerce_config_value
from ..constants import DEFAULT_BASE_URL, DEFAULT_MODE, DEFAULT_RESOLUTION
from ..errors import ConfigurationError, ValidationError
from ..output import OutputSink, mask_api_key
from ._common import AppState, command_errors, get_state


app = typer.Typer(help="Manage the persisted configuration", no_args_is_help=True)

SECRET_KEYS = {"api.key"}


def _shown(key: str, value: Any) -> Any:
    return mask_api_key(str(value)) if key in SECRET_KEYS else value


def _show(state: AppState, out: OutputSink) -> None:
    store = state.store()
    effective = state.resolve()
    values = effective.as_dict()
    values["api_key"] = mask_api_key(effective.api_key) if effective.api_key else "(not set)"
    if out.is_json:
        out.emit({"success": True, "path": str(store.path), "config": values})
        return
    out.section("Current Configuration")
    out.info(f"Config file: {store.path}")
    if not store.path.exists():
        out.info('No configuration file found. Run "deepseek-ocr config init" to set one up.')
    out.key_values(
        {
            "API Key": values["api_key"],
            "Base URL": effective.base_url,
            "Timeout": f"{effective.timeout:g}s",
            "Default Mode": effective.mode,
            "Default Resolution": effective.resolution,
            "Default DPI": effective.dpi,
            "Default Max Pages": effective.max_pages,
            "Workers": effective.workers,
            "Poll Interval": f"{effective.poll_interval:g}s",
            "Poll Timeout": f"{effective.poll_timeout:g}s",
        }
    )


@app.command()
def init(ctx: typer.Context) -> None:
    """Interactively store the API key, endpoint and default options."""
    state = get_state(ctx)
    out = state.sink()
    with command_errors(out):
        out.section("Configuration Initialization")
        api_key = typer.prompt("Enter your DeepSeek-OCR API key", hide_input=True, default="", show_default=False)
        if not api_key.strip():
            raise ConfigurationError("API key is required")
        base_url = typer.prompt("API base URL", default=DEFAULT_BASE_URL)
        mode = typer.prompt("Default OCR mode", default=DEFAULT_MODE)
        resolution = typer.prompt("Default resolution", default=DEFAULT_RESOLUTION)
        store = state.store()
        entries = {
            "api.key": api_key,
            "api.base_url": base_url,
            "defaults.mode": mode,
            "defaults.resolution": resolution,
        }
        typed = {key: coerce_config_value(key, value) for key, value in entries.items()}
        for key, value in typed.items():
            store.set(key, value)
        out.success("Configuration saved")
        _show(state, out)


@app.command()
def show(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Show the effective configuration with the API key masked."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out):
        _show(state, out)


@app.command("set")
def set_value(
    ctx: typer.Context,
    key: str = typer.Argument(..., help=f"Dotted key: {', '.join(FIELDS_BY_KEY)}"),
    value: str = typer.Argument(..., help="New value"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Store one configuration value."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"key": key}):
        typed = coerce_config_value(key, value)
        state.store().set(key, typed)
        if out.is_json:
            out.emit({"success": True, "key": key, "value": _shown(key, typed)})
            return
        out.success(f"Configuration updated: {key}")
        out.key_values({key: _shown(key, typed)})


@app.command("get")
def get_value(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Dotted key, e.g. api.base_url"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Print one stored configuration value."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"key": key}):
        value = state.store().get(key)
        if value is None:
            raise ValidationError(f"Configuration key not found: {key}")
        if out.is_json:
            out.emit({"success": True, "key": key, "value": _shown(key, value)})
            return
        out.key_values({key: _shown(key, value)})


@app.command()
def delete(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Dotted key to remove"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Remove one stored configuration value."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"key": key}):
        removed = state.store().delete(key)
        if out.is_json:
            out.emit({"success": True, "deleted": key, "existed": removed})
            return
        if removed:
            out.success(f"Configuration key deleted: {key}")
        else:
            out.info(f"Configuration key was not set: {key}")


@app.command()
def path(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Print the location of the configuration file."""
    state = get_state(ctx)
    out = state.sink(json_output)
    location = state.store().path
    if out.is_json:
        out.emit({"success": True, "path": str(location)})
        return
    out.info(f"Config file location: {location}")


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Delete every stored configuration value."""
    state = get_state(ctx)
    out = state.sink(json_output)
    if not yes:
        typer.confirm("Delete the whole configuration file?", abort=True)
    with command_errors(out):
        state.store().clear()
        if out.is_json:
            out.emit({"success": True, "cleared": True})
            return
        out.success("Configuration cleared")


__all__ = ["app"]
