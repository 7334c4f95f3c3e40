from __future__ import annotations

import time

import typer

from ..errors import OCRError
from ..models import to_iso, utc_now
from ._common import command_errors, get_state


app = typer.Typer(help="Check service health and model information", no_args_is_help=True)

TROUBLESHOOTING = (
    "Check that the service is running.",
    "Verify the base URL (deepseek-ocr config show, or pass --base-url).",
    "Check your network connection and API key.",
)


@app.command()
def check(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Check whether the service is up and the model is loaded."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"status": "unreachable"}):
        with state.service() as service:
            out.section("Service Health Check")
            started = time.perf_counter()
            try:
                health = service.client.health_check()
            except OCRError:
                for hint in TROUBLESHOOTING:
                    out.info(f"  - {hint}")
                raise
            elapsed_ms = round((time.perf_counter() - started) * 1000)
            healthy = health.status == "healthy"
            if out.is_json:
                payload = {
                    "success": True,
                    "status": health.status,
                    "model_loaded": health.model_loaded,
                    "timestamp": to_iso(utc_now()),
                    "response_time_ms": elapsed_ms,
                }
                if state.verbose:
                    payload["base_url"] = service.config.base_url
                out.emit(payload)
                return
            out.key_values(
                {
                    "Service Status": f"{'✓' if healthy else '✗'} {health.status}",
                    "Model Loaded": "Yes" if health.model_loaded else "No",
                    "Response Time": f"{elapsed_ms}ms",
                    "Base URL": service.config.base_url if state.verbose else None,
                }
            )
            if healthy and health.model_loaded:
                out.success("Service is healthy and ready to process requests")
            elif healthy:
                out.info("Service is healthy but the model is not loaded yet")
            else:
                out.warning("Service is not healthy")


@app.command()
def info(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Show the served model, its version and supported options."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out):
        with state.service() as service:
            model = service.client.get_model_info()
            if out.is_json:
                out.emit(
                    {
                        "success": True,
                        "model": model.model_name,
                        "version": model.version,
                        "supported_modes": model.supported_modes,
                        "supported_resolutions": model.supported_resolutions,
                    }
                )
                return
            out.section("Model Information")
            out.key_values({"Model Name": model.model_name or "Unknown", "Version": model.version or "Unknown"})
            if model.supported_modes:
                out.info("Supported Modes:")
                for mode in model.supported_modes:
                    out.info(f"  - {mode}")
            if model.supported_resolutions:
                out.info("Supported Resolutions:")
                for resolution in model.supported_resolutions:
                    out.info(f"  - {resolution}")


__all__ = ["app"]
