from __future__ import annotations

from pathlib import Path

import typer

from ..config import default_config_dir
from ..history import TaskHistory
from ..models import Task
from ._common import command_errors, get_state, interrupted_wait
from ._render import render_history, render_ocr_result, render_task, task_payload


app = typer.Typer(help="Inspect and collect asynchronous OCR tasks", no_args_is_help=True)


@app.command()
def status(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID returned by an async submission"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Query the current state of a task once."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"task_id": task_id}):
        with state.service() as service:
            render_task(out, service.task_status(task_id))


@app.command()
def download(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID of a completed task"),
    output_path: Path | None = typer.Option(None, "--output-path", "-o", help="Path of the result ZIP file"),
    extract: bool = typer.Option(True, "--extract/--no-extract", help="Extract the result ZIP"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Download the result archive of a completed task."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"task_id": task_id}):
        with state.service() as service:
            with out.progress("Downloading", total=None, transfer=True) as bar:
                result = service.download_result(task_id, output_path, extract, on_download=bar)
            render_ocr_result(out, result)


@app.command()
def wait(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID to wait for"),
    output_path: Path | None = typer.Option(None, "--output-path", "-o", help="Path of the result ZIP file"),
    extract: bool = typer.Option(True, "--extract/--no-extract", help="Extract the result ZIP"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Poll a task until it finishes, then download its result."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"task_id": task_id}):
        with state.service() as service:
            out.section("Waiting for Task")
            out.info(f"Task ID: {task_id}")
            out.info("Press Ctrl+C to stop waiting (the task continues on the server)")
            with out.progress("Processing", total=1.0) as bar:

                def progressed(task: Task) -> None:
                    if bar is not None:
                        bar(task.progress, None)

                try:
                    task = service.wait_for_task(task_id, progressed)
                except KeyboardInterrupt:
                    raise interrupted_wait(out, task_id) from None
            out.success("Task completed")
            result = service.download_result(task_id, output_path, extract)
            if out.is_json:
                payload = result.to_payload()
                payload["task"] = task_payload(task)
                out.emit(payload)
            else:
                render_ocr_result(out, result)


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """List tasks submitted from this machine in the last 7 days."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out):
        render_history(out, TaskHistory.in_dir(default_config_dir()).list())


__all__ = ["app"]
