from __future__ import annotations

import threading
from pathlib import Path

import typer

from ..constants import APP_NAME, MAX_WORKERS, MIN_WORKERS, OCRMode
from ..core import PDFStrategy
from ..errors import ValidationError
from ..models import Task
from ..output import OutputFormat
from ..utils import scan_directory
from . import config as config_commands
from . import health as health_commands
from . import task as task_commands
from ._common import AppState, command_errors, get_state, interrupted_wait, setup_logging
from ._render import render_batch, render_ocr_result


app = typer.Typer(
    name=APP_NAME,
    help="Command-line client for the DeepSeek-OCR API",
    no_args_is_help=True,
)
app.add_typer(health_commands.app, name="health")
app.add_typer(task_commands.app, name="task")
app.add_typer(config_commands.app, name="config")

MODE_HELP = "OCR mode (document_markdown, free_ocr, figure_parse, grounding_ocr, custom)"
RESOLUTION_HELP = "Resolution preset (Tiny, Small, Base, Large, Gundam)"


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    output: OutputFormat = typer.Option(OutputFormat.TEXT, "--output", help="Output format"),
    api_key: str | None = typer.Option(None, "--api-key", help="API key (overrides config)"),
    base_url: str | None = typer.Option(None, "--base-url", help="API base URL (overrides config)"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write detailed logs to this file"),
) -> None:
    setup_logging(verbose=verbose, log_file=log_file)
    ctx.obj = AppState(
        output_format=output,
        verbose=verbose,
        api_key=api_key or None,
        base_url=base_url or None,
    )


def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


@app.command()
def image(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Image file path or http(s) URL"),
    mode: str | None = typer.Option(None, "--mode", "-m", help=MODE_HELP),
    resolution: str | None = typer.Option(None, "--resolution", "-r", help=RESOLUTION_HELP),
    prompt: str | None = typer.Option(None, "--prompt", "-p", help="Custom prompt (required for custom mode)"),
    output_path: Path | None = typer.Option(None, "--output-path", "-o", help="Custom output path for result files"),
    extract: bool = typer.Option(True, "--extract/--no-extract", help="Extract the result ZIP"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Perform OCR on a single image."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"file": source}):
        with state.service(mode=mode, resolution=resolution) as service:
            params = service.build_params(mode=mode, resolution=resolution, custom_prompt=prompt)
            out.section("Image OCR")
            out.key_values(
                {
                    "Source": source,
                    "Mode": params.mode,
                    "Resolution": params.resolution,
                    "Prompt": params.custom_prompt if params.mode == OCRMode.CUSTOM.value else None,
                }
            )
            with out.progress("Processing", total=None, transfer=True) as bar:
                if _is_url(source):
                    result = service.process_image_url(source, params, output_path, extract)
                else:
                    result = service.process_image(Path(source), params, output_path, extract, on_download=bar)
            render_ocr_result(out, result)


@app.command()
def pdf(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="PDF file to process"),
    mode: str | None = typer.Option(None, "--mode", "-m", help=MODE_HELP),
    resolution: str | None = typer.Option(None, "--resolution", "-r", help=RESOLUTION_HELP),
    dpi: int | None = typer.Option(None, "--dpi", "-d", help="DPI for rendering (72-300)"),
    max_pages: int | None = typer.Option(None, "--max-pages", help="Maximum pages to process (1-50)"),
    prompt: str | None = typer.Option(None, "--prompt", "-p", help="Custom prompt (required for custom mode)"),
    force_sync: bool = typer.Option(False, "--sync", help="Force synchronous processing"),
    force_async: bool = typer.Option(False, "--async", help="Force asynchronous processing"),
    output_path: Path | None = typer.Option(None, "--output-path", "-o", help="Custom output path for result files"),
    extract: bool = typer.Option(True, "--extract/--no-extract", help="Extract the result ZIP"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Perform OCR on a PDF document, synchronously or as a server task."""
    if force_sync and force_async:
        raise typer.BadParameter("--sync and --async are mutually exclusive")
    strategy = PDFStrategy.SYNC if force_sync else PDFStrategy.ASYNC if force_async else PDFStrategy.AUTO
    state = get_state(ctx)
    out = state.sink(json_output)
    task_ids: list[str] = []
    with command_errors(out, {"file": str(file)}):
        with state.service(mode=mode, resolution=resolution, dpi=dpi, max_pages=max_pages) as service:
            params = service.build_params(
                mode=mode,
                resolution=resolution,
                custom_prompt=prompt,
                dpi=dpi,
                max_pages=max_pages,
                pdf=True,
            )
            chosen = service.choose_strategy(params, strategy)
            out.section("PDF OCR")
            out.key_values(
                {
                    "File": file.name,
                    "Mode": params.mode,
                    "Resolution": params.resolution,
                    "DPI": params.dpi,
                    "Max Pages": params.max_pages,
                    "Processing": "Asynchronous" if chosen is PDFStrategy.ASYNC else "Synchronous",
                }
            )
            with out.progress("Processing", total=1.0) as bar:

                def submitted(task_id: str) -> None:
                    task_ids.append(task_id)
                    out.info(f"Task created: {task_id}")
                    out.info("Press Ctrl+C to stop waiting (the task continues on the server)")

                def progressed(task: Task) -> None:
                    if bar is not None:
                        bar(task.progress, None)

                try:
                    result = service.process_pdf(
                        file,
                        params,
                        chosen,
                        output_path,
                        extract,
                        on_progress=progressed,
                        on_submitted=submitted,
                    )
                except KeyboardInterrupt:
                    if not task_ids:
                        raise
                    raise interrupted_wait(out, task_ids[0]) from None
            render_ocr_result(out, result)


@app.command()
def batch(
    ctx: typer.Context,
    directory: Path = typer.Argument(..., help="Directory containing images or PDFs"),
    mode: str | None = typer.Option(None, "--mode", "-m", help=MODE_HELP),
    resolution: str | None = typer.Option(None, "--resolution", "-r", help=RESOLUTION_HELP),
    prompt: str | None = typer.Option(None, "--prompt", "-p", help="Custom prompt (required for custom mode)"),
    pattern: str = typer.Option("*", "--pattern", help='File pattern, e.g. "*.png" or "*"'),
    workers: int | None = typer.Option(
        None, "--workers", "-w", min=MIN_WORKERS, max=MAX_WORKERS, help="Number of concurrent workers"
    ),
    output_dir: Path | None = typer.Option(
        None, "--output-dir", "-o", help="Output directory (default: <directory>/results)"
    ),
    extract: bool = typer.Option(True, "--extract/--no-extract", help="Extract result ZIP files"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
) -> None:
    """Process every matching file in a directory with bounded concurrency."""
    state = get_state(ctx)
    out = state.sink(json_output)
    with command_errors(out, {"directory": str(directory)}):
        if not directory.is_dir():
            raise ValidationError(f"Not a directory: {directory}")
        files = scan_directory(directory, pattern)
        if not files:
            raise ValidationError(f"No files found matching pattern: {pattern}")
        with state.service(mode=mode, resolution=resolution, workers=workers) as service:
            params = service.build_params(mode=mode, resolution=resolution, custom_prompt=prompt)
            target = output_dir or directory / "results"
            pool = workers or service.config.workers
            out.section("Batch OCR Processing")
            out.key_values(
                {
                    "Directory": directory,
                    "Pattern": pattern,
                    "Files": len(files),
                    "Mode": params.mode,
                    "Resolution": params.resolution,
                    "Workers": pool,
                    "Output Directory": target,
                }
            )
            with out.progress("Batch", total=len(files)) as bar:
                settled = 0
                lock = threading.Lock()

                def item_progress(index: int, path: Path, item_state: str) -> None:
                    nonlocal settled
                    if item_state == "processing":
                        return
                    with lock:
                        settled += 1
                        if bar is not None:
                            bar(settled, None)
                    if item_state == "failed":
                        out.warning(f"{path.name} failed")

                run = service.run_batch(files, params, target, pool, extract, on_progress=item_progress)
            render_batch(out, run)


def main() -> None:
    app()


__all__ = ["app", "main"]
