"""Human (rich) and machine (JSON) rendering for command results."""

from __future__ import annotations

import json
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Sequence

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .errors import OCRError


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


ProgressUpdate = Callable[[float, float | None], None]


def mask_api_key(key: str | None) -> str:
    if not key or len(key) < 16:
        return "***"
    return f"{key[:8]}...{key[-8:]}"


def _display(value: object) -> str:
    if value is None or value == "":
        return "-"
    return str(value)


class OutputSink:
    def __init__(
        self,
        fmt: OutputFormat = OutputFormat.TEXT,
        *,
        console: Console | None = None,
        err_console: Console | None = None,
    ) -> None:
        self.format = fmt
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    @property
    def is_json(self) -> bool:
        return self.format is OutputFormat.JSON

    def section(self, title: str) -> None:
        if not self.is_json:
            self.console.rule(f"[bold]{title}[/bold]", align="left")

    def info(self, message: str) -> None:
        if not self.is_json:
            self.console.print(message, highlight=False)

    def success(self, message: str) -> None:
        if not self.is_json:
            self.console.print(f"[green]✓[/green] {message}", highlight=False)

    def warning(self, message: str) -> None:
        if not self.is_json:
            self.err_console.print(f"[yellow]Warning[/yellow]: {message}", highlight=False)

    def key_values(self, rows: Mapping[str, object], title: str | None = None) -> None:
        if self.is_json:
            return
        table = Table(title=title, show_header=False, box=None, pad_edge=False)
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Value", overflow="fold")
        for key, value in rows.items():
            table.add_row(key, _display(value))
        self.console.print(table)

    def table(self, title: str | None, columns: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
        if self.is_json:
            return
        table = Table(title=title)
        for column in columns:
            table.add_column(column, overflow="fold")
        for row in rows:
            table.add_row(*(_display(cell) for cell in row))
        self.console.print(table)

    def emit(self, payload: Mapping[str, Any]) -> None:
        """Print one JSON document to stdout; ignored in text mode."""
        if self.is_json:
            self.console.print(
                json.dumps(payload, indent=2, default=str),
                markup=False,
                highlight=False,
                soft_wrap=True,
            )

    def error(self, exc: BaseException | str, extra: Mapping[str, Any] | None = None) -> None:
        message = str(exc)
        hints: tuple[str, ...] = exc.hints if isinstance(exc, OCRError) else ()
        code = exc.code if isinstance(exc, OCRError) else "ERROR"
        if self.is_json:
            payload: dict[str, Any] = {"success": False, "error": message, "code": code}
            if hints:
                payload["hints"] = list(hints)
            if extra:
                payload.update(extra)
            self.err_console.print(
                json.dumps(payload, indent=2, default=str),
                markup=False,
                highlight=False,
                soft_wrap=True,
            )
            return
        self.err_console.print(f"[red]Error[/red]: {escape(message)}", highlight=False)
        for hint in hints:
            self.err_console.print(f"  {hint}", highlight=False, markup=False)

    @contextmanager
    def progress(self, description: str, *, total: float | None = 100, transfer: bool = False) -> Iterator[ProgressUpdate | None]:
        """Yield a ``(completed, total)`` updater bound to a progress bar.

        JSON mode yields ``None`` so callers can pass it straight through as
        an optional callback.
        """
        if self.is_json:
            yield None
            return
        columns: list[Any] = [SpinnerColumn(), TextColumn("{task.description}"), BarColumn()]
        columns.append(DownloadColumn() if transfer else TaskProgressColumn())
        columns.append(TimeElapsedColumn())
        with Progress(*columns, console=self.err_console, transient=True) as bar:
            handle = bar.add_task(description, total=total)

            def update(completed: float, new_total: float | None = None) -> None:
                if new_total is not None:
                    bar.update(handle, completed=completed, total=new_total)
                else:
                    bar.update(handle, completed=completed)

            yield update


__all__ = ["OutputFormat", "OutputSink", "ProgressUpdate", "mask_api_key"]
