from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Mapping

import typer
from rich.console import Console
from rich.logging import RichHandler

from ..client import OCRClient
from ..config import (
    ConfigOverrides,
    ConfigStore,
    EffectiveConfig,
    default_config_dir,
    resolve_config,
    validate_config,
)
from ..constants import EXIT_ERROR, EXIT_INTERRUPTED
from ..core import OCRService
from ..errors import OCRError
from ..history import TaskHistory
from ..output import OutputFormat, OutputSink


log = logging.getLogger(__name__)

DETAILED_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(threadName)s | %(filename)s:%(lineno)d | %(message)s"
LOG_FILE_MAX_BYTES = 20 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def setup_logging(*, verbose: bool, log_file: Path | None) -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    level = logging.DEBUG if verbose else logging.WARNING
    root_logger.setLevel(logging.DEBUG if log_file is not None else level)

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(DETAILED_LOG_FORMAT, "%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(file_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_client(config: EffectiveConfig) -> OCRClient:
    return OCRClient.from_config(config)


@dataclass(slots=True)
class AppState:
    output_format: OutputFormat = OutputFormat.TEXT
    verbose: bool = False
    api_key: str | None = None
    base_url: str | None = None

    def sink(self, json_flag: bool = False) -> OutputSink:
        fmt = OutputFormat.JSON if json_flag else self.output_format
        return OutputSink(fmt)

    def store(self) -> ConfigStore:
        return ConfigStore()

    def resolve(self, **overrides: Any) -> EffectiveConfig:
        return resolve_config(
            ConfigOverrides(api_key=self.api_key, base_url=self.base_url, **overrides),
            store=self.store(),
        )

    def service(self, **overrides: Any) -> OCRService:
        config = validate_config(self.resolve(**overrides))
        return OCRService(
            config,
            client=create_client(config),
            history=TaskHistory.in_dir(default_config_dir()),
        )


def get_state(ctx: typer.Context) -> AppState:
    root = ctx.find_root()
    if not isinstance(root.obj, AppState):
        root.obj = AppState()
    return root.obj


@contextmanager
def command_errors(out: OutputSink, extra: Mapping[str, Any] | None = None) -> Iterator[None]:
    """Render domain failures and turn them into exit status 1."""
    try:
        yield
    except OCRError as exc:
        log.debug("Command failed with %s", exc.code, exc_info=True)
        out.error(exc, extra)
        raise typer.Exit(EXIT_ERROR) from exc
    except OSError as exc:
        log.debug("Command failed on I/O", exc_info=True)
        out.error(exc, extra)
        raise typer.Exit(EXIT_ERROR) from exc


def interrupted_wait(out: OutputSink, task_id: str) -> typer.Exit:
    """Tell the user the server task survives a local Ctrl+C."""
    if out.is_json:
        out.error(
            "Interrupted while waiting",
            {"task_id": task_id, "code": "INTERRUPTED", "status": "still running on server"},
        )
    else:
        out.warning("Stopped waiting. The task keeps running on the server.")
        out.info(f"Check it with: deepseek-ocr task status {task_id}")
        out.info(f"Resume waiting with: deepseek-ocr task wait {task_id}")
    return typer.Exit(EXIT_INTERRUPTED)


__all__ = [
    "AppState",
    "command_errors",
    "create_client",
    "get_state",
    "interrupted_wait",
    "setup_logging",
]
