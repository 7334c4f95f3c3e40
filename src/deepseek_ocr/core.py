from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Sequence
from urllib.parse import urlparse

from .batch import ItemProgress, run_batch as run_batch_waves, write_batch_summary
from .client import ByteProgress, OCRClient
from .config import EffectiveConfig, default_config_dir, validate_config
from .constants import SYNC_ASYNC_THRESHOLD_PAGES, FileKind
from .history import TaskHistory
from .models import BatchItemResult, BatchSummary, ProcessingParams, Task, TaskHistoryEntry, TaskStatus
from .polling import PollTiming, ProgressSink, poll_until_done
from .utils import (
    RESULT_SUFFIX,
    ZipContents,
    atomic_write_bytes,
    extract_zip,
    inspect_zip,
    read_zip_metadata,
    result_name,
    unique_result_names,
)
from .validation import classify_file, validate_image_file, validate_params, validate_pdf_file, validate_workers


log = logging.getLogger(__name__)


class PDFStrategy(str, Enum):
    AUTO = "auto"
    SYNC = "sync"
    ASYNC = "async"


@dataclass(slots=True)
class OCRResult:
    source: str
    zip_path: Path
    size_bytes: int
    extracted_dir: Path | None = None
    contents: ZipContents | None = None
    metadata: dict[str, Any] | None = None
    task_id: str | None = None
    strategy: str | None = None
    elapsed_s: float = 0.0
    params: dict[str, object] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": True,
            "source": self.source,
            "zip_path": str(self.zip_path),
            "size_bytes": self.size_bytes,
            "extracted_dir": str(self.extracted_dir) if self.extracted_dir else None,
            "contents": self.contents.as_dict() if self.contents else None,
            "metadata": self.metadata,
            "task_id": self.task_id,
            "processing": self.strategy,
            "processing_time_s": round(self.elapsed_s, 2),
            "params": self.params,
        }


@dataclass(slots=True)
class BatchRun:
    results: list[BatchItemResult]
    summary: BatchSummary
    output_dir: Path
    summary_path: Path


def _result_zip_for(source: Path, output: Path | None) -> Path:
    if output is None:
        return source.parent / result_name(source)
    return output.parent / result_name(output)


class OCRService:
    """Orchestrates validation, requests, polling, history and result files."""

    def __init__(
        self,
        config: EffectiveConfig,
        *,
        client: OCRClient | None = None,
        history: TaskHistory | None = None,
        timing: PollTiming | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._client = client
        self._history = history
        self._timing = timing or PollTiming.from_config(config)
        self._sleep = sleep
        self._clock = clock

    @property
    def config(self) -> EffectiveConfig:
        return self._config

    @property
    def client(self) -> OCRClient:
        if self._client is None:
            validate_config(self._config)
            self._client = OCRClient.from_config(self._config)
        return self._client

    @property
    def history(self) -> TaskHistory:
        if self._history is None:
            self._history = TaskHistory.in_dir(default_config_dir())
        return self._history

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> OCRService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def build_params(
        self,
        *,
        mode: str | None = None,
        resolution: str | None = None,
        custom_prompt: str | None = None,
        dpi: int | None = None,
        max_pages: int | None = None,
        pdf: bool = False,
    ) -> ProcessingParams:
        """Fill unset options from the effective config and validate them."""
        params = ProcessingParams(
            mode=mode or self._config.mode,
            resolution=resolution or self._config.resolution,
            custom_prompt=custom_prompt,
            dpi=(dpi or self._config.dpi) if pdf else None,
            max_pages=(max_pages or self._config.max_pages) if pdf else None,
        )
        return validate_params(params)

    def choose_strategy(self, params: ProcessingParams, strategy: PDFStrategy = PDFStrategy.AUTO) -> PDFStrategy:
        if strategy is not PDFStrategy.AUTO:
            return strategy
        max_pages = params.max_pages or self._config.max_pages
        return PDFStrategy.ASYNC if max_pages > SYNC_ASYNC_THRESHOLD_PAGES else PDFStrategy.SYNC

    def save_result(
        self,
        data: bytes,
        zip_path: Path,
        *,
        source: str,
        extract: bool = True,
        extract_dir: Path | None = None,
    ) -> OCRResult:
        atomic_write_bytes(zip_path, data)
        log.info("Saved %s (%d bytes)", zip_path, len(data))
        extracted = None
        if extract:
            extracted = extract_zip(zip_path, extract_dir or zip_path.with_suffix(""))
        return OCRResult(
            source=source,
            zip_path=zip_path,
            size_bytes=len(data),
            extracted_dir=extracted,
            contents=inspect_zip(zip_path),
            metadata=read_zip_metadata(zip_path),
        )

    def process_image(
        self,
        path: Path,
        params: ProcessingParams,
        output: Path | None = None,
        extract: bool = True,
        on_download: ByteProgress | None = None,
    ) -> OCRResult:
        validate_image_file(path)
        started = self._clock()
        data = self.client.ocr_image(path, params, on_progress=on_download)
        result = self.save_result(data, _result_zip_for(path, output), source=str(path), extract=extract)
        result.elapsed_s = self._clock() - started
        result.params = params.as_dict()
        return result

    def process_image_url(
        self,
        url: str,
        params: ProcessingParams,
        output: Path | None = None,
        extract: bool = True,
    ) -> OCRResult:
        stem = Path(urlparse(url).path).stem or "image"
        started = self._clock()
        data = self.client.ocr_image_url(url, params)
        zip_path = _result_zip_for(Path.cwd() / stem, output)
        result = self.save_result(data, zip_path, source=url, extract=extract)
        result.elapsed_s = self._clock() - started
        result.params = params.as_dict()
        return result

    def process_pdf(
        self,
        path: Path,
        params: ProcessingParams,
        strategy: PDFStrategy = PDFStrategy.AUTO,
        output: Path | None = None,
        extract: bool = True,
        on_progress: ProgressSink | None = None,
        on_submitted: Callable[[str], None] | None = None,
        on_download: ByteProgress | None = None,
    ) -> OCRResult:
        validate_pdf_file(path)
        chosen = self.choose_strategy(params, strategy)
        log.debug("Processing %s with %s strategy", path, chosen.value)
        started = self._clock()
        zip_path = _result_zip_for(path, output)
        task_id = None
        if chosen is PDFStrategy.ASYNC:
            task_id = self.submit_async(path, params)
            if on_submitted is not None:
                on_submitted(task_id)
            self.wait_for_task(task_id, on_progress)
            data = self.client.download_task_result(task_id, on_progress=on_download)
        else:
            data = self.client.ocr_pdf_sync(path, params, on_progress=on_download)
        result = self.save_result(data, zip_path, source=str(path), extract=extract)
        if task_id is not None:
            self._record_result(task_id, result.zip_path)
        result.task_id = task_id
        result.strategy = chosen.value
        result.elapsed_s = self._clock() - started
        result.params = params.as_dict()
        return result

    def submit_async(self, file: Path, params: ProcessingParams) -> str:
        validate_pdf_file(file)
        task_id = self.client.ocr_pdf_async(file, params)
        self.history.record(task_id, str(file.resolve()))
        return task_id

    def task_status(self, task_id: str) -> Task:
        task = self.client.get_task_status(task_id)
        self.history.update_status(task_id, task.status, error=task.error.message if task.error else None)
        return task

    def wait_for_task(self, task_id: str, on_progress: ProgressSink | None = None) -> Task:
        return poll_until_done(
            task_id,
            self.client.get_task_status,
            self._timing,
            on_progress,
            history=self.history,
            sleep=self._sleep,
            clock=self._clock,
        )

    def download_result(
        self,
        task_id: str,
        output: Path | None = None,
        extract: bool = True,
        on_download: ByteProgress | None = None,
    ) -> OCRResult:
        zip_path = output if output is not None else Path.cwd() / f"{task_id}{RESULT_SUFFIX}.zip"
        started = self._clock()
        data = self.client.download_task_result(task_id, on_progress=on_download)
        result = self.save_result(data, zip_path, source=task_id, extract=extract)
        self._record_result(task_id, zip_path)
        result.task_id = task_id
        result.elapsed_s = self._clock() - started
        return result

    def list_tasks(self) -> list[TaskHistoryEntry]:
        return self.history.list()

    def _record_result(self, task_id: str, zip_path: Path) -> None:
        self.history.update_status(task_id, TaskStatus.COMPLETED, result_path=str(zip_path))

    def run_batch(
        self,
        files: Sequence[Path],
        params: ProcessingParams,
        output_dir: Path,
        workers: int | None = None,
        extract: bool = True,
        on_progress: ItemProgress | None = None,
    ) -> BatchRun:
        """OCR every file into ``output_dir``; PDFs use the synchronous endpoint."""
        workers = validate_workers(workers or self._config.workers)
        pdf_params = ProcessingParams(
            mode=params.mode,
            resolution=params.resolution,
            custom_prompt=params.custom_prompt,
            dpi=params.dpi or self._config.dpi,
            max_pages=params.max_pages or self._config.max_pages,
        )
        client = self.client
        names = unique_result_names(files)
        started = self._clock()

        def process_one(path: Path, kind: FileKind) -> Path:
            if kind is FileKind.PDF:
                data = client.ocr_pdf_sync(path, pdf_params)
            else:
                data = client.ocr_image(path, params)
            zip_path = output_dir / names[path]
            atomic_write_bytes(zip_path, data)
            if extract:
                extract_zip(zip_path, zip_path.with_suffix(""))
            return zip_path

        extra = {"output_dir": str(output_dir), "mode": params.mode, "resolution": params.resolution}

        def flush(results: list[BatchItemResult]) -> None:
            write_batch_summary(output_dir, results, elapsed_s=self._clock() - started, extra=extra)

        results = run_batch_waves(
            files,
            classify_file,
            process_one,
            workers,
            output_dir,
            on_progress,
            on_chunk=flush,
        )
        elapsed = self._clock() - started
        summary_path = write_batch_summary(output_dir, results, elapsed_s=elapsed, extra=extra)
        return BatchRun(
            results=results,
            summary=BatchSummary.from_results(results, elapsed),
            output_dir=output_dir,
            summary_path=summary_path,
        )


__all__ = ["BatchRun", "OCRResult", "OCRService", "PDFStrategy"]
