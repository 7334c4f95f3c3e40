"""Domain models for OCR tasks, task history and batch runs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from .constants import DEFAULT_MODE, DEFAULT_RESOLUTION, FileKind, OCRMode


ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


def parse_iso(value: str | None) -> datetime | None:
    """Parse timestamps written by this client or by the server."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    TaskStatus.PENDING: 0,
    TaskStatus.PROCESSING: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.FAILED: 2,
}


@dataclass(frozen=True, slots=True)
class TaskError:
    message: str
    code: str | None = None


UNKNOWN_TASK_ERROR = TaskError(message="Unknown error")


@dataclass(frozen=True, slots=True)
class ProcessingParams:
    """Options sent with a single OCR request."""

    mode: str = DEFAULT_MODE
    resolution: str = DEFAULT_RESOLUTION
    custom_prompt: str | None = None
    dpi: int | None = None
    max_pages: int | None = None

    def form_fields(self, kind: FileKind) -> dict[str, str]:
        fields = {"mode": self.mode, "resolution_preset": self.resolution}
        if self.mode == OCRMode.CUSTOM.value and self.custom_prompt:
            fields["custom_prompt"] = self.custom_prompt
        if kind is FileKind.PDF:
            if self.dpi is not None:
                fields["dpi"] = str(self.dpi)
            if self.max_pages is not None:
                fields["max_pages"] = str(self.max_pages)
        return fields

    def as_dict(self) -> dict[str, object]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True, slots=True)
class Task:
    task_id: str
    status: TaskStatus
    progress: float = 0.0
    submitted_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    error: TaskError | None = None
    input_file: str | None = None
    params: ProcessingParams | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "progress", min(max(float(self.progress), 0.0), 1.0))
        if self.status is TaskStatus.FAILED and self.error is None:
            object.__setattr__(self, "error", UNKNOWN_TASK_ERROR)
        elif self.status is not TaskStatus.FAILED and self.error is not None:
            object.__setattr__(self, "error", None)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def downloadable(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    def advance(self, snapshot: Task) -> Task:
        """Fold a newer server snapshot into this one without regressing."""
        if self.is_terminal:
            return self
        status = snapshot.status if snapshot.status.rank >= self.status.rank else self.status
        progress = snapshot.progress
        if not status.is_terminal:
            progress = max(self.progress, snapshot.progress)
        return replace(
            snapshot,
            status=status,
            progress=progress,
            error=snapshot.error if status is TaskStatus.FAILED else None,
            submitted_at=snapshot.submitted_at or self.submitted_at,
            started_at=snapshot.started_at or self.started_at,
            input_file=snapshot.input_file or self.input_file,
            params=snapshot.params or self.params,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "progress": self.progress,
            "timestamps": {
                "submitted": self.submitted_at,
                "started": self.started_at,
                "completed": self.completed_at,
            },
            "error": asdict(self.error) if self.error else None,
            "input_file": self.input_file,
            "params": self.params.as_dict() if self.params else None,
        }


@dataclass(slots=True)
class TaskHistoryEntry:
    task_id: str
    input_file: str | None
    submitted_at: str
    last_checked: str
    status: str = TaskStatus.PENDING.value
    error: str | None = None
    result_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        return {key: value for key, value in payload.items() if value is not None or key == "input_file"}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskHistoryEntry:
        submitted = str(data.get("submitted_at") or "")
        return cls(
            task_id=str(data["task_id"]),
            input_file=str(data["input_file"]) if data.get("input_file") else None,
            submitted_at=submitted,
            last_checked=str(data.get("last_checked") or submitted),
            status=str(data.get("status") or TaskStatus.PENDING.value),
            error=str(data["error"]) if data.get("error") else None,
            result_path=str(data["result_path"]) if data.get("result_path") else None,
        )


class BatchOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class BatchItemResult:
    file: Path
    status: BatchOutcome
    output_path: Path | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.status is BatchOutcome.SUCCESS and (self.output_path is None or self.error is not None):
            raise ValueError("a successful batch item needs an output path and no error")
        if self.status is BatchOutcome.FAILURE and (self.error is None or self.output_path is not None):
            raise ValueError("a failed batch item needs an error and no output path")

    @classmethod
    def success(cls, file: Path, output_path: Path) -> BatchItemResult:
        return cls(file=file, status=BatchOutcome.SUCCESS, output_path=output_path)

    @classmethod
    def failure(cls, file: Path, error: str) -> BatchItemResult:
        return cls(file=file, status=BatchOutcome.FAILURE, error=error or "Unknown error")

    @property
    def ok(self) -> bool:
        return self.status is BatchOutcome.SUCCESS

    def to_dict(self) -> dict[str, str]:
        payload = {"file": str(self.file), "status": self.status.value}
        if self.output_path is not None:
            payload["output"] = str(self.output_path)
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class BatchSummary:
    total: int = 0
    successes: int = 0
    failures: int = 0
    elapsed_s: float = 0.0

    @classmethod
    def from_results(cls, results: list[BatchItemResult], elapsed_s: float = 0.0) -> BatchSummary:
        successes = sum(1 for item in results if item.ok)
        return cls(
            total=len(results),
            successes=successes,
            failures=len(results) - successes,
            elapsed_s=elapsed_s,
        )

    @property
    def success_rate(self) -> float:
        if not self.total:
            return 0.0
        return self.successes / self.total * 100

    def to_dict(self) -> dict[str, float | int]:
        return {
            "total": self.total,
            "successful": self.successes,
            "failed": self.failures,
            "elapsed_s": round(self.elapsed_s, 2),
        }


__all__ = [
    "BatchItemResult",
    "BatchOutcome",
    "BatchSummary",
    "ISO_FORMAT",
    "ProcessingParams",
    "Task",
    "TaskError",
    "TaskHistoryEntry",
    "TaskStatus",
    "UNKNOWN_TASK_ERROR",
    "parse_iso",
    "to_iso",
    "utc_now",
]
