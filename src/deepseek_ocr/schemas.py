from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from .models import Task, TaskError, TaskStatus


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


class HealthStatus(_Lenient):
    status: str = "unknown"
    version: str | None = None
    model_loaded: bool | None = None
    gpu_available: bool | None = None


class ModelInfo(_Lenient):
    model_name: str | None = None
    version: str | None = None
    supported_modes: list[str] = []
    supported_resolutions: list[str] = []


class TaskTimestamps(_Lenient):
    submitted: str | None = None
    started: str | None = None
    completed: str | None = None


class TaskErrorPayload(_Lenient):
    message: str = "Unknown error"
    code: str | None = None


class TaskStatusResponse(_Lenient):
    task_id: str
    status: TaskStatus
    progress: float = 0.0
    timestamps: TaskTimestamps = TaskTimestamps()
    error: TaskErrorPayload | None = None

    @field_validator("progress", mode="before")
    @classmethod
    def _progress_or_zero(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    @field_validator("timestamps", mode="before")
    @classmethod
    def _timestamps_or_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("error", mode="before")
    @classmethod
    def _error_from_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"message": value or "Unknown error"}
        return value

    def to_task(self) -> Task:
        error = None
        if self.error is not None:
            error = TaskError(message=self.error.message, code=self.error.code)
        return Task(
            task_id=self.task_id,
            status=self.status,
            progress=self.progress,
            submitted_at=self.timestamps.submitted,
            started_at=self.timestamps.started,
            completed_at=self.timestamps.completed,
            error=error,
        )


class AsyncSubmitResponse(_Lenient):
    task_id: str | None = None
    status: str | None = None
    message: str | None = None


__all__ = [
    "AsyncSubmitResponse",
    "HealthStatus",
    "ModelInfo",
    "TaskErrorPayload",
    "TaskStatusResponse",
    "TaskTimestamps",
]
