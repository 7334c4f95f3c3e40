"""Error taxonomy shared by every layer of the client."""

from __future__ import annotations

from typing import Sequence


class OCRError(RuntimeError):
    code = "ERROR"

    def __init__(self, message: str, *, code: str | None = None, hints: Sequence[str] = ()) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.hints: tuple[str, ...] = tuple(hints)


class ConfigurationError(OCRError):
    code = "CONFIG_MISSING"


class ValidationError(OCRError):
    code = "VALIDATION"

    @property
    def reason(self) -> str:
        return str(self)


class TransientNetworkError(OCRError):
    code = "NETWORK"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        attempts: int = 1,
        hints: Sequence[str] = (),
    ) -> None:
        super().__init__(message, hints=hints)
        self.status_code = status_code
        self.attempts = attempts


class APIError(OCRError):
    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        hints: Sequence[str] = (),
    ) -> None:
        super().__init__(message, code=code, hints=hints)
        self.status_code = status_code


class AuthenticationError(APIError):
    code = "AUTH"


class TaskFailed(OCRError):
    code = "TASK_FAILED"

    def __init__(self, task_id: str, detail: str, *, error_code: str | None = None) -> None:
        super().__init__(f"Task {task_id} failed: {detail}")
        self.task_id = task_id
        self.detail = detail
        self.error_code = error_code


class TaskTimeout(OCRError):
    code = "TASK_TIMEOUT"

    def __init__(self, task_id: str, waited_s: float) -> None:
        super().__init__(
            f"Task {task_id} did not finish within {waited_s:.0f}s",
            hints=(
                "The task may still be running on the server.",
                f"Check it later with: deepseek-ocr task status {task_id}",
                f"Or resume waiting with: deepseek-ocr task wait {task_id}",
            ),
        )
        self.task_id = task_id
        self.waited_s = waited_s


class TaskNotFound(APIError):
    code = "TASK_NOT_FOUND"

    def __init__(self, task_id: str) -> None:
        super().__init__(
            f"Task not found: {task_id}",
            status_code=404,
            hints=(
                "The task ID may be invalid.",
                "Tasks and their results expire on the server after a while.",
            ),
        )
        self.task_id = task_id


class TaskExpired(APIError):
    code = "TASK_EXPIRED"

    def __init__(self, task_id: str) -> None:
        super().__init__(
            f"Task has expired: {task_id}",
            status_code=410,
            hints=("Results are no longer available; submit the document again.",),
        )
        self.task_id = task_id


class ExtractionError(OCRError):
    code = "EXTRACTION"


__all__ = [
    "APIError",
    "AuthenticationError",
    "ConfigurationError",
    "ExtractionError",
    "OCRError",
    "TaskExpired",
    "TaskFailed",
    "TaskNotFound",
    "TaskTimeout",
    "TransientNetworkError",
    "ValidationError",
]
