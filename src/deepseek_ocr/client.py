"""HTTP client for the DeepSeek-OCR server API."""

from __future__ import annotations

import json
import logging
import mimetypes
import time
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, TypeVar

import httpx
from pydantic import BaseModel

from .constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_S,
    RETRY_BASE_DELAY_S,
    RETRY_MAX_DELAY_S,
    SYNC_PDF_TIMEOUT_S,
    UPLOAD_TIMEOUT_S,
    FileKind,
)
from .errors import (
    APIError,
    AuthenticationError,
    TaskExpired,
    TaskNotFound,
    TransientNetworkError,
)
from .models import ProcessingParams, Task
from .schemas import AsyncSubmitResponse, HealthStatus, ModelInfo, TaskStatusResponse


log = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
PDF_CONTENT_TYPE = "application/pdf"

ByteProgress = Callable[[int, int | None], None]
SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff for transport failures and 5xx answers.

    Requests that are not idempotent (the OCR uploads and the task
    submission) are only retried when the connection was never made; a
    read timeout on a POST may mean the server is already working on it.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY_S
    max_delay: float = RETRY_MAX_DELAY_S
    exponential_base: float = 2.0
    retryable_exceptions: tuple[type[Exception], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )
    unsent_exceptions: tuple[type[Exception], ...] = (
        httpx.ConnectError,
        httpx.ConnectTimeout,
    )
    idempotent_methods: frozenset[str] = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * self.exponential_base ** (attempt - 1), self.max_delay)

    def should_retry(self, method: str, exc: Exception) -> bool:
        if method.upper() in self.idempotent_methods:
            return isinstance(exc, self.retryable_exceptions)
        return isinstance(exc, self.unsent_exceptions)


class OCRClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = DEFAULT_TIMEOUT_S,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry: RetryPolicy | None = None,
        http: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry = retry or RetryPolicy(max_retries=max_retries)
        self._owns_http = http is None
        self._http = http or httpx.Client(timeout=timeout)
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> OCRClient:
        return cls(config.base_url, config.api_key, config.timeout, **kwargs)

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> OCRClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def health_check(self) -> HealthStatus:
        body = self._request("GET", "/health", timeout=self.timeout)
        return _parse(HealthStatus, body, "health status")

    def get_model_info(self) -> ModelInfo:
        body = self._request("GET", "/api/v1/info", timeout=self.timeout)
        return _parse(ModelInfo, body, "model information")

    def ocr_image(self, path: Path, params: ProcessingParams, on_progress: ByteProgress | None = None) -> bytes:
        return self._request(
            "POST",
            "/api/v1/ocr/image",
            data=params.form_fields(FileKind.IMAGE),
            upload=path,
            timeout=UPLOAD_TIMEOUT_S,
            on_progress=on_progress,
        )

    def ocr_image_url(self, url: str, params: ProcessingParams, on_progress: ByteProgress | None = None) -> bytes:
        data = {"image_url": url, **params.form_fields(FileKind.IMAGE)}
        return self._request(
            "POST",
            "/api/v1/ocr/image",
            data=data,
            timeout=UPLOAD_TIMEOUT_S,
            on_progress=on_progress,
        )

    def ocr_pdf_sync(self, path: Path, params: ProcessingParams, on_progress: ByteProgress | None = None) -> bytes:
        return self._request(
            "POST",
            "/api/v1/ocr/pdf",
            data=params.form_fields(FileKind.PDF),
            upload=path,
            content_type=PDF_CONTENT_TYPE,
            timeout=SYNC_PDF_TIMEOUT_S,
            on_progress=on_progress,
        )

    def ocr_pdf_async(self, path: Path, params: ProcessingParams) -> str:
        body = self._request(
            "POST",
            "/api/v1/ocr/pdf/async",
            data=params.form_fields(FileKind.PDF),
            upload=path,
            content_type=PDF_CONTENT_TYPE,
            timeout=UPLOAD_TIMEOUT_S,
        )
        try:
            submitted = AsyncSubmitResponse.model_validate_json(body)
        except ValueError as exc:
            raise APIError("Server returned an unreadable task submission", code="INVALID_RESPONSE") from exc
        if not submitted.task_id:
            raise APIError("Server did not return a task ID", code="INVALID_RESPONSE")
        log.info("Submitted %s as task %s", path.name, submitted.task_id)
        return submitted.task_id

    def get_task_status(self, task_id: str) -> Task:
        body = self._request("GET", f"/api/v1/ocr/task/{task_id}", timeout=self.timeout, task_id=task_id)
        try:
            return TaskStatusResponse.model_validate_json(body).to_task()
        except ValueError as exc:
            raise APIError(f"Unreadable status for task {task_id}", code="INVALID_RESPONSE") from exc

    def download_task_result(self, task_id: str, on_progress: ByteProgress | None = None) -> bytes:
        return self._request(
            "GET",
            f"/api/v1/ocr/task/{task_id}/download",
            timeout=UPLOAD_TIMEOUT_S,
            task_id=task_id,
            on_progress=on_progress,
        )

    def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        data: Mapping[str, str] | None = None,
        upload: Path | None = None,
        content_type: str | None = None,
        task_id: str | None = None,
        on_progress: ByteProgress | None = None,
    ) -> bytes:
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            attempt += 1
            try:
                with ExitStack() as stack:
                    files = None
                    if upload is not None:
                        handle = stack.enter_context(upload.open("rb"))
                        mime = content_type or mimetypes.guess_type(upload.name)[0] or "application/octet-stream"
                        files = {"file": (upload.name, handle, mime)}
                    request = self._http.build_request(
                        method,
                        url,
                        data=data,
                        files=files,
                        headers={API_KEY_HEADER: self.api_key},
                        timeout=timeout,
                    )
                    log.debug("%s %s (attempt %d)", method, url, attempt)
                    response = self._http.send(request, stream=True)
                    try:
                        if response.status_code >= 500 and attempt <= self.retry.max_retries:
                            self._back_off(attempt, f"server answered {response.status_code}")
                            continue
                        body = self._read_body(response, on_progress)
                    finally:
                        response.close()
            except self.retry.retryable_exceptions as exc:
                retryable = self.retry.should_retry(method, exc)
                if retryable and attempt <= self.retry.max_retries:
                    self._back_off(attempt, f"{type(exc).__name__}: {exc}")
                    continue
                if not retryable:
                    raise TransientNetworkError(
                        f"{method} {path} failed after the request was sent: {type(exc).__name__}: {exc}",
                        attempts=attempt,
                        hints=(
                            "The server may still be processing this request; it was not resent.",
                            "Check 'deepseek-ocr task list' before submitting the file again.",
                        ),
                    ) from exc
                raise TransientNetworkError(
                    f"Cannot reach {self.base_url}: {exc}",
                    attempts=attempt,
                    hints=("Check that the server is running and the base URL is correct.",),
                ) from exc
            if response.status_code >= 400:
                self._raise_for_status(response.status_code, body, attempt, task_id)
            return body

    def _back_off(self, attempt: int, reason: str) -> None:
        delay = self.retry.delay(attempt)
        log.warning("Retrying in %.1fs (%d/%d): %s", delay, attempt, self.retry.max_retries, reason)
        self._sleep(delay)

    def _read_body(self, response: httpx.Response, on_progress: ByteProgress | None) -> bytes:
        if on_progress is None or response.status_code >= 400:
            return response.read()
        header = response.headers.get("content-length")
        total = int(header) if header and header.isdigit() else None
        chunks: list[bytes] = []
        received = 0
        for chunk in response.iter_bytes():
            chunks.append(chunk)
            received += len(chunk)
            on_progress(received, total)
        return b"".join(chunks)

    def _raise_for_status(self, status: int, body: bytes, attempts: int, task_id: str | None) -> None:
        detail = _error_detail(body) or httpx.codes.get_reason_phrase(status) or "no detail"
        if status in {401, 403}:
            raise AuthenticationError(
                f"Authentication failed ({status}): {detail}",
                status_code=status,
                hints=("Check your API key with: deepseek-ocr config get api.key",),
            )
        if status == 404 and task_id is not None:
            raise TaskNotFound(task_id)
        if status == 410 and task_id is not None:
            raise TaskExpired(task_id)
        if status == 413:
            raise APIError(
                f"Payload too large: {detail}",
                status_code=status,
                code="PAYLOAD_TOO_LARGE",
                hints=("Reduce the file size or the number of pages.",),
            )
        if status >= 500:
            raise TransientNetworkError(f"Server error {status}: {detail}", status_code=status, attempts=attempts)
        raise APIError(f"Request failed ({status}): {detail}", status_code=status)


def _parse(model: type[SchemaT], body: bytes, what: str) -> SchemaT:
    try:
        return model.model_validate_json(body)
    except ValueError as exc:
        raise APIError(f"Server returned unreadable {what}", code="INVALID_RESPONSE") from exc


def _error_detail(body: bytes) -> str:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return body[:200].decode("utf-8", errors="replace").strip()
    if isinstance(payload, dict):
        for key in ("detail", "error", "message"):
            value = payload.get(key)
            if isinstance(value, dict):
                value = value.get("message")
            if value:
                return str(value)
    return str(payload)[:200]


__all__ = ["API_KEY_HEADER", "OCRClient", "RetryPolicy"]
