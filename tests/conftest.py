from __future__ import annotations

import io
import json
import os
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from fastapi.testclient import TestClient

from deepseek_ocr.client import API_KEY_HEADER, OCRClient


API_KEY = "sk-test-0123456789abcdef"
BASE_URL = "http://testserver"


def make_result_zip(extra: dict[str, bytes] | None = None) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        bundle.writestr("result.mmd", "# Title\n\nRecognised text\n")
        bundle.writestr("result_ori.mmd", "Title\nRecognised text\n")
        bundle.writestr("metadata.json", json.dumps({"pages": 1, "mode": "document_markdown"}))
        bundle.writestr("result_layouts.pdf", b"%PDF-1.4\n")
        bundle.writestr("images/0.jpg", b"\xff\xd8\xff")
        for name, data in (extra or {}).items():
            bundle.writestr(name, data)
    return buffer.getvalue()


@dataclass
class FakeServerState:
    """Scripted behaviour and request log of the fake OCR server."""

    api_key: str = API_KEY
    requests: list[dict[str, Any]] = field(default_factory=list)
    server_errors: int = 0
    next_task_id: str = "task-123"
    task_statuses: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    expired: set[str] = field(default_factory=set)
    submit_payload: dict[str, Any] | None = None

    def script_task(self, task_id: str, *steps: tuple[str, float]) -> None:
        self.task_statuses[task_id] = [
            {
                "task_id": task_id,
                "status": status,
                "progress": progress,
                "timestamps": {"submitted": "2026-10-18T10:00:00Z"},
                "error": {"message": "GPU out of memory", "code": "OOM"} if status == "failed" else None,
            }
            for status, progress in steps
        ]


def create_fake_app(state: FakeServerState) -> FastAPI:
    app = FastAPI(title="Fake DeepSeek-OCR")

    def denied(request: Request) -> JSONResponse | None:
        if request.headers.get(API_KEY_HEADER) != state.api_key:
            return JSONResponse({"detail": "Invalid API key"}, status_code=401)
        return None

    async def log_form(request: Request) -> dict[str, Any]:
        form = await request.form()
        upload = form.get("file")
        record = {
            "path": request.url.path,
            "fields": {key: value for key, value in form.items() if isinstance(value, str)},
            "filename": getattr(upload, "filename", None),
        }
        state.requests.append(record)
        return record

    def busy() -> JSONResponse | None:
        if state.server_errors > 0:
            state.server_errors -= 1
            return JSONResponse({"detail": "Server busy"}, status_code=503)
        return None

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "version": "1.0.0", "model_loaded": True, "gpu_available": True}

    @app.get("/api/v1/info")
    async def info(request: Request) -> Any:
        return denied(request) or {
            "model_name": "deepseek-ai/DeepSeek-OCR",
            "version": "1.0.0",
            "supported_modes": ["document_markdown", "free_ocr"],
            "supported_resolutions": ["Base", "Gundam"],
        }

    @app.post("/api/v1/ocr/image")
    async def ocr_image(request: Request) -> Response:
        rejected = denied(request)
        if rejected is not None:
            return rejected
        record = await log_form(request)
        unavailable = busy()
        if unavailable is not None:
            return unavailable
        if (record["filename"] or "").startswith("broken"):
            return JSONResponse({"detail": "Cannot decode image"}, status_code=422)
        return Response(make_result_zip(), media_type="application/zip")

    @app.post("/api/v1/ocr/pdf")
    async def ocr_pdf(request: Request) -> Response:
        rejected = denied(request)
        if rejected is not None:
            return rejected
        await log_form(request)
        return busy() or Response(make_result_zip(), media_type="application/zip")

    @app.post("/api/v1/ocr/pdf/async")
    async def ocr_pdf_async(request: Request) -> Any:
        rejected = denied(request)
        if rejected is not None:
            return rejected
        await log_form(request)
        if state.submit_payload is not None:
            return state.submit_payload
        return {"task_id": state.next_task_id, "status": "pending", "message": "Task submitted"}

    @app.get("/api/v1/ocr/task/{task_id}")
    async def task_status(task_id: str, request: Request) -> Any:
        rejected = denied(request)
        if rejected is not None:
            return rejected
        steps = state.task_statuses.get(task_id)
        if not steps:
            return JSONResponse({"detail": "Task not found"}, status_code=404)
        return steps.pop(0) if len(steps) > 1 else steps[0]

    @app.get("/api/v1/ocr/task/{task_id}/download")
    async def task_download(task_id: str, request: Request) -> Response:
        rejected = denied(request)
        if rejected is not None:
            return rejected
        if task_id in state.expired:
            return JSONResponse({"detail": "Result expired"}, status_code=410)
        if task_id not in state.task_statuses:
            return JSONResponse({"detail": "Task not found"}, status_code=404)
        return Response(make_result_zip(), media_type="application/zip")

    return app


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for name in list(os.environ):
        if name.startswith("DEEPSEEK_OCR_"):
            monkeypatch.delenv(name)
    config_dir = tmp_path / "config-home"
    monkeypatch.setenv("DEEPSEEK_OCR_CONFIG_DIR", str(config_dir))
    return config_dir


@pytest.fixture
def server() -> FakeServerState:
    return FakeServerState()


@pytest.fixture
def http(server: FakeServerState) -> TestClient:
    return TestClient(create_fake_app(server))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def client(http: TestClient, sleeps: list[float]) -> OCRClient:
    return OCRClient(BASE_URL, API_KEY, http=http, sleep=sleeps.append)
