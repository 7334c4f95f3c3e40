from __future__ import annotations

import json
from pathlib import Path

import pytest

from deepseek_ocr.config import EffectiveConfig
from deepseek_ocr.core import OCRService, PDFStrategy
from deepseek_ocr.errors import TaskFailed, ValidationError
from deepseek_ocr.history import TaskHistory
from deepseek_ocr.models import ProcessingParams

from conftest import API_KEY


def build_service(client, tmp_path: Path, **config) -> OCRService:
    effective = EffectiveConfig(api_key=API_KEY, **config)
    history = TaskHistory(tmp_path / "state" / "history.json")
    return OCRService(effective, client=client, history=history, sleep=lambda _: None)


def write_file(tmp_path: Path, name: str, data: bytes = b"data") -> Path:
    path = tmp_path / name
    path.write_bytes(data)
    return path


def test_process_image_saves_and_extracts_next_to_input(client, tmp_path):
    service = build_service(client, tmp_path)
    image = write_file(tmp_path, "scan.png")
    result = service.process_image(image, service.build_params())
    assert result.zip_path == tmp_path / "scan_result.zip"
    assert result.extracted_dir == tmp_path / "scan_result"
    assert (tmp_path / "scan_result" / "result.mmd").exists()
    assert result.contents.markdown == "result.mmd"
    assert result.metadata == {"pages": 1, "mode": "document_markdown"}
    assert result.params == {"mode": "document_markdown", "resolution": "Gundam"}


def test_process_image_honours_output_path_and_no_extract(client, tmp_path):
    service = build_service(client, tmp_path)
    image = write_file(tmp_path, "scan.png")
    result = service.process_image(image, service.build_params(), tmp_path / "out" / "invoice.zip", extract=False)
    assert result.zip_path == tmp_path / "out" / "invoice_result.zip"
    assert result.zip_path.exists()
    assert result.extracted_dir is None
    assert not (tmp_path / "out" / "invoice_result").exists()


def test_process_image_validates_before_sending(client, server, tmp_path):
    service = build_service(client, tmp_path)
    with pytest.raises(ValidationError):
        service.process_image(write_file(tmp_path, "scan.gif"), service.build_params())
    assert server.requests == []


def test_build_params_fills_defaults_from_config(client, tmp_path):
    service = build_service(client, tmp_path, mode="free_ocr", dpi=200, max_pages=12)
    params = service.build_params(resolution="Base", pdf=True)
    assert params == ProcessingParams(mode="free_ocr", resolution="Base", dpi=200, max_pages=12)
    assert service.build_params().dpi is None


@pytest.mark.parametrize(
    ("max_pages", "requested", "expected"),
    [
        (10, PDFStrategy.AUTO, PDFStrategy.SYNC),
        (11, PDFStrategy.AUTO, PDFStrategy.ASYNC),
        (50, PDFStrategy.SYNC, PDFStrategy.SYNC),
        (2, PDFStrategy.ASYNC, PDFStrategy.ASYNC),
    ],
)
def test_choose_strategy(client, tmp_path, max_pages, requested, expected):
    service = build_service(client, tmp_path)
    assert service.choose_strategy(ProcessingParams(max_pages=max_pages), requested) is expected


def test_small_pdf_is_processed_synchronously(client, server, tmp_path):
    service = build_service(client, tmp_path)
    pdf = write_file(tmp_path, "memo.pdf", b"%PDF-1.4")
    result = service.process_pdf(pdf, service.build_params(max_pages=5, pdf=True))
    assert result.strategy == "sync"
    assert result.task_id is None
    assert server.requests[-1]["path"] == "/api/v1/ocr/pdf"
    assert result.zip_path == tmp_path / "memo_result.zip"


def test_large_pdf_goes_through_task_polling(client, server, tmp_path):
    server.script_task("task-123", ("pending", 0.0), ("processing", 0.5), ("completed", 1.0))
    service = build_service(client, tmp_path)
    pdf = write_file(tmp_path, "book.pdf", b"%PDF-1.4")
    submitted: list[str] = []
    progress: list[float] = []
    result = service.process_pdf(
        pdf,
        service.build_params(max_pages=45, pdf=True),
        on_progress=lambda task: progress.append(task.progress),
        on_submitted=submitted.append,
    )
    assert result.strategy == "async"
    assert result.task_id == "task-123"
    assert submitted == ["task-123"]
    assert progress == [0.0, 0.5]
    entry = service.history.get("task-123")
    assert entry.status == "completed"
    assert entry.input_file == str(pdf.resolve())
    assert entry.result_path == str(tmp_path / "book_result.zip")


def test_failed_task_is_recorded_and_raised(client, server, tmp_path):
    server.script_task("task-123", ("processing", 0.2), ("failed", 0.2))
    service = build_service(client, tmp_path)
    pdf = write_file(tmp_path, "book.pdf", b"%PDF-1.4")
    with pytest.raises(TaskFailed) as exc:
        service.process_pdf(pdf, service.build_params(pdf=True), PDFStrategy.ASYNC)
    assert "GPU out of memory" in str(exc.value)
    entry = service.history.get("task-123")
    assert entry.status == "failed"
    assert entry.error == "GPU out of memory"


def test_task_status_updates_history(client, server, tmp_path):
    server.script_task("task-9", ("processing", 0.7))
    service = build_service(client, tmp_path)
    service.history.record("task-9", "/docs/a.pdf")
    task = service.task_status("task-9")
    assert task.progress == pytest.approx(0.7)
    assert service.history.get("task-9").status == "processing"


def test_download_result_defaults_to_working_directory(client, server, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    server.script_task("task-5", ("completed", 1.0))
    service = build_service(client, tmp_path)
    result = service.download_result("task-5")
    assert result.zip_path == tmp_path / "task-5_result.zip"
    assert result.extracted_dir == tmp_path / "task-5_result"
    explicit = service.download_result("task-5", tmp_path / "exact.zip", extract=False)
    assert explicit.zip_path == tmp_path / "exact.zip"


def test_run_batch_reports_every_file(client, tmp_path):
    source = tmp_path / "inbox"
    source.mkdir()
    files = [
        write_file(source, "a.png"),
        write_file(source, "b.pdf", b"%PDF-1.4"),
        write_file(source, "broken.png"),
        write_file(source, "c.gif"),
    ]
    service = build_service(client, tmp_path)
    run = service.run_batch(files, service.build_params(), source / "results", workers=2)
    assert [item.ok for item in run.results] == [True, True, False, False]
    assert run.results[0].output_path == source / "results" / "a_result.zip"
    assert (source / "results" / "b_result" / "result.mmd").exists()
    assert "Cannot decode image" in run.results[2].error
    assert "Unsupported file type" in run.results[3].error
    summary = json.loads(run.summary_path.read_text(encoding="utf-8"))
    assert summary["summary"]["total"] == 4
    assert summary["summary"]["failed"] == 2
    assert len(summary["results"]) == 4


def test_run_batch_keeps_same_stem_inputs_apart(client, server, tmp_path):
    source = tmp_path / "inbox"
    source.mkdir()
    files = [write_file(source, "scan.png"), write_file(source, "scan.pdf", b"%PDF-1.4")]
    service = build_service(client, tmp_path)
    run = service.run_batch(files, service.build_params(), source / "results", workers=2)
    outputs = [item.output_path for item in run.results]
    assert outputs == [source / "results" / "scan_png_result.zip", source / "results" / "scan_pdf_result.zip"]
    assert all(path.exists() for path in outputs)
    assert (source / "results" / "scan_png_result" / "result.mmd").exists()
    assert (source / "results" / "scan_pdf_result" / "result.mmd").exists()
    assert sorted(request["path"] for request in server.requests) == ["/api/v1/ocr/image", "/api/v1/ocr/pdf"]
    summary = json.loads(run.summary_path.read_text(encoding="utf-8"))
    assert summary["summary"]["successful"] == 2
    assert len({item["output"] for item in summary["results"]}) == 2
