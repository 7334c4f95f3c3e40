from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from deepseek_ocr.cli import _common, app
from deepseek_ocr.client import OCRClient

from conftest import API_KEY, BASE_URL


runner = CliRunner()


@pytest.fixture
def fake_backend(monkeypatch, http):
    def create_client(config):
        return OCRClient(BASE_URL, config.api_key, http=http, sleep=lambda _: None)

    monkeypatch.setattr(_common, "create_client", create_client)
    return http


def invoke(*args: str):
    return runner.invoke(app, list(args))


def invoke_json(*args: str) -> dict:
    result = invoke(*args)
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_config_set_get_and_show_mask_the_key():
    stored = invoke_json("config", "set", "api.key", API_KEY, "--json")
    assert stored == {"success": True, "key": "api.key", "value": "sk-test-...89abcdef"}
    fetched = invoke_json("config", "get", "api.key", "--json")
    assert fetched["value"] == "sk-test-...89abcdef"
    shown = invoke_json("config", "show", "--json")
    assert shown["config"]["api_key"] == "sk-test-...89abcdef"
    assert shown["config"]["base_url"] == "http://localhost:8000"


def test_config_set_rejects_invalid_values():
    result = invoke("config", "set", "defaults.dpi", "900")
    assert result.exit_code == 1
    assert "Invalid DPI" in result.output


def test_config_get_missing_key_fails():
    result = invoke("config", "get", "api.base_url")
    assert result.exit_code == 1
    assert "Configuration key not found" in result.output


def test_config_delete_and_clear(isolated_env):
    invoke_json("config", "set", "defaults.mode", "free_ocr", "--json")
    deleted = invoke_json("config", "delete", "defaults.mode", "--json")
    assert deleted["existed"] is True
    assert invoke_json("config", "path", "--json")["path"] == str(isolated_env / "config.toml")
    cleared = invoke("config", "clear", "--yes")
    assert cleared.exit_code == 0
    assert not (isolated_env / "config.toml").exists()


def test_config_init_prompts_and_saves():
    result = runner.invoke(app, ["config", "init"], input=f"{API_KEY}\n\nfree_ocr\nBase\n")
    assert result.exit_code == 0, result.output
    shown = invoke_json("config", "show", "--json")
    assert shown["config"]["mode"] == "free_ocr"
    assert shown["config"]["resolution"] == "Base"


def test_missing_api_key_is_a_runtime_error(tmp_path):
    image = tmp_path / "scan.png"
    image.write_bytes(b"png")
    result = invoke("image", str(image))
    assert result.exit_code == 1
    assert "API key is required" in result.output


def test_usage_errors_exit_with_two(tmp_path):
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF")
    result = invoke("--api-key", API_KEY, "pdf", str(pdf), "--sync", "--async")
    assert result.exit_code == 2
    assert invoke("batch", str(tmp_path), "--workers", "50").exit_code == 2


def test_image_command_renders_json(fake_backend, tmp_path):
    image = tmp_path / "scan.png"
    image.write_bytes(b"png")
    payload = invoke_json("--api-key", API_KEY, "image", str(image), "-m", "free_ocr", "--json")
    assert payload["success"] is True
    assert payload["zip_path"] == str(tmp_path / "scan_result.zip")
    assert payload["extracted_dir"] == str(tmp_path / "scan_result")
    assert payload["params"]["mode"] == "free_ocr"


def test_validation_errors_render_json_to_stderr(fake_backend, tmp_path):
    result = invoke("--api-key", API_KEY, "image", str(tmp_path / "absent.png"), "--json")
    assert result.exit_code == 1
    assert '"code": "VALIDATION"' in result.output


def test_async_pdf_records_history(fake_backend, server, tmp_path):
    server.script_task("task-123", ("completed", 1.0))
    pdf = tmp_path / "book.pdf"
    pdf.write_bytes(b"%PDF-1.4")
    payload = invoke_json("--api-key", API_KEY, "pdf", str(pdf), "--max-pages", "40", "--json")
    assert payload["task_id"] == "task-123"
    assert payload["processing"] == "async"
    listed = invoke_json("task", "list", "--json")
    assert listed["count"] == 1
    assert listed["tasks"][0]["status"] == "completed"
    assert listed["tasks"][0]["result_path"] == str(tmp_path / "book_result.zip")


def test_task_status_and_download(fake_backend, server, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    server.script_task("task-7", ("completed", 1.0))
    status = invoke_json("--api-key", API_KEY, "task", "status", "task-7", "--json")
    assert status["status"] == "completed"
    assert status["progress"] == 1.0
    downloaded = invoke_json("--api-key", API_KEY, "task", "download", "task-7", "--no-extract", "--json")
    assert downloaded["zip_path"] == str(tmp_path / "task-7_result.zip")
    assert downloaded["extracted_dir"] is None


def test_unknown_task_reports_not_found(fake_backend):
    result = invoke("--api-key", API_KEY, "task", "status", "nope")
    assert result.exit_code == 1
    assert "Task not found: nope" in result.output


def test_empty_task_list_explains_retention():
    result = invoke("task", "list")
    assert result.exit_code == 0
    assert "last 7 days" in result.output


def test_batch_command_summarises(fake_backend, tmp_path):
    inbox = tmp_path / "inbox"
    inbox.mkdir()
    (inbox / "a.png").write_bytes(b"png")
    (inbox / "broken.png").write_bytes(b"png")
    (inbox / "readme.txt").write_text("skip me")
    payload = invoke_json("--api-key", API_KEY, "batch", str(inbox), "--workers", "2", "--json")
    assert payload["summary"]["total"] == 2
    assert payload["summary"]["successful"] == 1
    assert payload["output_dir"] == str(inbox / "results")
    assert (inbox / "results" / "batch_summary.json").exists()


def test_health_check_json(fake_backend):
    payload = invoke_json("--api-key", API_KEY, "health", "check", "--json")
    assert payload["status"] == "healthy"
    assert payload["model_loaded"] is True
    assert isinstance(payload["response_time_ms"], int)
