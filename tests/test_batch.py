from __future__ import annotations

import concurrent.futures
import itertools
import json
import threading
from pathlib import Path

import pytest

from deepseek_ocr.batch import ITEM_FAILED, ITEM_PROCESSING, ITEM_SUCCESS, run_batch, write_batch_summary
from deepseek_ocr.constants import FileKind
from deepseek_ocr.models import BatchItemResult, BatchOutcome, BatchSummary


def build_files(count: int) -> list[Path]:
    return [Path(f"page-{index:02d}.png") for index in range(count)]


def image_kind(path: Path) -> FileKind:
    return FileKind.IMAGE


def build_processor(failing: set[str]):
    def process_one(path: Path, kind: FileKind) -> Path:
        if path.name in failing:
            raise RuntimeError(f"server rejected {path.name}")
        return Path("out") / f"{path.stem}_result.zip"

    return process_one


FAILURE_PATTERNS = list(itertools.product([False, True], repeat=4))


@pytest.mark.parametrize("pattern", FAILURE_PATTERNS)
@pytest.mark.parametrize("workers", [1, 2, 3, 4])
def test_results_align_with_inputs(tmp_path, pattern, workers):
    files = build_files(len(pattern))
    failing = {path.name for path, fails in zip(files, pattern) if fails}
    results = run_batch(files, image_kind, build_processor(failing), workers, tmp_path / "out")
    assert len(results) == len(files)
    for path, fails, result in zip(files, pattern, results):
        assert result.file == path
        assert result.ok is not fails
        if fails:
            assert result.output_path is None
            assert f"server rejected {path.name}" == result.error
        else:
            assert result.error is None
            assert result.output_path == Path("out") / f"{path.stem}_result.zip"


def test_single_failure_does_not_stop_the_rest(tmp_path):
    files = build_files(6)
    results = run_batch(files, image_kind, build_processor({"page-02.png"}), 3, tmp_path)
    summary = BatchSummary.from_results(results)
    assert summary.total == 6
    assert summary.successes == 5
    assert summary.failures == 1
    assert [result.status for result in results].count(BatchOutcome.FAILURE) == 1


def test_classification_errors_become_failures(tmp_path):
    def kind_of(path: Path) -> FileKind:
        if path.suffix == ".txt":
            raise ValueError("Unsupported file type: .txt")
        return FileKind.IMAGE

    files = [Path("a.png"), Path("notes.txt")]
    results = run_batch(files, kind_of, build_processor(set()), 2, tmp_path)
    assert results[0].ok
    assert results[1].error == "Unsupported file type: .txt"


def test_chunks_never_exceed_worker_count(tmp_path):
    lock = threading.Lock()
    active = 0
    peak = 0
    started: list[str] = []
    both_started = threading.Barrier(2, timeout=5)

    def process_one(path: Path, kind: FileKind) -> Path:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
            started.append(path.name)
        if path.name != "page-04.png":
            both_started.wait()
        with lock:
            active -= 1
        return path

    files = build_files(5)
    run_batch(files, image_kind, process_one, 2, tmp_path)
    assert peak == 2
    assert set(started[:2]) == {"page-00.png", "page-01.png"}
    assert set(started[2:4]) == {"page-02.png", "page-03.png"}
    assert started[4] == "page-04.png"


def test_progress_reports_each_item_transition(tmp_path):
    events: list[tuple[int, str]] = []
    lock = threading.Lock()

    def on_progress(index: int, path: Path, state: str) -> None:
        with lock:
            events.append((index, state))

    run_batch(build_files(3), image_kind, build_processor({"page-01.png"}), 2, tmp_path, on_progress)
    assert sorted(events) == [
        (0, ITEM_PROCESSING),
        (0, ITEM_SUCCESS),
        (1, ITEM_FAILED),
        (1, ITEM_PROCESSING),
        (2, ITEM_PROCESSING),
        (2, ITEM_SUCCESS),
    ]


def test_chunk_callback_sees_growing_results(tmp_path):
    seen: list[int] = []
    run_batch(
        build_files(5),
        image_kind,
        build_processor(set()),
        2,
        tmp_path,
        on_chunk=lambda results: seen.append(len(results)),
    )
    assert seen == [2, 4, 5]


def test_failing_progress_sink_does_not_abort_the_batch(tmp_path):
    def on_progress(index: int, path: Path, state: str) -> None:
        raise RuntimeError("terminal went away")

    results = run_batch(build_files(4), image_kind, build_processor({"page-03.png"}), 2, tmp_path, on_progress)
    assert [result.ok for result in results] == [True, True, True, False]
    assert results[3].error == "server rejected page-03.png"


def test_interrupt_abandons_in_flight_items(tmp_path, monkeypatch):
    release = threading.Event()
    started: list[str] = []
    finished: list[str] = []

    def process_one(path: Path, kind: FileKind) -> Path:
        started.append(path.name)
        release.wait(timeout=5)
        finished.append(path.name)
        return path

    def interrupt(futures, *args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(concurrent.futures, "wait", interrupt)
    try:
        with pytest.raises(KeyboardInterrupt):
            run_batch(build_files(3), image_kind, process_one, 1, tmp_path)
        assert finished == []
        assert "page-01.png" not in started
        assert "page-02.png" not in started
    finally:
        release.set()


def test_output_directory_is_created(tmp_path):
    target = tmp_path / "nested" / "results"
    run_batch(build_files(1), image_kind, build_processor(set()), 1, target)
    assert target.is_dir()


def test_uncreatable_output_directory_aborts_before_processing(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    calls: list[Path] = []

    def process_one(path: Path, kind: FileKind) -> Path:
        calls.append(path)
        return path

    with pytest.raises(OSError):
        run_batch(build_files(2), image_kind, process_one, 1, blocker / "results")
    assert calls == []


def test_invalid_worker_count_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        run_batch(build_files(1), image_kind, build_processor(set()), 0, tmp_path)


def test_batch_item_invariants_are_enforced():
    with pytest.raises(ValueError):
        BatchItemResult(file=Path("a.png"), status=BatchOutcome.SUCCESS)
    with pytest.raises(ValueError):
        BatchItemResult(file=Path("a.png"), status=BatchOutcome.FAILURE, output_path=Path("x"), error="boom")


def test_write_batch_summary(tmp_path):
    results = [
        BatchItemResult.success(Path("a.png"), tmp_path / "a_result.zip"),
        BatchItemResult.failure(Path("b.png"), "timeout"),
    ]
    path = write_batch_summary(tmp_path, results, elapsed_s=3.456, extra={"mode": "free_ocr"})
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert path.name == "batch_summary.json"
    assert payload["summary"] == {"total": 2, "successful": 1, "failed": 1, "elapsed_s": 3.46}
    assert payload["results"][1] == {"file": "b.png", "status": "failure", "error": "timeout"}
    assert payload["mode"] == "free_ocr"
