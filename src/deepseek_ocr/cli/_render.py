from __future__ import annotations

import json

from ..core import BatchRun, OCRResult
from ..models import Task, TaskHistoryEntry, TaskStatus
from ..output import OutputSink
from ..utils import format_file_size


def render_ocr_result(out: OutputSink, result: OCRResult) -> None:
    if out.is_json:
        out.emit(result.to_payload())
        return
    out.success(f"Result saved to: {result.zip_path}")
    if result.extracted_dir is not None:
        out.success(f"Extracted to: {result.extracted_dir}")
    rows: dict[str, object] = {
        "Processing Time": f"{result.elapsed_s:.2f}s",
        "Result Size": format_file_size(result.size_bytes),
        "ZIP File": result.zip_path,
        "Extracted Directory": result.extracted_dir or "(not extracted)",
    }
    if result.task_id:
        rows["Task ID"] = result.task_id
    out.key_values(rows, title="Summary")
    contents = result.contents
    if contents is not None:
        lines = [name for name in (contents.markdown, contents.original, contents.metadata, contents.layouts_pdf) if name]
        if contents.images:
            lines.append(f"images/ ({len(contents.images)} files)")
        if lines:
            out.info("Result contents:")
            for line in lines:
                out.info(f"  - {line}")
    if result.metadata:
        out.info("Metadata:")
        out.console.print(json.dumps(result.metadata, indent=2), markup=False, highlight=False)


def task_payload(task: Task) -> dict[str, object]:
    payload = task.to_payload()
    payload["success"] = True
    return payload


def render_task(out: OutputSink, task: Task) -> None:
    if out.is_json:
        out.emit(task_payload(task))
        return
    out.key_values(
        {
            "Task ID": task.task_id,
            "Status": task.status.value,
            "Progress": f"{round(task.progress * 100)}%",
            "Submitted": task.submitted_at or "Unknown",
            "Started": task.started_at or "Not started",
            "Completed": task.completed_at or "Not completed",
        },
        title="Task Status",
    )
    if task.error is not None:
        out.info(f"[red]Error[/red]: {task.error.message}")
    if task.status is TaskStatus.COMPLETED:
        out.success(f"Task completed. Retrieve it with: deepseek-ocr task download {task.task_id}")
    elif task.status is TaskStatus.FAILED:
        out.info("Task failed. Check the error message above.")
    else:
        out.info(f"Task is still running. Wait for it with: deepseek-ocr task wait {task.task_id}")


def render_history(out: OutputSink, entries: list[TaskHistoryEntry]) -> None:
    if out.is_json:
        out.emit({"success": True, "count": len(entries), "tasks": [entry.to_dict() for entry in entries]})
        return
    if not entries:
        out.info("No tasks found in history.")
        out.info("Task history shows tasks from the last 7 days.")
        return
    out.info(f"Showing {len(entries)} task(s) from the last 7 days")
    out.table(
        "Task History",
        ["Task ID", "File", "Status", "Submitted", "Last Checked"],
        [
            [entry.task_id, entry.input_file, entry.status, entry.submitted_at, entry.last_checked]
            for entry in entries
        ],
    )


def render_batch(out: OutputSink, run: BatchRun) -> None:
    summary = run.summary
    if out.is_json:
        out.emit(
            {
                "success": summary.failures == 0,
                "summary": summary.to_dict(),
                "output_dir": str(run.output_dir),
                "summary_file": str(run.summary_path),
                "results": [item.to_dict() for item in run.results],
            }
        )
        return
    out.table(
        "Batch Results",
        ["File", "Status", "Output / Error"],
        [
            [item.file.name, item.status.value, item.output_path or item.error]
            for item in run.results
        ],
    )
    out.key_values(
        {
            "Total Files": summary.total,
            "Successful": summary.successes,
            "Failed": summary.failures,
            "Success Rate": f"{summary.success_rate:.1f}%",
            "Total Time": f"{summary.elapsed_s:.2f}s",
            "Output Directory": run.output_dir,
            "Summary File": run.summary_path,
        },
        title="Batch Summary",
    )


__all__ = ["render_batch", "render_history", "render_ocr_result", "render_task", "task_payload"]
