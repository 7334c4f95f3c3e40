from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

from .constants import HISTORY_FILE_NAME, TASK_RETENTION_DAYS
from .models import TaskHistoryEntry, TaskStatus, parse_iso, to_iso, utc_now
from .utils import atomic_write


log = logging.getLogger(__name__)


class TaskHistory:
    """Local record of submitted tasks, kept in one JSON document.

    Every mutation rewrites the whole file atomically. Two CLI processes
    writing at the same time race; the last writer wins.
    """

    def __init__(
        self,
        path: Path,
        *,
        retention_days: int = TASK_RETENTION_DAYS,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._path = path
        self._retention = timedelta(days=retention_days)
        self._now = now
        self._lock = threading.Lock()

    @classmethod
    def in_dir(cls, directory: Path) -> TaskHistory:
        return cls(directory / HISTORY_FILE_NAME)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, TaskHistoryEntry]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Task history %s is unreadable, starting empty: %s", self._path, exc)
            return {}
        tasks = data.get("tasks") if isinstance(data, dict) else None
        if not isinstance(tasks, list):
            return {}
        entries: dict[str, TaskHistoryEntry] = {}
        for item in tasks:
            if not isinstance(item, dict) or not item.get("task_id"):
                continue
            entry = TaskHistoryEntry.from_dict(item)
            entries[entry.task_id] = entry
        return entries

    def _save(self, entries: dict[str, TaskHistoryEntry]) -> None:
        payload = {"tasks": [entry.to_dict() for entry in entries.values()]}
        atomic_write(self._path, json.dumps(payload, indent=2))

    def record(self, task_id: str, input_file: str | None) -> TaskHistoryEntry:
        stamp = to_iso(self._now())
        with self._lock:
            entries = self.load()
            entry = entries.get(task_id)
            if entry is None:
                entry = TaskHistoryEntry(
                    task_id=task_id,
                    input_file=input_file,
                    submitted_at=stamp,
                    last_checked=stamp,
                    status=TaskStatus.PENDING.value,
                )
                entries[task_id] = entry
                log.debug("Recorded task %s for %s", task_id, input_file)
            else:
                entry.last_checked = stamp
            self._save(entries)
        return entry

    def update_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        error: str | None = None,
        result_path: str | None = None,
    ) -> bool:
        """Overwrite the stored status; unknown task IDs are ignored."""
        with self._lock:
            entries = self.load()
            entry = entries.get(task_id)
            if entry is None:
                return False
            entry.status = status.value if isinstance(status, TaskStatus) else str(status)
            if error is not None:
                entry.error = error
            if result_path is not None:
                entry.result_path = result_path
            entry.last_checked = to_iso(self._now())
            self._save(entries)
        return True

    def get(self, task_id: str) -> TaskHistoryEntry | None:
        return self.load().get(task_id)

    def list(self) -> list[TaskHistoryEntry]:
        cutoff = self._now() - self._retention
        with self._lock:
            entries = self.load()
            kept = {}
            for task_id, entry in entries.items():
                submitted = parse_iso(entry.submitted_at)
                if submitted is not None and submitted > cutoff:
                    kept[task_id] = entry
            if len(kept) != len(entries):
                log.debug("Pruned %d expired task(s) from history", len(entries) - len(kept))
            if kept or self._path.exists():
                self._save(kept)
        return list(kept.values())


__all__ = ["TaskHistory"]
