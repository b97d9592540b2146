from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .utils import ensure_parent


class ProgressLog:
    """JSON record of one pipeline run: settings, step states and artifacts."""

    def __init__(
        self,
        path: Path,
        *,
        session: str,
        dry_run: bool,
        run_order: List[str],
        settings: Optional[Mapping[str, Any]] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        self.path = path
        self.latest_path = self.path.parent / "latest.json"
        self.session = session
        self.started_at = started_at or datetime.now()
        self._active_starts: Dict[str, datetime] = {}
        self.data: Dict[str, Any] = {
            "session": session,
            "dry_run": dry_run,
            "started_at": self._fmt(self.started_at),
            "status": "running",
            "settings": dict(settings or {}),
            "run_order": list(run_order),
            "steps": [],
            "artifacts": {},
        }
        self._write()

    @staticmethod
    def _fmt(dt: datetime) -> str:
        return dt.isoformat(timespec="seconds")

    @staticmethod
    def _dump(path: Path, payload: Mapping[str, Any]) -> None:
        ensure_parent(path)
        tmp_path = path.parent / f"{path.name}.tmp"
        tmp_path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        tmp_path.replace(path)

    def _write(self) -> None:
        self._dump(self.path, self.data)

        latest: Dict[str, Any] = {
            "session": self.session,
            "progress_file": self.path.name,
            "status": self.data["status"],
            "started_at": self.data["started_at"],
        }
        for key in ("finished_at", "last_completed_step", "failed_step"):
            if key in self.data:
                latest[key] = self.data[key]
        self._dump(self.latest_path, latest)

    def _append(self, step: str, status: str, **fields: Any) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"step": step, "status": status}
        entry.update(fields)
        self.data["steps"].append(entry)
        return entry

    def plan_step(self, step: str) -> None:
        self._append(step, "planned", noted_at=self._fmt(datetime.now()))
        self._write()

    def skip_step(self, step: str, reason: str) -> None:
        self._append(step, "skipped", noted_at=self._fmt(datetime.now()), message=reason)
        self._write()

    def start_step(self, step: str) -> None:
        started = datetime.now()
        self._active_starts[step] = started
        self._append(step, "running", started_at=self._fmt(started))
        self._write()

    def _running_entry(self, step: str) -> Dict[str, Any]:
        for entry in reversed(self.data["steps"]):
            if entry.get("step") == step and entry.get("status") in {"running", "completed", "failed"}:
                return entry
        raise KeyError(f"No step entry recorded for {step!r}")

    def complete_step(
        self,
        step: str,
        *,
        status: str = "completed",
        message: Optional[str] = None,
    ) -> None:
        finished = datetime.now()
        entry = self._running_entry(step)
        entry["status"] = status
        entry["finished_at"] = self._fmt(finished)
        started = self._active_starts.pop(step, None)
        if started is not None:
            entry["duration_seconds"] = round((finished - started).total_seconds(), 2)
        if message:
            entry["message"] = message
        if status == "completed":
            self.data["last_completed_step"] = step
        else:
            self.data["failed_step"] = step
        self._write()

    def fail_step(self, step: str, message: Optional[str] = None) -> None:
        self.complete_step(step, status="failed", message=message)

    def record_artifacts(self, artifacts: Mapping[str, Path]) -> None:
        self.data["artifacts"] = {name: str(path) for name, path in artifacts.items()}
        self._write()

    def finish(self, *, status: str, message: Optional[str] = None) -> None:
        finished = datetime.now()
        self.data["status"] = status
        self.data["finished_at"] = self._fmt(finished)
        if message:
            self.data["message"] = message
        # Any step still running at this point did not finish.
        while self._active_starts:
            step, started = self._active_starts.popitem()
            entry = self._running_entry(step)
            entry["status"] = "failed"
            entry["finished_at"] = self._fmt(finished)
            entry["duration_seconds"] = round((finished - started).total_seconds(), 2)
            if message:
                entry.setdefault("message", message)
        self._write()
