"""Phase and per-package progress for one prune run."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

import structlog

log = structlog.get_logger("cargo_prune.progress")

_STATUS_ICONS = {
    "completed": "+",
    "failed": "!",
    "skipped": "-",
    "running": "~",
    "pending": ".",
}


@dataclass
class PhaseProgress:
    phase: str
    status: str = "pending"  # "pending" | "running" | "completed" | "failed" | "skipped"
    start_time: float | None = None
    end_time: float | None = None
    detail: str = ""
    error: str | None = None
    done: int = 0  # packages finished, for fan-out phases
    total: int = 0

    @property
    def duration(self) -> float | None:
        if self.start_time is not None and self.end_time is not None:
            return round(self.end_time - self.start_time, 3)
        return None


class ProgressTracker:
    """Record the run's phases; callbacks fire on every transition.

    Package tasks report through :meth:`advance` from the joining thread,
    so no locking is needed.
    """

    def __init__(self) -> None:
        self.phases: list[PhaseProgress] = []
        self._by_name: dict[str, PhaseProgress] = {}
        self.callbacks: list[Callable[[PhaseProgress], None]] = []

    def start_phase(self, phase: str, total: int = 0) -> None:
        p = PhaseProgress(phase=phase, status="running", start_time=time.monotonic(), total=total)
        self.phases.append(p)
        self._by_name[phase] = p
        self._notify(p)

    def advance(self, phase: str, item: str) -> None:
        p = self._by_name.get(phase)
        if p and p.status == "running":
            p.done += 1
            log.debug("progress.advance", phase=phase, item=item, done=p.done, total=p.total)

    def complete_phase(self, phase: str, detail: str = "") -> None:
        p = self._by_name.get(phase)
        if p:
            p.status = "completed"
            p.end_time = time.monotonic()
            p.detail = detail
            self._notify(p)

    def fail_phase(self, phase: str, error: str) -> None:
        p = self._by_name.get(phase)
        if p:
            p.status = "failed"
            p.end_time = time.monotonic()
            p.error = error
            self._notify(p)

    def skip_phase(self, phase: str, reason: str) -> None:
        p = PhaseProgress(phase=phase, status="skipped", detail=reason)
        self.phases.append(p)
        self._by_name[phase] = p
        self._notify(p)

    def get_summary(self) -> dict[str, Any]:
        total_duration = sum(p.duration or 0 for p in self.phases)
        return {
            "phases": [
                {
                    "phase": p.phase,
                    "status": p.status,
                    "duration": p.duration,
                    "detail": p.detail,
                    "error": p.error,
                    "done": p.done,
                    "total": p.total,
                }
                for p in self.phases
            ],
            "total_duration": round(total_duration, 3),
        }

    def lines(self) -> list[str]:
        """Human-readable phase list, as printed with ``--verbose``."""
        summary = self.get_summary()
        out = [f"pipeline summary (total: {summary['total_duration']}s):"]
        for p in summary["phases"]:
            icon = _STATUS_ICONS.get(p["status"], "?")
            duration = f" ({p['duration']}s)" if p["duration"] else ""
            count = f" [{p['done']}/{p['total']}]" if p["total"] else ""
            detail = f" - {p['detail']}" if p["detail"] else ""
            error = f" error: {p['error']}" if p["error"] else ""
            out.append(f"  [{icon}] {p['phase']}{count}{duration}{detail}{error}")
        return out

    def _notify(self, p: PhaseProgress) -> None:
        log.debug("progress.phase", phase=p.phase, status=p.status, detail=p.detail)
        for cb in self.callbacks:
            try:
                cb(p)
            except Exception:
                log.debug("progress.callback_error", phase=p.phase, exc_info=True)
