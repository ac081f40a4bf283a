"""DispatchTrace and TraceEntry — debug execution recording."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Literal

Phase = Literal[
    "pre_handle", "handler", "post_handle", "after_completion", "after_async_started"
]


@dataclass(frozen=True)
class TraceEntry:
    """Single callback execution record."""

    name: str
    phase: Phase
    duration_ms: float
    outcome: Literal["OK", "ABORTED", "FAILED"]
    reason: str | None = None


@dataclass
class DispatchTrace:
    """Structured record of one request's dispatch, across both passes."""

    entries: list[TraceEntry] = field(default_factory=list)
    total_duration_ms: float = 0.0
    outcome: Literal["OK", "ABORTED", "ASYNC", "ERROR"] = "OK"
    error: BaseException | None = None

    def record(
        self,
        name: str,
        phase: Phase,
        started: float,
        outcome: Literal["OK", "ABORTED", "FAILED"] = "OK",
        reason: str | None = None,
    ) -> None:
        elapsed = (time.perf_counter() - started) * 1000
        self.entries.append(
            TraceEntry(
                name=name,
                phase=phase,
                duration_ms=elapsed,
                outcome=outcome,
                reason=reason,
            )
        )

    def phases(self) -> list[tuple[str, str]]:
        return [(entry.name, entry.phase) for entry in self.entries]
