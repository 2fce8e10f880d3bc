"""Progress reporting boundary.

Progress is threaded explicitly through every stage as an optional callable;
nothing here holds global state.  Consumers may ignore updates entirely.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class ProgressPhase(str, Enum):
    LOADING = "loading"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ProgressUpdate:
    """One progress notification."""

    phase: ProgressPhase
    percent: float
    message: str
    current_frame: int | None = None
    total_frames: int | None = None


ProgressCallback = Callable[[ProgressUpdate], None]


class ProgressReporter:
    """Clamp, scale and forward updates to an optional sink.

    A reporter can cover a sub-range of the overall progress bar, so a
    stage reporting 0-100 internally lands in e.g. 40-80 for the caller.
    Reporters do no ordering of their own: when two stages report
    concurrently, the caller gives them disjoint ranges and keeps its own
    updates out of the range a running child owns.
    """

    def __init__(
        self,
        sink: ProgressCallback | None = None,
        start: float = 0.0,
        end: float = 100.0,
    ) -> None:
        self.sink = sink
        self.start = start
        self.end = end

    def __call__(
        self,
        phase: ProgressPhase,
        percent: float,
        message: str,
        current_frame: int | None = None,
        total_frames: int | None = None,
    ) -> None:
        if self.sink is None:
            return
        clamped = min(100.0, max(0.0, percent))
        scaled = self.start + (self.end - self.start) * clamped / 100.0
        self.sink(
            ProgressUpdate(
                phase=phase,
                percent=round(scaled, 2),
                message=message,
                current_frame=current_frame,
                total_frames=total_frames,
            )
        )

    def child(self, start: float, end: float) -> "ProgressReporter":
        """Reporter mapping 0-100 onto [start, end] of this reporter's range."""
        span = self.end - self.start
        return ProgressReporter(
            self.sink,
            self.start + span * start / 100.0,
            self.start + span * end / 100.0,
        )

    def as_callback(self) -> ProgressCallback:
        """Adapt this reporter into a sink for a nested stage.

        Updates are rescaled into this reporter's range.  A nested stage
        finishing is not the overall run finishing, so its ``complete``
        phase is forwarded as ``analyzing``.
        """

        def forward(update: ProgressUpdate) -> None:
            phase = update.phase
            if phase is ProgressPhase.COMPLETE:
                phase = ProgressPhase.ANALYZING
            self(phase, update.percent, update.message, update.current_frame, update.total_frames)

        return forward
