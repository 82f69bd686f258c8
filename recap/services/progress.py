from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Callable, Optional

STAGE_TRANSCRIBING = "transcribing"
STAGE_CHUNKING = "chunking"
STAGE_MAPPING = "mapping"
STAGE_REDUCING = "reducing"
STAGE_REFINING = "refining"
STAGE_GENERATING_EMAIL = "generating_email"
STAGE_COMPLETED = "completed"

STAGE_ORDER = (
    STAGE_TRANSCRIBING,
    STAGE_CHUNKING,
    STAGE_MAPPING,
    STAGE_REDUCING,
    STAGE_REFINING,
    STAGE_GENERATING_EMAIL,
    STAGE_COMPLETED,
)


@dataclass(frozen=True)
class ProcessingProgress:
    stage: str
    progress: int
    message: str = ""
    current_chunk: Optional[int] = None
    total_chunks: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


ProgressCallback = Callable[[ProcessingProgress], None]


class ProgressReporter:
    """Pushes updates to one callback and keeps the latest for polling.

    Within a run the stage never moves backwards; ``reset`` starts a new run.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None) -> None:
        self._callback = callback
        self._latest: Optional[ProcessingProgress] = None
        self._logger = logging.getLogger("recap.progress")

    @property
    def latest(self) -> Optional[ProcessingProgress]:
        return self._latest

    def set_callback(self, callback: Optional[ProgressCallback]) -> None:
        self._callback = callback

    def reset(self) -> None:
        self._latest = None

    def emit(
        self,
        stage: str,
        progress: float,
        message: str = "",
        current_chunk: Optional[int] = None,
        total_chunks: Optional[int] = None,
    ) -> ProcessingProgress:
        if stage not in STAGE_ORDER:
            raise ValueError(f"Unknown processing stage: {stage}")
        if self._latest is not None and STAGE_ORDER.index(stage) < STAGE_ORDER.index(self._latest.stage):
            raise ValueError(f"Stage regression: {self._latest.stage} -> {stage}")
        update = ProcessingProgress(
            stage=stage,
            progress=int(round(min(100.0, max(0.0, float(progress))))),
            message=message,
            current_chunk=current_chunk,
            total_chunks=total_chunks,
        )
        self._latest = update
        self._logger.debug("Progress: %s %d%% %s", update.stage, update.progress, update.message)
        if self._callback is not None:
            try:
                self._callback(update)
            except Exception:
                self._logger.exception("Progress callback failed")
        return update
