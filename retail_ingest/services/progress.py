from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

from ..models.ingest_result import ProgressSnapshot

"""Progress display with tqdm (TTY only).

ProgressTracker is a ready-made progress callback for ingest_file(): it is
called with a ProgressSnapshot after each batch and moves a single record bar.
In non-TTY environments (CI, redirected output) no bar is drawn.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    return sys.stdout.isatty()


class ProgressTracker:
    """Record-level progress bar fed by ProgressSnapshot callbacks."""

    def __init__(self, *, description: str = "Ingesting", enabled: bool | None = None) -> None:
        self.description = description
        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None = None
        self.last: ProgressSnapshot | None = None

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        self.last = snapshot
        if not self.enabled:
            return
        if self.pbar is None:
            self.pbar = tqdm(
                total=snapshot.total,
                desc=self.description,
                unit="record",
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        self.pbar.update(snapshot.processed - self.pbar.n)
        self.pbar.set_postfix(
            uploaded=snapshot.uploaded, skipped=snapshot.skipped, failed=snapshot.failed
        )

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
