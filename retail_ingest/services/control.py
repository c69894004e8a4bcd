from __future__ import annotations

import threading

"""Cooperative pause / resume / stop token.

The caller owns the token (e.g. a web handler or a signal handler) and flips
it from another thread; the ingestion loop only polls it between records.
"""

__all__ = [
    "ControlToken",
]


class ControlToken:
    """Thread-safe run control flags.

    stop() は pause 状態も解除する (停止要求で待機中のループを起こす)。
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._paused = False
        self._stopped = False

    def pause(self) -> None:
        with self._cond:
            if not self._stopped:
                self._paused = True

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._paused = False
            self._cond.notify_all()

    def is_paused(self) -> bool:
        with self._cond:
            return self._paused

    def is_stopped(self) -> bool:
        with self._cond:
            return self._stopped

    def wait_while_paused(self, timeout: float | None = None) -> bool:
        """Block while paused. Returns True when the run may continue.

        With a timeout, returns False if still paused when it expires.
        Returns False as well once stop() has been called.
        """
        with self._cond:
            self._cond.wait_for(lambda: not self._paused or self._stopped, timeout=timeout)
            return not self._paused and not self._stopped
