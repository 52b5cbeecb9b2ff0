"""Recurring driver for ``Reconciler.tick``."""

from __future__ import annotations

import threading

from loguru import logger


def run_once(reconciler) -> dict:
    """Single pass, for cron or an external job runner."""
    return reconciler.tick().as_dict()


class IntervalScheduler:
    """Calls ``reconciler.tick()`` every ``interval_seconds`` on a background thread.

    The first tick runs immediately.  A tick that raises (e.g. the policy
    count cannot be read) is logged and the schedule continues.
    """

    def __init__(self, reconciler, interval_seconds: float = 3600):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.reconciler.tick()
            except Exception:
                logger.exception("Reconciliation tick failed")
            self.ticks += 1
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="reconciler", daemon=True)
        self._thread.start()
        logger.info("Reconciliation scheduled every {}s", self.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        logger.info("Reconciliation scheduler stopped")

    def run_forever(self) -> None:
        """Block the calling thread until interrupted."""
        self.start()
        try:
            while self._thread.is_alive():
                self._thread.join(1.0)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.stop()
