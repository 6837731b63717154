"""Interval loop driving :class:`client.fetch.BackupClient` sweeps."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional

from .fetch import BackupClient, ProjectResult

LOGGER = logging.getLogger("sitebackup.client")


class PollRunner:
    """Run one sweep immediately, then one every ``interval_s`` seconds.

    The interval is measured between sweep starts. A sweep that overruns the
    interval delays the next one; sweeps never overlap.
    """

    def __init__(
        self,
        client: BackupClient,
        *,
        interval_s: Optional[float] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._interval = float(interval_s if interval_s is not None else client.config.interval_s)
        self._monotonic = monotonic
        self._stop_event = threading.Event()
        self._sweep_lock = threading.Lock()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self.sweeps = 0

    @property
    def interval_s(self) -> float:
        return self._interval

    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self.run_forever, name="sitebackup-poller", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        with self._lock:
            thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)
        with self._lock:
            self._thread = None

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    # ------------------------------------------------------------------
    def run_once(self) -> List[ProjectResult]:
        with self._sweep_lock:
            self.sweeps += 1
            LOGGER.info("Starting backup sweep #%d", self.sweeps)
            results = self._client.run_once()
            failed = sum(1 for result in results if not result.ok)
            LOGGER.info("Backup sweep #%d finished: %d projects, %d with errors", self.sweeps, len(results), failed)
            return results

    def run_forever(self) -> None:
        """Block until :meth:`stop` is called."""

        while not self._stop_event.is_set():
            started = self._monotonic()
            try:
                self.run_once()
            except Exception:  # pragma: no cover - keeps the loop alive
                LOGGER.exception("Backup sweep crashed")
            elapsed = self._monotonic() - started
            self._stop_event.wait(max(0.0, self._interval - elapsed))


__all__ = ["PollRunner"]
