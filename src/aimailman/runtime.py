"""Long-running scheduler that repeats processing cycles until stopped."""

from __future__ import annotations

import logging
import signal
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from types import FrameType
from typing import Any

from .config import FALLBACK_POLLING_INTERVAL
from .pipeline import CycleReport, ProcessingCycleOrchestrator

SignalHandler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None

LOGGER = logging.getLogger(__name__)
SIG_HUP = getattr(signal, "SIGHUP", None)
SIG_USR1 = getattr(signal, "SIGUSR1", None)


@dataclass(frozen=True)
class ReloadResult:
    """Replacement orchestrator and interval produced by a configuration reload."""

    orchestrator: ProcessingCycleOrchestrator
    interval_seconds: int


class CycleScheduler:
    """Run processing cycles on a fixed interval until a stop is requested.

    The stop event doubles as the cancellation token handed to each cycle, so
    SIGTERM/SIGINT interrupt both the sleep between cycles and the remaining
    messages of a running cycle. SIGHUP rebuilds the orchestrator through
    ``reload_callback``; SIGUSR1 logs a status snapshot.
    """

    def __init__(
        self,
        orchestrator: ProcessingCycleOrchestrator,
        *,
        interval_seconds: int,
        reload_callback: Callable[[], ReloadResult] | None = None,
        status_callback: Callable[[dict[str, Any]], str | None] | None = None,
        poll_seconds: float = 0.5,
        max_cycles: int | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._interval = _effective_interval(interval_seconds)
        self._reload_callback = reload_callback
        self._status_callback = status_callback
        self._poll_seconds = poll_seconds
        self._max_cycles = max_cycles
        self._stop_event = threading.Event()
        self._reload_event = threading.Event()
        self._status_event = threading.Event()
        self._installed_signals: dict[int, SignalHandler] = {}
        self._cycles = 0
        self._last_report: CycleReport | None = None
        self._started_at: datetime | None = None

    @property
    def orchestrator(self) -> ProcessingCycleOrchestrator:
        return self._orchestrator

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def last_report(self) -> CycleReport | None:
        return self._last_report

    def run(self) -> None:
        self._install_signal_handlers()
        self._started_at = datetime.now(timezone.utc)
        LOGGER.info(
            "Scheduler started (owner=%s, interval=%ss)",
            self._orchestrator.owner_id,
            self._interval,
        )
        try:
            while not self._stop_event.is_set():
                self._run_cycle()
                if self._max_cycles is not None and self._cycles >= self._max_cycles:
                    break
                self._sleep()
        except KeyboardInterrupt:
            LOGGER.info("Interrupt received; shutting down aimailman daemon.")
            self._stop_event.set()
        finally:
            self._restore_signal_handlers()
            LOGGER.info("Scheduler stopped after %s cycle(s)", self._cycles)

    def stop(self) -> None:
        self._stop_event.set()

    def reload_now(self) -> None:
        """Rebuild the orchestrator now instead of waiting for SIGHUP."""

        self._reload()

    def status_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {
            "owner": self._orchestrator.owner_id,
            "source_folder": self._orchestrator.source_folder,
            "interval_seconds": self._interval,
            "running": self._started_at is not None and not self._stop_event.is_set(),
            "started_at": self._started_at.isoformat() if self._started_at else None,
        }
        snapshot.update(self._orchestrator.metrics.snapshot())
        if self._last_report is not None:
            snapshot["last_cycle"] = self._last_report.summary()
        return snapshot

    def _run_cycle(self) -> None:
        self._cycles += 1
        LOGGER.info("Starting processing cycle %s", self._cycles)
        try:
            self._last_report = self._orchestrator.run_cycle(self._stop_event)
        except Exception:
            LOGGER.exception("Processing cycle %s crashed; continuing", self._cycles)

    def _sleep(self) -> None:
        deadline = time.monotonic() + self._interval
        LOGGER.debug("Waiting %ss before the next cycle", self._interval)
        while not self._stop_event.is_set():
            self._handle_pending_events()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._stop_event.wait(min(remaining, self._poll_seconds))

    def _handle_pending_events(self) -> None:
        if self._reload_event.is_set():
            self._reload_event.clear()
            self._reload()
        if self._status_event.is_set():
            self._status_event.clear()
            self._dump_status()

    def _install_signal_handlers(self) -> None:
        interested = tuple(
            sig for sig in (signal.SIGTERM, signal.SIGINT, SIG_HUP, SIG_USR1) if sig is not None
        )
        for sig in interested:
            try:
                previous = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except ValueError:
                # Not on the main thread.
                continue
            self._installed_signals[sig] = previous

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._installed_signals.items():
            try:
                signal.signal(sig, handler)
            except (TypeError, ValueError):
                continue
        self._installed_signals.clear()

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if signum in (signal.SIGTERM, signal.SIGINT):
            LOGGER.info("Signal %s: stopping after the current message", signum)
            self._stop_event.set()
        elif SIG_HUP is not None and signum == SIG_HUP:
            LOGGER.info("SIGHUP: configuration reload queued for the next pause")
            self._reload_event.set()
        elif SIG_USR1 is not None and signum == SIG_USR1:
            LOGGER.info("SIGUSR1: status report queued")
            self._status_event.set()

    def _reload(self) -> None:
        if not self._reload_callback:
            LOGGER.info("Ignoring reload request; scheduler has no reload callback")
            return
        try:
            result = self._reload_callback()
        except Exception:
            LOGGER.exception("Configuration reload failed; keeping the current settings")
            return
        metrics = self._orchestrator.metrics
        self._orchestrator = result.orchestrator
        self._orchestrator.metrics = metrics
        self._interval = _effective_interval(result.interval_seconds)
        LOGGER.info(
            "Reloaded configuration (owner=%s, interval=%ss)",
            self._orchestrator.owner_id,
            self._interval,
        )

    def _dump_status(self) -> None:
        snapshot = self.status_snapshot()
        if self._status_callback:
            try:
                message = self._status_callback(snapshot)
            except Exception:
                LOGGER.exception("Status formatter raised; falling back to the default line")
                message = None
            if message:
                LOGGER.info(message)
                return
        LOGGER.info(
            "aimailman status: owner=%s cycles=%s moved=%s no_action=%s errors=%s tagged=%s",
            snapshot["owner"],
            snapshot["cycles"],
            snapshot["moved"],
            snapshot["no_action"],
            snapshot["classifier_errors"],
            snapshot["tagged"],
        )


def _effective_interval(seconds: int) -> int:
    if seconds <= 0:
        LOGGER.warning(
            "Polling interval %ss is not positive; using %ss", seconds, FALLBACK_POLLING_INTERVAL
        )
        return FALLBACK_POLLING_INTERVAL
    return seconds


__all__ = ["CycleScheduler", "ReloadResult"]
