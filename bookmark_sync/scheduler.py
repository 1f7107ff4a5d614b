"""Recurring mirror passes driven by the autoSync setting.

The scheduler is either stopped or running one interval job. Starting twice
replaces the job instead of adding a second timer, and a pass still in flight
when the next tick fires causes that tick to be dropped rather than queued.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import SYNC_INTERVAL_SECONDS
from .reconciler import SyncAbortedError
from .settings import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover
    from apscheduler.job import Job
    from apscheduler.schedulers.base import BaseScheduler

    from .models import MirrorResult
    from .reconciler import Reconciler
    from .settings import SettingsChanged, SettingsGateway

LOGGER = logging.getLogger(__name__)

MIRROR_JOB_ID = "bookmark_mirror"


class MirrorScheduler:
    """Own the recurring mirror job and serialise mirror passes."""

    def __init__(
        self,
        reconciler: Reconciler,
        interval_seconds: int = SYNC_INTERVAL_SECONDS,
        job_scheduler: BaseScheduler | None = None,
    ) -> None:
        """Initialise the scheduler.

        Args:
            reconciler: Runs the mirror policy.
            interval_seconds: Period between two passes.
            job_scheduler: APScheduler instance to register the job with; a
                ``BackgroundScheduler`` is created when omitted.

        """
        self._reconciler = reconciler
        self._interval_seconds = interval_seconds
        self._job_scheduler = job_scheduler or BackgroundScheduler()
        self._job: Job | None = None
        self._state_lock = threading.Lock()
        self._pass_lock = threading.Lock()

    @property
    def running(self) -> bool:
        """True while a recurring job is registered."""
        return self._job is not None

    def start(self) -> None:
        """(Re)start the recurring job; the first pass is due immediately."""
        with self._state_lock:
            if self._job is not None:
                self._job.remove()
                self._job = None
                LOGGER.debug("Replaced existing mirror job")
            if not self._job_scheduler.running:
                self._job_scheduler.start()
            self._job = self._job_scheduler.add_job(
                self.run_once,
                trigger=IntervalTrigger(seconds=self._interval_seconds),
                id=MIRROR_JOB_ID,
                name="Bookmark mirror",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(timezone.utc),
            )
        LOGGER.info("Auto-sync started (every %ds)", self._interval_seconds)

    def stop(self) -> None:
        """Cancel future passes; a pass already running is left to finish."""
        with self._state_lock:
            if self._job is None:
                return
            self._job.remove()
            self._job = None
        LOGGER.info("Auto-sync stopped")

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the job and the underlying APScheduler instance."""
        self.stop()
        if self._job_scheduler.running:
            self._job_scheduler.shutdown(wait=wait)

    def run_once(self) -> MirrorResult | None:
        """Run one mirror pass unless another is still in flight.

        Returns the pass result, or None when the pass was dropped or failed.
        Failures are logged and never propagate to the caller.
        """
        if not self._pass_lock.acquire(blocking=False):
            LOGGER.info("Mirror pass still in flight; dropping this tick")
            return None
        try:
            return self._reconciler.mirror()
        except (SyncAbortedError, ConfigurationError) as exc:
            LOGGER.error("Auto-sync failed: %s", exc)  # noqa: TRY400
        except Exception:
            LOGGER.exception("Unexpected error during auto-sync")
        finally:
            self._pass_lock.release()
        return None

    def handle_settings_changed(self, event: SettingsChanged) -> None:
        """Start or stop the job to follow the autoSync flag."""
        if event.settings.auto_sync:
            self.start()
        else:
            self.stop()

    def resume(self, gateway: SettingsGateway) -> bool:
        """Start the job at process start when autoSync is persisted as on."""
        if gateway.read().auto_sync:
            self.start()
            return True
        LOGGER.debug("Auto-sync disabled in settings; scheduler left stopped")
        return False
