"""Periodic accrual for enrolled accounts.

The scheduler credits every enrolled account a fixed amount once per period.
The amount is the configured hourly rate spread evenly over the ticks in an
hour, kept as an exact Fraction (2200 cents/hour at 60 s ticks is 110/3 cents
per tick).

Ticks run as an APScheduler interval job on a BackgroundScheduler. The first
tick fires one full period after start, and ``max_instances=1`` keeps ticks
strictly sequential. Cancellation is cooperative: the job checks a cancel
event before each tick, and ``stop()`` waits for a tick that has already
started to finish instead of interrupting it.
"""

import logging
import math
import threading
from enum import Enum
from fractions import Fraction
from typing import Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .models import to_fraction
from .service import LedgerService

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600
TICK_JOB_ID = "accrual_tick"


class SchedulerState(str, Enum):
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


def per_tick_amount(hourly_rate: Any, tick_seconds: Any) -> Fraction:
    rate = to_fraction(hourly_rate)
    period = to_fraction(tick_seconds)
    if rate < 0:
        raise ValueError(f"hourly rate must be non-negative, got {hourly_rate}")
    if period <= 0:
        raise ValueError(f"tick period must be positive, got {tick_seconds}")
    return rate * period / SECONDS_PER_HOUR


class AccrualScheduler:
    def __init__(self, service: LedgerService, hourly_rate: Any, tick_seconds: Any = 60):
        self.service = service
        self.tick_seconds = tick_seconds
        self.amount = per_tick_amount(hourly_rate, tick_seconds)
        self.state = SchedulerState.STOPPED
        self.ticks_completed = 0
        self._cancel = threading.Event()
        self._scheduler: Optional[BackgroundScheduler] = None

    def tick(self) -> int:
        """Credit every enrolled account once. Returns how many succeeded."""
        try:
            enrolled = self.service.list_enrolled()
        except Exception:
            logger.exception("Could not read enrollment set, skipping tick")
            return 0

        credited = 0
        for user_id in enrolled:
            try:
                self.service.ensure_account(user_id)
                self.service.credit(user_id, self.amount)
                credited += 1
            except Exception:
                logger.exception("Accrual failed for %s", user_id)

        self.ticks_completed += 1
        logger.debug("Tick %d credited %d/%d accounts", self.ticks_completed, credited, len(enrolled))
        return credited

    def run_tick(self) -> None:
        """Job body: one tick, unless cancellation has been requested."""
        if self._cancel.is_set():
            return
        try:
            self.tick()
        except Exception:
            logger.exception("Unexpected error during accrual tick")

    def start(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            return
        self._cancel.clear()
        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self.run_tick,
            IntervalTrigger(seconds=float(self.tick_seconds)),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=max(1, math.ceil(self.tick_seconds)),
        )
        self._scheduler.start()
        self.state = SchedulerState.RUNNING
        logger.info("Accrual scheduler running: %s cents every %ss", self.amount, self.tick_seconds)

    def stop(self, wait: bool = True) -> None:
        """Request cancellation and shut the job scheduler down.

        With ``wait`` set, blocks until a tick already in progress completes.
        """
        self._cancel.set()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        if self.state == SchedulerState.RUNNING:
            logger.info("Accrual scheduler stopped after %d ticks", self.ticks_completed)
        self.state = SchedulerState.STOPPED

    def next_tick_at(self):
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(TICK_JOB_ID)
        return job.next_run_time if job is not None else None
