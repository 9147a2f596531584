"""
Scheduler tick: every periodic job, run in a fixed order every 30 seconds.

Each step commits its own writes and is isolated from the others; a failing
step is logged and the remaining steps still run.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import TICK_INTERVAL_SECONDS, utc_now


class SchedulerTick:
    """Composition root for the periodic work."""

    def __init__(self, store, schedules, confirmations, reminders, staff, inventory, heartbeat,
                 sessions=None, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.schedules = schedules
        self.confirmations = confirmations
        self.reminders = reminders
        self.staff = staff
        self.inventory = inventory
        self.heartbeat = heartbeat
        self.sessions = sessions
        self.clock = clock
        self.logger = logging.getLogger("scheduler")
        self.scheduler: Optional[BackgroundScheduler] = None
        self.last_run: Optional[datetime] = None
        self.last_errors: Dict[str, str] = {}

    def steps(self) -> List[Tuple[str, Callable[[datetime], object]]]:
        steps = [
            ("refresh", lambda now: self.store.refresh()),
            ("schedules", self.schedules.tick),
            ("veg_daily", self.confirmations.maybe_initiate_daily),
            ("veg_followups", self.confirmations.tick),
            ("reminders", self.reminders.tick),
            ("attendance_prompt", self.staff.prompt_attendance),
            ("daily_payments", self.staff.check_daily_payments),
            ("monthly_payroll", self.staff.check_monthly_payroll),
            ("inventory", lambda now: self.inventory.evaluate_all()),
            ("heartbeat", self.heartbeat.check),
        ]
        if self.sessions is not None:
            steps.append(("sessions", self.sessions.purge_expired))
        return steps

    def run_once(self, now: Optional[datetime] = None) -> Dict[str, object]:
        """
        Run one tick.

        Returns:
            Dict[str, object]: Result of every step that completed, by name
        """
        now = now or self.clock()
        start = time.time()
        results = {}
        errors = {}

        for name, step in self.steps():
            try:
                results[name] = step(now)
            except Exception as e:
                errors[name] = str(e)
                self.logger.error(f"Tick step '{name}' failed: {e}", exc_info=True)

        self.last_run = now
        self.last_errors = errors
        duration = (time.time() - start) * 1000
        self.logger.debug(f"Tick at {now.isoformat()} finished in {duration:.2f}ms ({len(errors)} error(s))")
        return results

    def _job(self):
        try:
            self.run_once()
        except Exception as e:
            self.logger.error(f"Scheduler tick crashed: {e}", exc_info=True)

    def start(self):
        """Start the background interval job."""
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._job,
            IntervalTrigger(seconds=TICK_INTERVAL_SECONDS),
            id="tick",
            max_instances=1,
            coalesce=True,
            next_run_time=utc_now(),
        )
        self.scheduler.start()
        self.logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} job(s), every {TICK_INTERVAL_SECONDS}s")

    def stop(self):
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("Scheduler stopped")
