# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Background Scheduler - Runs the sync jobs on their university-time schedule
"""
import logging
import threading
import time
from threading import Lock
from typing import Callable, Dict, Optional

import schedule

import config
from sync.jobs import ScheduleSyncEngine
from utils.timezone import format_local_time, get_local_time

logger = logging.getLogger(__name__)

DEAN_GROUPS_MONTH = 10
DEAN_GROUPS_DAY = 1


class SyncScheduler:
    """Manages background job scheduling"""

    def __init__(self, engine: ScheduleSyncEngine, scheduler: Optional[schedule.Scheduler] = None,
                 check_interval: float = 30):
        self.engine = engine
        self.scheduler = scheduler or schedule.Scheduler()
        self.check_interval = check_interval

        self.scheduler_lock = Lock()
        self.scheduler_running = False
        self.scheduler_thread = None
        self.job_threads: Dict[str, threading.Thread] = {}

    def register_jobs(self):
        """Register every job with the schedule library"""
        tz = config.TIMEZONE
        self.scheduler.every(config.CURRENT_WEEK_INTERVAL_MIN).minutes.do(
            self._spawn, 'current_week', self.engine.update_current_week
        )
        self.scheduler.every(config.SESSION_RENEW_INTERVAL_MIN).minutes.do(
            self._spawn, 'renew_session', self.engine.renew_session
        )
        for hour in range(config.FAST_SCAN_FIRST_HOUR, config.FAST_SCAN_LAST_HOUR + 1,
                          config.FAST_SCAN_INTERVAL_HOURS):
            self.scheduler.every().day.at(f"{hour:02d}:00", tz).do(
                self._spawn, 'fast_scan', self._fast_scan
            )
        self.scheduler.every().sunday.at(config.FULL_SCAN_TIME, tz).do(
            self._spawn, 'full_scan', self._full_scan
        )
        self.scheduler.every().day.at(config.DEAN_GROUPS_TIME, tz).do(self._dean_groups_if_due)

        logger.info(f"Registered {len(self.scheduler.get_jobs())} scheduled jobs ({tz})")

    def start(self):
        """Start the scheduler"""
        with self.scheduler_lock:
            if self.scheduler_thread is None or not self.scheduler_thread.is_alive():
                logger.info(f"Starting scheduler thread at {format_local_time(get_local_time())}...")
                if not self.scheduler.get_jobs():
                    self.register_jobs()
                self.scheduler_running = True
                self.scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True)
                self.scheduler_thread.start()
            else:
                logger.info("Scheduler already running")

    def stop(self):
        """Stop the scheduler"""
        with self.scheduler_lock:
            self.scheduler_running = False

        logger.info(f"Stopping scheduler at {format_local_time(get_local_time())}...")

    def is_running(self):
        """Check if scheduler is running"""
        with self.scheduler_lock:
            return self.scheduler_running and self.scheduler_thread and self.scheduler_thread.is_alive()

    def _run_scheduler(self):
        """Run the scheduler loop"""
        logger.info(f"Scheduler started at {format_local_time(get_local_time())}")

        while True:
            with self.scheduler_lock:
                if not self.scheduler_running:
                    break

            self.scheduler.run_pending()
            time.sleep(self.check_interval)

        logger.info(f"Scheduler stopped at {format_local_time(get_local_time())}")

    def _spawn(self, name: str, func: Callable[[], object]) -> Optional[threading.Thread]:
        """Run one job on its own thread; a job still running from its last trigger is not started twice"""
        with self.scheduler_lock:
            running = self.job_threads.get(name)
            if running is not None and running.is_alive():
                logger.warning(f"⚠️ Job '{name}' is still running - skipping this trigger")
                return None
            thread = threading.Thread(target=self._run_job, args=(name, func), name=f"job-{name}", daemon=True)
            self.job_threads[name] = thread
        thread.start()
        return thread

    @staticmethod
    def _run_job(name: str, func: Callable[[], object]):
        try:
            func()
        except Exception as e:
            # Job failures are already logged by the engine; keep the scheduler alive
            logger.error(f"❌ Scheduled job '{name}' failed at {format_local_time(get_local_time())}: {e}")

    def _fast_scan(self):
        return self.engine.run_semester_updates(config.FAST_WEEKS_TO_SCAN)

    def _full_scan(self):
        return self.engine.run_semester_updates(config.FULL_WEEKS_TO_SCAN)

    def _dean_groups_if_due(self):
        today = get_local_time()
        if today.month != DEAN_GROUPS_MONTH or today.day != DEAN_GROUPS_DAY:
            return None
        return self._spawn('dean_groups', self.engine.update_dean_groups)
