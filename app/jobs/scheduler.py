"""
Background Jobs - built-in periodic maintenance triggers
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime, timedelta, timezone
import logging

logger = logging.getLogger('main')


class JobScheduler:
    """Periodic triggers that exist regardless of the user's scheduled jobs"""

    def __init__(self):
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)
        self._jobs_registered = False

    def init_app(self, verifier, scheduler_service, sweep_interval_hours=24, history_retention_days=30):
        """Register the built-in jobs and start the scheduler"""
        self._register_jobs(verifier, scheduler_service, sweep_interval_hours, history_retention_days)
        self.scheduler.start()
        logger.info("Job scheduler initialized")

    def _register_jobs(self, verifier, scheduler_service, sweep_interval_hours, history_retention_days):
        if self._jobs_registered:
            return

        # Stale link sweep (every 24 hours, first run 10 min after startup)
        self.scheduler.add_job(
            func=self._verify_old_links_job,
            trigger=IntervalTrigger(
                hours=sweep_interval_hours,
                start_date=datetime.now(timezone.utc) + timedelta(minutes=10),
            ),
            id='verify_old_links',
            name='Verify old download links',
            args=[verifier],
            max_instances=1,
            coalesce=True,
        )

        # Execution history housekeeping (hourly)
        self.scheduler.add_job(
            func=self._prune_history_job,
            trigger=IntervalTrigger(hours=1),
            id='prune_job_history',
            name='Prune job execution history',
            args=[scheduler_service, history_retention_days],
            max_instances=1,
            coalesce=True,
        )

        self._jobs_registered = True
        logger.info("Background jobs registered")

    def get_jobs(self):
        return [
            {
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]

    def _verify_old_links_job(self, verifier):
        verifier.verify_old_links()

    def _prune_history_job(self, scheduler_service, days):
        scheduler_service.prune_history(days)

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Job scheduler shutdown")
