"""
Prode background scheduler

Two periodic jobs run on an APScheduler BackgroundScheduler:
locking matches whose prediction window has closed, and settling finished
matches that still have unscored predictions.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from prode import db
from prode.services.match_service import lock_due_matches
from prode.services.settlement import SettlementProcessor

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages background jobs for match locking and pending settlement"""

    JOBS = ("lock_matches", "settle_pending")

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.is_running = False
        self.job_stats = {
            job_id: {
                "last_run": None,
                "total_runs": 0,
                "failed_runs": 0,
                "last_error": None,
                "last_result": None,
            }
            for job_id in self.JOBS
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
            self.scheduler.start()
            self.is_running = True
            logger.info("Scheduler started successfully")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")
        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        config = self.app.config

        self.scheduler.add_job(
            func=self._lock_matches,
            trigger=IntervalTrigger(minutes=config.get("LOCK_MATCHES_INTERVAL_MINUTES", 5)),
            id="lock_matches",
            name="Lock Matches Past Lock Time",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        self.scheduler.add_job(
            func=self._settle_pending,
            trigger=IntervalTrigger(
                minutes=config.get("SETTLE_PENDING_INTERVAL_MINUTES", 10)
            ),
            id="settle_pending",
            name="Settle Finished Matches With Pending Predictions",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        logger.info("Core scheduled jobs added")

    def _lock_matches(self):
        with self.app.app_context():
            try:
                result = lock_due_matches()
                self._update_stats("lock_matches", result=result)
                return result
            except Exception as e:
                db.session.rollback()
                logger.error(f"Error in lock matches job: {e}", exc_info=True)
                self._update_stats("lock_matches", error=e)
            finally:
                db.session.remove()

    def _settle_pending(self):
        with self.app.app_context():
            try:
                result = SettlementProcessor().settle_pending_matches()
                self._update_stats("settle_pending", result=result)
                return result
            except Exception as e:
                db.session.rollback()
                logger.error(f"Error in settle pending job: {e}", exc_info=True)
                self._update_stats("settle_pending", error=e)
            finally:
                db.session.remove()

    def _update_stats(self, job_id, result=None, error=None):
        stats = self.job_stats[job_id]
        stats["last_run"] = datetime.now(timezone.utc)
        stats["total_runs"] += 1
        if error is not None:
            stats["failed_runs"] += 1
            stats["last_error"] = str(error)
        else:
            stats["last_error"] = None
            stats["last_result"] = result

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = {}
        for job_id, job_stats in self.job_stats.items():
            stats[job_id] = dict(job_stats)
            last_run = job_stats["last_run"]
            stats[job_id]["last_run"] = last_run.isoformat() if last_run else None

        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_run(self, job_id):
        """Run a job now, outside its schedule. Returns (success, message)."""
        runners = {
            "lock_matches": self._lock_matches,
            "settle_pending": self._settle_pending,
        }
        if job_id not in runners:
            return False, f"Unknown job: {job_id}"

        result = runners[job_id]()
        if self.job_stats[job_id]["last_error"]:
            return False, f"Manual {job_id} failed: {self.job_stats[job_id]['last_error']}"
        return True, f"Manual {job_id} completed: {result}"


# Global scheduler instance
scheduler_service = SchedulerService()
