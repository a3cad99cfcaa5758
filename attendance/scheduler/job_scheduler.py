"""Job scheduling for per-principal daily captures."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..capture.runner import ArtifactCapture, CaptureOutcome
from ..config import AutomationConfig, get_config, time_to_cron
from ..notifications.email_notifier import EmailNotifier
from ..store.principal_store import Principal


logger = structlog.get_logger(__name__)


@dataclass
class ScheduledJob:
    """Handle for one principal's recurring capture trigger."""
    login_id: str
    job: Job
    principal: Principal
    added_at: datetime = field(default_factory=datetime.utcnow)
    stopped: bool = False

    def stop(self) -> bool:
        """Cancel future firings. An in-flight run is left to finish."""
        if self.stopped:
            return False
        self.stopped = True
        try:
            self.job.remove()
        except JobLookupError:
            logger.debug("Trigger already gone", login_id=self.login_id, job_id=self.job.id)
        return True


def _cron_trigger(cron_expression: str, timezone: str) -> CronTrigger:
    # Parse cron expression (format: "minute hour day month day_of_week")
    cron_parts = cron_expression.split()
    if len(cron_parts) != 5:
        raise ValueError(f"Invalid cron expression: {cron_expression}")

    return CronTrigger(
        minute=cron_parts[0],
        hour=cron_parts[1],
        day=cron_parts[2],
        month=cron_parts[3],
        day_of_week=cron_parts[4],
        timezone=timezone
    )


class JobScheduler:
    """Owns the one-trigger-per-principal registry on an APScheduler event loop scheduler.

    The registry is only changed through ``schedule_one``, ``replace_all`` and
    ``stop_all``. None of them await, so on the event loop each is a single
    uninterrupted step.
    """

    def __init__(
        self,
        capture: ArtifactCapture,
        notifier: EmailNotifier,
        config: Optional[AutomationConfig] = None,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.config = config or get_config()
        self.capture = capture
        self.notifier = notifier
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.config.timezone)
        self.jobs: Dict[str, ScheduledJob] = {}
        self.system_jobs: Dict[str, Dict[str, Any]] = {}
        self.last_outcomes: Dict[str, CaptureOutcome] = {}
        self.running = False

    async def start(self, paused: bool = False):
        """Start the job scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start(paused=paused)
        self.running = True
        logger.info("Job scheduler started", timezone=self.config.timezone, paused=paused)

    async def stop(self):
        """Stop the job scheduler."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def schedule_one(self, principal: Principal) -> Optional[ScheduledJob]:
        """Install the daily capture trigger for a principal, replacing any existing one."""
        login_id = principal.login_id
        if not principal.is_schedulable:
            logger.info("Not scheduling principal with missing fields", login_id=login_id)
            return None

        trigger = _cron_trigger(time_to_cron(self.config.run_time), self.config.timezone)

        previous = self.jobs.pop(login_id, None)
        if previous is not None:
            previous.stop()
            logger.info("Job already exists, replacing", login_id=login_id)

        job = self.scheduler.add_job(
            func=self._fire,
            trigger=trigger,
            id=f"capture:{login_id}:{uuid.uuid4().hex[:8]}",
            args=(principal,),
            name=f"Daily capture for {login_id}",
            max_instances=self.config.max_concurrent_runs_per_principal,
            misfire_grace_time=self.config.misfire_grace_time,
            coalesce=True
        )

        scheduled = ScheduledJob(login_id=login_id, job=job, principal=principal)
        self.jobs[login_id] = scheduled

        logger.info("Scheduled daily job",
                   login_id=login_id,
                   run_time=self.config.run_time,
                   timezone=self.config.timezone)
        return scheduled

    def replace_all(self, principals: Iterable[Principal]) -> List[ScheduledJob]:
        """Stop every principal job and schedule the given principals from scratch."""
        stopped = self.stop_all()

        scheduled = []
        for principal in principals:
            if not principal.is_schedulable:
                continue
            job = self.schedule_one(principal)
            if job is not None:
                scheduled.append(job)

        logger.info("Replaced principal jobs", stopped=stopped, scheduled=len(self.jobs))
        return scheduled

    def stop_all(self) -> int:
        """Stop and forget every principal job. Returns how many were stopped."""
        count = 0
        for job in list(self.jobs.values()):
            if job.stop():
                count += 1
        self.jobs.clear()
        return count

    def active_login_ids(self) -> List[str]:
        return sorted(self.jobs)

    async def _fire(self, principal: Principal) -> Optional[CaptureOutcome]:
        """Run one capture and notify. Exceptions stop here so the trigger keeps firing."""
        login_id = principal.login_id
        logger.info("Running scheduled capture", login_id=login_id, at=datetime.utcnow().isoformat())

        try:
            outcome = await self.capture.run(principal)
        except Exception as e:
            logger.error("Capture raised unexpectedly", login_id=login_id, error=str(e))
            return None

        self.last_outcomes[login_id] = outcome

        try:
            await self.notifier.send(principal, outcome)
        except Exception as e:
            logger.error("Notifier raised unexpectedly", login_id=login_id, error=str(e))

        return outcome

    async def run_job_once(self, login_id: str) -> Optional[CaptureOutcome]:
        """Run a principal's job immediately (one-time execution)."""
        scheduled = self.jobs.get(login_id)
        if scheduled is None:
            logger.warning("Job not found", login_id=login_id)
            return None

        outcome = await self._fire(scheduled.principal)
        logger.info("Executed job manually", login_id=login_id,
                    success=outcome.success if outcome else False)
        return outcome

    def add_cron_job(
        self,
        job_id: str,
        func: Callable,
        cron_expression: str,
        description: Optional[str] = None
    ):
        """Add a cron-scheduled system job (not tied to a principal)."""
        if job_id in self.system_jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=_cron_trigger(cron_expression, self.config.timezone),
            id=job_id,
            name=description or job_id,
            coalesce=True,
            misfire_grace_time=self.config.misfire_grace_time
        )

        self.system_jobs[job_id] = {
            "job": job,
            "type": "cron",
            "expression": cron_expression,
            "description": description,
            "added_at": datetime.utcnow()
        }

        logger.info("Added cron job",
                   job_id=job_id,
                   cron=cron_expression,
                   description=description)

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: int,
        description: Optional[str] = None
    ):
        """Add an interval-based system job."""
        if job_id in self.system_jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=description or job_id,
            coalesce=True
        )

        self.system_jobs[job_id] = {
            "job": job,
            "type": "interval",
            "seconds": seconds,
            "description": description,
            "added_at": datetime.utcnow()
        }

        logger.info("Added interval job",
                   job_id=job_id,
                   interval_seconds=seconds,
                   description=description)

    def remove_job(self, job_id: str) -> bool:
        """Remove a system job."""
        if job_id not in self.system_jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            logger.warning("Scheduler job already removed", job_id=job_id)
        del self.system_jobs[job_id]
        logger.info("Removed job", job_id=job_id)
        return True

    def get_job_status(self, login_id: str) -> Optional[Dict[str, Any]]:
        """Get status information for a principal's job."""
        scheduled = self.jobs.get(login_id)
        if scheduled is None:
            return None

        next_run = getattr(scheduled.job, "next_run_time", None)
        last_outcome = self.last_outcomes.get(login_id)

        return {
            "login_id": login_id,
            "job_id": scheduled.job.id,
            "name": scheduled.job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "added_at": scheduled.added_at.isoformat(),
            "last_outcome": last_outcome.to_dict() if last_outcome else None
        }

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all principal jobs."""
        job_statuses = []
        for login_id in self.active_login_ids():
            status = self.get_job_status(login_id)
            if status:
                job_statuses.append(status)

        return job_statuses

    def get_scheduler_status(self) -> Dict[str, Any]:
        """Get overall scheduler status."""
        next_runs = [
            job.next_run_time for job in self.scheduler.get_jobs()
            if getattr(job, "next_run_time", None)
        ]
        next_run = min(next_runs, default=None)
        return {
            "running": self.running,
            "timezone": self.config.timezone,
            "run_time": self.config.run_time,
            "job_count": len(self.jobs),
            "system_jobs": sorted(self.system_jobs),
            "next_run": next_run.isoformat() if next_run else None
        }
