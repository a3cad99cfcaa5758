"""Task coordination: the single authority that wires store, scheduler and runners."""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..capture.runner import ArtifactCapture, CaptureOutcome
from ..config import AutomationConfig, get_config, time_to_cron
from ..notifications.email_notifier import EmailNotifier
from ..store.principal_store import Principal, PrincipalStore
from .job_scheduler import JobScheduler, ScheduledJob


logger = structlog.get_logger(__name__)

RELOAD_JOB_ID = "reload_principals"
HEALTH_JOB_ID = "health_check"


class TaskCoordinator:
    """Coordinates principal registration, reloads and scheduled runs."""

    def __init__(
        self,
        config: Optional[AutomationConfig] = None,
        store: Optional[PrincipalStore] = None,
        capture: Optional[ArtifactCapture] = None,
        notifier: Optional[EmailNotifier] = None,
        scheduler: Optional[JobScheduler] = None
    ):
        self.config = config or get_config()
        self.store = store or PrincipalStore(config=self.config)
        self.capture = capture or ArtifactCapture(self.config)
        self.notifier = notifier or EmailNotifier(self.config)
        self.scheduler = scheduler or JobScheduler(self.capture, self.notifier, config=self.config)

        self.task_history: List[Dict[str, Any]] = []

    async def start(self):
        """Start the scheduler, load principals and install the system jobs."""
        await self.scheduler.start()
        await self.reload_principals()
        self._setup_default_jobs()
        logger.info("Task coordinator started")

    async def stop(self):
        """Stop the scheduler."""
        await self.scheduler.stop()
        logger.info("Task coordinator stopped")

    def _setup_default_jobs(self):
        """Install the daily reload and the self health check."""
        reload_cron = time_to_cron(self.config.reload_time)
        self.scheduler.add_cron_job(
            job_id=RELOAD_JOB_ID,
            func=self.reload_principals,
            cron_expression=reload_cron,
            description="Reload principals and rebuild capture jobs"
        )

        if self.config.health_check_interval > 0:
            self.scheduler.add_interval_job(
                job_id=HEALTH_JOB_ID,
                func=self.health_check,
                seconds=self.config.health_check_interval,
                description="Ping own health endpoint"
            )

        logger.info("Setup system jobs",
                   reload_schedule=reload_cron,
                   health_interval=self.config.health_check_interval)

    async def reload_principals(self) -> int:
        """Re-read the store and replace every principal job."""
        principals = self.store.load()
        scheduled = self.scheduler.replace_all(principals)

        self._record_task("reload", {
            "principals": len(principals),
            "scheduled": len(scheduled),
            "store_error": str(self.store.last_error) if self.store.last_error else None
        })
        logger.info("Reloaded principals", principals=len(principals), scheduled=len(scheduled))
        return len(scheduled)

    def register(self, principal: Principal) -> Optional[ScheduledJob]:
        """Persist a new principal and schedule it. Raises ``DuplicateKey``."""
        self.store.add(principal)
        scheduled = None
        if principal.is_schedulable:
            scheduled = self.scheduler.schedule_one(principal)
        else:
            logger.info("Registered principal without scheduling, fields missing", login_id=principal.login_id)
        self._record_task("register", {"login_id": principal.login_id, "scheduled": scheduled is not None})
        return scheduled

    async def run_now(self, login_id: str) -> Optional[CaptureOutcome]:
        """Fire a principal's capture immediately."""
        outcome = await self.scheduler.run_job_once(login_id)
        self._record_task("manual_run", {
            "login_id": login_id,
            "outcome": outcome.to_dict() if outcome else None
        })
        return outcome

    async def health_check(self) -> Dict[str, Any]:
        """Ping this service's own health endpoint and log the result."""
        url = f"{self.config.base_url}/health"
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(url)
            result = {"url": url, "status_code": response.status_code, "ok": response.status_code == 200}
            logger.info("Health check status", **result)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            result = {"url": url, "status_code": None, "ok": False, "error": str(e)}
            logger.error("Error during health check", url=url, error=str(e))
        return result

    def _record_task(self, task_type: str, details: Dict[str, Any]):
        self.task_history.append({
            "type": task_type,
            "completed_at": datetime.utcnow().isoformat(),
            **details
        })
        # Keep only last 100 tasks in history
        if len(self.task_history) > 100:
            self.task_history = self.task_history[-100:]

    def get_system_status(self) -> Dict[str, Any]:
        """Get system status."""
        return {
            "scheduler": self.scheduler.get_scheduler_status(),
            "principals": len(self.store.principals),
            "store_error": str(self.store.last_error) if self.store.last_error else None,
            "jobs": self.scheduler.list_jobs(),
            "recent_tasks": self.task_history[-10:]
        }
