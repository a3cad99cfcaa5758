"""Main entry point for the attendance automation service."""

import asyncio
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
import uvicorn
from fastapi import BackgroundTasks, FastAPI, Form
from fastapi.responses import JSONResponse

from attendance.config import AutomationConfig, get_config
from attendance.errors import DuplicateKey, StoreCorrupt
from attendance.logging_setup import configure_logging
from attendance.scheduler.task_coordinator import TaskCoordinator
from attendance.store.principal_store import Principal


logger = structlog.get_logger(__name__)


def create_app(
    config: Optional[AutomationConfig] = None,
    coordinator: Optional[TaskCoordinator] = None
) -> FastAPI:
    """Build the FastAPI application around a task coordinator."""
    config = config or get_config()
    coordinator = coordinator or TaskCoordinator(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await coordinator.start()
        logger.info("Attendance service started", port=config.port)
        try:
            yield
        finally:
            await coordinator.stop()
            logger.info("Attendance service stopped")

    app = FastAPI(title="Attendance Automation", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.coordinator = coordinator

    @app.get("/")
    async def root():
        return {
            "service": "attendance-automation",
            "schedule": f"daily at {config.run_time} {config.timezone}",
            "endpoints": ["POST /add-user", "GET /users", "GET /health", "GET /status", "POST /run/{username}"]
        }

    @app.post("/add-user")
    async def add_user(
        name: str = Form(""),
        username: str = Form(""),
        password: str = Form(""),
        email: str = Form("")
    ):
        """Register a principal and schedule its daily capture."""
        if not username.strip() or not password or not email.strip():
            return JSONResponse(content={"error": "All fields are required."}, status_code=400)

        principal = Principal(
            display_name=name.strip(),
            login_id=username.strip(),
            secret=password,
            notify_address=email.strip()
        )

        try:
            coordinator.register(principal)
        except DuplicateKey:
            return JSONResponse(content={"error": "User already exists."}, status_code=409)
        except OSError as e:
            logger.error("Could not persist user", login_id=principal.login_id, error=str(e))
            return JSONResponse(content={"error": "Could not save user."}, status_code=500)

        return {"message": f"User {principal.login_id} scheduled daily at {config.run_time} {config.timezone}"}

    @app.get("/users")
    async def list_users():
        """Return the persisted principal list as stored."""
        try:
            return coordinator.store.read_raw()
        except StoreCorrupt:
            return JSONResponse(content={"error": "Could not read users file"}, status_code=500)

    @app.get("/health")
    async def health():
        return {"status": "UP", "time": datetime.now(timezone.utc).isoformat()}

    @app.get("/status")
    async def get_status():
        return coordinator.get_system_status()

    @app.post("/run/{username}")
    async def run_now(username: str, background_tasks: BackgroundTasks):
        """Trigger a principal's capture immediately."""
        if username not in coordinator.scheduler.jobs:
            return JSONResponse(content={"error": f"No job scheduled for {username}"}, status_code=404)

        background_tasks.add_task(coordinator.run_now, username)
        return {"message": f"Capture started for {username}", "status": "running"}

    return app


async def run_cli_command(command: str, *args):
    """Run CLI commands for testing and manual execution."""
    config = get_config()
    coordinator_instance = TaskCoordinator(config)

    if command == "run":
        if not args:
            print("Usage: python main.py run <username>")
            return
        principals = coordinator_instance.store.load()
        principal = next((p for p in principals if p.login_id == args[0]), None)
        if principal is None:
            print(f"Unknown user: {args[0]}")
            return
        outcome = await coordinator_instance.capture.run(principal)
        sent = await coordinator_instance.notifier.send(principal, outcome)
        print("Capture Result:")
        print(f"Success: {outcome.success}")
        print(f"Screenshot: {outcome.artifact_path or '-'}")
        print(f"Reason: {outcome.reason.value if outcome.reason else '-'}")
        print(f"Email sent: {sent}")

    elif command == "reload":
        principals = coordinator_instance.store.load()
        schedulable = [p for p in principals if p.is_schedulable]
        print(f"Principals: {len(principals)}")
        print(f"Schedulable: {len(schedulable)}")
        for principal in schedulable:
            print(f"  {principal.login_id} -> {principal.notify_address}")
        if coordinator_instance.store.last_error:
            print(f"Store error: {coordinator_instance.store.last_error}")

    else:
        print(f"Unknown command: {command}")
        print("Available commands: run <username>, reload")


def main():
    """Main entry point with argument handling."""
    config = get_config()
    configure_logging(config.log_level)

    if len(sys.argv) < 2:
        # No arguments - start web server
        logger.info("Starting attendance web server", port=config.port)
        uvicorn.run(
            "main:create_app",
            factory=True,
            host=config.host,
            port=config.port,
            reload=False,
            log_level="info"
        )
    else:
        # CLI mode
        command = sys.argv[1]
        args = sys.argv[2:]
        asyncio.run(run_cli_command(command, *args))


if __name__ == "__main__":
    main()
