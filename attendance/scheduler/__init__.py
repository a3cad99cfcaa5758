"""Scheduler module for orchestrating capture runs."""

from .job_scheduler import JobScheduler, ScheduledJob
from .task_coordinator import TaskCoordinator

__all__ = ["JobScheduler", "ScheduledJob", "TaskCoordinator"]
