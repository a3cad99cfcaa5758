"""Configuration management for the attendance automation service."""

import os
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


def _validate_hhmm(value: str) -> str:
    parts = str(value).strip().split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Expected HH:MM, got {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Time out of range: {value!r}")
    return f"{hour:02d}:{minute:02d}"


def time_to_cron(value: str) -> str:
    """Convert an ``HH:MM`` wall-clock time into a daily cron expression."""
    hour, minute = _validate_hhmm(value).split(":")
    return f"{int(minute)} {int(hour)} * * *"


class SiteConfig(BaseModel):
    """Target site pages and the selectors used to log in."""
    login_url: str = Field(default="https://lms.cuonlineedu.in/", description="Login entry point")
    content_url: str = Field(
        default="https://lms.cuonlineedu.in/my-attendance",
        description="Page captured after login",
    )
    username_selector: str = Field(default="#username", description="Login id input")
    password_selector: str = Field(default="#password", description="Secret input")
    submit_selector: str = Field(default="#user-sign-in", description="Login submit button")
    typing_delay_ms: int = Field(default=40, description="Delay between keystrokes")


class SmtpConfig(BaseModel):
    """Outgoing mail settings."""
    host: str = Field(default="smtp.gmail.com", description="SMTP server")
    port: int = Field(default=587, description="SMTP port (STARTTLS)")
    username: Optional[str] = Field(default=None, description="SMTP login, also the sender address")
    password: Optional[str] = Field(default=None, description="SMTP password or app password")
    from_name: str = Field(default="Attendance Automation", description="Display name of the sender")
    timeout: int = Field(default=30, description="SMTP socket timeout in seconds")


class AutomationConfig(BaseModel):
    """Main configuration for the attendance automation service."""

    log_level: str = Field(default="INFO", description="Logging level")

    # HTTP surface
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=3000, description="HTTP port")
    public_url: Optional[str] = Field(default=None, description="Externally reachable base URL")

    # Storage
    users_file: str = Field(default="users.json", description="Persisted principal list")
    screenshots_dir: str = Field(default="screenshots", description="Directory for captured screenshots")

    # Scheduling
    timezone: str = Field(default="Asia/Kolkata", description="Time zone of all daily triggers")
    run_time: str = Field(default="08:00", description="Daily capture time per principal")
    reload_time: str = Field(default="07:59", description="Daily principal reload time")
    health_check_interval: int = Field(default=780, description="Self health ping interval in seconds")
    max_concurrent_runs_per_principal: int = Field(default=1, description="APScheduler max_instances per job")
    misfire_grace_time: int = Field(default=300, description="Seconds a late trigger may still fire")

    # Browser
    browser_headless: bool = Field(default=True, description="Run browser in headless mode")
    browser_args: list[str] = Field(
        default_factory=lambda: ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
        description="Extra Chromium launch arguments",
    )
    acquire_attempts: int = Field(default=3, description="Browser launch attempts per run")
    acquire_retry_delay: float = Field(default=1.0, description="Seconds between launch attempts")
    page_load_timeout: int = Field(default=60, description="Page load timeout in seconds")
    login_navigation_timeout: int = Field(default=10, description="Post-submit navigation timeout in seconds")
    settle_delay: float = Field(default=2.0, description="Seconds to wait after the content page settles")

    # Notifications
    notify_on_failure: bool = Field(default=False, description="Also email principals when a run fails")
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)

    site: SiteConfig = Field(default_factory=SiteConfig)

    @field_validator("run_time", "reload_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return _validate_hhmm(value)

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {value!r}") from e
        return value

    @field_validator("acquire_attempts", "max_concurrent_runs_per_principal")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def base_url(self) -> str:
        return (self.public_url or f"http://localhost:{self.port}").rstrip("/")


def load_config(config_path: Optional[str] = None) -> AutomationConfig:
    """Load configuration from file or environment variables."""
    load_dotenv()

    if config_path is None:
        config_path = os.getenv("ATTENDANCE_CONFIG", "config/attendance.yaml")

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    env_overrides = {
        "log_level": os.getenv("LOG_LEVEL"),
        "port": os.getenv("PORT"),
        "public_url": os.getenv("URL"),
        "users_file": os.getenv("USERS_FILE"),
        "screenshots_dir": os.getenv("SCREENSHOTS_DIR"),
        "browser_headless": os.getenv("BROWSER_HEADLESS"),
        "timezone": os.getenv("ATTENDANCE_TIMEZONE"),
        "run_time": os.getenv("ATTENDANCE_RUN_TIME"),
        "reload_time": os.getenv("ATTENDANCE_RELOAD_TIME"),
    }

    for key, value in env_overrides.items():
        if value is not None:
            if key in ["port"]:
                value = int(value)
            elif key in ["browser_headless"]:
                value = value.lower() in ("true", "1", "yes")
            config_data[key] = value

    smtp_overrides = {
        "username": os.getenv("EMAIL_USER"),
        "password": os.getenv("EMAIL_PASS"),
        "host": os.getenv("SMTP_HOST"),
        "port": os.getenv("SMTP_PORT"),
    }
    smtp_data = dict(config_data.get("smtp") or {})
    for key, value in smtp_overrides.items():
        if value is not None:
            smtp_data[key] = int(value) if key == "port" else value
    if smtp_data:
        config_data["smtp"] = smtp_data

    return AutomationConfig(**config_data)


def get_config() -> AutomationConfig:
    """Get the global configuration instance."""
    return load_config()
