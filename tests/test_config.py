from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from attendance.config import AutomationConfig, load_config, time_to_cron


def test_defaults_match_daily_schedule() -> None:
    config = AutomationConfig()
    assert config.run_time == "08:00"
    assert config.reload_time == "07:59"
    assert config.timezone == "Asia/Kolkata"
    assert config.acquire_attempts == 3
    assert config.base_url == "http://localhost:3000"


def test_time_to_cron() -> None:
    assert time_to_cron("08:00") == "0 8 * * *"
    assert time_to_cron("7:59") == "59 7 * * *"


@pytest.mark.parametrize("value", ["8", "25:00", "08:60", "aa:bb"])
def test_invalid_times_rejected(value: str) -> None:
    with pytest.raises(ValidationError):
        AutomationConfig(run_time=value)


def test_acquire_attempts_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        AutomationConfig(acquire_attempts=0)


def test_load_config_yaml_and_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_file = tmp_path / "attendance.yaml"
    config_file.write_text(
        "run_time: '09:30'\n"
        "port: 4000\n"
        "smtp:\n"
        "  host: smtp.example.com\n"
        "site:\n"
        "  content_url: https://example.org/attendance\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("EMAIL_USER", "bot@example.com")
    monkeypatch.setenv("EMAIL_PASS", "secret")
    monkeypatch.setenv("PORT", "5000")
    monkeypatch.setenv("BROWSER_HEADLESS", "false")

    config = load_config(str(config_file))

    assert config.run_time == "09:30"
    assert config.port == 5000
    assert config.browser_headless is False
    assert config.smtp.host == "smtp.example.com"
    assert config.smtp.username == "bot@example.com"
    assert config.smtp.password == "secret"
    assert config.site.content_url == "https://example.org/attendance"
    assert config.site.submit_selector == "#user-sign-in"


def test_timezone_is_validated() -> None:
    assert AutomationConfig(timezone="UTC").timezone == "UTC"
    with pytest.raises(ValidationError):
        AutomationConfig(timezone="Mars/Olympus_Mons")
