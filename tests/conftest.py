"""Shared fixtures and fakes for the attendance tests."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from attendance.capture.runner import CaptureOutcome
from attendance.config import AutomationConfig, SmtpConfig
from attendance.store.principal_store import Principal


PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"


@pytest.fixture
def config(tmp_path: Path) -> AutomationConfig:
    return AutomationConfig(
        users_file=str(tmp_path / "users.json"),
        screenshots_dir=str(tmp_path / "screenshots"),
        acquire_retry_delay=0,
        settle_delay=0,
        health_check_interval=0,
        smtp=SmtpConfig(username="bot@example.com", password="app-pass"),
    )


@pytest.fixture
def alice() -> Principal:
    return Principal(display_name="Alice", login_id="alice", secret="x", notify_address="a@example.com")


class FakePage:
    """Records page calls; ``fail_step`` makes one step raise."""

    def __init__(self, fail_step: str | None = None):
        self.fail_step = fail_step
        self.calls: list[tuple] = []

    async def goto(self, url: str, **kwargs) -> None:
        self.calls.append(("goto", url))
        if self.fail_step == "login_goto" and "attendance" not in url:
            raise PlaywrightTimeoutError("Timeout 60000ms exceeded")
        if self.fail_step == "content_goto" and "attendance" in url:
            raise RuntimeError("net::ERR_CONNECTION_RESET")

    async def type(self, selector: str, text: str, **kwargs) -> None:
        self.calls.append(("type", selector, text))

    async def click(self, selector: str, **kwargs) -> None:
        self.calls.append(("click", selector))
        if self.fail_step == "click":
            raise PlaywrightTimeoutError("Timeout waiting for selector")

    @asynccontextmanager
    async def _navigation(self):
        yield
        if self.fail_step == "no_navigation":
            raise PlaywrightTimeoutError("Timeout 10000ms exceeded")

    def expect_navigation(self, **kwargs):
        return self._navigation()

    async def screenshot(self, path: str, full_page: bool = False) -> None:
        self.calls.append(("screenshot", path, full_page))
        if self.fail_step == "screenshot":
            raise OSError("disk full")
        Path(path).write_bytes(PNG_BYTES)


class FakeSession:
    def __init__(self, launcher: "FakeLauncher", page: FakePage):
        self.launcher = launcher
        self.page = page

    async def close(self) -> None:
        self.launcher.released += 1
        if self.launcher.close_error:
            raise RuntimeError("browser already gone")


class FakeLauncher:
    """Stands in for ``BrowserSession.launch``; fails the first ``failures`` calls."""

    def __init__(self, failures: int = 0, fail_step: str | None = None, close_error: bool = False):
        self.failures = failures
        self.fail_step = fail_step
        self.close_error = close_error
        self.attempts = 0
        self.acquired = 0
        self.released = 0
        self.pages: list[FakePage] = []

    async def __call__(self) -> FakeSession:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise RuntimeError("browser busy")
        self.acquired += 1
        page = FakePage(self.fail_step)
        self.pages.append(page)
        return FakeSession(self, page)


class FakeCapture:
    def __init__(self, outcome: CaptureOutcome | None = None, error: Exception | None = None):
        self.outcome = outcome
        self.error = error
        self.calls: list[Principal] = []

    async def run(self, principal: Principal) -> CaptureOutcome:
        self.calls.append(principal)
        if self.error:
            raise self.error
        return self.outcome or CaptureOutcome.succeeded(principal.login_id, f"screenshots/{principal.login_id}.png")


class RecordingNotifier:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple[Principal, CaptureOutcome]] = []

    async def send(self, principal: Principal, outcome: CaptureOutcome) -> bool:
        self.calls.append((principal, outcome))
        if self.error:
            raise self.error
        return True
