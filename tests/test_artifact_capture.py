from __future__ import annotations

from pathlib import Path

import pytest

import attendance.capture.runner as runner
from attendance.capture.runner import ArtifactCapture, FailureReason
from attendance.config import AutomationConfig
from attendance.store.principal_store import Principal

from conftest import PNG_BYTES, FakeLauncher


@pytest.fixture
def recorded_sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    monkeypatch.setattr(runner.asyncio, "sleep", fake_sleep)
    return sleeps


@pytest.mark.asyncio
async def test_run_success_captures_screenshot_keyed_by_login(config: AutomationConfig, alice: Principal) -> None:
    launcher = FakeLauncher()
    outcome = await ArtifactCapture(config, launcher=launcher).run(alice)

    assert outcome.success is True
    assert outcome.reason is None
    assert outcome.attempts == 1
    assert Path(outcome.artifact_path) == Path(config.screenshots_dir) / "alice.png"
    assert Path(outcome.artifact_path).read_bytes() == PNG_BYTES

    calls = launcher.pages[0].calls
    assert calls[0] == ("goto", config.site.login_url)
    assert ("type", "#username", "alice") in calls
    assert ("type", "#password", "x") in calls
    assert ("click", "#user-sign-in") in calls
    assert ("goto", config.site.content_url) in calls
    assert calls[-1][0] == "screenshot" and calls[-1][2] is True
    assert launcher.acquired == launcher.released == 1


@pytest.mark.asyncio
async def test_missing_post_login_navigation_is_tolerated(config: AutomationConfig, alice: Principal) -> None:
    launcher = FakeLauncher(fail_step="no_navigation")
    outcome = await ArtifactCapture(config, launcher=launcher).run(alice)

    assert outcome.success is True
    assert launcher.acquired == launcher.released == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("fail_step", "reason"),
    [
        ("login_goto", FailureReason.AUTHENTICATION_FAILED),
        ("click", FailureReason.AUTHENTICATION_FAILED),
        ("content_goto", FailureReason.NAVIGATION_FAILED),
        ("screenshot", FailureReason.CAPTURE_FAILED),
    ],
)
async def test_failures_are_reported_and_browser_released(
    config: AutomationConfig, alice: Principal, fail_step: str, reason: FailureReason
) -> None:
    launcher = FakeLauncher(fail_step=fail_step)
    outcome = await ArtifactCapture(config, launcher=launcher).run(alice)

    assert outcome.success is False
    assert outcome.reason is reason
    assert outcome.artifact_path is None
    assert outcome.detail
    assert launcher.acquired == launcher.released == 1


@pytest.mark.asyncio
async def test_acquisition_retries_then_succeeds(
    config: AutomationConfig, alice: Principal, recorded_sleeps: list[float]
) -> None:
    config = config.model_copy(update={"acquire_retry_delay": 1.0, "settle_delay": 2.0})
    launcher = FakeLauncher(failures=2)
    outcome = await ArtifactCapture(config, launcher=launcher).run(alice)

    assert outcome.success is True
    assert outcome.attempts == 3
    assert launcher.attempts == 3
    assert launcher.acquired == launcher.released == 1
    # Two back-off delays, then the settle delay.
    assert recorded_sleeps == [1.0, 1.0, 2.0]


@pytest.mark.asyncio
async def test_acquisition_gives_up_after_three_attempts(
    config: AutomationConfig, alice: Principal, recorded_sleeps: list[float]
) -> None:
    config = config.model_copy(update={"acquire_retry_delay": 1.0})
    launcher = FakeLauncher(failures=5)
    outcome = await ArtifactCapture(config, launcher=launcher).run(alice)

    assert outcome.success is False
    assert outcome.reason is FailureReason.RESOURCE_UNAVAILABLE
    assert outcome.attempts == 3
    assert launcher.attempts == 3
    assert launcher.acquired == launcher.released == 0
    assert recorded_sleeps == [1.0, 1.0]


@pytest.mark.asyncio
async def test_release_error_does_not_change_outcome(config: AutomationConfig, alice: Principal) -> None:
    launcher = FakeLauncher(close_error=True)
    outcome = await ArtifactCapture(config, launcher=launcher).run(alice)

    assert outcome.success is True
    assert launcher.released == 1


@pytest.mark.asyncio
async def test_screenshot_name_is_sanitised(config: AutomationConfig) -> None:
    principal = Principal("Eve", "../../etc/passwd", "s", "e@example.com")
    outcome = await ArtifactCapture(config, launcher=FakeLauncher()).run(principal)

    assert outcome.success is True
    assert Path(outcome.artifact_path).parent == Path(config.screenshots_dir)
    assert Path(outcome.artifact_path).name.startswith("passwd-")


@pytest.mark.asyncio
async def test_screenshot_paths_stay_distinct_per_login(config: AutomationConfig) -> None:
    capture = ArtifactCapture(config, launcher=FakeLauncher())
    paths = set()
    for login_id in ("john doe", "johndoe", "x/johndoe", ".johndoe."):
        outcome = await capture.run(Principal("John", login_id, "s", "j@example.com"))
        assert outcome.success is True
        assert Path(outcome.artifact_path).parent == Path(config.screenshots_dir)
        paths.add(outcome.artifact_path)

    assert len(paths) == 4
    assert Path(config.screenshots_dir) / "johndoe.png" in {Path(p) for p in paths}


class _Closable:
    def __init__(self, events: list[str], name: str, error: Exception | None = None):
        self.events = events
        self.name = name
        self.error = error

    async def close(self) -> None:
        self.events.append(self.name)
        if self.error:
            raise self.error

    async def stop(self) -> None:
        self.events.append(self.name)


@pytest.mark.asyncio
async def test_session_close_releases_browser_when_context_close_fails() -> None:
    events: list[str] = []
    session = runner.BrowserSession(
        playwright=_Closable(events, "playwright"),
        browser=_Closable(events, "browser"),
        context=_Closable(events, "context", error=RuntimeError("target closed")),
        page=None,
    )

    with pytest.raises(RuntimeError):
        await session.close()

    assert events == ["context", "browser", "playwright"]
    await session.close()
    assert events == ["context", "browser", "playwright"]


def test_outcome_to_dict() -> None:
    outcome = runner.CaptureOutcome.failed("bob", FailureReason.NAVIGATION_FAILED, detail="boom", attempts=1)
    data = outcome.to_dict()
    assert data["reason"] == "navigation_failed"
    assert data["success"] is False
    assert data["artifact_path"] is None
