"""Automated login and screenshot capture using Playwright."""

import asyncio
import hashlib
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import structlog
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..config import AutomationConfig, get_config
from ..errors import AuthenticationFailed, CaptureFailed, NavigationFailed, ResourceUnavailable
from ..store.principal_store import Principal

logger = structlog.get_logger(__name__)


class FailureReason(str, Enum):
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    AUTHENTICATION_FAILED = "authentication_failed"
    NAVIGATION_FAILED = "navigation_failed"
    CAPTURE_FAILED = "capture_failed"


@dataclass(frozen=True)
class CaptureOutcome:
    """Result of one automation attempt: a screenshot path or a failure reason."""
    login_id: str
    success: bool
    artifact_path: Optional[str] = None
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None
    attempts: int = 0
    duration: float = 0.0

    @classmethod
    def succeeded(cls, login_id: str, artifact_path: str, **kwargs: Any) -> "CaptureOutcome":
        return cls(login_id=login_id, success=True, artifact_path=artifact_path, **kwargs)

    @classmethod
    def failed(cls, login_id: str, reason: FailureReason, detail: Optional[str] = None,
               **kwargs: Any) -> "CaptureOutcome":
        return cls(login_id=login_id, success=False, reason=reason, detail=detail, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "login_id": self.login_id,
            "success": self.success,
            "artifact_path": self.artifact_path,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "attempts": self.attempts,
            "duration": self.duration,
        }


class BrowserSession:
    """An isolated Chromium instance with its own context and page."""

    def __init__(self, playwright: Playwright, browser: Browser, context: BrowserContext, page: Page):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self.page = page
        self.closed = False

    @classmethod
    async def launch(cls, config: AutomationConfig) -> "BrowserSession":
        playwright = await async_playwright().start()
        browser = None
        try:
            browser = await playwright.chromium.launch(
                headless=config.browser_headless,
                args=config.browser_args,
            )
            context = await browser.new_context(viewport={"width": 1280, "height": 800})
            page = await context.new_page()
        except BaseException:
            if browser is not None:
                await browser.close()
            await playwright.stop()
            raise
        return cls(playwright, browser, context, page)

    async def close(self):
        """Close context, browser and driver. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        try:
            await self.context.close()
        finally:
            try:
                await self.browser.close()
            finally:
                await self.playwright.stop()


Launcher = Callable[[], Awaitable[BrowserSession]]

_FAILURE_REASONS = {
    AuthenticationFailed: FailureReason.AUTHENTICATION_FAILED,
    NavigationFailed: FailureReason.NAVIGATION_FAILED,
    CaptureFailed: FailureReason.CAPTURE_FAILED,
}


def _safe_filename(name: str, *, default: str) -> str:
    base = Path(str(name or "")).name
    cleaned = "".join(ch for ch in base if ch.isalnum() or ch in ("-", "_", ".", "+", "@"))[:120].strip(".")
    return cleaned or default


def _artifact_name(login_id: str) -> str:
    """File stem for a login id. Ids altered by sanitising get a digest suffix so they stay distinct."""
    cleaned = _safe_filename(login_id, default="principal")
    if cleaned == login_id:
        return cleaned
    digest = hashlib.sha256(login_id.encode("utf-8")).hexdigest()[:8]
    return f"{cleaned}-{digest}"


class ArtifactCapture:
    """Logs a principal in to the target site and screenshots the content page."""

    def __init__(self, config: Optional[AutomationConfig] = None, launcher: Optional[Launcher] = None):
        self.config = config or get_config()
        self._launch = launcher or (lambda: BrowserSession.launch(self.config))

    async def run(self, principal: Principal) -> CaptureOutcome:
        """Run one automation attempt. Never raises for run-level failures."""
        login_id = principal.login_id
        start_time = time.time()

        logger.info("Starting capture", login_id=login_id)

        try:
            session, attempts = await self._acquire_session(login_id)
        except ResourceUnavailable as e:
            logger.error("Browser unavailable, giving up", login_id=login_id,
                         attempts=self.config.acquire_attempts, error=str(e))
            return CaptureOutcome.failed(
                login_id,
                FailureReason.RESOURCE_UNAVAILABLE,
                detail=str(e),
                attempts=self.config.acquire_attempts,
                duration=time.time() - start_time,
            )

        try:
            await self._authenticate(session.page, principal)
            await self._open_content(session.page, login_id)
            screenshot_path = await self._take_screenshot(session.page, login_id)

            duration = time.time() - start_time
            logger.info("Capture succeeded", login_id=login_id, path=screenshot_path, duration=duration)
            return CaptureOutcome.succeeded(login_id, screenshot_path, attempts=attempts, duration=duration)

        except (AuthenticationFailed, NavigationFailed, CaptureFailed) as e:
            duration = time.time() - start_time
            reason = _FAILURE_REASONS[type(e)]
            logger.error("Capture failed", login_id=login_id, reason=reason.value, error=str(e), duration=duration)
            return CaptureOutcome.failed(login_id, reason, detail=str(e), attempts=attempts, duration=duration)

        finally:
            await self._release(session, login_id)

    async def _acquire_session(self, login_id: str) -> tuple[BrowserSession, int]:
        """Launch a browser, retrying transient launch errors with a fixed back-off."""
        max_attempts = self.config.acquire_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                session = await self._launch()
                if attempt > 1:
                    logger.info("Browser acquired after retry", login_id=login_id, attempt=attempt)
                return session, attempt
            except Exception as e:
                last_error = e
                logger.warning("Browser launch failed", login_id=login_id, attempt=attempt,
                               max_attempts=max_attempts, error=str(e))
                if attempt < max_attempts:
                    await asyncio.sleep(self.config.acquire_retry_delay)

        raise ResourceUnavailable(
            f"No browser after {max_attempts} attempts: {type(last_error).__name__}: {last_error}"
        ) from last_error

    async def _release(self, session: BrowserSession, login_id: str):
        try:
            await session.close()
        except Exception as e:
            logger.warning("Error while closing browser", login_id=login_id, error=str(e))

    async def _authenticate(self, page: Page, principal: Principal):
        site = self.config.site
        page_timeout = self.config.page_load_timeout * 1000

        try:
            await page.goto(site.login_url, wait_until="networkidle", timeout=page_timeout)
            await page.type(site.username_selector, principal.login_id, delay=site.typing_delay_ms)
            await page.type(site.password_selector, principal.secret, delay=site.typing_delay_ms)

            clicked = False
            try:
                async with page.expect_navigation(
                    wait_until="networkidle",
                    timeout=self.config.login_navigation_timeout * 1000,
                ):
                    await page.click(site.submit_selector, timeout=page_timeout)
                    clicked = True
            except PlaywrightTimeoutError:
                if not clicked:
                    raise
                # Some logins finish client-side without a navigation event.
                logger.debug("No navigation after login submit", login_id=principal.login_id)
        except Exception as e:
            raise AuthenticationFailed(f"{type(e).__name__}: {e}") from e

    async def _open_content(self, page: Page, login_id: str):
        try:
            await page.goto(
                self.config.site.content_url,
                wait_until="networkidle",
                timeout=self.config.page_load_timeout * 1000,
            )
        except Exception as e:
            raise NavigationFailed(f"{type(e).__name__}: {e}") from e

        logger.debug("Content page loaded, settling", login_id=login_id, delay=self.config.settle_delay)
        await asyncio.sleep(self.config.settle_delay)

    async def _take_screenshot(self, page: Page, login_id: str) -> str:
        """Take a full-page screenshot keyed by login id and return its path."""
        filename = f"{_artifact_name(login_id)}.png"
        screenshot_path = Path(self.config.screenshots_dir) / filename

        try:
            screenshot_path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(screenshot_path), full_page=True)
        except Exception as e:
            raise CaptureFailed(f"{type(e).__name__}: {e}") from e

        logger.debug("Screenshot saved", login_id=login_id, path=str(screenshot_path))
        return str(screenshot_path)
