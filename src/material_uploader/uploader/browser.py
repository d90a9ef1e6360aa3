# src/material_uploader/uploader/browser.py

from __future__ import annotations

"""
Playwright implementation of the AutomationSurface port.

One persistent Chromium profile (cookies / login survive restarts) and one
reused page. Every Playwright failure is re-raised as AutomationTransientError
so the executor can retry it.
"""

import asyncio
import logging
import random
from collections.abc import Sequence

from playwright.async_api import BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..errors import AutomationTransientError
from ..tasks.task_models import TransferCounts

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


async def _pause(low: float, high: float) -> None:
    """Short human-like wait between UI steps."""
    await asyncio.sleep(random.uniform(low, high))


class PlaywrightSurface:
    def __init__(
        self,
        *,
        user_data_dir: str,
        headless: bool = False,
        slow_mo_ms: int = 0,
        page_timeout_seconds: float = 30.0,
        event_timeout_seconds: float = 15.0,
        selectors: dict[str, str],
    ) -> None:
        self._user_data_dir = str(user_data_dir)
        self._headless = bool(headless)
        self._slow_mo = int(slow_mo_ms)
        self._page_timeout_ms = int(page_timeout_seconds * 1000)
        self._event_timeout_ms = int(event_timeout_seconds * 1000)
        self._sel = dict(selectors)

        self._pw: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._batches_started = 0

    @classmethod
    def from_settings(cls, settings) -> PlaywrightSurface:
        return cls(
            user_data_dir=str(settings.user_data_dir),
            headless=settings.headless,
            slow_mo_ms=settings.slow_mo_ms,
            page_timeout_seconds=settings.page_timeout_seconds,
            event_timeout_seconds=settings.event_timeout_seconds,
            selectors={
                "upload_button": settings.selector_upload_button,
                "upload_panel": settings.selector_upload_panel,
                "progress_bar": settings.selector_progress_bar,
                "progress_success": settings.selector_progress_success,
                "confirm_button": settings.selector_confirm_button,
                "cancel_button": settings.selector_cancel_button,
            },
        )

    @property
    def page(self) -> Page:
        if self._page is None:
            raise AutomationTransientError("Browser is not open; call open() first")
        return self._page

    # ---- lifecycle ----

    async def open(self) -> None:
        logger.info("Launching Chromium (persistent profile at %s)", self._user_data_dir)
        self._pw = await async_playwright().start()
        try:
            self._context = await self._pw.chromium.launch_persistent_context(
                self._user_data_dir,
                headless=self._headless,
                slow_mo=self._slow_mo,
                no_viewport=True,
                user_agent=USER_AGENT,
                args=["--start-maximized"],
            )
            # One tab for the whole process; every task reuses it.
            self._page = await self._context.new_page()
            await self._page.bring_to_front()
        except Exception:
            await self.close()
            raise
        logger.info("Browser ready")

    async def close(self) -> None:
        if self._page is not None:
            try:
                await self._page.close()
            except PlaywrightError as exc:
                logger.debug("Page close failed: %s", exc)
            self._page = None

        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as exc:
                logger.warning("Browser context close failed: %s", exc)
            self._context = None

        if self._pw is not None:
            await self._pw.stop()
            self._pw = None
            logger.info("Browser closed (profile kept)")

    # ---- navigation ----

    async def _wait_ready(self) -> None:
        try:
            await self.page.wait_for_load_state("networkidle", timeout=self._page_timeout_ms)
        except PlaywrightTimeoutError:
            logger.warning("Page did not reach network idle within %ds; continuing", self._page_timeout_ms // 1000)
        await _pause(1.0, 2.0)

    async def navigate(self, url: str) -> None:
        logger.debug("Navigating to %s", url)
        try:
            await self.page.goto(url, wait_until="networkidle", timeout=self._page_timeout_ms * 2)
        except PlaywrightError as exc:
            raise AutomationTransientError(f"Navigation to {url} failed: {exc}") from exc
        await self._wait_ready()
        self._batches_started = 0

    async def reset(self) -> None:
        logger.debug("Reloading page to clear upload panel state")
        try:
            await self.page.reload(wait_until="networkidle", timeout=self._page_timeout_ms * 2)
        except PlaywrightError as exc:
            raise AutomationTransientError(f"Page reload failed: {exc}") from exc
        await self._wait_ready()

    # ---- batch interaction ----

    async def select_files(self, files: Sequence[str]) -> None:
        page = self.page
        # The button re-renders after each confirmed batch; give later batches longer.
        button_timeout = 10_000 if self._batches_started == 0 else 20_000
        self._batches_started += 1

        try:
            button = page.locator(self._sel["upload_button"]).first
            await button.wait_for(state="visible", timeout=button_timeout)
            await _pause(0.5, 1.0)
            await button.click()

            panel = page.locator(self._sel["upload_panel"]).first
            await panel.wait_for(state="visible", timeout=10_000)
            # Panel slides in; clicking during the animation loses the file chooser.
            await _pause(3.0, 4.0)

            async with page.expect_file_chooser(timeout=self._event_timeout_ms) as chooser_info:
                await panel.click()
            chooser = await chooser_info.value
            await chooser.set_files(list(files))
        except PlaywrightError as exc:
            raise AutomationTransientError(f"Selecting {len(files)} files failed: {exc}") from exc

        logger.debug("Handed %d files to the upload panel", len(files))
        await _pause(2.0, 3.0)

    async def read_transfer_counts(self) -> TransferCounts:
        page = self.page
        try:
            bars = page.locator(self._sel["progress_bar"])
            listed = await bars.count()
            completed = 0
            for i in range(listed):
                # The success marker is a sibling of the bar.
                parent = bars.nth(i).locator("..")
                if await parent.locator(self._sel["progress_success"]).count() > 0:
                    completed += 1
        except PlaywrightError as exc:
            raise AutomationTransientError(f"Reading upload progress failed: {exc}") from exc
        return TransferCounts(listed=listed, completed=completed)

    async def confirm(self) -> None:
        await _pause(1.0, 2.0)
        try:
            button = self.page.locator(self._sel["confirm_button"]).first
            await button.wait_for(state="visible", timeout=10_000)
            await _pause(0.5, 1.0)
            await button.click()
        except PlaywrightError as exc:
            raise AutomationTransientError(f"Confirming batch failed: {exc}") from exc
        logger.debug("Batch confirmed on page")

    async def abort(self) -> None:
        try:
            button = self.page.locator(self._sel["cancel_button"]).first
            await button.wait_for(state="visible", timeout=5_000)
            await _pause(0.5, 1.0)
            await button.click()
            await _pause(2.0, 3.0)
        except (PlaywrightError, AutomationTransientError) as exc:
            logger.error("Cancelling the upload panel failed: %s", exc)

    async def is_logged_in(self, url: str) -> bool:
        try:
            await self.page.goto(url, timeout=self._page_timeout_ms)
            await _pause(2.0, 3.0)
            return not await self.page.locator("text=登录").first.is_visible()
        except PlaywrightError as exc:
            logger.warning("Login check failed: %s", exc)
            return False
