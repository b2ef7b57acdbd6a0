from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Dialog,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..config import BrowserConfig
from ..errors import NavigationError


logger = logging.getLogger(__name__)

_CELL_TEXTS_JS = """
(rows, cellSelector) => rows.map((row) =>
  Array.from(row.querySelectorAll(cellSelector)).map((cell) => cell.textContent || '')
)
"""


class BrowserSession:
    """
    One headless browser, one isolated context, one page.

    Owned by a single workflow invocation and never shared. `close()` flushes the trace
    and releases the browser; it is safe to call more than once.
    """

    def __init__(
        self,
        *,
        cfg: BrowserConfig,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
    ) -> None:
        self.cfg = cfg
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self.page = page
        self._closed = False
        self._step_counter = 0

    @classmethod
    async def open(cls, cfg: BrowserConfig) -> "BrowserSession":
        pw = await async_playwright().start()
        try:
            browser = await pw.chromium.launch(headless=cfg.headless, args=list(cfg.launch_args))
        except Exception:
            await pw.stop()
            raise
        try:
            context = await browser.new_context(user_agent=cfg.user_agent)
            await context.tracing.start(screenshots=True, snapshots=True)
            page = await context.new_page()
        except Exception:
            await browser.close()
            await pw.stop()
            raise

        page.on("console", lambda msg: logger.debug("browser console: %s", msg.text))
        page.on("dialog", _accept_dialog)
        return cls(cfg=cfg, playwright=pw, browser=browser, context=context, page=page)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            trace = Path(self.cfg.trace_path)
            trace.parent.mkdir(parents=True, exist_ok=True)
            await self._context.tracing.stop(path=str(trace))
            logger.debug("Wrote trace: %s", trace)
        except Exception:
            logger.debug("Failed to flush trace.", exc_info=True)
        try:
            await self._browser.close()
        except Exception:
            logger.debug("Failed to close browser.", exc_info=True)
        try:
            await self._playwright.stop()
        except Exception:
            logger.debug("Failed to stop playwright driver.", exc_info=True)

    @property
    def url(self) -> str:
        return self.page.url

    async def goto(self, url: str, *, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self.cfg.navigation_timeout_ms
        logger.info("goto %s", url)
        try:
            await self.page.goto(url, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Navigation to {url} timed out after {timeout}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {url} failed: {e.message}") from e

    async def exists(self, selector: str) -> bool:
        try:
            return await self.page.query_selector(selector) is not None
        except PlaywrightError as e:
            raise NavigationError(f"Query for {selector!r} failed: {e.message}") from e

    async def text_of(self, selector: str) -> str:
        """Text content of the first match, or "" when nothing matches."""
        try:
            handle = await self.page.query_selector(selector)
            if handle is None:
                return ""
            return (await handle.text_content()) or ""
        except PlaywrightError as e:
            raise NavigationError(f"Reading text of {selector!r} failed: {e.message}") from e

    async def click(self, selector: str) -> None:
        try:
            await self.page.click(selector, timeout=self.cfg.element_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Element {selector!r} not clickable within {self.cfg.element_timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Click on {selector!r} failed: {e.message}") from e

    async def type(self, selector: str, text: str) -> None:
        try:
            await self.page.type(
                selector,
                text,
                delay=self.cfg.type_delay_ms,
                timeout=self.cfg.element_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Input {selector!r} not found within {self.cfg.element_timeout_ms}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Typing into {selector!r} failed: {e.message}") from e

    async def wait_for(self, selector: str, *, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self.cfg.element_timeout_ms
        try:
            await self.page.wait_for_selector(selector, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise NavigationError(f"Timed out after {timeout}ms waiting for {selector!r} (url={self.url})") from e
        except PlaywrightError as e:
            raise NavigationError(f"Waiting for {selector!r} failed: {e.message}") from e

    async def pause(self, ms: int) -> None:
        if ms > 0:
            await self.page.wait_for_timeout(ms)

    async def table_cells(self, row_selector: str, cell_selector: str) -> list[list[str]]:
        try:
            return await self.page.eval_on_selector_all(row_selector, _CELL_TEXTS_JS, cell_selector)
        except PlaywrightError as e:
            raise NavigationError(f"Reading table rows {row_selector!r} failed: {e.message}") from e

    async def save_debug(self, name_prefix: str) -> None:
        try:
            out_dir = Path(self.cfg.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            (out_dir / f"{name_prefix}.html").write_text(await self.page.content(), encoding="utf-8")
            try:
                (out_dir / f"{name_prefix}.txt").write_text(await self.page.inner_text("body"), encoding="utf-8")
            except PlaywrightError:
                pass
        except Exception:
            logger.debug("Failed to save debug artifacts.", exc_info=True)

    async def step(self, name: str) -> None:
        """
        Log progress; with `step_debug` also save a numbered screenshot under `debug_dir`.
        """
        self._step_counter += 1
        logger.info("Step %02d %s (url=%s)", self._step_counter, name, self.url)
        if not self.cfg.step_debug:
            return

        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_")[:60] or "step"
        try:
            out_dir = Path(self.cfg.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            await self.page.screenshot(path=str(out_dir / f"step_{self._step_counter:02d}_{safe}.png"), full_page=True)
        except Exception:
            logger.debug("Failed to save step screenshot (name=%s).", name, exc_info=True)


async def _accept_dialog(dialog: Dialog) -> None:
    logger.info("Accepting %s dialog: %s", dialog.type, dialog.message)
    await dialog.accept()
