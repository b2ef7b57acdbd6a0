from __future__ import annotations

import enum
import logging
import time
from typing import Awaitable, Callable, Optional

from ..config import AppConfig, BrowserConfig
from ..models import ScrapedRow
from .login import LoginStateMachine, OtpProvider
from .mfa import fetch_email_otp
from .selectors import SiteSelectors
from .session import BrowserSession
from .table import rows_to_records


logger = logging.getLogger(__name__)

SessionFactory = Callable[[BrowserConfig], Awaitable[BrowserSession]]


class AccountSelection(str, enum.Enum):
    CONFIRM = "confirm"
    CONTINUE = "continue"


def choose_account_selection(form_text: str, email: str) -> AccountSelection:
    """
    The app sometimes interposes a "continue as <email>" form after sign-in. It is recognised
    by the logged-in address appearing in the form text.
    """
    if email and email in (form_text or ""):
        return AccountSelection.CONFIRM
    return AccountSelection.CONTINUE


class MoneyForwardClient:
    """
    Log in and run one post-login workflow per call.

    Every call owns a fresh BrowserSession, closed on every exit path.
    """

    def __init__(
        self,
        cfg: AppConfig,
        *,
        selectors: Optional[SiteSelectors] = None,
        session_factory: Optional[SessionFactory] = None,
        otp_provider: Optional[OtpProvider] = None,
    ) -> None:
        self.cfg = cfg
        self.selectors = selectors or SiteSelectors()
        self._session_factory = session_factory or BrowserSession.open
        self._otp_provider = otp_provider or fetch_email_otp

    async def fetch_portfolio(self) -> list[ScrapedRow]:
        t0 = time.time()
        session = await self._session_factory(self.cfg.browser)
        try:
            await self._login(session)
            rows = await self._read_portfolio(session)
        except Exception:
            logger.error("fetch_portfolio failed (seconds=%.2f)", time.time() - t0)
            raise
        finally:
            await session.close()
        logger.info("fetch_portfolio complete (rows=%d seconds=%.2f)", len(rows), time.time() - t0)
        return rows

    async def trigger_refresh(self) -> None:
        t0 = time.time()
        session = await self._session_factory(self.cfg.browser)
        try:
            await self._login(session)
            await self._refresh_all(session)
        except Exception:
            logger.error("trigger_refresh failed (seconds=%.2f)", time.time() - t0)
            raise
        finally:
            await session.close()
        logger.info("trigger_refresh complete (seconds=%.2f)", time.time() - t0)

    async def _login(self, session: BrowserSession) -> None:
        machine = LoginStateMachine(
            session,
            creds=self.cfg.login.credentials(),
            sign_in_url=self.cfg.site.sign_in_url,
            mailbox=self.cfg.mailbox,
            otp_provider=self._otp_provider,
            selectors=self.selectors,
            settle_delay_ms=self.cfg.browser.settle_delay_ms,
            element_timeout_ms=self.cfg.browser.element_timeout_ms,
        )
        await machine.run()

    async def _open_app_page(self, session: BrowserSession, url: str, *, ready_selector: str) -> AccountSelection:
        """
        Navigate to an app page and get past the optional account confirmation form.
        Both branches converge on waiting for `ready_selector`.
        """
        s = self.selectors
        await session.goto(url, timeout_ms=self.cfg.browser.navigation_timeout_ms)

        form_text = await session.text_of(s.account_form)
        choice = choose_account_selection(form_text, self.cfg.login.email)
        logger.info("Account selection: %s", choice.value)
        if choice is AccountSelection.CONFIRM:
            await session.click(s.account_form_submit)
        else:
            await session.click(s.submit_button)

        await session.wait_for(ready_selector, timeout_ms=self.cfg.browser.page_ready_timeout_ms)
        await session.step(f"ready_{ready_selector}")
        return choice

    async def _read_portfolio(self, session: BrowserSession) -> list[ScrapedRow]:
        s = self.selectors
        await self._open_app_page(session, self.cfg.site.portfolio_url, ready_selector=s.portfolio_table)
        cells = await session.table_cells(s.portfolio_rows, s.portfolio_cells)
        rows = rows_to_records(cells)
        logger.info("stocks: %d", len(rows))
        return rows

    async def _refresh_all(self, session: BrowserSession) -> None:
        s = self.selectors
        await self._open_app_page(session, self.cfg.site.accounts_url, ready_selector=s.refresh_all_marker)
        await session.click(s.refresh_all_link)
        logger.info("Triggered refresh of all accounts.")


async def fetch_portfolio(cfg: AppConfig) -> list[ScrapedRow]:
    return await MoneyForwardClient(cfg).fetch_portfolio()


async def trigger_refresh(cfg: AppConfig) -> None:
    await MoneyForwardClient(cfg).trigger_refresh()
