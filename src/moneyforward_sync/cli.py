from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import AppConfig, load_config
from .logging_config import configure_logging
from .portal.client import MoneyForwardClient
from .portal.mfa import preflight_mailbox
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("moneyforward_sync")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="moneyforward_sync")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )
    p.add_argument(
        "--config",
        default="config.yaml",
        help="Optional YAML config layered over env vars (default: config.yaml, ignored if missing).",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    def _browser_flags(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--headful", action="store_true", help="Run browser headful (debug)")
        sp.add_argument("--step-debug", action="store_true", help="Save step-by-step screenshots under the debug dir.")

    portfolio = sub.add_parser("portfolio", help="Log in and print the portfolio table as JSON")
    _browser_flags(portfolio)

    refresh = sub.add_parser("refresh", help="Log in and trigger the 'refresh all' balance update")
    _browser_flags(refresh)

    preflight = sub.add_parser(
        "preflight",
        help="Validate configuration and IMAP connectivity. Does not run Playwright.",
    )
    preflight.add_argument("--skip-imap", action="store_true", help="Skip IMAP connectivity check")
    return p


def _apply_browser_flags(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    browser = cfg.browser.model_copy(
        update={
            "headless": cfg.browser.headless and not args.headful,
            "step_debug": cfg.browser.step_debug or args.step_debug,
        }
    )
    return cfg.model_copy(update={"browser": browser})


def _emit(content: object) -> None:
    print(json.dumps({"result": "ok", "content": content}, ensure_ascii=False, indent=2))


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    cfg = load_config(args.config)
    configure_logging(
        level=cfg.logging.level,
        file_path=cfg.logging.file_path or None,
        secrets=(cfg.login.password, cfg.login.totp_secret, cfg.mailbox.password),
        quiet_loggers=cfg.logging.quiet_loggers,
        quiet_level=cfg.logging.quiet_level,
    )

    if args.cmd == "preflight":
        logger.info("Starting preflight checks")
        if not cfg.login.email or not cfg.login.password:
            logger.warning("LOGIN_MAIL / LOGIN_PASS are not set; sign-in will fail at the site.")
        if cfg.login.totp_secret:
            logger.info("TOTP secret configured.")
        if not args.skip_imap:
            preflight_mailbox(cfg.mailbox)
        logger.info("Preflight OK")
        return 0

    cfg = _apply_browser_flags(cfg, args)
    client = MoneyForwardClient(cfg)
    try:
        if args.cmd == "portfolio":
            logger.info("[Request] portfolio")
            stocks = asyncio.run(client.fetch_portfolio())
            _emit({"stocks": stocks})
            return 0

        if args.cmd == "refresh":
            logger.info("[Request] refresh")
            asyncio.run(client.trigger_refresh())
            _emit(None)
            return 0
    except Exception as e:
        logger.error("[Error] %s failed: %s", args.cmd, e)
        try:
            bundle = create_debug_bundle(
                debug_dir=cfg.browser.debug_dir,
                log_file=cfg.logging.file_path,
                trace_path=cfg.browser.trace_path,
                label=args.cmd,
            )
            logger.error("Wrote debug bundle: %s", bundle)
        except Exception:
            logger.debug("Failed to create debug bundle.", exc_info=True)
        raise

    print(f"Unknown command: {args.cmd}", file=sys.stderr)
    return 2
