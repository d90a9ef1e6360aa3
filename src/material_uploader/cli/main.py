# src/material_uploader/cli/main.py

"""
CLI entrypoint.

Subcommands:
- run (default): fetch pending records and upload them until SIGINT/SIGTERM
- progress list | progress clear <record_id> | progress clear --all
- check-login <account>: open the upload page once to verify the browser login
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from ..cli.bootstrap import create_initial_state
from ..config import get_settings, validate_settings
from ..errors import InitializationFailure
from ..logging_setup import setup_logging
from ..progress.store import ProgressStore
from ..uploader.browser import PlaywrightSurface
from ..uploader.target import build_upload_url

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="material-uploader",
        description="Upload pending drama material from Feishu to the ad platform.",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="run the scheduler and upload queue (default)")

    p_progress = sub.add_parser("progress", help="inspect or clear upload checkpoints")
    progress_sub = p_progress.add_subparsers(dest="progress_command", required=True)
    progress_sub.add_parser("list", help="print every stored checkpoint")
    p_clear = progress_sub.add_parser("clear", help="remove checkpoints")
    p_clear.add_argument("record_id", nargs="?", help="record to clear")
    p_clear.add_argument("--all", action="store_true", help="clear every checkpoint")

    p_login = sub.add_parser("check-login", help="check the browser session is logged in")
    p_login.add_argument("account", help="advertiser account id used in the upload URL")

    return parser


# ---- run ----


class _StopOnSignal:
    """Signal callback that starts one scheduler.stop() and keeps the task."""

    def __init__(self, scheduler) -> None:
        self._scheduler = scheduler
        self.task: asyncio.Task[None] | None = None

    def __call__(self, signum: int) -> None:
        if self.task is not None:
            return
        logger.info("Signal %s received, shutting down after the current step...", signum)
        self.task = asyncio.get_running_loop().create_task(self._scheduler.stop())

    async def wait(self) -> None:
        if self.task is not None:
            await self.task


async def _run(settings) -> int:
    validate_settings(settings)
    state = create_initial_state(settings=settings)
    scheduler = state.scheduler

    loop = asyncio.get_running_loop()
    stop_on_signal = _StopOnSignal(scheduler)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_on_signal, sig)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler.
            logger.debug("Signal handler for %s not installed", sig)

    async with state.executor, state.records:
        logger.info(
            "Uploader ready: batch_size=%d, fetch interval %.0f min, root %s",
            settings.batch_size,
            settings.fetch_interval_minutes,
            settings.root_dir,
        )
        try:
            await scheduler.start(
                state.pipeline(),
                idle_seconds=settings.idle_poll_seconds,
                task_delay_seconds=settings.task_delay_seconds,
            )
        finally:
            # The browser and HTTP client close on exit; the stop must finish first.
            await stop_on_signal.wait()
            if scheduler.is_running:
                await scheduler.stop()

    stats = state.queue.get_stats()
    logger.info("Queue at shutdown: %s", ", ".join(f"{k}={v}" for k, v in stats.items()))
    return 0


# ---- progress ----


def _progress(settings, args: argparse.Namespace) -> int:
    store = ProgressStore(settings.progress_path)

    if args.progress_command == "list":
        items = store.get_all()
        if not items:
            print("No upload checkpoints.")
            return 0
        for cp in items:
            print(
                f"{cp.record_id}  {cp.work_item_name}  date={cp.date}  account={cp.account}  "
                f"{cp.completed_batches}/{cp.total_batches} batches  updated={cp.last_updated}"
            )
        return 0

    if args.all:
        n = store.clear_all()
        print(f"Cleared {n} checkpoint(s).")
        return 0
    if not args.record_id:
        print("progress clear: give a record_id or --all", file=sys.stderr)
        return 2
    if store.clear(args.record_id):
        print(f"Cleared checkpoint for {args.record_id}.")
        return 0
    print(f"No checkpoint for {args.record_id}.")
    return 1


# ---- check-login ----


async def _check_login(settings, account: str) -> int:
    if "{accountId}" not in settings.upload_url_template:
        raise InitializationFailure("UPLOADER_UPLOAD_URL_TEMPLATE must contain {accountId}")
    settings.user_data_dir.mkdir(parents=True, exist_ok=True)

    url = build_upload_url(settings.upload_url_template, account)
    surface = PlaywrightSurface.from_settings(settings)
    try:
        await surface.open()
    except Exception as exc:
        raise InitializationFailure(f"Browser session failed to start: {exc}") from exc
    try:
        ok = await surface.is_logged_in(url)
    finally:
        await surface.close()

    if ok:
        print(f"Logged in; upload page for account {account} is reachable.")
        return 0
    print("Not logged in. Run with UPLOADER_HEADLESS=false and log in manually in the opened browser.")
    return 1


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = get_settings()

    level_name = str(settings.log_level).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=settings.log_dir, console_level=console_level)

    command = args.command or "run"
    logger.info("Starting %s (%s), log file %s", settings.app_name, command, log_file)

    try:
        if command == "progress":
            code = _progress(settings, args)
        elif command == "check-login":
            code = asyncio.run(_check_login(settings, args.account))
        else:
            code = asyncio.run(_run(settings))
    except InitializationFailure as exc:
        logger.error("Startup failed: %s", exc)
        code = 1
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        code = 130

    logger.info("Bye.")
    sys.exit(code)


if __name__ == "__main__":
    main()
