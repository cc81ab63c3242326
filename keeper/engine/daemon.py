"""
Main daemon entry point: starts all Secret Keeper subsystems.

Runs as: keeper serve  (or python -m keeper.engine.daemon)

Subsystems:
- Telegram bot (long-polling, only with a bot token)
- Reconciliation scheduler (APScheduler cron)
- Web app (FastAPI: health, link check-in, vault submission)
- Watchdog (PostgreSQL ping)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from keeper.config import Config, get_config
from keeper.engine.dispatcher import CommandDispatcher
from keeper.engine.lifecycle import VaultLifecycleEngine
from keeper.engine.scheduler import ReconcileScheduler
from keeper.engine.web import serve
from keeper.notify.drive import DriveClient
from keeper.notify.mailer import SmtpMailer
from keeper.notify.port import ChannelNotifier
from keeper.vault.dal import PostgresVaultStore
from keeper.vault.store import VaultStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


@dataclass
class Components:
    engine: VaultLifecycleEngine
    drive: DriveClient | None = None


def build_engine(config: Config, store: VaultStore | None = None) -> Components:
    """Wire store, channels and engine from config."""
    mailer = SmtpMailer(config.smtp) if config.smtp.enabled else None
    drive = DriveClient(config.drive) if config.drive.enabled else None
    notifier = ChannelNotifier(mailer=mailer, drive=drive, base_subject=config.sender_name)
    engine = VaultLifecycleEngine(
        config,
        store if store is not None else PostgresVaultStore(),
        notifier,
        documents=drive,
    )
    return Components(engine=engine, drive=drive)


async def main() -> None:
    """Start all subsystems."""
    configure_logging()
    logger.info("Starting Secret Keeper...")

    config = get_config()
    for problem in config.problems():
        logger.warning("Config: %s", problem)
    logger.info("Web port: %d", config.port)
    logger.info("Telegram bot: %s", "configured" if config.telegram.enabled else "disabled")
    logger.info("SMTP: %s", "configured" if config.smtp.enabled else "disabled")

    components = build_engine(config)
    engine = components.engine
    scheduler = ReconcileScheduler(config.schedule, engine)

    bot = None
    if config.telegram.enabled:
        from keeper.engine.telegram import TelegramBot

        bot = TelegramBot(config.telegram, CommandDispatcher(engine))

    tasks = [
        asyncio.create_task(scheduler.start(), name="scheduler"),
        asyncio.create_task(serve(engine, scheduler), name="web"),
        asyncio.create_task(_watchdog(), name="watchdog"),
    ]
    if bot is not None:
        tasks.append(asyncio.create_task(bot.start_polling(), name="telegram"))

    logger.info("All subsystems started")

    # aiogram and uvicorn both handle SIGTERM and return, which ends the run
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

    for task in done:
        if task.exception():
            logger.error("Task %s failed: %s", task.get_name(), task.exception())
        else:
            logger.info("Task %s completed", task.get_name())

    logger.info("Shutting down subsystems...")
    await scheduler.stop()
    if bot is not None:
        await bot.stop()
    if components.drive is not None:
        await components.drive.close()

    for task in pending:
        task.cancel()

    await asyncio.gather(*pending, return_exceptions=True)

    from keeper.db.connection import close_pool

    close_pool()
    logger.info("Secret Keeper stopped")


async def _watchdog() -> None:
    """Ping PostgreSQL every 60s."""
    pg_failures = 0

    while True:
        await asyncio.sleep(60)
        try:
            await asyncio.to_thread(_ping_db)
            if pg_failures:
                logger.info("Watchdog: PostgreSQL reachable again")
            pg_failures = 0
        except Exception as e:
            pg_failures += 1
            logger.warning("Watchdog: PostgreSQL ping failed (%d): %s", pg_failures, e)


def _ping_db() -> None:
    from keeper.db.connection import get_connection

    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute("SELECT 1")


def run() -> None:
    """Entry point for python -m keeper.engine.daemon"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
