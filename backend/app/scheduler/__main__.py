"""Scheduler エントリポイント: python -m app.scheduler で起動"""
import signal
import sys
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings, validate_signing_keys
from app.core.logging import setup_logging, get_logger
from app.scheduler.subscription_sweeper import sweep_subscriptions
from app.scheduler.token_cleaner import purge_refresh_tokens

setup_logging(debug=settings.DEBUG)
logger = get_logger("scheduler")

scheduler = BlockingScheduler(timezone=settings.SCHEDULER_TIMEZONE)


def signal_handler(sig, frame):
    logger.info("Scheduler停止シグナル受信")
    scheduler.shutdown(wait=False)
    sys.exit(0)


signal.signal(signal.SIGTERM, signal_handler)
signal.signal(signal.SIGINT, signal_handler)


def main():
    validate_signing_keys()
    logger.info(f"Scheduler起動: sweep_interval={settings.SWEEP_INTERVAL_MINUTES}分")

    # 購読スイープ (前回が終わっていなければ重ねて起動しない)
    scheduler.add_job(
        sweep_subscriptions,
        CronTrigger(minute=f"*/{settings.SWEEP_INTERVAL_MINUTES}", timezone=settings.SCHEDULER_TIMEZONE),
        id="subscription_sweeper",
        max_instances=1,
        coalesce=True,
    )

    # 03:30: リフレッシュトークン掃除
    scheduler.add_job(
        purge_refresh_tokens,
        CronTrigger(hour=3, minute=30, timezone=settings.SCHEDULER_TIMEZONE),
        id="token_cleaner",
        max_instances=1,
    )

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler終了")


if __name__ == "__main__":
    main()
