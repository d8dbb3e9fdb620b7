"""15分ごと: 購読の期限切れ・昇格・リマインダー"""
from typing import Optional

import redis

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.redis import get_sync_redis, acquire_lock, release_lock
from app.core.timeutil import utcnow
from app.services import notification_service
from app.services.lifecycle_service import run_sweep, SweepReport
from app.core.logging import get_logger

logger = get_logger(__name__)

HEARTBEAT_KEY = "scheduler:heartbeat"
SWEEP_LOCK_NAME = "subscription_sweep"

_notifier = None


def _get_notifier():
    global _notifier
    if _notifier is None:
        _notifier = notification_service.build_notifier()
    return _notifier


def sweep_subscriptions() -> Optional[SweepReport]:
    """スイープ1回分。別プロセスが実行中ならスキップ"""
    now = utcnow()
    interval_seconds = settings.SWEEP_INTERVAL_MINUTES * 60

    try:
        r = get_sync_redis()
        r.set(HEARTBEAT_KEY, now.isoformat(), ex=interval_seconds * 2)
        lock_token = acquire_lock(r, SWEEP_LOCK_NAME, ttl_seconds=interval_seconds)
    except redis.RedisError as e:
        logger.error(f"Redis接続エラーのためスイープをスキップ: {e}")
        return None

    if lock_token is None:
        logger.info("他プロセスがスイープ実行中のためスキップ")
        return None

    db = SessionLocal()
    try:
        return run_sweep(db, _get_notifier(), now)
    except Exception:
        logger.exception("スイープ全体が失敗 (次回実行で再試行)")
        return None
    finally:
        db.close()
        try:
            release_lock(r, SWEEP_LOCK_NAME, lock_token)
        except redis.RedisError as e:
            logger.warning(f"スイープロック解放失敗 (TTLで失効): {e}")
