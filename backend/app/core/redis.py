import secrets
from typing import Optional

import redis.asyncio as aioredis
import redis as sync_redis
from app.core.config import settings

LOCK_PREFIX = "lock:"

# 非同期Redis (FastAPI用: ヘルスチェック)
redis_pool = aioredis.ConnectionPool.from_url(
    settings.REDIS_URL,
    max_connections=20,
    decode_responses=True,
)


async def get_redis() -> aioredis.Redis:
    """FastAPI依存関数: 非同期Redisクライアント取得"""
    return aioredis.Redis(connection_pool=redis_pool)


# 同期Redis (Scheduler用)
sync_redis_pool = sync_redis.ConnectionPool.from_url(
    settings.REDIS_URL,
    max_connections=10,
    decode_responses=True,
)


def get_sync_redis() -> sync_redis.Redis:
    """同期Redisクライアント取得"""
    return sync_redis.Redis(connection_pool=sync_redis_pool)


def acquire_lock(r: sync_redis.Redis, name: str, ttl_seconds: int) -> Optional[str]:
    """
    プロセス間ロックを取得 (SET NX EX)。

    Returns:
        取得できた場合は解放用トークン、既に他プロセスが保持していれば None
    """
    token = secrets.token_hex(16)
    if r.set(f"{LOCK_PREFIX}{name}", token, nx=True, ex=ttl_seconds):
        return token
    return None


def release_lock(r: sync_redis.Redis, name: str, token: str) -> bool:
    """自分が保持しているロックのみ解放する"""
    key = f"{LOCK_PREFIX}{name}"
    # 比較と削除をアトミックに行う
    script = (
        "if redis.call('get', KEYS[1]) == ARGV[1] then "
        "return redis.call('del', KEYS[1]) else return 0 end"
    )
    return bool(r.eval(script, 1, key, token))


async def check_redis_connection() -> bool:
    """Redis接続チェック"""
    try:
        r = await get_redis()
        await r.ping()
        return True
    except Exception:
        return False
