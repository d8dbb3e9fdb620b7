"""日次: 期限切れ・失効済みリフレッシュトークンの削除"""
from app.core.config import settings
from app.core.database import SessionLocal
from app.core.timeutil import utcnow
from app.services import credential_store
from app.core.logging import get_logger

logger = get_logger(__name__)


def purge_refresh_tokens() -> int:
    db = SessionLocal()
    try:
        deleted = credential_store.purge_stale(db, utcnow(), settings.REFRESH_TOKEN_RETENTION_DAYS)
        db.commit()
        logger.info(f"リフレッシュトークン削除: {deleted}件")
        return deleted
    except Exception as e:
        db.rollback()
        logger.error(f"リフレッシュトークン削除エラー: {e}")
        return 0
    finally:
        db.close()
