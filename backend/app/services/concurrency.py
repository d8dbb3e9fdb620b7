"""同時実行制御: 行ロックと競合時の有限回リトライ"""
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.errors import ConcurrencyConflict
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# 一意制約違反 (キュー位置の採番競合)・デッドロック・楽観ロック失敗
RETRYABLE_ERRORS = (IntegrityError, OperationalError, StaleDataError)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE を付与する。

    NOTE: SQLite は FOR UPDATE を無視する (単一ライターのため問題なし)
    """
    return query.with_for_update()


def run_with_retry(
    db: Session,
    func: Callable[[], T],
    *,
    attempts: int = None,
    backoff_base: float = 0.05,
    label: str = "",
) -> T:
    """
    func() を実行してcommitする。競合時はrollbackして再実行。

    上限回数を超えたら ConcurrencyConflict を送出する。
    func はリトライごとにDBから状態を読み直すこと。
    """
    attempts = attempts or settings.LEDGER_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            result = func()
            db.commit()
            return result
        except RETRYABLE_ERRORS as e:
            db.rollback()
            logger.warning(f"競合検出 {label}: attempt={attempt}/{attempts}, error={e.__class__.__name__}")
            if attempt >= attempts:
                raise ConcurrencyConflict(f"{label} の競合が解消しませんでした") from e
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.rollback()
            raise
