"""クレデンシャルストア: リフレッシュトークンのメタデータ永続化"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update, or_, and_
from sqlalchemy.orm import Session

from app.models.refresh_token import RefreshToken
from app.core.logging import get_logger

logger = get_logger(__name__)


def create_record(
    db: Session,
    token_id: str,
    owner_id: int,
    owner_type: str,
    expires_at: datetime,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> RefreshToken:
    """レコード追加 (flushのみ。commitは呼び出し側)"""
    record = RefreshToken(
        token_id=token_id,
        owner_id=owner_id,
        owner_type=owner_type,
        expires_at=expires_at,
        issued_from_ip=ip,
        issued_from_agent=user_agent[:512] if user_agent else None,
    )
    db.add(record)
    db.flush()
    return record


def get_by_token_id(db: Session, token_id: str) -> Optional[RefreshToken]:
    if not token_id:
        return None
    return db.query(RefreshToken).filter(RefreshToken.token_id == token_id).first()


def mark_revoked(db: Session, record: RefreshToken, now: datetime) -> bool:
    """未失効なら失効させる。既に失効済みなら何もしない (失効の取り消しはない)"""
    if record.revoked_at is not None:
        return False
    record.revoked_at = now
    db.flush()
    return True


def mark_replaced(db: Session, record_id: int, new_record_id: int, now: datetime) -> bool:
    """
    ローテーションによる置き換えを記録する。

    revoked_at IS NULL を条件にした単一UPDATEで、同じトークンの同時ローテーションは
    片方しか成功しない。
    """
    result = db.execute(
        update(RefreshToken)
        .where(RefreshToken.id == record_id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=now, replaced_by=new_record_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def revoke_all_for_owner(db: Session, owner_id: int, owner_type: str, now: datetime) -> int:
    """所有者の有効なトークンを全て失効 (パスワード変更・アカウント停止時)"""
    result = db.execute(
        update(RefreshToken)
        .where(
            RefreshToken.owner_id == owner_id,
            RefreshToken.owner_type == owner_type,
            RefreshToken.revoked_at.is_(None),
        )
        .values(revoked_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def find_chain_head(db: Session, record: RefreshToken, max_hops: int = 100) -> RefreshToken:
    """replaced_by を辿って最新のトークンを返す"""
    current = record
    for _ in range(max_hops):
        if current.replaced_by is None:
            return current
        nxt = db.query(RefreshToken).filter(RefreshToken.id == current.replaced_by).first()
        if nxt is None:
            return current
        current = nxt
    return current


def purge_stale(db: Session, now: datetime, retention_days: int) -> int:
    """期限切れ・失効から保持期間を過ぎたレコードを削除"""
    threshold = now - timedelta(days=retention_days)
    stale_filter = or_(
        RefreshToken.expires_at < threshold,
        and_(RefreshToken.revoked_at.is_not(None), RefreshToken.revoked_at < threshold),
    )
    stale_ids = [row.id for row in db.query(RefreshToken.id).filter(stale_filter).all()]
    if not stale_ids:
        return 0
    # チェーン内の参照を先に外す
    db.execute(
        update(RefreshToken)
        .where(RefreshToken.replaced_by.in_(stale_ids))
        .values(replaced_by=None)
        .execution_options(synchronize_session=False)
    )
    deleted = db.query(RefreshToken).filter(RefreshToken.id.in_(stale_ids)).delete(synchronize_session=False)
    return deleted
