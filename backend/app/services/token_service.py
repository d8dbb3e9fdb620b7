"""
トークン発行: アクセストークン (短命・ステートレス) とリフレッシュトークン (長命・DB管理)

リフレッシュトークンは1回使い切り。ローテーション時は新レコードを作成してから
旧レコードを失効させ、replaced_by で新旧を連結する (同一トランザクション)。
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    InvalidCredential, UnknownToken, RevokedToken, ExpiredToken, ConcurrencyConflict,
)
from app.core.logging import get_logger, log_event
from app.core.timeutil import utcnow, to_naive_utc
from app.models.refresh_token import RefreshToken
from app.services import credential_store

logger = get_logger(__name__)

OWNER_TYPES = ("user", "admin")


@dataclass
class RequestMeta:
    """発行元リクエストの情報 (監査用)"""
    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class IssuedRefreshToken:
    token: str
    record: RefreshToken


@dataclass
class TokenClaims:
    owner_id: int
    owner_type: str
    token_id: Optional[str] = None


def _check_owner_type(owner_type: str):
    if owner_type not in OWNER_TYPES:
        raise ValueError(f"不正な owner_type: {owner_type}")


def _claims_from_payload(payload: dict) -> TokenClaims:
    owner_type = payload.get("type")
    if owner_type not in OWNER_TYPES:
        raise InvalidCredential("トークン種別が不正です")
    try:
        owner_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise InvalidCredential("subject が不正です")
    return TokenClaims(owner_id=owner_id, owner_type=owner_type, token_id=payload.get("jti"))


# =========================================================
# アクセストークン
# =========================================================

def issue_access_token(owner_id: int, owner_type: str) -> str:
    """短命アクセストークン発行 (DBに記録しない)"""
    _check_owner_type(owner_type)
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(owner_id),
        "type": owner_type,
        "iat": now,
        "exp": now + timedelta(days=settings.JWT_EXPIRES_DAYS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> TokenClaims:
    """アクセストークン検証"""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.InvalidTokenError as e:
        raise InvalidCredential(f"アクセストークン検証失敗: {e.__class__.__name__}")
    return _claims_from_payload(payload)


# =========================================================
# リフレッシュトークン
# =========================================================

def _create_refresh_token(
    db: Session,
    owner_id: int,
    owner_type: str,
    meta: Optional[RequestMeta],
) -> IssuedRefreshToken:
    """署名とレコード追加 (flushのみ)"""
    _check_owner_type(owner_type)
    meta = meta or RequestMeta()
    token_id = secrets.token_hex(16)
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(days=settings.JWT_REFRESH_EXPIRES_DAYS)
    payload = {
        "sub": str(owner_id),
        "type": owner_type,
        "jti": token_id,
        "iat": now,
        "exp": expires_at,
    }
    token = jwt.encode(payload, settings.JWT_REFRESH_SECRET, algorithm=settings.JWT_ALGORITHM)
    record = credential_store.create_record(
        db,
        token_id=token_id,
        owner_id=owner_id,
        owner_type=owner_type,
        expires_at=to_naive_utc(expires_at),
        ip=meta.ip,
        user_agent=meta.user_agent,
    )
    return IssuedRefreshToken(token=token, record=record)


def issue_refresh_token(
    db: Session,
    owner_id: int,
    owner_type: str,
    meta: Optional[RequestMeta] = None,
) -> IssuedRefreshToken:
    """リフレッシュトークン発行 (レコード1件をcommit)"""
    try:
        issued = _create_refresh_token(db, owner_id, owner_type, meta)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"リフレッシュトークン発行: owner={owner_type}:{owner_id}, record_id={issued.record.id}")
    return issued


def rotate_refresh_token(
    db: Session,
    old_record: RefreshToken,
    owner_id: int,
    owner_type: str,
    meta: Optional[RequestMeta] = None,
    now: Optional[datetime] = None,
) -> IssuedRefreshToken:
    """
    新トークン発行 → 旧トークンに replaced_by を設定して失効、を1トランザクションで行う。

    同じ旧トークンで同時にローテーションされた場合、後着側は ConcurrencyConflict。
    """
    now = now or utcnow()
    try:
        issued = _create_refresh_token(db, owner_id, owner_type, meta)
        if not credential_store.mark_replaced(db, old_record.id, issued.record.id, now):
            raise ConcurrencyConflict("リフレッシュトークンは既に使用済みです")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(old_record)
    logger.info(
        f"リフレッシュトークンローテーション: owner={owner_type}:{owner_id}, "
        f"{old_record.id} → {issued.record.id}"
    )
    return issued


def verify_refresh_token(
    db: Session,
    raw_token: str,
    now: Optional[datetime] = None,
) -> tuple[TokenClaims, RefreshToken]:
    """
    リフレッシュトークン検証。

    Raises:
        InvalidCredential: 署名・有効期限 (暗号層) の検証失敗
        UnknownToken: jti に対応するレコードなし
        RevokedToken: 失効済み
        ExpiredToken: レコード上の期限切れ
    """
    now = now or utcnow()
    try:
        payload = jwt.decode(
            raw_token,
            settings.JWT_REFRESH_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub", "jti"]},
        )
    except jwt.InvalidTokenError as e:
        raise InvalidCredential(f"リフレッシュトークン検証失敗: {e.__class__.__name__}")

    claims = _claims_from_payload(payload)
    record = credential_store.get_by_token_id(db, claims.token_id)
    if record is None:
        raise UnknownToken("リフレッシュトークンが登録されていません")
    if record.owner_id != claims.owner_id or record.owner_type != claims.owner_type:
        raise InvalidCredential("トークンの所有者が一致しません")

    if record.revoked_at is not None:
        if record.replaced_by is not None:
            # ローテーション済みトークンの再提示 = 漏洩の疑い
            head = credential_store.find_chain_head(db, record)
            log_event(
                logger, logging.WARNING, "リフレッシュトークン再利用検知",
                owner_type=record.owner_type,
                owner_id=record.owner_id,
                record_id=record.id,
                chain_head_id=head.id,
                chain_head_revoked=head.revoked_at is not None,
            )
        raise RevokedToken("リフレッシュトークンは失効しています")

    if now > record.expires_at:
        raise ExpiredToken("リフレッシュトークンの有効期限切れ")

    return claims, record


def revoke_refresh_token(db: Session, raw_token: str, now: Optional[datetime] = None) -> bool:
    """
    ログアウト: トークンを失効させる。

    不正・未知・失効済みのトークンでもエラーにしない (トークン探索対策)。
    Returns:
        今回失効させた場合 True
    """
    now = now or utcnow()
    try:
        payload = jwt.decode(
            raw_token,
            settings.JWT_REFRESH_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except jwt.InvalidTokenError:
        return False

    record = credential_store.get_by_token_id(db, payload.get("jti"))
    if record is None:
        return False

    try:
        revoked = credential_store.mark_revoked(db, record, now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    if revoked:
        logger.info(f"リフレッシュトークン失効: owner={record.owner_type}:{record.owner_id}, record_id={record.id}")
    return revoked


def revoke_all_tokens(db: Session, owner_id: int, owner_type: str, now: Optional[datetime] = None) -> int:
    """所有者の全リフレッシュトークンを失効 (commitは呼び出し側)"""
    count = credential_store.revoke_all_for_owner(db, owner_id, owner_type, now or utcnow())
    if count:
        logger.info(f"リフレッシュトークン一括失効: owner={owner_type}:{owner_id}, count={count}")
    return count
