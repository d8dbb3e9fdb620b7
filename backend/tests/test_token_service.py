"""リフレッシュトークンの発行・ローテーション・失効"""
import logging
from datetime import timedelta

import jwt
import pytest

from app.core.config import settings
from app.core.errors import (
    InvalidCredential, UnknownToken, RevokedToken, ExpiredToken, ConcurrencyConflict,
)
from app.core.timeutil import utcnow
from app.models.refresh_token import RefreshToken
from app.services import credential_store, token_service
from app.services.token_service import RequestMeta


def test_access_token_round_trip():
    token = token_service.issue_access_token(42, "user")
    claims = token_service.verify_access_token(token)
    assert claims.owner_id == 42
    assert claims.owner_type == "user"


def test_refresh_token_is_not_accepted_as_access_token(db):
    issued = token_service.issue_refresh_token(db, 1, "user")
    with pytest.raises(InvalidCredential):
        token_service.verify_access_token(issued.token)


def test_issue_refresh_token_persists_metadata_only(db):
    issued = token_service.issue_refresh_token(db, 7, "admin", RequestMeta(ip="10.0.0.1", user_agent="pytest"))

    record = db.query(RefreshToken).one()
    assert record.owner_id == 7
    assert record.owner_type == "admin"
    assert record.issued_from_ip == "10.0.0.1"
    assert record.issued_from_agent == "pytest"
    assert record.revoked_at is None
    assert record.token_id != issued.token

    payload = jwt.decode(issued.token, settings.JWT_REFRESH_SECRET, algorithms=[settings.JWT_ALGORITHM])
    assert payload["jti"] == record.token_id
    assert payload["sub"] == "7"


def test_verify_refresh_token_returns_claims_and_record(db):
    issued = token_service.issue_refresh_token(db, 3, "user")
    claims, record = token_service.verify_refresh_token(db, issued.token)
    assert claims.owner_id == 3
    assert record.id == issued.record.id


def test_rotation_revokes_old_and_links_chain(db):
    first = token_service.issue_refresh_token(db, 5, "user")
    _, old_record = token_service.verify_refresh_token(db, first.token)

    second = token_service.rotate_refresh_token(db, old_record, 5, "user")

    assert old_record.revoked_at is not None
    assert old_record.replaced_by == second.record.id
    with pytest.raises(RevokedToken):
        token_service.verify_refresh_token(db, first.token)
    claims, record = token_service.verify_refresh_token(db, second.token)
    assert record.id == second.record.id
    assert claims.owner_id == 5


def test_concurrent_rotation_of_same_token_conflicts(db):
    first = token_service.issue_refresh_token(db, 5, "user")
    _, old_record = token_service.verify_refresh_token(db, first.token)
    token_service.rotate_refresh_token(db, old_record, 5, "user")

    with pytest.raises(ConcurrencyConflict):
        token_service.rotate_refresh_token(db, old_record, 5, "user")

    # 失敗側で作られかけたレコードは残らない
    assert db.query(RefreshToken).count() == 2


def test_reuse_of_rotated_token_logs_chain_head(db, caplog):
    first = token_service.issue_refresh_token(db, 9, "user")
    _, r1 = token_service.verify_refresh_token(db, first.token)
    second = token_service.rotate_refresh_token(db, r1, 9, "user")
    _, r2 = token_service.verify_refresh_token(db, second.token)
    third = token_service.rotate_refresh_token(db, r2, 9, "user")

    caplog.set_level(logging.WARNING, logger="app.services.token_service")
    with pytest.raises(RevokedToken):
        token_service.verify_refresh_token(db, first.token)

    warnings = [r for r in caplog.records if r.getMessage() == "リフレッシュトークン再利用検知"]
    assert len(warnings) == 1
    assert warnings[0].extra_data["chain_head_id"] == third.record.id


def test_expired_record_is_rejected(db):
    issued = token_service.issue_refresh_token(db, 1, "user")
    issued.record.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    with pytest.raises(ExpiredToken):
        token_service.verify_refresh_token(db, issued.token)


def test_unknown_token_id_is_rejected(db):
    issued = token_service.issue_refresh_token(db, 1, "user")
    db.query(RefreshToken).delete()
    db.commit()

    with pytest.raises(UnknownToken):
        token_service.verify_refresh_token(db, issued.token)


def test_bad_signature_is_invalid_credential(db):
    forged = jwt.encode(
        {"sub": "1", "type": "user", "jti": "x", "exp": utcnow() + timedelta(days=1)},
        "wrong-secret",
        algorithm="HS256",
    )
    with pytest.raises(InvalidCredential):
        token_service.verify_refresh_token(db, forged)
    with pytest.raises(InvalidCredential):
        token_service.verify_refresh_token(db, "not-a-jwt")


def test_logout_is_idempotent_and_silent(db):
    issued = token_service.issue_refresh_token(db, 1, "user")

    assert token_service.revoke_refresh_token(db, issued.token) is True
    assert token_service.revoke_refresh_token(db, issued.token) is False
    assert token_service.revoke_refresh_token(db, "garbage") is False
    with pytest.raises(RevokedToken):
        token_service.verify_refresh_token(db, issued.token)


def test_revoke_all_tokens_only_touches_owner(db):
    a1 = token_service.issue_refresh_token(db, 1, "user")
    a2 = token_service.issue_refresh_token(db, 1, "user")
    other = token_service.issue_refresh_token(db, 2, "user")
    admin_same_id = token_service.issue_refresh_token(db, 1, "admin")

    assert token_service.revoke_all_tokens(db, 1, "user") == 2
    db.commit()

    for issued in (a1, a2):
        with pytest.raises(RevokedToken):
            token_service.verify_refresh_token(db, issued.token)
    token_service.verify_refresh_token(db, other.token)
    token_service.verify_refresh_token(db, admin_same_id.token)


def test_purge_stale_removes_old_records_and_keeps_live_ones(db):
    now = utcnow()
    live = token_service.issue_refresh_token(db, 1, "user")
    old = token_service.issue_refresh_token(db, 1, "user")
    _, old_record = token_service.verify_refresh_token(db, old.token)
    rotated = token_service.rotate_refresh_token(db, old_record, 1, "user")

    old_record.revoked_at = now - timedelta(days=settings.REFRESH_TOKEN_RETENTION_DAYS + 1)
    db.commit()

    deleted = credential_store.purge_stale(db, now, settings.REFRESH_TOKEN_RETENTION_DAYS)
    db.commit()

    assert deleted == 1
    remaining = {r.id for r in db.query(RefreshToken).all()}
    assert remaining == {live.record.id, rotated.record.id}
