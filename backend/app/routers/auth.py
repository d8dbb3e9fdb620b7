"""認証ルーター: ログイン、トークン更新、ログアウト、パスワード変更"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import ConcurrencyConflict, InvalidCredential, RevokedToken
from app.core.logging import get_logger
from app.core.rate_limit import limiter, LOGIN_RATE_LIMIT, REFRESH_RATE_LIMIT
from app.schemas.auth import (
    LoginRequest,
    AdminLoginRequest,
    RefreshRequest,
    LogoutRequest,
    ChangePasswordRequest,
    LoginResponse,
    TokenPair,
    UserInfo,
    AdminInfo,
    MessageResponse,
)
from app.services import auth_service, token_service
from app.routers.deps import get_current_user, request_meta
from app.models.user import User

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _issue_pair(db: Session, owner_id: int, owner_type: str, request: Request) -> TokenPair:
    issued = token_service.issue_refresh_token(db, owner_id, owner_type, request_meta(request))
    return TokenPair(
        access_token=token_service.issue_access_token(owner_id, owner_type),
        refresh_token=issued.token,
    )


@router.post("/login", response_model=LoginResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def login(request: Request, req: LoginRequest, db: Session = Depends(get_db)):
    """ログイン (携帯番号 / 表示用ID)"""
    user = auth_service.authenticate_user(db, req.identifier, req.password)
    pair = _issue_pair(db, user.id, "user", request)
    logger.info(f"ログイン: user_id={user.id}")
    return LoginResponse(**pair.model_dump(), user=UserInfo.from_user(user))


@router.post("/admin/login", response_model=LoginResponse)
@limiter.limit(LOGIN_RATE_LIMIT)
def admin_login(request: Request, req: AdminLoginRequest, db: Session = Depends(get_db)):
    """管理者ログイン"""
    admin = auth_service.authenticate_admin(db, req.email, req.password)
    pair = _issue_pair(db, admin.id, "admin", request)
    logger.info(f"管理者ログイン: admin_id={admin.id}")
    return LoginResponse(**pair.model_dump(), admin=AdminInfo(id=admin.id, email=admin.email, name=admin.name))


@router.post("/refresh", response_model=TokenPair)
@limiter.limit(REFRESH_RATE_LIMIT)
def refresh(request: Request, req: RefreshRequest, db: Session = Depends(get_db)):
    """リフレッシュトークンのローテーション"""
    claims, record = token_service.verify_refresh_token(db, req.refresh_token)

    if claims.owner_type == "user":
        owner = auth_service.get_user_by_id(db, claims.owner_id)
    else:
        owner = auth_service.get_admin_by_id(db, claims.owner_id)
    if owner is None or not owner.is_active:
        raise InvalidCredential(f"所有者が無効です: {claims.owner_type}:{claims.owner_id}")

    try:
        issued = token_service.rotate_refresh_token(
            db, record, claims.owner_id, claims.owner_type, request_meta(request)
        )
    except ConcurrencyConflict:
        # 同じトークンが同時に使われた。後着側は再ログインさせる
        raise RevokedToken("ローテーション競合")

    return TokenPair(
        access_token=token_service.issue_access_token(claims.owner_id, claims.owner_type),
        refresh_token=issued.token,
    )


@router.post("/logout", response_model=MessageResponse)
def logout(req: LogoutRequest, db: Session = Depends(get_db)):
    """ログアウト。トークンの状態に関わらず成功を返す"""
    token_service.revoke_refresh_token(db, req.refresh_token)
    return MessageResponse(message="ログアウトしました")


@router.post("/change-password", response_model=TokenPair)
def change_password(
    request: Request,
    req: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """パスワード変更。既存のリフレッシュトークンは全て失効させ、新しいペアを返す"""
    try:
        auth_service.change_password(db, user, req.current_password, req.new_password)
        token_service.revoke_all_tokens(db, user.id, "user")
        db.commit()
    except Exception:
        db.rollback()
        raise
    return _issue_pair(db, user.id, "user", request)
