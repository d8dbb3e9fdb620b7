"""共通依存関数: Bearer認証・購読チェック"""
from typing import Optional
from fastapi import Request, HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import InvalidCredential
from app.core.timeutil import utcnow
from app.models.user import User
from app.models.admin import Admin
from app.services import token_service
from app.services.token_service import RequestMeta, TokenClaims
from app.core.rate_limit import get_client_ip

bearer_scheme = HTTPBearer(auto_error=False)


def request_meta(request: Request) -> RequestMeta:
    """トークン発行時に記録するリクエスト情報"""
    return RequestMeta(ip=get_client_ip(request), user_agent=request.headers.get("user-agent"))


def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenClaims:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise InvalidCredential("Authorization ヘッダーがありません")
    return token_service.verify_access_token(credentials.credentials)


def get_current_user(
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> User:
    """アクセストークンからユーザー取得。無効化済みなら再認証"""
    if claims.owner_type != "user":
        raise InvalidCredential("ユーザートークンではありません")
    user = db.query(User).filter(User.id == claims.owner_id, User.is_active == True).first()
    if user is None:
        raise InvalidCredential(f"ユーザーが無効です: user_id={claims.owner_id}")
    return user


def get_current_admin(
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> Admin:
    if claims.owner_type != "admin":
        raise HTTPException(status_code=403, detail="管理者権限が必要です")
    admin = db.query(Admin).filter(Admin.id == claims.owner_id, Admin.is_active == True).first()
    if admin is None:
        raise InvalidCredential(f"管理者が無効です: admin_id={claims.owner_id}")
    return admin


def require_active_subscription(
    user: User = Depends(get_current_user),
) -> User:
    """有効な購読必須。スナップショットの is_active / end_date で判定"""
    if not user.has_active_subscription(utcnow()):
        raise HTTPException(status_code=403, detail="有効な購読がありません")
    return user
