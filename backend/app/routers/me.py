"""マイページAPI"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.logging import get_logger
from app.models.user import User
from app.schemas.auth import UserInfo, MessageResponse
from app.schemas.subscription import NotificationTokenRequest
from app.routers.deps import get_current_user

logger = get_logger(__name__)

router = APIRouter(prefix="/api/me", tags=["me"])


@router.get("", response_model=UserInfo)
def get_me(user: User = Depends(get_current_user)):
    return UserInfo.from_user(user)


@router.put("/notification-token", response_model=MessageResponse)
def update_notification_token(
    req: NotificationTokenRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """プッシュ通知トークンの登録・解除"""
    user.fcm_token = req.fcm_token or None
    db.commit()
    logger.info(f"通知トークン更新: user_id={user.id}, registered={user.fcm_token is not None}")
    return MessageResponse(message="通知設定を更新しました")
