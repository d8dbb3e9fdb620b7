"""管理画面: 購読管理 (プラン付与・台帳参照)"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import NotFound
from app.models.admin import Admin
from app.schemas.auth import SubscriptionSnapshot
from app.schemas.subscription import GrantPlanRequest, QueueEntryInfo, MySubscriptionResponse
from app.services import auth_service, ledger_service, payment_service
from app.routers.deps import get_current_admin

router = APIRouter(prefix="/api/admin/users", tags=["admin-subscriptions"])


def _queue_response(db: Session, user_id: int) -> MySubscriptionResponse:
    user = auth_service.get_user_by_id(db, user_id)
    if user is None:
        raise NotFound(f"ユーザーが存在しません: user_id={user_id}")
    queue = [QueueEntryInfo.from_item(item) for item in ledger_service.current_queue(db, user_id)]
    return MySubscriptionResponse(snapshot=SubscriptionSnapshot.from_user(user), queue=queue)


@router.get("/{user_id}/subscription", response_model=MySubscriptionResponse)
def get_user_subscription(user_id: int, db: Session = Depends(get_db), _=Depends(get_current_admin)):
    """ユーザーの購読キュー"""
    return _queue_response(db, user_id)


@router.post("/{user_id}/grant-plan", response_model=MySubscriptionResponse)
def grant_plan(
    user_id: int,
    req: GrantPlanRequest,
    db: Session = Depends(get_db),
    admin: Admin = Depends(get_current_admin),
):
    """管理者によるプラン付与 (通常購入と同じく台帳のキューに積む)"""
    payment_service.grant_plan(db, admin.id, user_id, req.plan_id)
    return _queue_response(db, user_id)
