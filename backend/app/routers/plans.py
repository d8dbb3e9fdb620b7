"""公開プランAPI"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.schemas.subscription import PlanInfo
from app.services import plan_catalog

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("", response_model=list[PlanInfo])
def list_public_plans(db: Session = Depends(get_db)):
    """公開プラン一覧 (アクティブのみ)"""
    return plan_catalog.list_active_plans(db)


@router.get("/{plan_id}", response_model=PlanInfo)
def get_plan_detail(plan_id: int, db: Session = Depends(get_db)):
    return plan_catalog.get_plan(db, plan_id, active_only=True)
