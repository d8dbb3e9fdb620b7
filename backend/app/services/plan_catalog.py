"""プランカタログ (読み取り専用)"""
from sqlalchemy.orm import Session

from app.models.plan import Plan
from app.core.errors import InvalidPlan


def get_plan(db: Session, plan_id: int, *, active_only: bool = False) -> Plan:
    """
    プラン取得。

    キュー済みエントリの昇格時は販売終了プランでも引けるよう active_only=False で呼ぶ。
    """
    query = db.query(Plan).filter(Plan.id == plan_id)
    if active_only:
        query = query.filter(Plan.is_active == True)
    plan = query.first()
    if plan is None:
        raise InvalidPlan(f"プランが存在しません: plan_id={plan_id}")
    return plan


def list_active_plans(db: Session) -> list[Plan]:
    return db.query(Plan).filter(Plan.is_active == True).order_by(Plan.price.asc(), Plan.id.asc()).all()
