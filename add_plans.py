#!/usr/bin/env python3
"""初期5プランを追加するスクリプト (同名プランが既にあればスキップ)"""
import sys
sys.path.insert(0, '/app')

from app.core.database import SessionLocal
from app.models.plan import Plan

PLANS = [
    {
        "name": "Regular Daily",
        "tier": "Regular",
        "duration_days": 1,
        "duration_label": "1 Day",
        "price": 99,
        "max_visible_targets": 2,
        "reminder_lead_hours": 2,
    },
    {
        "name": "Regular Weekly",
        "tier": "Regular",
        "duration_days": 7,
        "duration_label": "7 Days",
        "price": 499,
        "max_visible_targets": 2,
        "reminder_lead_hours": 24,
    },
    {
        "name": "Premium Daily",
        "tier": "Premium",
        "duration_days": 1,
        "duration_label": "1 Day",
        "price": 199,
        "max_visible_targets": 99,
        "reminder_lead_hours": 2,
    },
    {
        "name": "Premium Weekly",
        "tier": "Premium",
        "duration_days": 7,
        "duration_label": "7 Days",
        "price": 999,
        "max_visible_targets": 99,
        "reminder_lead_hours": 24,
    },
    {
        "name": "International Weekly",
        "tier": "International",
        "duration_days": 7,
        "duration_label": "7 Days",
        "price": 1999,
        "max_visible_targets": 99,
        "reminder_lead_hours": 24,
    },
]


def add_plans(db) -> int:
    created = 0
    for data in PLANS:
        if db.query(Plan).filter(Plan.name == data["name"]).first():
            print(f"スキップ (既存): {data['name']}")
            continue
        db.add(Plan(currency="INR", is_active=True, **data))
        created += 1
        print(f"追加: {data['name']} ({data['duration_label']}, ₹{data['price']})")
    db.commit()
    return created


def main():
    db = SessionLocal()
    try:
        created = add_plans(db)
        print(f"完了: {created}件追加")
    finally:
        db.close()


if __name__ == "__main__":
    main()
