# 全モデルをインポート (Alembic autogenerate用)
from app.models.user import User
from app.models.admin import Admin
from app.models.plan import Plan
from app.models.payment import Payment
from app.models.ledger_entry import LedgerEntry
from app.models.refresh_token import RefreshToken

__all__ = [
    "User",
    "Admin",
    "Plan",
    "Payment",
    "LedgerEntry",
    "RefreshToken",
]
