"""初期管理者アカウント作成スクリプト: python -m app.create_admin"""
import os

from app.core.database import SessionLocal
from app.models.admin import Admin
from app.services.auth_service import hash_password

ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@example.com")
ADMIN_NAME = os.environ.get("ADMIN_NAME", "管理者")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")


def main():
    if not ADMIN_PASSWORD:
        print("ADMIN_PASSWORD を環境変数で指定してください")
        return

    db = SessionLocal()
    try:
        email = ADMIN_EMAIL.strip().lower()
        existing = db.query(Admin).filter(Admin.email == email).first()
        if existing:
            print(f"既に存在します: {email}")
            return

        admin = Admin(
            email=email,
            name=ADMIN_NAME,
            password_hash=hash_password(ADMIN_PASSWORD),
            is_active=True,
        )
        db.add(admin)
        db.commit()
        print(f"管理者作成完了: email={email}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
