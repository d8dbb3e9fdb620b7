from sqlalchemy import Column, Integer, String, DateTime, Enum as SAEnum, ForeignKey, Index, func
from app.core.database import Base


class RefreshToken(Base):
    """発行済みリフレッシュトークンのメタデータ。トークン文字列そのものは保存しない"""

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_owner", "owner_type", "owner_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String(64), unique=True, nullable=False, index=True, comment="JWT内のjti")
    owner_id = Column(Integer, nullable=False)
    owner_type = Column(SAEnum("user", "admin", name="token_owner_type"), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    revoked_at = Column(DateTime, nullable=True)
    replaced_by = Column(Integer, ForeignKey("refresh_tokens.id", ondelete="SET NULL"), nullable=True)
    issued_from_ip = Column(String(64), nullable=True)
    issued_from_agent = Column(String(512), nullable=True)
