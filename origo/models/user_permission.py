"""
UserPermission model

Per-subject allow/deny for one ``resource.action`` inside one tenant. This is
the most specific authorization fact and survives role changes.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from origo.database import Base


class UserPermission(Base):
    __tablename__ = "user_permissions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    resource = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    allowed = Column(Boolean, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", "resource", "action", name="uq_user_permission"),
    )

    def __repr__(self) -> str:
        return (
            f"<UserPermission(user={self.user_id}, tenant={self.tenant_id}, "
            f"{self.resource}.{self.action}={self.allowed})>"
        )
