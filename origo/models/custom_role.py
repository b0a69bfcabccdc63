"""
CustomRole and RolePermission models

A custom role is tenant-scoped, extends exactly one system role and carries
allow/deny rows for individual ``resource.action`` pairs (``action="*"`` for
a resource wildcard, ``resource="*", action="*"`` for the global wildcard).
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from origo.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomRole(Base):
    __tablename__ = "custom_roles"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    based_on_role = Column(String(20), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    permissions = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
        order_by="RolePermission.id",
    )
    memberships = relationship("TenantMembership", back_populates="custom_role", passive_deletes="all")

    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_custom_role_tenant_name"),)

    def __repr__(self) -> str:
        return f"<CustomRole(id={self.id}, tenant={self.tenant_id}, name={self.name!r}, base={self.based_on_role!r})>"


class RolePermission(Base):
    __tablename__ = "role_permissions"

    id = Column(Integer, primary_key=True, index=True)
    role_id = Column(Integer, ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False, index=True)
    resource = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    allowed = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    role = relationship("CustomRole", back_populates="permissions")

    __table_args__ = (UniqueConstraint("role_id", "resource", "action", name="uq_role_permission"),)

    @property
    def key(self) -> str:
        if self.resource == "*":
            return "*"
        return f"{self.resource}.{self.action}"

    def __repr__(self) -> str:
        return f"<RolePermission(role={self.role_id}, {self.key}={self.allowed})>"
