"""
TenantMembership model

Many-to-many link between users and tenants. The role a member holds inside
the tenant is stored as exactly one of ``system_role`` or ``custom_role_id``
and exposed through ``role`` as a SystemRoleRef / CustomRoleRef value.
"""

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from origo.constants.roles import CustomRoleRef, Role, SystemRole, SystemRoleRef
from origo.database import Base


class TenantMembership(Base):
    __tablename__ = "tenant_memberships"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    system_role = Column(String(20), nullable=True)
    # RESTRICT backs up the in-transaction reference count in RoleService.delete_role
    custom_role_id = Column(Integer, ForeignKey("custom_roles.id", ondelete="RESTRICT"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    tenant = relationship("Tenant", back_populates="memberships")
    user = relationship("User", back_populates="memberships")
    custom_role = relationship("CustomRole", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_membership_tenant_user"),
        CheckConstraint(
            "(system_role IS NULL) <> (custom_role_id IS NULL)",
            name="ck_membership_single_role",
        ),
        Index("idx_membership_user_created", "user_id", "created_at"),
    )

    @property
    def role(self) -> Role:
        if self.custom_role_id is not None:
            return CustomRoleRef(role_id=self.custom_role_id)
        return SystemRoleRef(role=SystemRole(self.system_role))

    @role.setter
    def role(self, value: Role) -> None:
        if isinstance(value, CustomRoleRef):
            self.system_role = None
            self.custom_role_id = value.role_id
        else:
            self.system_role = value.role.value
            self.custom_role_id = None

    def __repr__(self) -> str:
        return f"<TenantMembership(tenant={self.tenant_id}, user={self.user_id}, role={self.role!r})>"
