from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from origo.constants.roles import SystemRole
from origo.database import Base


class User(Base):
    """
    An authenticated subject.

    ``system_role`` is the platform-wide role and is normally empty; only
    ``superadmin`` carries meaning there. Roles inside a tenant live on
    TenantMembership.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(150), index=True)
    email = Column(String(255), unique=True, nullable=False)
    system_role = Column(String(20), nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    memberships = relationship("TenantMembership", back_populates="user", cascade="all, delete-orphan")

    @property
    def is_superadmin(self) -> bool:
        return self.system_role == SystemRole.SUPERADMIN.value

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"
