"""
Tenant model

Each Tenant is an isolated organisation. The custom-domain binding lives on
the tenant row itself (``domain`` plus the ``domain_*`` columns) and is read
through the ``domain_config`` value object.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship

from origo.constants.plans import DEFAULT_PLAN
from origo.database import Base


class TenantStatus(str, enum.Enum):
    active = "active"
    suspended = "suspended"
    deleted = "deleted"


class DomainState(str, enum.Enum):
    unconfigured = "unconfigured"
    pending = "pending"
    verified = "verified"


@dataclass(frozen=True)
class DomainConfig:
    domain: str
    verification_token: str
    verified: bool
    verified_at: datetime | None = None
    last_attempt_at: datetime | None = None

    @property
    def state(self) -> DomainState:
        return DomainState.verified if self.verified else DomainState.pending


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, unique=True)
    slug = Column(String(100), nullable=False, unique=True, index=True)  # URL-safe, e.g. "acme"
    subdomain = Column(String(63), nullable=True, unique=True)  # "acme" in acme.origo.app
    domain = Column(String(253), nullable=True, unique=True)  # custom domain, e.g. "cms.acme.com"
    domain_verification_token = Column(String(128), nullable=True)
    domain_verified = Column(Boolean, nullable=False, default=False)
    domain_verified_at = Column(DateTime, nullable=True)
    domain_last_attempt_at = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default=TenantStatus.active.value)
    plan = Column(String(50), nullable=False, default=DEFAULT_PLAN.value)
    # Use metadata_ as Python attr to avoid shadowing SQLAlchemy Base.metadata
    metadata_ = Column("metadata", JSON, nullable=True, default=dict)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_by = relationship("User", foreign_keys=[created_by_id], lazy="select")
    memberships = relationship("TenantMembership", back_populates="tenant", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_tenant_status", "status"),
        Index("idx_tenant_domain_verified", "domain", "domain_verified"),
    )

    @property
    def domain_config(self) -> DomainConfig | None:
        if not self.domain:
            return None
        return DomainConfig(
            domain=self.domain,
            verification_token=self.domain_verification_token or "",
            verified=bool(self.domain_verified),
            verified_at=self.domain_verified_at,
            last_attempt_at=self.domain_last_attempt_at,
        )

    @property
    def domain_state(self) -> DomainState:
        config = self.domain_config
        return config.state if config else DomainState.unconfigured

    def clear_domain(self) -> None:
        self.domain = None
        self.domain_verification_token = None
        self.domain_verified = False
        self.domain_verified_at = None
        self.domain_last_attempt_at = None

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug!r}, plan={self.plan!r}, status={self.status!r})>"
