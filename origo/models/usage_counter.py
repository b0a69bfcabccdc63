"""
TenantUsageCounter model

Running usage totals for the transactional quota mode. ``value`` is in base
units: items for counted resources, bytes for storage.
"""

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, UniqueConstraint

from origo.database import Base


class TenantUsageCounter(Base):
    __tablename__ = "tenant_usage_counters"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_type = Column(String(20), nullable=False)
    value = Column(BigInteger, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("tenant_id", "resource_type", name="uq_usage_counter"),)
