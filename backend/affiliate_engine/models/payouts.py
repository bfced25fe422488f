from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from affiliate_engine.core.db import Base
from affiliate_engine.models.mixins import TimestampMixin


class PayoutRun(TimestampMixin, Base):
    __tablename__ = "payout_runs"
    __table_args__ = (
        Index("ix_payout_runs_shop_status", "shop_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default="draft")
    # Manual reference or the provider's batch id.
    payout_reference = Column(String, nullable=True)
    provider_status = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    commission_links = relationship(
        "PayoutRunCommission",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PayoutRunCommission(Base):
    __tablename__ = "payout_run_commissions"
    __table_args__ = (
        UniqueConstraint("payout_run_id", "commission_id", name="uq_payout_run_commissions_link"),
    )

    id = Column(Integer, primary_key=True, index=True)
    payout_run_id = Column(Integer, ForeignKey("payout_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    commission_id = Column(Integer, ForeignKey("commissions.id", ondelete="CASCADE"), nullable=False, index=True)
