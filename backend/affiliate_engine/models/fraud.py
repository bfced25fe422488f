from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from affiliate_engine.core.db import Base
from affiliate_engine.models.mixins import TimestampMixin


class FraudFlag(TimestampMixin, Base):
    __tablename__ = "fraud_flags"
    __table_args__ = (
        Index("ix_fraud_flags_commission_resolved", "commission_id", "resolved"),
        Index("ix_fraud_flags_shop_resolved", "shop_id", "resolved"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    commission_id = Column(Integer, ForeignKey("commissions.id", ondelete="CASCADE"), nullable=True)
    flag_type = Column(String, nullable=False)
    score = Column(Numeric(6, 2), nullable=False, default=0)
    reason = Column(Text, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)
    resolution_note = Column(Text, nullable=True)
