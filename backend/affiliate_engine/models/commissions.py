from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from affiliate_engine.core.db import Base
from affiliate_engine.models.mixins import TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class Commission(TimestampMixin, Base):
    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint(
            "order_attribution_id",
            "rebill_sequence",
            name="uq_commissions_attribution_sequence",
        ),
        Index("ix_commissions_shop_status", "shop_id", "status"),
        Index("ix_commissions_affiliate_status", "affiliate_id", "status"),
        Index("ix_commissions_order", "order_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    order_attribution_id = Column(
        Integer,
        ForeignKey("order_attributions.id", ondelete="CASCADE"),
        nullable=False,
    )
    subscription_attribution_id = Column(
        Integer,
        ForeignKey("subscription_attributions.id", ondelete="SET NULL"),
        nullable=True,
    )
    # External order id of the payment this commission pays out on; for
    # rebills it is the renewal order, not the original.
    order_id = Column(String, nullable=False)
    # 0 for the initial purchase, 1..n for rebills.
    rebill_sequence = Column(Integer, nullable=False, default=0)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="USD")
    status = Column(String, nullable=False, default="pending")
    eligible_date = Column(DateTime, nullable=False)
    rule_snapshot = Column(JSON_TYPE, nullable=False)
    approved_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    reversed_at = Column(DateTime, nullable=True)
    reversal_reason = Column(Text, nullable=True)
    clawback_required = Column(Boolean, nullable=False, default=False)

    affiliate = relationship("Affiliate")
    order_attribution = relationship("OrderAttribution")
