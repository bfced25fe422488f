from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from affiliate_engine.core.db import Base
from affiliate_engine.models.mixins import CreatedAtMixin, TimestampMixin


class OrderAttribution(CreatedAtMixin, Base):
    __tablename__ = "order_attributions"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_order_attributions_order"),
        Index("ix_order_attributions_affiliate", "affiliate_id"),
        Index("ix_order_attributions_shop_created", "shop_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    order_id = Column(String, nullable=False)
    order_number = Column(String, nullable=True)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    click_id = Column(String(64), ForeignKey("clicks.id", ondelete="SET NULL"), nullable=True)
    attribution_type = Column(String, nullable=False)
    order_total = Column(Numeric(12, 2), nullable=True)
    currency = Column(String, nullable=False, default="USD")
    customer_ref = Column(String, nullable=True)
    order_created_at = Column(DateTime, nullable=False)

    affiliate = relationship("Affiliate")
    click = relationship("Click")


class SubscriptionAttribution(TimestampMixin, Base):
    __tablename__ = "subscription_attributions"
    __table_args__ = (
        UniqueConstraint(
            "order_attribution_id",
            "selling_plan_id",
            name="uq_subscription_attributions_origin_plan",
        ),
        Index("ix_subscription_attributions_affiliate_plan", "affiliate_id", "selling_plan_id", "active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    order_attribution_id = Column(
        Integer,
        ForeignKey("order_attributions.id", ondelete="CASCADE"),
        nullable=False,
    )
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    selling_plan_id = Column(String, nullable=False)
    payments_made = Column(Integer, nullable=False, default=0)
    max_payments = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    cancelled_at = Column(DateTime, nullable=True)

    order_attribution = relationship("OrderAttribution")


class SubscriptionPayment(CreatedAtMixin, Base):
    """One row per rebill order seen for a lineage, commissioned or not."""

    __tablename__ = "subscription_payments"
    __table_args__ = (
        UniqueConstraint("order_id", name="uq_subscription_payments_order"),
        UniqueConstraint(
            "subscription_attribution_id",
            "sequence",
            name="uq_subscription_payments_sequence",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    subscription_attribution_id = Column(
        Integer,
        ForeignKey("subscription_attributions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    order_id = Column(String, nullable=False)
    sequence = Column(Integer, nullable=False)
    commissioned = Column(Boolean, nullable=False, default=False)
