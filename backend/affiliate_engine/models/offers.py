from sqlalchemy import Column, Index, Integer, Numeric, String

from affiliate_engine.core.db import Base
from affiliate_engine.models.mixins import TimestampMixin


class Offer(TimestampMixin, Base):
    __tablename__ = "offers"
    __table_args__ = (
        Index("ix_offers_shop", "shop_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    commission_type = Column(String, nullable=False, default="percentage")
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="USD")
    # Null falls back to settings.DEFAULT_ATTRIBUTION_WINDOW_DAYS.
    attribution_window_days = Column(Integer, nullable=True)
    selling_subscriptions = Column(String, nullable=False, default="no")
    subscription_max_payments = Column(Integer, nullable=True)
    subscription_rebill_commission_type = Column(String, nullable=True)
    subscription_rebill_commission_value = Column(Numeric(12, 2), nullable=True)
