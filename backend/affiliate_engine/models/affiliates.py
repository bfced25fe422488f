from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from affiliate_engine.core.db import Base
from affiliate_engine.models.mixins import TimestampMixin


class Affiliate(TimestampMixin, Base):
    __tablename__ = "affiliates"
    __table_args__ = (
        UniqueConstraint("shop_id", "affiliate_number", name="uq_affiliates_shop_number"),
        UniqueConstraint("shop_id", "email", name="uq_affiliates_shop_email"),
        Index("ix_affiliates_shop_status", "shop_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    affiliate_number = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    offer_id = Column(Integer, ForeignKey("offers.id", ondelete="SET NULL"), nullable=True, index=True)
    # Null falls back to settings.DEFAULT_PAYOUT_TERMS_DAYS.
    payout_terms_days = Column(Integer, nullable=True)
    payout_method = Column(String, nullable=True)
    payout_identifier = Column(String, nullable=True)

    offer = relationship("Offer", lazy="joined")


class AffiliateLink(TimestampMixin, Base):
    __tablename__ = "affiliate_links"
    __table_args__ = (
        UniqueConstraint("shop_id", "coupon_code", name="uq_affiliate_links_shop_coupon"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False, index=True)
    destination_url = Column(String, nullable=False)
    coupon_code = Column(String, nullable=True)

    affiliate = relationship("Affiliate")
