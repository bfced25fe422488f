from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from affiliate_engine.core.db import Base
from affiliate_engine.models.mixins import CreatedAtMixin


class Click(CreatedAtMixin, Base):
    """Append-only click evidence. Rows are never updated once written."""

    __tablename__ = "clicks"
    __table_args__ = (
        Index("ix_clicks_fingerprint", "shop_id", "ip_hash", "user_agent_hash", "created_at"),
        Index("ix_clicks_affiliate_created", "affiliate_id", "created_at"),
    )

    id = Column(String(64), primary_key=True)
    shop_id = Column(String, nullable=False)
    affiliate_id = Column(Integer, ForeignKey("affiliates.id", ondelete="CASCADE"), nullable=False)
    link_id = Column(Integer, ForeignKey("affiliate_links.id", ondelete="SET NULL"), nullable=True)
    landing_url = Column(Text, nullable=False, default="")
    ip_hash = Column(String(64), nullable=False)
    user_agent_hash = Column(String(64), nullable=False)
