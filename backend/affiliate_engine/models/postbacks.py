from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

from affiliate_engine.core.db import Base
from affiliate_engine.core.time import utcnow
from affiliate_engine.models.mixins import CreatedAtMixin, TimestampMixin


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class PostbackTemplate(TimestampMixin, Base):
    __tablename__ = "postback_templates"
    __table_args__ = (
        Index("ix_postback_templates_shop_event", "shop_id", "trigger_event", "active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    trigger_event = Column(String, nullable=False)
    base_url = Column(String, nullable=False)
    # Maps our parameter names (click_id, order_id, ...) to the partner's.
    param_mappings = Column(JSON_TYPE, nullable=False, default=dict)
    active = Column(Boolean, nullable=False, default=True)


class PostbackLog(CreatedAtMixin, Base):
    __tablename__ = "postback_logs"
    __table_args__ = (
        Index("ix_postback_logs_shop_status", "shop_id", "status", "last_attempt_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(String, nullable=False)
    commission_id = Column(Integer, ForeignKey("commissions.id", ondelete="CASCADE"), nullable=False, index=True)
    postback_template_id = Column(
        Integer,
        ForeignKey("postback_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    event = Column(String, nullable=False)
    status = Column(String, nullable=False)
    response_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=1)
    last_attempt_at = Column(DateTime, nullable=False, default=utcnow)
