from sqlalchemy import Column, DateTime, event

from affiliate_engine.core.time import utcnow


class CreatedAtMixin:
    """Append-only rows: clicks, order attributions, rebill payments, postback logs."""

    created_at = Column(DateTime, default=utcnow, nullable=False)


class TimestampMixin(CreatedAtMixin):
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


# ORM flushes only; bulk UPDATEs rely on the column's onupdate.
@event.listens_for(TimestampMixin, "before_update", propagate=True)
def _touch_updated_at(mapper, connection, target) -> None:
    target.updated_at = utcnow()
