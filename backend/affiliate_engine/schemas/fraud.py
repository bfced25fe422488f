from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class FraudFlagCreate(BaseModel):
    commission_id: int
    flag_type: str = "manual"
    score: float = Field(default=0, ge=0, le=100)
    reason: Optional[str] = None


class FraudFlagResolve(BaseModel):
    note: Optional[str] = None


class FraudFlagRead(BaseModel):
    id: int
    affiliate_id: int
    commission_id: Optional[int] = None
    flag_type: str
    score: Decimal
    reason: Optional[str] = None
    resolved: bool
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
