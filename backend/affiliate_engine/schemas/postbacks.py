from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from affiliate_engine.models.enums import PostbackEventEnum, enum_values


class PostbackTemplateCreate(BaseModel):
    name: str = Field(min_length=1)
    trigger_event: str
    base_url: str = Field(min_length=1)
    param_mappings: dict[str, str] = Field(default_factory=dict)
    active: bool = True

    @field_validator("trigger_event")
    @classmethod
    def _trigger_event(cls, value):
        if value not in enum_values(PostbackEventEnum):
            raise ValueError(f"trigger_event must be one of {', '.join(enum_values(PostbackEventEnum))}")
        return value

    @field_validator("base_url")
    @classmethod
    def _base_url(cls, value):
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return value


class PostbackTemplateRead(BaseModel):
    id: int
    name: str
    trigger_event: str
    base_url: str
    param_mappings: dict
    active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PostbackLogRead(BaseModel):
    id: int
    commission_id: int
    postback_template_id: int
    event: str
    status: str
    response_code: Optional[int] = None
    attempts: int
    last_attempt_at: datetime

    class Config:
        from_attributes = True
