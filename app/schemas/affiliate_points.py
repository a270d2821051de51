from pydantic import Field, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid

from app.models.affiliate import LEGACY_REASON_ACTIONS
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class PointsLogCreate(BaseCreateSchema):
    """Grant (positive) or deduct (negative) points. Legacy ``reason`` maps to ``action``."""
    client_id: uuid.UUID
    points: Decimal
    action: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    source_client_id: Optional[uuid.UUID] = None

    @model_validator(mode="before")
    @classmethod
    def map_legacy_reason(cls, data):
        if isinstance(data, dict) and not data.get("action") and data.get("reason"):
            data = dict(data)
            reason = data.pop("reason")
            data["action"] = LEGACY_REASON_ACTIONS.get(reason, reason)
        return data

    @model_validator(mode="after")
    def require_action(self):
        if not self.action:
            raise ValueError("action (or reason) is required")
        if self.points == 0:
            raise ValueError("points must be non-zero")
        return self


class PointsLogUpdate(BaseUpdateSchema):
    points: Optional[Decimal] = None
    action: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None


class PointsLogResponse(BaseResponseSchema):
    id: uuid.UUID
    organization_id: uuid.UUID
    client_id: uuid.UUID
    points: Decimal
    action: str
    description: Optional[str] = None
    source_client_id: Optional[uuid.UUID] = None
    created_at: datetime


class PointsLogListResponse(BaseResponseSchema):
    items: List[PointsLogResponse]
    total: int
    page: int
    size: int


class PointsBalanceResponse(BaseResponseSchema):
    client_id: uuid.UUID
    organization_id: uuid.UUID
    points_current: Decimal = Decimal("0")
    points_spent: Decimal = Decimal("0")
