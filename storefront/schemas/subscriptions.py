"""Subscription usage schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class QuotaInfo(BaseModel):
    """Quota information for a resource."""

    current: int = Field(..., ge=0)
    limit: Optional[int] = Field(None, description="null means unlimited")


class UsageSnapshot(BaseModel):
    """Current tenant's plan and per-resource usage."""

    plan: Optional[str] = Field(None, description="Plan code, null when the tenant has no active plan")
    plan_expires_at: Optional[datetime] = None
    has_active_plan: bool
    quotas: dict[str, QuotaInfo]


class QuotaCheckResponse(BaseModel):
    resource: str
    allowed: bool
    current: int
    limit: Optional[int] = None
    reason: Optional[str] = None
