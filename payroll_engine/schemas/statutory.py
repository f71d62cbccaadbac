"""
Payroll Engine - Statutory Rate Schemas

Pydantic schemas for statutory rate configuration requests and responses.
"""

from datetime import date, datetime
from typing import Optional, Dict, Any
from uuid import UUID

from pydantic import BaseModel, Field


class StatutoryRateCreate(BaseModel):
    """Create statutory rate request."""
    country: str = Field(..., min_length=2, max_length=2)
    rate_type: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    config: Dict[str, Any]
    effective_from: date
    effective_to: Optional[date] = None
    actor_id: Optional[UUID] = None


class StatutoryRateUpdate(BaseModel):
    """Amend a statutory rate; omitted fields are unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    config: Optional[Dict[str, Any]] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    actor_id: Optional[UUID] = None


class StatutoryRateResponse(BaseModel):
    """Statutory rate response."""
    id: UUID
    country: str
    rate_type: str
    name: str
    config: Dict[str, Any]
    effective_from: date
    effective_to: Optional[date] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
