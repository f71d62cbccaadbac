"""
Payroll Engine - Statutory Rates Router

API endpoints for country statutory rate configuration. Rates are shared
by every tenant employing staff in the country.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.dependencies import get_db
from payroll_engine.services.statutory_rate_service import StatutoryRateService
from payroll_engine.schemas.statutory import (
    StatutoryRateCreate,
    StatutoryRateResponse,
    StatutoryRateUpdate,
)


router = APIRouter()


def get_rate_service(db: AsyncSession = Depends(get_db)) -> StatutoryRateService:
    return StatutoryRateService(db)


@router.post(
    "",
    response_model=StatutoryRateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a statutory rate",
)
async def create_rate(
    data: StatutoryRateCreate,
    service: StatutoryRateService = Depends(get_rate_service),
):
    rate = await service.create_rate(
        country=data.country,
        rate_type=data.rate_type,
        name=data.name,
        config=data.config,
        effective_from=data.effective_from,
        effective_to=data.effective_to,
        created_by_id=data.actor_id,
    )
    await service.db.commit()
    return StatutoryRateResponse.model_validate(rate)


@router.get(
    "",
    response_model=List[StatutoryRateResponse],
    summary="List statutory rates of a country",
)
async def list_rates(
    country: str = Query(..., min_length=2, max_length=2),
    rate_type: Optional[str] = Query(None),
    service: StatutoryRateService = Depends(get_rate_service),
):
    rates = await service.list_rates(country, rate_type=rate_type)
    return [StatutoryRateResponse.model_validate(rate) for rate in rates]


@router.patch(
    "/{rate_id}",
    response_model=StatutoryRateResponse,
    summary="Amend a statutory rate",
)
async def update_rate(
    data: StatutoryRateUpdate,
    rate_id: uuid.UUID = Path(...),
    service: StatutoryRateService = Depends(get_rate_service),
):
    """New values apply from the next process run; calculated payrolls keep their amounts."""
    rate = await service.update_rate(
        rate_id,
        name=data.name,
        config=data.config,
        effective_from=data.effective_from,
        effective_to=data.effective_to,
        actor_id=data.actor_id,
    )
    await service.db.commit()
    return StatutoryRateResponse.model_validate(rate)


@router.delete(
    "/{rate_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate a statutory rate",
)
async def delete_rate(
    rate_id: uuid.UUID = Path(...),
    service: StatutoryRateService = Depends(get_rate_service),
):
    await service.deactivate_rate(rate_id)
    await service.db.commit()
