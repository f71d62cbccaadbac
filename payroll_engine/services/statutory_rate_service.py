"""
Payroll Engine - Statutory Rate Service

Resolves the statutory configuration in force for a country on a date.

For each rate type the active row with the latest effective_from on or
before the calculation date wins, provided its effective_to (exclusive) has
not passed. Resolution never raises for missing data: gaps are returned
alongside the configuration so payroll can proceed with zero amounts and a
warning on the affected Payroll rows.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_engine.models.statutory import StatutoryRate, StatutoryRateType
from payroll_engine.services.tax_calculators.statutory_config import (
    HealthConfig,
    PayeConfig,
    PensionConfig,
    StatutoryConfigError,
    normalize_rate_type,
    parse_statutory_config,
)
from payroll_engine.utils.error_handling import (
    AMBIGUOUS_STATUTORY_CONFIG,
    MISSING_STATUTORY_CONFIG,
    ConfigurationGap,
    InvalidDateRangeException,
    NotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedStatutoryConfig:
    """Statutory configuration resolved once per country before employee fan-out."""
    country: str
    as_of: date
    paye: Optional[PayeConfig] = None
    pension: Optional[PensionConfig] = None
    health: Optional[HealthConfig] = None
    gaps: Tuple[ConfigurationGap, ...] = field(default_factory=tuple)


class StatutoryRateService:
    """Statutory rate configuration store and resolver."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_rate(
        self,
        country: str,
        rate_type: Union[str, StatutoryRateType],
        name: str,
        config: Dict[str, Any],
        effective_from: date,
        effective_to: Optional[date] = None,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> StatutoryRate:
        """Create a statutory rate row; the blob is validated by parsing it."""
        try:
            rate_type = normalize_rate_type(rate_type)
            parse_statutory_config(rate_type, config)
        except StatutoryConfigError as e:
            raise ValidationException(str(e), field="config")

        if effective_to is not None and effective_to <= effective_from:
            raise InvalidDateRangeException(effective_from, effective_to)

        rate = StatutoryRate(
            country=country.upper(),
            rate_type=rate_type,
            name=name,
            config=config,
            effective_from=effective_from,
            effective_to=effective_to,
            created_by_id=created_by_id,
        )
        self.db.add(rate)
        await self.db.flush()
        return rate

    async def list_rates(
        self,
        country: str,
        rate_type: Optional[Union[str, StatutoryRateType]] = None,
    ) -> List[StatutoryRate]:
        query = select(StatutoryRate).where(StatutoryRate.country == country.upper())
        if rate_type is not None:
            query = query.where(StatutoryRate.rate_type == normalize_rate_type(rate_type))
        query = query.order_by(StatutoryRate.rate_type, StatutoryRate.effective_from.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_rate(self, rate_id: uuid.UUID) -> StatutoryRate:
        rate = await self.db.get(StatutoryRate, rate_id)
        if rate is None:
            raise NotFoundException("StatutoryRate", rate_id)
        return rate

    async def update_rate(
        self,
        rate_id: uuid.UUID,
        name: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        effective_from: Optional[date] = None,
        effective_to: Optional[date] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> StatutoryRate:
        """
        Amend a rate row. Payrolls already calculated keep their amounts;
        the new values apply from the next process run.
        """
        rate = await self.get_rate(rate_id)

        if config is not None:
            try:
                parse_statutory_config(rate.rate_type, config)
            except StatutoryConfigError as e:
                raise ValidationException(str(e), field="config")

        new_from = effective_from or rate.effective_from
        new_to = effective_to if effective_to is not None else rate.effective_to
        if new_to is not None and new_to <= new_from:
            raise InvalidDateRangeException(new_from, new_to)

        if config is not None:
            rate.config = config
        if name is not None:
            rate.name = name
        rate.effective_from = new_from
        rate.effective_to = new_to
        rate.updated_by_id = actor_id
        await self.db.flush()

        logger.info(f"Updated {rate.rate_type.value} rate {rate_id} for {rate.country}")
        return rate

    async def deactivate_rate(self, rate_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> StatutoryRate:
        """Retire a rate; inactive rows are kept for history but never resolved."""
        rate = await self.get_rate(rate_id)
        rate.is_active = False
        rate.updated_by_id = actor_id
        await self.db.flush()

        logger.info(f"Deactivated {rate.rate_type.value} rate {rate_id} for {rate.country}")
        return rate

    async def _candidates(self, country: str, rate_type: StatutoryRateType, as_of: date) -> List[StatutoryRate]:
        result = await self.db.execute(
            select(StatutoryRate)
            .where(
                and_(
                    StatutoryRate.country == country.upper(),
                    StatutoryRate.rate_type == rate_type,
                    StatutoryRate.is_active == True,  # noqa: E712
                    StatutoryRate.effective_from <= as_of,
                    or_(
                        StatutoryRate.effective_to.is_(None),
                        StatutoryRate.effective_to > as_of,
                    ),
                )
            )
            .order_by(StatutoryRate.effective_from.desc(), StatutoryRate.created_at.desc())
        )
        return list(result.scalars().all())

    async def resolve_rate(
        self,
        country: str,
        rate_type: StatutoryRateType,
        as_of: date,
    ) -> Tuple[Optional[Any], List[ConfigurationGap]]:
        """Resolve one rate type; returns (config or None, gaps)."""
        gaps: List[ConfigurationGap] = []
        context = {"country": country.upper(), "rate_type": rate_type.value, "as_of": as_of.isoformat()}

        candidates = await self._candidates(country, rate_type, as_of)
        if not candidates:
            gap = ConfigurationGap(
                kind=MISSING_STATUTORY_CONFIG,
                message=f"No {rate_type.value} rate configured for {country.upper()} on {as_of}",
                context=context,
            )
            logger.warning(gap.message)
            return None, [gap]

        winner = candidates[0]
        if len(candidates) > 1 and candidates[1].effective_from == winner.effective_from:
            gap = ConfigurationGap(
                kind=AMBIGUOUS_STATUTORY_CONFIG,
                message=f"Multiple {rate_type.value} rates effective from {winner.effective_from}; using the latest created",
                context={**context, "rate_id": str(winner.id)},
            )
            logger.warning(gap.message)
            gaps.append(gap)

        try:
            config = parse_statutory_config(rate_type, winner.config)
        except StatutoryConfigError as e:
            gap = ConfigurationGap(
                kind=MISSING_STATUTORY_CONFIG,
                message=f"Invalid {rate_type.value} configuration: {e}",
                context={**context, "rate_id": str(winner.id)},
            )
            logger.error(gap.message)
            gaps.append(gap)
            return None, gaps

        return config, gaps

    async def resolve(self, country: str, as_of: date) -> ResolvedStatutoryConfig:
        """Resolve PAYE, pension and health configuration for a country."""
        configs: Dict[StatutoryRateType, Any] = {}
        gaps: List[ConfigurationGap] = []

        for rate_type in StatutoryRateType:
            config, rate_gaps = await self.resolve_rate(country, rate_type, as_of)
            configs[rate_type] = config
            gaps.extend(rate_gaps)

        return ResolvedStatutoryConfig(
            country=country.upper(),
            as_of=as_of,
            paye=configs[StatutoryRateType.PAYE],
            pension=configs[StatutoryRateType.PENSION],
            health=configs[StatutoryRateType.HEALTH],
            gaps=tuple(gaps),
        )
