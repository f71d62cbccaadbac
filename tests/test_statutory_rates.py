"""
Payroll Engine - Statutory Rate Tests

Configuration parsing and effective-dated rate resolution.
"""

import uuid
import pytest
from datetime import date
from decimal import Decimal

from payroll_engine.models.statutory import StatutoryRate, StatutoryRateType
from payroll_engine.services.statutory_rate_service import StatutoryRateService
from payroll_engine.services.tax_calculators import (
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
    InvalidDateRangeException,
    NotFoundException,
    ValidationException,
)

from factories import PAYE_CONFIG, PENSION_CONFIG, seed_statutory_rates


class TestConfigParsing:
    """Stored blobs become typed configuration variants."""

    def test_paye_blob(self):
        config = parse_statutory_config("paye", PAYE_CONFIG)

        assert isinstance(config, PayeConfig)
        assert config.relief == Decimal("2400")
        assert config.brackets[-1].max is None

    def test_pension_aliases(self):
        config = parse_statutory_config("nssf", {"rate": "6", "capAmount": "18000"})

        assert isinstance(config, PensionConfig)
        assert config.cap == Decimal("18000")

    def test_health_fixed_amount_alias(self):
        config = parse_statutory_config("nhif", {"tiers": [{"min": 0, "max": None, "fixedAmount": 150}]})

        assert isinstance(config, HealthConfig)
        assert config.tiers[0].amount == Decimal("150")

    def test_unknown_rate_type(self):
        with pytest.raises(StatutoryConfigError):
            normalize_rate_type("vat")

    def test_missing_rate(self):
        with pytest.raises(StatutoryConfigError):
            parse_statutory_config("pension", {"cap": 18000})

    def test_inverted_bracket(self):
        with pytest.raises(StatutoryConfigError):
            parse_statutory_config("paye", {"brackets": [{"min": 100, "max": 50, "rate": 10}]})


class TestStatutoryRateResolution:
    """Rates in force on a date."""

    @pytest.mark.asyncio
    async def test_resolves_all_types(self, db_session):
        await seed_statutory_rates(db_session)

        resolved = await StatutoryRateService(db_session).resolve("ke", date(2024, 6, 30))

        assert resolved.country == "KE"
        assert resolved.paye.relief == Decimal("2400")
        assert resolved.pension.rate == Decimal("6")
        assert len(resolved.health.tiers) == 10
        assert resolved.gaps == ()

    @pytest.mark.asyncio
    async def test_latest_effective_rate_wins(self, db_session):
        await seed_statutory_rates(db_session)
        db_session.add(StatutoryRate(
            country="KE",
            rate_type=StatutoryRateType.PENSION,
            name="KE Pension 2025",
            config={"rate": 7, "cap": 20000},
            effective_from=date(2025, 1, 1),
        ))
        await db_session.commit()

        service = StatutoryRateService(db_session)
        before = await service.resolve("KE", date(2024, 12, 31))
        after = await service.resolve("KE", date(2025, 1, 31))

        assert before.pension.rate == Decimal("6")
        assert after.pension.rate == Decimal("7")

    @pytest.mark.asyncio
    async def test_expired_rate_is_ignored(self, db_session):
        db_session.add(StatutoryRate(
            country="KE",
            rate_type=StatutoryRateType.PENSION,
            name="Expired",
            config=PENSION_CONFIG,
            effective_from=date(2020, 1, 1),
            effective_to=date(2021, 1, 1),
        ))
        await db_session.commit()

        config, gaps = await StatutoryRateService(db_session).resolve_rate(
            "KE", StatutoryRateType.PENSION, date(2024, 1, 31),
        )

        assert config is None
        assert gaps[0].kind == MISSING_STATUTORY_CONFIG

    @pytest.mark.asyncio
    async def test_missing_country_reports_gaps(self, db_session):
        await seed_statutory_rates(db_session)

        resolved = await StatutoryRateService(db_session).resolve("UG", date(2024, 6, 30))

        assert resolved.paye is None
        assert {gap.kind for gap in resolved.gaps} == {MISSING_STATUTORY_CONFIG}
        assert len(resolved.gaps) == 3

    @pytest.mark.asyncio
    async def test_same_effective_date_is_ambiguous(self, db_session):
        await seed_statutory_rates(db_session, paye=None, health=None)
        await seed_statutory_rates(db_session, paye=None, health=None)

        config, gaps = await StatutoryRateService(db_session).resolve_rate(
            "KE", StatutoryRateType.PENSION, date(2024, 6, 30),
        )

        assert config is not None
        assert [gap.kind for gap in gaps] == [AMBIGUOUS_STATUTORY_CONFIG]

    @pytest.mark.asyncio
    async def test_create_rate_validates_blob(self, db_session):
        service = StatutoryRateService(db_session)

        with pytest.raises(ValidationException):
            await service.create_rate("KE", "paye", "Broken", {"brackets": "not a list"}, date(2024, 1, 1))

        with pytest.raises(InvalidDateRangeException):
            await service.create_rate("KE", "pension", "Backwards", PENSION_CONFIG, date(2024, 1, 1), date(2023, 1, 1))

        rate = await service.create_rate("ke", "nhif", "Health", {"tiers": []}, date(2024, 1, 1))
        assert rate.rate_type == StatutoryRateType.HEALTH
        assert rate.country == "KE"


class TestStatutoryRateMaintenance:
    """Amending and retiring rate rows."""

    @pytest.mark.asyncio
    async def test_update_rate_applies_to_later_resolution(self, db_session):
        service = StatutoryRateService(db_session)
        rate = await service.create_rate("KE", "pension", "KE Pension", PENSION_CONFIG, date(2024, 1, 1))

        await service.update_rate(rate.id, name="KE Pension (revised)", config={"rate": 7.5, "cap": 18000})

        config, gaps = await service.resolve_rate("KE", StatutoryRateType.PENSION, date(2024, 1, 31))
        assert config.rate == Decimal("7.5")
        assert gaps == []
        assert (await service.get_rate(rate.id)).name == "KE Pension (revised)"

    @pytest.mark.asyncio
    async def test_update_rate_validates(self, db_session):
        service = StatutoryRateService(db_session)
        rate = await service.create_rate("KE", "paye", "KE PAYE", PAYE_CONFIG, date(2024, 1, 1))

        with pytest.raises(ValidationException):
            await service.update_rate(rate.id, config={"brackets": "not a list"})
        with pytest.raises(InvalidDateRangeException):
            await service.update_rate(rate.id, effective_to=date(2023, 6, 30))
        with pytest.raises(NotFoundException):
            await service.update_rate(uuid.uuid4(), name="Missing")

        assert (await service.get_rate(rate.id)).config == PAYE_CONFIG

    @pytest.mark.asyncio
    async def test_deactivated_rate_is_not_resolved(self, db_session):
        service = StatutoryRateService(db_session)
        rate = await service.create_rate("KE", "pension", "KE Pension", PENSION_CONFIG, date(2024, 1, 1))

        await service.deactivate_rate(rate.id)

        config, gaps = await service.resolve_rate("KE", StatutoryRateType.PENSION, date(2024, 1, 31))
        assert config is None
        assert gaps[0].kind == MISSING_STATUTORY_CONFIG
        assert [r.id for r in await service.list_rates("KE")] == [rate.id]
