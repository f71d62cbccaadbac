"""
Payroll Engine - API Integration Tests

Integration tests for REST API endpoints.
"""

import uuid
import pytest
from httpx import AsyncClient

from factories import OTHER_TENANT_ID, PENSION_CONFIG, TENANT_ID, assign, create_active_loan, create_employee


PERIODS_URL = f"/api/v1/tenants/{TENANT_ID}/payroll-periods"
LOANS_URL = f"/api/v1/tenants/{TENANT_ID}/loans"
RATES_URL = "/api/v1/statutory-rates"

JANUARY = {
    "name": "January 2024",
    "start_date": "2024-01-01",
    "end_date": "2024-01-31",
    "pay_date": "2024-01-28",
}


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPayrollPeriodAPI:
    """Payroll period endpoints."""

    @pytest.mark.asyncio
    async def test_create_and_get_period(self, client: AsyncClient):
        response = await client.post(PERIODS_URL, json=JANUARY)

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "draft"
        assert data["tenant_id"] == str(TENANT_ID)

        response = await client.get(f"{PERIODS_URL}/{data['id']}")
        assert response.status_code == 200
        assert response.json()["name"] == "January 2024"

        response = await client.get(PERIODS_URL, params={"status": "draft"})
        assert [period["id"] for period in response.json()] == [data["id"]]

    @pytest.mark.asyncio
    async def test_period_of_other_tenant_is_not_found(self, client: AsyncClient):
        created = (await client.post(PERIODS_URL, json=JANUARY)).json()

        response = await client.get(f"/api/v1/tenants/{OTHER_TENANT_ID}/payroll-periods/{created['id']}")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "PERIOD_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_overlap_rejected(self, client: AsyncClient):
        await client.post(PERIODS_URL, json=JANUARY)

        response = await client.post(PERIODS_URL, json={**JANUARY, "name": "Duplicate"})

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "PERIOD_OVERLAP"
        assert "timestamp" in detail

    @pytest.mark.asyncio
    async def test_backwards_dates_fail_validation(self, client: AsyncClient):
        response = await client.post(PERIODS_URL, json={**JANUARY, "start_date": "2024-02-01"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_approve_draft_is_invalid_transition(self, client: AsyncClient):
        created = (await client.post(PERIODS_URL, json=JANUARY)).json()

        response = await client.post(f"{PERIODS_URL}/{created['id']}/approve", json={})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_delete_draft(self, client: AsyncClient):
        created = (await client.post(PERIODS_URL, json=JANUARY)).json()

        response = await client.delete(f"{PERIODS_URL}/{created['id']}")

        assert response.status_code == 204
        assert (await client.get(f"{PERIODS_URL}/{created['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_full_lifecycle(
        self, client: AsyncClient, db_session, basic_component, statutory_rates, notification_sink,
    ):
        employee = await create_employee(db_session, "E001")
        await assign(db_session, employee, basic_component, "50000")
        period_id = (await client.post(PERIODS_URL, json=JANUARY)).json()["id"]

        response = await client.post(f"{PERIODS_URL}/{period_id}/process")
        assert response.status_code == 200
        summary = response.json()
        assert summary["status"] == "pending_approval"
        assert (summary["succeeded"], summary["failed"]) == (1, 0)
        assert summary["totals"]["total_net"] == "40536.95"

        payrolls = (await client.get(f"{PERIODS_URL}/{period_id}/payrolls")).json()
        assert len(payrolls) == 1
        detail = (await client.get(f"{PERIODS_URL}/{period_id}/payrolls/{payrolls[0]['id']}")).json()
        assert [item["code"] for item in detail["items"]] == ["BASIC", "PAYE", "PENSION", "HEALTH"]
        assert detail["paye_amount"] == "7383.05"

        response = await client.post(f"{PERIODS_URL}/{period_id}/approve", json={})
        assert response.json()["status"] == "approved"

        response = await client.post(
            f"{PERIODS_URL}/{period_id}/mark-paid", json={"payment_reference": "BATCH-001"},
        )
        assert response.json()["status"] == "paid"

        response = await client.post(f"{PERIODS_URL}/{period_id}/lock", json={})
        assert response.status_code == 200
        assert response.json()["locked_at"] is not None

        remittances = (await client.get(f"{PERIODS_URL}/{period_id}/remittances")).json()
        assert {r["tax_type"]: r["amount"] for r in remittances} == {
            "paye": "7383.05",
            "pension": "1080.00",
            "health": "1000.00",
        }
        assert "payroll.period_locked" in notification_sink.names()

        response = await client.post(f"{PERIODS_URL}/{period_id}/process")
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"

    @pytest.mark.asyncio
    async def test_unknown_payroll(self, client: AsyncClient):
        period_id = (await client.post(PERIODS_URL, json=JANUARY)).json()["id"]

        response = await client.get(f"{PERIODS_URL}/{period_id}/payrolls/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_update_draft_period(self, client: AsyncClient):
        january = (await client.post(PERIODS_URL, json=JANUARY)).json()
        february = (await client.post(PERIODS_URL, json={
            "name": "February 2024",
            "start_date": "2024-02-01",
            "end_date": "2024-02-29",
            "pay_date": "2024-02-27",
        })).json()

        response = await client.patch(f"{PERIODS_URL}/{january['id']}", json={"name": "January 2024 (final)"})
        assert response.status_code == 200
        assert response.json()["name"] == "January 2024 (final)"

        response = await client.patch(f"{PERIODS_URL}/{february['id']}", json={"start_date": "2024-01-25"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "PERIOD_OVERLAP"

    @pytest.mark.asyncio
    async def test_payroll_payment_details_and_loan_repayments(
        self, client: AsyncClient, db_session, basic_component, statutory_rates,
    ):
        employee = await create_employee(db_session, "E001")
        await assign(db_session, employee, basic_component, "50000")
        loan = await create_active_loan(db_session, employee, "5000", "1000")
        period_id = (await client.post(PERIODS_URL, json=JANUARY)).json()["id"]
        await client.post(f"{PERIODS_URL}/{period_id}/process")
        payroll_id = (await client.get(f"{PERIODS_URL}/{period_id}/payrolls")).json()[0]["id"]
        payroll_url = f"{PERIODS_URL}/{period_id}/payrolls/{payroll_id}"

        repayments = (await client.get(f"{payroll_url}/loan-repayments")).json()
        assert [(r["loan_id"], r["amount"]) for r in repayments] == [(str(loan.id), "1000.00")]

        response = await client.patch(payroll_url, json={"payment_method": "cheque", "bank_account": "CHQ-0042"})
        assert response.status_code == 200
        assert (response.json()["payment_method"], response.json()["bank_account"]) == ("cheque", "CHQ-0042")

        await client.post(f"{PERIODS_URL}/{period_id}/approve", json={})
        await client.post(f"{PERIODS_URL}/{period_id}/lock", json={})

        response = await client.patch(payroll_url, json={"bank_account": "CHQ-0043"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "PERIOD_LOCKED"


class TestLoanAPI:
    """Employee loan endpoints."""

    @pytest.mark.asyncio
    async def test_loan_lifecycle(self, client: AsyncClient, db_session):
        employee = await create_employee(db_session, "E001")

        response = await client.post(LOANS_URL, json={
            "employee_id": str(employee.id),
            "principal_amount": "10000",
            "interest_rate": "5",
            "monthly_deduction": "1750",
            "repayment_start_date": "2024-02-01",
        })
        assert response.status_code == 201
        loan = response.json()
        assert loan["status"] == "pending"
        assert loan["total_amount"] == "10500.00"

        response = await client.post(f"{LOANS_URL}/{loan['id']}/approve", json={})
        assert response.json()["status"] == "active"

        response = await client.post(f"{LOANS_URL}/{loan['id']}/repayments", json={
            "amount": "500",
            "repayment_date": "2024-02-15",
        })
        assert response.status_code == 201
        assert response.json()["balance_after"] == "10000.00"

        response = await client.post(f"{LOANS_URL}/{loan['id']}/repayments", json={"amount": "20000"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_AMOUNT"

        repayments = (await client.get(f"{LOANS_URL}/{loan['id']}/repayments")).json()
        assert len(repayments) == 1

        response = await client.post(f"{LOANS_URL}/{loan['id']}/write-off", json={"reason": "Resigned"})
        assert response.json()["status"] == "written_off"

    @pytest.mark.asyncio
    async def test_unknown_loan(self, client: AsyncClient):
        response = await client.get(f"{LOANS_URL}/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "LOAN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_update_pending_loan(self, client: AsyncClient, db_session):
        employee = await create_employee(db_session, "E001")
        loan = (await client.post(LOANS_URL, json={
            "employee_id": str(employee.id),
            "principal_amount": "10000",
            "monthly_deduction": "1000",
            "repayment_start_date": "2024-02-01",
        })).json()

        response = await client.patch(f"{LOANS_URL}/{loan['id']}", json={"interest_rate": "10"})
        assert response.status_code == 200
        assert response.json()["total_amount"] == "11000.00"
        assert response.json()["remaining_balance"] == "11000.00"

        await client.post(f"{LOANS_URL}/{loan['id']}/approve", json={})
        response = await client.patch(f"{LOANS_URL}/{loan['id']}", json={"monthly_deduction": "2000"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"


class TestStatutoryRateAPI:
    """Statutory rate configuration endpoints."""

    @pytest.mark.asyncio
    async def test_rate_maintenance(self, client: AsyncClient):
        response = await client.post(RATES_URL, json={
            "country": "KE",
            "rate_type": "pension",
            "name": "KE Pension",
            "config": PENSION_CONFIG,
            "effective_from": "2024-01-01",
        })
        assert response.status_code == 201
        rate = response.json()
        assert rate["is_active"] is True

        response = await client.patch(f"{RATES_URL}/{rate['id']}", json={"effective_to": "2024-12-31"})
        assert response.status_code == 200
        assert response.json()["effective_to"] == "2024-12-31"

        response = await client.patch(f"{RATES_URL}/{rate['id']}", json={"config": {"rate": "lots"}})
        assert response.status_code == 422

        response = await client.delete(f"{RATES_URL}/{rate['id']}")
        assert response.status_code == 204

        rates = (await client.get(RATES_URL, params={"country": "KE"})).json()
        assert [(r["id"], r["is_active"]) for r in rates] == [(rate["id"], False)]

    @pytest.mark.asyncio
    async def test_unknown_rate(self, client: AsyncClient):
        response = await client.delete(f"{RATES_URL}/{uuid.uuid4()}")

        assert response.status_code == 404
