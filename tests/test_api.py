"""Tests for the HTTP API."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx

from conftest import FakeAdapter, account, normalized
from finsync.config import QuickBooksSettings
from finsync.errors import ProviderError
from finsync.models.ledger import DebtKind, DebtSnapshot, DebtSource, Provider
from finsync.models.sync import OAuthToken
from finsync.providers import QuickBooksAdapter


async def add_expense(client, amount="18.40", **extra):
    response = await client.post("/api/transactions/manual-expense", json={
        "amount": amount,
        "description": extra.pop("description", "Parking downtown"),
        **extra,
    })
    assert response.status_code == 201
    return response.json()["transaction"]


class TestHealth:
    """Tests for the liveness check."""

    async def test_health(self, client):
        """Test the health endpoint reports configured providers."""
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["providers"] == []


class TestTransactionRoutes:
    """Tests for /api/transactions."""

    async def test_manual_expense_created(self, client):
        """Test a manual expense is returned with its money as a string."""
        transaction = await add_expense(client, category="Transportation", company="RecruitCloud")

        assert transaction["amount"] == "18.40"
        assert transaction["provider"] == "manual"
        assert transaction["type"] == "debit"
        assert transaction["company"] == "RecruitCloud"

    async def test_manual_income(self, client):
        """Test manual income is recorded as a credit."""
        response = await client.post("/api/transactions/manual-income", json={
            "amount": 500,
            "description": "Consulting",
        })
        assert response.status_code == 201
        assert response.json()["transaction"]["type"] == "credit"

    async def test_invalid_amount(self, client):
        """Test a negative amount is a 400 with the error envelope."""
        response = await client.post("/api/transactions/manual-expense", json={
            "amount": "-3",
            "description": "Refund?",
        })
        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.parametrize("amount", ["Infinity", "NaN"])
    async def test_non_finite_amount(self, client, amount):
        """Test a non-finite amount is a 400, not a server error."""
        response = await client.post("/api/transactions/manual-expense", json={
            "amount": amount,
            "description": "Parking downtown",
        })
        assert response.status_code == 400
        assert "error" in response.json()

    async def test_malformed_body(self, client):
        """Test a body that fails request validation lists the problems."""
        response = await client.post("/api/transactions/manual-expense", json={"amount": "1"})
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid request"
        assert any("description" in d for d in data["details"])

    async def test_list_paginates(self, client):
        """Test the list is paginated and reports totals."""
        for n in range(3):
            await add_expense(client, amount=f"{n + 1}.00", description=f"Coffee {n}")

        response = await client.get("/api/transactions", params={"limit": 2})
        data = response.json()

        assert len(data["transactions"]) == 2
        assert data["pagination"] == {"total": 3, "page": 1, "pages": 2, "limit": 2}

    async def test_list_filters_by_company(self, client):
        """Test filtering by company."""
        await add_expense(client, company="DataLabs")
        await add_expense(client, company="Personal")

        data = (await client.get("/api/transactions", params={"company": "DataLabs"})).json()
        assert [t["company"] for t in data["transactions"]] == ["DataLabs"]

    async def test_get_unknown_transaction(self, client):
        """Test an unknown id is a 404."""
        response = await client.get("/api/transactions/manual_missing")
        assert response.status_code == 404
        assert "error" in response.json()

    async def test_update_requires_fields(self, client):
        """Test an empty update is rejected."""
        transaction = await add_expense(client)
        response = await client.put(f"/api/transactions/{transaction['id']}", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "No fields to update"

    async def test_update_manual_transaction(self, client):
        """Test a manual transaction can be edited."""
        transaction = await add_expense(client)
        response = await client.put(f"/api/transactions/{transaction['id']}", json={"amount": "20.00"})
        assert response.status_code == 200
        assert response.json()["transaction"]["amount"] == "20.00"

    async def test_split_allocation(self, client):
        """Test a valid split is stored and an invalid one is a 400."""
        transaction = await add_expense(client, amount="100.00")
        url = f"/api/transactions/{transaction['id']}/allocation"

        bad = await client.put(url, json={"split_allocations": [
            {"company": "DataLabs", "percentage": 60},
            {"company": "Personal", "percentage": 30},
        ]})
        assert bad.status_code == 400
        assert "must sum to 100" in bad.json()["error"]

        good = await client.put(url, json={"split_allocations": [
            {"company": "DataLabs", "percentage": 60},
            {"company": "Personal", "percentage": 40},
        ]})
        assert good.status_code == 200
        splits = good.json()["transaction"]["split_allocations"]
        assert [s["amount"] for s in splits] == ["60.00", "40.00"]

    async def test_allocation_requires_target(self, client):
        """Test an allocation without company or split is rejected."""
        transaction = await add_expense(client)
        response = await client.put(f"/api/transactions/{transaction['id']}/allocation", json={})
        assert response.status_code == 400

    async def test_bulk_allocate_reports_missing(self, client):
        """Test bulk allocation modifies known ids and lists the rest."""
        first = await add_expense(client)
        second = await add_expense(client)

        response = await client.post("/api/transactions/bulk-allocate", json={
            "transaction_ids": [first["id"], second["id"], "manual_missing"],
            "company": "ClayGenius",
        })

        data = response.json()
        assert response.status_code == 200
        assert data["requested"] == 3
        assert data["modified"] == 2
        assert data["missing_ids"] == ["manual_missing"]

    async def test_delete(self, client, components):
        """Test manual transactions delete and synced ones are refused."""
        manual = await add_expense(client)
        synced = await components.storage.upsert_transaction(normalized("txn_1"))

        assert (await client.delete(f"/api/transactions/{manual['id']}")).status_code == 200
        assert (await client.delete(f"/api/transactions/{synced.id}")).status_code == 400
        assert (await client.delete(f"/api/transactions/{manual['id']}")).status_code == 404


class TestDebtRoutes:
    """Tests for /api/debts."""

    async def test_list_and_pay(self, client, components):
        """Test debts are listed with figures and payments reduce the balance."""
        debt = await components.storage.upsert_debt(DebtSnapshot(
            name="Chase Sapphire",
            kind=DebtKind.CREDIT_CARD,
            source=DebtSource.GOOGLE_SHEETS,
            current_balance=Decimal("500"),
            credit_limit=Decimal("1000"),
        ))

        listed = (await client.get("/api/debts")).json()
        assert listed["debts"][0]["utilization"] == 50.0
        assert Decimal(str(listed["total_debt"])) == Decimal("500")

        response = await client.post(f"/api/debts/{debt.id}/payments", json={"amount": "100"})
        assert response.status_code == 200
        assert response.json()["debt"]["current_balance"] == "400.00"

    async def test_payment_unknown_debt(self, client):
        """Test paying an unknown debt is a 404."""
        response = await client.post(
            "/api/debts/6f1c2f9e-8d7a-4c1b-9e55-0a1b2c3d4e5f/payments", json={"amount": "10"}
        )
        assert response.status_code == 404

    async def test_payment_invalid_amount(self, client, components):
        """Test a zero payment is a 400."""
        debt = await components.storage.upsert_debt(DebtSnapshot(
            name="Card", kind=DebtKind.CREDIT_CARD, source=DebtSource.MANUAL, current_balance=Decimal("50"),
        ))
        response = await client.post(f"/api/debts/{debt.id}/payments", json={"amount": "0"})
        assert response.status_code == 400


class TestDashboardRoutes:
    """Tests for /api/dashboard."""

    async def test_summary(self, client):
        """Test today's manual spending appears in the summary."""
        await add_expense(client, amount="18.40")

        data = (await client.get("/api/dashboard/summary")).json()

        assert data["success"] is True
        assert Decimal(str(data["todays_spending"]["total"])) == Decimal("18.40")
        assert data["todays_spending"]["count"] == 1

    async def test_trends_and_breakdown(self, client):
        """Test trend length and category grouping."""
        await add_expense(client, amount="10.00", category="Food")
        await add_expense(client, amount="5.00", category="Food")

        trends = (await client.get("/api/dashboard/spending-trends", params={"days": 7})).json()["trends"]
        assert len(trends) == 8

        categories = (await client.get("/api/dashboard/category-breakdown")).json()["categories"]
        assert categories[0]["category"] == "Food"
        assert categories[0]["count"] == 2

    async def test_days_out_of_range(self, client):
        """Test an out-of-range query parameter is a 400."""
        response = await client.get("/api/dashboard/spending-trends", params={"days": 0})
        assert response.status_code == 400


class TestCompanyRoutes:
    """Tests for /api/companies."""

    async def test_list_companies(self, client):
        """Test the default companies are listed."""
        data = (await client.get("/api/companies")).json()
        names = {c["name"] for c in data["companies"]}
        assert {"ClayGenius", "DataLabs", "Personal"} <= names

    async def test_report_csv(self, client):
        """Test the CSV report is served as a download."""
        await add_expense(client, amount="25.00", company="DataLabs")

        response = await client.get("/api/companies/DataLabs/report", params={"format": "csv"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "DataLabs-report.csv" in response.headers["content-disposition"]
        assert "Total Expenses,25.00" in response.text

    async def test_unknown_company(self, client):
        """Test an unknown company is a 400."""
        response = await client.get("/api/companies/Acme/summary")
        assert response.status_code == 400
        assert "Unknown company" in response.json()["error"]


class TestSyncRoutes:
    """Tests for /api/sync and account linking."""

    async def test_sync_reports_failures_without_failing(self, client, components, registry):
        """Test a failing provider is reported in a 200 response."""
        await components.storage.upsert_account(account("plaid_1", Provider.PLAID, credential="access-1"))
        await components.storage.upsert_account(account("paypal_1", Provider.PAYPAL))
        registry.register(FakeAdapter(
            Provider.PLAID,
            transactions=[normalized("p1", account_id="plaid_1", provider=Provider.PLAID)],
        ))
        registry.register(FakeAdapter(Provider.PAYPAL, error=ProviderError("paypal", "service unavailable")))

        response = await client.post("/api/sync")

        data = response.json()
        assert response.status_code == 200
        assert data["all_providers_succeeded"] is False
        assert data["failed_providers"] == ["paypal"]
        assert data["total_records"] == 1

    async def test_sync_subset(self, client, registry):
        """Test only the requested providers are synced."""
        registry.register(FakeAdapter(Provider.PLAID))
        registry.register(FakeAdapter(Provider.PAYPAL, error=ProviderError("paypal", "down")))

        response = await client.post("/api/sync", json={"providers": ["plaid"]})

        data = response.json()
        assert data["all_providers_succeeded"] is True
        assert list(data["result"]["providers"]) == ["plaid"]

    async def test_unconfigured_provider_is_502(self, client):
        """Test connecting an unconfigured provider is a provider error."""
        response = await client.post("/api/paypal/connect", json={})
        assert response.status_code == 502
        assert "not configured" in response.json()["error"]

    async def test_remove_unknown_account(self, client):
        """Test removing an unknown account is a 404."""
        response = await client.delete("/api/accounts/nope")
        assert response.status_code == 404

    async def test_daily_summary(self, client):
        """Test the summary job can be triggered on demand."""
        response = await client.post("/api/summary/daily")
        assert response.status_code == 200
        assert response.json()["summary"]["total_spent"] == "0.00"


class TestQuickBooksReportRoute:
    """Tests for /api/quickbooks/reports/profit-loss."""

    async def test_profit_and_loss(self, client, components, registry):
        """Test the report for the requested period is passed through."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, json={"Header": {"ReportName": "ProfitAndLoss"}, "Rows": {}})

        registry.register(QuickBooksAdapter(
            QuickBooksSettings(client_id="c", client_secret="s", redirect_uri="http://localhost/cb"),
            components.token_storage,
            transport=httpx.MockTransport(handler),
        ))
        await components.token_storage.save_token(OAuthToken(
            realm_id="realm-9",
            access_token="live",
            refresh_token="r1",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        ))

        response = await client.get("/api/quickbooks/reports/profit-loss", params={
            "realm_id": "realm-9", "start_date": "2024-01-01", "end_date": "2024-03-31",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["report"]["Header"]["ReportName"] == "ProfitAndLoss"
        assert data["start_date"] == "2024-01-01"
        assert seen[0].path == "/v3/company/realm-9/reports/ProfitAndLoss"
        assert seen[0].params["end_date"] == "2024-03-31"

    async def test_quickbooks_not_configured(self, client):
        """Test the report without a QuickBooks adapter is a provider error."""
        response = await client.get("/api/quickbooks/reports/profit-loss", params={"realm_id": "realm-9"})
        assert response.status_code == 502

    async def test_realm_required(self, client):
        """Test a missing realm id fails request validation."""
        response = await client.get("/api/quickbooks/reports/profit-loss")
        assert response.status_code == 400


class TestManualDebtRoutes:
    """Tests for updating hand-maintained debts and loans."""

    async def test_update_debt(self, client, components):
        """Test a debt is addressed by source and name."""
        await components.storage.upsert_debt(DebtSnapshot(
            name="Chase Sapphire",
            kind=DebtKind.CREDIT_CARD,
            source=DebtSource.GOOGLE_SHEETS,
            current_balance=Decimal("500"),
        ))

        response = await client.put(
            "/api/debts/google_sheets/Chase Sapphire",
            json={"current_balance": "420.00", "minimum_payment": "35"},
        )

        assert response.status_code == 200
        debt = response.json()["debt"]
        assert debt["current_balance"] == "420.00"
        assert debt["minimum_payment"] == "35.00"

    async def test_update_unknown_debt(self, client):
        """Test an unknown debt is a 404."""
        response = await client.put("/api/debts/manual/Nobody", json={"current_balance": "1"})
        assert response.status_code == 404

    async def test_update_needs_figures(self, client, components):
        """Test an empty update is a 400."""
        await components.storage.upsert_debt(DebtSnapshot(
            name="Card", kind=DebtKind.CREDIT_CARD, source=DebtSource.MANUAL, current_balance=Decimal("50"),
        ))
        response = await client.put("/api/debts/manual/Card", json={})
        assert response.status_code == 400

    async def test_update_untracked_sba_loan(self, client):
        """Test updating a loan that is not tracked is a 404."""
        response = await client.put("/api/sba-loans/1234567890", json={"current_balance": "100"})
        assert response.status_code == 404

    async def test_update_sba_loan_number_validated(self, client):
        """Test a malformed loan number is a 400."""
        response = await client.put("/api/sba-loans/12-34", json={"current_balance": "100"})
        assert response.status_code == 400


class TestCreditCardRoutes:
    """Tests for /api/credit-cards."""

    async def connect(self, client) -> dict:
        response = await client.post("/api/credit-cards", json={
            "institution_name": "Barclays",
            "last_four": "4821",
            "credit_limit": "5000",
            "company": "ClayGenius",
        })
        assert response.status_code == 201
        return response.json()["account"]

    async def test_card_lifecycle(self, client):
        """Test connect, balance update, statement import and listing."""
        card = await self.connect(client)
        assert card["provider"] == "manual"
        assert card["mask"] == "4821"

        response = await client.put(f"/api/credit-cards/{card['id']}/balance", json={
            "current_balance": "1200", "statement_balance": "1100",
        })
        assert response.json()["account"]["available_balance"] == "3800.00"

        statement = "Date,Description,Amount\n2024-03-02,Delta Air Lines,412.20\n2024-03-05,Payment,-250\n"
        response = await client.post(
            f"/api/credit-cards/{card['id']}/statements", json={"csv_data": statement}
        )
        assert response.json()["imported"] == 2

        listed = (await client.get(f"/api/credit-cards/{card['id']}/transactions")).json()
        assert [t["description"] for t in listed["transactions"]] == ["Payment", "Delta Air Lines"]
        assert {t["company"] for t in listed["transactions"]} == {"ClayGenius"}

    async def test_bad_last_four(self, client):
        """Test a malformed last four is a 400."""
        response = await client.post("/api/credit-cards", json={
            "institution_name": "Barclays", "last_four": "48a1",
        })
        assert response.status_code == 400

    async def test_statement_without_columns(self, client):
        """Test a statement missing its amount column is a 400."""
        card = await self.connect(client)
        response = await client.post(
            f"/api/credit-cards/{card['id']}/statements", json={"csv_data": "Date,Description\n2024-03-02,x\n"}
        )
        assert response.status_code == 400

    async def test_unknown_card(self, client):
        """Test an unknown card is a 404."""
        response = await client.put("/api/credit-cards/nope/balance", json={"current_balance": "1"})
        assert response.status_code == 404


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
