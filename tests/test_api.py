"""HTTP-level tests: routing, status codes and error bodies."""

from __future__ import annotations

import pytest

FY = 2026


def _membership(client, headers, child, parent) -> None:
    response = client.put(
        "/api/memberships",
        json={"child": child, "parent": parent},
        headers=headers,
    )
    assert response.status_code == 200, response.text


@pytest.fixture
def funded(client, admin_headers):
    """region-1 funded with 100,000 and 40,000 allocated to org-a, via the API."""
    region = {"kind": "region", "id": "region-1"}
    org_a = {"kind": "organization", "id": "org-a"}
    _membership(client, admin_headers, org_a, region)
    _membership(client, admin_headers, {"kind": "farmer", "id": "farmer-f"}, org_a)

    response = client.post(
        "/api/balances/regions/region-1/fund",
        json={"fiscal_year": FY, "amount": "100000.00", "idempotency_key": "api:fund"},
        headers=admin_headers,
    )
    assert response.status_code == 200, response.text

    response = client.post(
        "/api/allocations",
        json={
            "parent": region,
            "child": org_a,
            "fiscal_year": FY,
            "amount": "40000.00",
            "idempotency_key": "api:alloc",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201, response.text
    return client


def test_health(client) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestBalances:
    def test_balance_cards(self, funded) -> None:
        region = funded.get("/api/balances/region/region-1", params={"fiscal_year": FY}).json()
        assert region["remaining_balance"] == "60000.00"
        assert region["total_allocation"] == "100000.00"
        assert region["utilization_pct"] == 40.0

        children = funded.get(
            "/api/balances/region/region-1/children", params={"fiscal_year": FY}
        ).json()
        assert [c["tier_id"] for c in children["children"]] == ["org-a"]
        assert children["allocated_to_children"] == "40000.00"

    def test_unknown_tier_is_404(self, client) -> None:
        response = client.get("/api/balances/region/nowhere", params={"fiscal_year": FY})
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_fiscal_year_is_required(self, client) -> None:
        assert client.get("/api/balances/region/region-1").status_code == 422


class TestAllocations:
    def test_insufficient_funds_body(self, funded, admin_headers) -> None:
        response = funded.post(
            "/api/allocations",
            json={
                "parent": {"kind": "organization", "id": "org-a"},
                "child": {"kind": "farmer", "id": "farmer-f"},
                "fiscal_year": FY,
                "amount": "50000",
            },
            headers=admin_headers,
        )
        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "INSUFFICIENT_FUNDS"
        assert body["available_balance"] == "40000.00"
        assert body["shortfall"] == "10000.00"

    def test_replay_returns_same_ids(self, funded, admin_headers) -> None:
        payload = {
            "parent": {"kind": "organization", "id": "org-a"},
            "child": {"kind": "farmer", "id": "farmer-f"},
            "fiscal_year": FY,
            "amount": "100",
            "idempotency_key": "api:retry",
        }
        first = funded.post("/api/allocations", json=payload, headers=admin_headers).json()
        second = funded.post("/api/allocations", json=payload, headers=admin_headers).json()
        assert second["replayed"] is True
        assert second["debit_transaction_id"] == first["debit_transaction_id"]

    @pytest.mark.parametrize("amount", ["-100", "0", "abc", "1.001"])
    def test_bad_amount_is_422(self, funded, admin_headers, amount) -> None:
        response = funded.post(
            "/api/allocations",
            json={
                "parent": {"kind": "organization", "id": "org-a"},
                "child": {"kind": "farmer", "id": "farmer-f"},
                "fiscal_year": FY,
                "amount": amount,
            },
            headers=admin_headers,
        )
        assert response.status_code == 422

    def test_missing_actor_is_401(self, funded) -> None:
        response = funded.post(
            "/api/allocations",
            json={
                "parent": {"kind": "organization", "id": "org-a"},
                "child": {"kind": "farmer", "id": "farmer-f"},
                "fiscal_year": FY,
                "amount": "10",
            },
        )
        assert response.status_code == 401
        assert response.json() == {
            "error": "UNAUTHENTICATED",
            "message": "Missing X-Actor-Id header.",
        }

    def test_hierarchy_violation_is_422(self, funded, admin_headers) -> None:
        response = funded.post(
            "/api/allocations",
            json={
                "parent": {"kind": "region", "id": "region-1"},
                "child": {"kind": "farmer", "id": "farmer-f"},
                "fiscal_year": FY,
                "amount": "10",
            },
            headers=admin_headers,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "INVALID_HIERARCHY"

    def test_reserved_key_is_422(self, funded, admin_headers) -> None:
        response = funded.post(
            "/api/allocations",
            json={
                "parent": {"kind": "organization", "id": "org-a"},
                "child": {"kind": "farmer", "id": "farmer-f"},
                "fiscal_year": FY,
                "amount": "10",
                "idempotency_key": "request:1",
            },
            headers=admin_headers,
        )
        assert response.status_code == 422


class TestRequests:
    def _submit(self, client, headers, amount):
        response = client.post(
            "/api/requests",
            json={
                "requester_kind": "farmer",
                "requester_id": "farmer-f",
                "target_kind": "organization",
                "target_id": "org-a",
                "fiscal_year": FY,
                "amount": amount,
                "reason": "Fertilizer",
            },
            headers={"X-Actor-Id": "farmer-user"},
        )
        assert response.status_code == 201, response.text
        return response.json()

    def test_submit_approve_and_repeat(self, funded, admin_headers) -> None:
        request = self._submit(funded, admin_headers, "10000")
        assert request["status"] == "pending"
        assert request["created_by"] == "farmer-user"

        url = f"/api/requests/{request['id']}/decision"
        decided = funded.post(url, json={"decision": "approved"}, headers=admin_headers)
        assert decided.status_code == 200
        body = decided.json()
        assert body["request"]["status"] == "approved"
        assert body["request"]["decided_by"] == "admin-1"
        assert body["allocation"]["parent"]["remaining_balance"] == "30000.00"

        again = funded.post(url, json={"decision": "rejected"}, headers=admin_headers).json()
        assert again["already_decided"] is True
        assert again["request"]["status"] == "approved"

    def test_underfunded_approval_stays_pending(self, funded, admin_headers) -> None:
        request = self._submit(funded, admin_headers, "50000")
        response = funded.post(
            f"/api/requests/{request['id']}/decision",
            json={"decision": "approved"},
            headers=admin_headers,
        )
        assert response.status_code == 409
        assert response.json()["shortfall"] == "10000.00"
        assert funded.get(f"/api/requests/{request['id']}").json()["status"] == "pending"

    def test_list_by_status(self, funded, admin_headers) -> None:
        self._submit(funded, admin_headers, "5")
        listing = funded.get("/api/requests", params={"status": "pending"}).json()
        assert listing["total"] == 1
        assert listing["items"][0]["requester_id"] == "farmer-f"

    def test_unknown_request_is_404(self, client) -> None:
        assert client.get("/api/requests/999").status_code == 404


class TestTransactions:
    def test_expense_history_and_wallet(self, funded, admin_headers) -> None:
        response = funded.post(
            "/api/transactions/expenses",
            json={
                "tier": {"kind": "organization", "id": "org-a"},
                "fiscal_year": FY,
                "amount": "120.50",
                "description": "Training venue",
                "category": "Training",
                "pending": True,
            },
            headers=admin_headers,
        )
        assert response.status_code == 201, response.text
        expense = response.json()["transaction"]
        assert expense["amount"] == "-120.50"
        assert expense["status"] == "pending"

        cancelled = funded.post(
            f"/api/transactions/{expense['id']}/cancel", headers=admin_headers
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["balance"]["remaining_balance"] == "40000.00"

        history = funded.get(
            "/api/transactions/organization/org-a",
            params={"fiscal_year": FY, "status": "cancelled"},
        ).json()
        assert [t["id"] for t in history["items"]] == [expense["id"]]

        wallet = funded.get(
            "/api/transactions/organization/org-a/wallet", params={"fiscal_year": FY}
        ).json()
        assert wallet["balance"]["remaining_balance"] == "40000.00"

    def test_second_cancel_is_409(self, funded, admin_headers) -> None:
        response = funded.post(
            "/api/transactions/expenses",
            json={
                "tier": {"kind": "organization", "id": "org-a"},
                "fiscal_year": FY,
                "amount": "10",
                "description": "Fuel",
            },
            headers=admin_headers,
        )
        expense_id = response.json()["transaction"]["id"]
        response = funded.post(f"/api/transactions/{expense_id}/cancel", headers=admin_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    def test_refund_without_body(self, funded, admin_headers) -> None:
        response = funded.post(
            "/api/transactions/expenses",
            json={
                "tier": {"kind": "organization", "id": "org-a"},
                "fiscal_year": FY,
                "amount": "10",
                "description": "Fuel",
            },
            headers=admin_headers,
        )
        expense_id = response.json()["transaction"]["id"]
        refund = funded.post(f"/api/transactions/{expense_id}/refund", headers=admin_headers)
        assert refund.status_code == 200
        assert refund.json()["transaction"]["transaction_type"] == "refund"


class TestReports:
    def test_summary(self, funded) -> None:
        summary = funded.get(
            "/api/reports/region/region-1/summary", params={"fiscal_year": FY}
        ).json()
        assert len(summary["monthly_trend"]) == 12
        assert summary["children"][0]["tier_id"] == "org-a"

    def test_excel_download(self, funded) -> None:
        response = funded.get("/api/reports/organization/org-a/excel", params={"fiscal_year": FY})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith(
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert "ledger_organization_org-a_2026.xlsx" in response.headers["content-disposition"]
        assert response.content[:2] == b"PK"

    def test_pdf_download(self, funded) -> None:
        response = funded.get("/api/reports/organization/org-a/pdf", params={"fiscal_year": FY})
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")


class TestMemberships:
    def test_put_is_idempotent_and_can_deactivate(self, client, admin_headers) -> None:
        payload = {
            "child": {"kind": "farmer", "id": "farmer-z"},
            "parent": {"kind": "organization", "id": "org-a"},
        }
        first = client.put("/api/memberships", json=payload, headers=admin_headers)
        assert first.json()["active"] is True

        payload["active"] = False
        second = client.put("/api/memberships", json=payload, headers=admin_headers)
        assert second.status_code == 200
        assert second.json()["active"] is False

    def test_wrong_levels_are_422(self, client, admin_headers) -> None:
        response = client.put(
            "/api/memberships",
            json={
                "child": {"kind": "farmer", "id": "farmer-z"},
                "parent": {"kind": "region", "id": "region-1"},
            },
            headers=admin_headers,
        )
        assert response.status_code == 422
