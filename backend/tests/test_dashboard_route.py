from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI
from fastapi.testclient import TestClient

import finnova.dashboard as dashboard
from finnova.identity import Identity
from finnova.store import RecordStoreError


class FakeStore:
    def __init__(self, failing=False):
        self.failing = failing

    async def list_by_owner(self, collection, owner_id):
        if self.failing:
            raise RecordStoreError("down")
        if collection == "savings":
            return [{"amount": "100.00"}, {"amount": 50}]
        return [{"amount": 30}]


def _client(store):
    test_app = FastAPI()
    test_app.include_router(dashboard.router)
    test_app.dependency_overrides[dashboard.get_current_identity] = lambda: Identity(id=uuid4(), email="u@example.com")
    test_app.dependency_overrides[dashboard.get_record_store] = lambda: store
    return TestClient(test_app)


def test_dashboard_combines_live_summary_and_mock_chart() -> None:
    response = _client(FakeStore()).get("/dashboard")

    assert response.status_code == 200
    data = response.json()
    assert data["summary"] == {"total_income": "150.00", "total_expenses": "30.00", "balance": "120.00"}
    assert [point["name"] for point in data["chart"]] == ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul"]
    assert data["cards"][0]["title"] == "Total Balance"


def test_dashboard_survives_store_outage() -> None:
    response = _client(FakeStore(failing=True)).get("/dashboard")

    assert response.status_code == 200
    assert response.json()["summary"]["balance"] == "0.00"


def test_dashboard_module_is_documented() -> None:
    assert dashboard.__doc__ is not None
    assert "Dashboard API router" in dashboard.__doc__
