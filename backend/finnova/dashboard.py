"""
Dashboard API router.

Static mock chart series and headline cards, plus the caller's live
income / expense / balance summary.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .auth import get_current_identity
from .identity import Identity
from .store import RecordStore, get_record_store
from .summary import build_summary

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

# Placeholder series until real monthly aggregation exists.
MOCK_CHART = [
    {"name": "Jan", "savings": 4000, "expenses": 2400},
    {"name": "Feb", "savings": 3000, "expenses": 1398},
    {"name": "Mar", "savings": 2000, "expenses": 9800},
    {"name": "Apr", "savings": 2780, "expenses": 3908},
    {"name": "May", "savings": 1890, "expenses": 4800},
    {"name": "Jun", "savings": 2390, "expenses": 3800},
    {"name": "Jul", "savings": 3490, "expenses": 4300},
]

MOCK_CARDS = [
    {"title": "Total Balance", "value": "$24,562.00", "trend": "+12.5%"},
    {"title": "Monthly Spend", "value": "$3,240.50", "trend": "-2.3%"},
    {"title": "Portfolio Risk", "value": "Moderate", "trend": None},
    {"title": "AI Insights", "value": "3 New", "trend": None},
]


class ChartPoint(BaseModel):
    name: str
    savings: int
    expenses: int


class StatCard(BaseModel):
    title: str
    value: str
    trend: str | None


class SummaryOut(BaseModel):
    total_income: str
    total_expenses: str
    balance: str


class DashboardResponse(BaseModel):
    summary: SummaryOut
    chart: list[ChartPoint]
    cards: list[StatCard]


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
) -> DashboardResponse:
    summary = await build_summary(store, identity.id)

    return DashboardResponse(
        summary=SummaryOut(
            total_income=f"{summary.total_income:.2f}",
            total_expenses=f"{summary.total_expenses:.2f}",
            balance=f"{summary.balance:.2f}",
        ),
        chart=[ChartPoint(**point) for point in MOCK_CHART],
        cards=[StatCard(**card) for card in MOCK_CARDS],
    )
