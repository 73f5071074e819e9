"""One-shot AI commentary: expense audit and stock analysis."""

from __future__ import annotations

import logging
import re
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from finnova.ai.gemini_client import GeminiClient, GeminiError, GeminiRequestError
from finnova.ai.prompt import (
    STOCK_ANALYSIS_ERROR_TEXT,
    build_expense_analysis_prompt,
    build_stock_analysis_prompt,
)
from finnova.auth import get_current_identity
from finnova.config import settings
from finnova.identity import Identity
from finnova.store import RecordStore, RecordStoreError, get_record_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/insights", tags=["insights"])

RiskLevel = Literal["Low", "Medium", "High", "Unknown"]

_SYMBOL_PATTERN = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")
_RISK_PATTERN = re.compile(r"risk\s*level\s*[:\-]?\s*\**\s*(low|medium|high)", re.IGNORECASE)


class ExpenseAnalysisResponse(BaseModel):
    analysis: str
    expense_count: int


class StockAnalysisRequest(BaseModel):
    symbol: str = Field(min_length=1, max_length=10)

    @field_validator("symbol", mode="before")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        if isinstance(value, str):
            return value.strip().upper()
        return value


class StockAnalysisResponse(BaseModel):
    symbol: str
    analysis: str
    risk_level: RiskLevel
    grounding_urls: list[str] = Field(default_factory=list)


def _get_gemini_client() -> GeminiClient:
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
    )


def _require_gemini_key() -> None:
    if not settings.gemini_api_key:
        raise HTTPException(
            status_code=503,
            detail="AI insights are unavailable because GEMINI_API_KEY is not configured.",
        )


def parse_risk_level(text: str) -> RiskLevel:
    """Last 'Risk Level: X' line in the analysis, or Unknown."""
    matches = _RISK_PATTERN.findall(text)
    if not matches:
        return "Unknown"
    return matches[-1].capitalize()


@router.post("/expenses", response_model=ExpenseAnalysisResponse)
async def analyze_expenses(
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
) -> ExpenseAnalysisResponse:
    _require_gemini_key()

    try:
        expenses = await store.list_by_owner("expenses", identity.id)
    except RecordStoreError as exc:
        raise HTTPException(status_code=502, detail="Failed to load expenses") from exc

    if not expenses:
        raise HTTPException(status_code=422, detail="No expenses to analyze")

    compact = [
        {
            "description": row.get("description"),
            "amount": row.get("amount"),
            "category": row.get("category"),
            "date": row.get("date"),
        }
        for row in expenses
    ]

    client = _get_gemini_client()
    try:
        analysis = await client.generate_content(build_expense_analysis_prompt(compact))
    except GeminiRequestError as exc:
        if exc.status_code == 429:
            raise HTTPException(status_code=503, detail="AI insights are rate-limited right now. Try again shortly.") from exc
        raise HTTPException(status_code=502, detail="AI insights request failed. Please try again.") from exc
    except GeminiError as exc:
        raise HTTPException(status_code=502, detail="AI insights response could not be processed.") from exc

    return ExpenseAnalysisResponse(analysis=analysis, expense_count=len(expenses))


@router.post("/stocks", response_model=StockAnalysisResponse)
async def analyze_stock(
    payload: StockAnalysisRequest,
    identity: Identity = Depends(get_current_identity),
) -> StockAnalysisResponse:
    _require_gemini_key()

    symbol = payload.symbol
    if not _SYMBOL_PATTERN.match(symbol):
        raise HTTPException(status_code=422, detail="Invalid stock symbol")

    client = _get_gemini_client()
    try:
        analysis = await client.generate_content(build_stock_analysis_prompt(symbol))
    except GeminiError as exc:
        logger.warning("Stock analysis failed for %s (%s): %s", symbol, identity.id, exc)
        return StockAnalysisResponse(
            symbol=symbol,
            analysis=STOCK_ANALYSIS_ERROR_TEXT,
            risk_level="Unknown",
        )

    return StockAnalysisResponse(
        symbol=symbol,
        analysis=analysis,
        risk_level=parse_risk_level(analysis),
    )
