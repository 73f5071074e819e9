"""Reduce stored expense / saving records into a balance summary."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


class OwnerRecordSource(Protocol):
    async def list_by_owner(self, collection: str, owner_id: UUID) -> list[dict[str, Any]]:
        ...


@dataclass(frozen=True)
class FinancialSummary:
    total_income: float
    total_expenses: float
    balance: float


def _amount_of(record: Any) -> float:
    """Numeric amount of one record; anything malformed counts as zero."""
    if not isinstance(record, dict):
        return 0.0

    raw = record.get("amount")
    if raw is None or isinstance(raw, bool):
        return 0.0

    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0

    if not math.isfinite(value):
        return 0.0
    return value


def sum_amounts(records: Iterable[Any]) -> float:
    return sum((_amount_of(record) for record in records), 0.0)


def _records_or_empty(collection: str, result: Any, owner_id: UUID) -> Iterable[Any]:
    if isinstance(result, Exception):
        logger.warning("%s lookup failed for %s: %s", collection, owner_id, result)
        return []
    if isinstance(result, BaseException):
        raise result
    return result or []


async def build_summary(store: OwnerRecordSource, owner_id: UUID) -> FinancialSummary:
    """
    Query both collections for `owner_id` and total them.

    The two reads run concurrently. A failed read is logged and treated as an
    empty collection, so this always returns a best-effort summary.
    """
    expenses, savings = await asyncio.gather(
        store.list_by_owner("expenses", owner_id),
        store.list_by_owner("savings", owner_id),
        return_exceptions=True,
    )

    total_income = sum_amounts(_records_or_empty("savings", savings, owner_id))
    total_expenses = sum_amounts(_records_or_empty("expenses", expenses, owner_id))

    return FinancialSummary(
        total_income=total_income,
        total_expenses=total_expenses,
        balance=total_income - total_expenses,
    )
