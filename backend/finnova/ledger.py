"""Local-then-confirm bookkeeping for one owner's collection.

Every mutation is applied to `entries` first, under a locally generated id for
inserts. The store's answer then either confirms it (the tentative entry is
replaced by the persisted record) or the last confirmed snapshot is restored.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID, uuid4

from .store import RecordStore, RecordStoreError
from .summary import sum_amounts

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = "tmp-"


class OptimisticLedger:
    def __init__(self, store: RecordStore, collection: str, owner_id: UUID) -> None:
        self.store = store
        self.collection = collection
        self.owner_id = owner_id
        self.entries: list[dict[str, Any]] = []
        self._confirmed: list[dict[str, Any]] = []

    @property
    def confirmed(self) -> list[dict[str, Any]]:
        return list(self._confirmed)

    async def refresh(self) -> list[dict[str, Any]]:
        rows = await self.store.list_by_owner(self.collection, self.owner_id)
        self._confirmed = list(rows)
        self.entries = list(rows)
        return self.entries

    async def add(
        self,
        *,
        description: str,
        amount: float,
        category: str,
        occurred_on: date,
    ) -> dict[str, Any]:
        temp_id = f"{TEMP_ID_PREFIX}{uuid4().hex}"
        tentative = {
            "id": temp_id,
            "owner_id": self.owner_id,
            "description": description,
            "amount": amount,
            "category": category,
            "date": occurred_on,
        }
        self.entries = [tentative, *self.entries]

        try:
            persisted = await self.store.insert(
                self.collection,
                self.owner_id,
                description=description,
                amount=amount,
                category=category,
                occurred_on=occurred_on,
            )
        except RecordStoreError:
            logger.warning("Insert into %s failed for %s; rolling back", self.collection, self.owner_id)
            self.entries = list(self._confirmed)
            raise

        self.entries = [persisted if entry["id"] == temp_id else entry for entry in self.entries]
        self._confirmed = [persisted, *self._confirmed]
        return persisted

    async def remove(self, record_id: UUID) -> bool:
        """Drop one record locally, then confirm; returns False when the store had no such record."""
        key = str(record_id)
        self.entries = [entry for entry in self.entries if str(entry["id"]) != key]

        try:
            deleted = await self.store.delete(self.collection, self.owner_id, record_id)
        except RecordStoreError:
            logger.warning("Delete from %s failed for %s; rolling back", self.collection, self.owner_id)
            self.entries = list(self._confirmed)
            raise

        if not deleted:
            self.entries = list(self._confirmed)
            return False

        self._confirmed = [entry for entry in self._confirmed if str(entry["id"]) != key]
        return True

    def total(self) -> float:
        return sum_amounts(self.entries)

    def breakdown(self) -> dict[str, float]:
        """Amount per category, in first-seen order."""
        totals: dict[str, float] = {}
        for entry in self.entries:
            category = str(entry.get("category") or "Other")
            totals[category] = totals.get(category, 0.0) + sum_amounts([entry])
        return totals
