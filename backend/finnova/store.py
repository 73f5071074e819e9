"""Owner-scoped record store for the `expenses` and `savings` collections."""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING, Any, Literal
from uuid import UUID

import psycopg
from fastapi import HTTPException

from . import database

if TYPE_CHECKING:
    from psycopg_pool import AsyncConnectionPool
else:
    AsyncConnectionPool = Any

Collection = Literal["expenses", "savings"]
COLLECTIONS: tuple[str, ...] = ("expenses", "savings")

_RECORD_COLUMNS = "id, owner_id, description, amount, category, date"


class RecordStoreError(Exception):
    """Raised when the backing database rejects or fails a record operation."""


def _check_collection(collection: str) -> str:
    # Collection names are interpolated into SQL, so only the known tables pass.
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")
    return collection


class RecordStore:
    """Create / read / delete against owner-scoped collections."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        self._pool = pool

    async def list_by_owner(self, collection: str, owner_id: UUID) -> list[dict[str, Any]]:
        table = _check_collection(collection)
        try:
            async with self._pool.connection() as connection:
                async with connection.cursor() as cursor:
                    await cursor.execute(
                        f"""
                        SELECT {_RECORD_COLUMNS}
                        FROM {table}
                        WHERE owner_id = %s
                        ORDER BY date DESC
                        """,
                        (owner_id,),
                    )
                    rows = await cursor.fetchall()
        except psycopg.Error as exc:
            raise RecordStoreError(f"Failed to load {table}") from exc

        return list(rows)

    async def insert(
        self,
        collection: str,
        owner_id: UUID,
        *,
        description: str,
        amount: float,
        category: str,
        occurred_on: date,
    ) -> dict[str, Any]:
        """Persist one record and return it with its store-assigned id."""
        table = _check_collection(collection)
        try:
            async with self._pool.connection() as connection:
                async with connection.cursor() as cursor:
                    await cursor.execute(
                        f"""
                        INSERT INTO {table} (owner_id, description, amount, category, date)
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING {_RECORD_COLUMNS}
                        """,
                        (owner_id, description, amount, category, occurred_on),
                    )
                    row = await cursor.fetchone()
        except psycopg.Error as exc:
            raise RecordStoreError(f"Failed to insert into {table}") from exc

        if row is None:
            raise RecordStoreError(f"Insert into {table} returned no row")

        return row

    async def delete(self, collection: str, owner_id: UUID, record_id: UUID) -> bool:
        table = _check_collection(collection)
        try:
            async with self._pool.connection() as connection:
                async with connection.cursor() as cursor:
                    await cursor.execute(
                        f"""
                        DELETE FROM {table}
                        WHERE id = %s
                          AND owner_id = %s
                        RETURNING id
                        """,
                        (record_id, owner_id),
                    )
                    row = await cursor.fetchone()
        except psycopg.Error as exc:
            raise RecordStoreError(f"Failed to delete from {table}") from exc

        return row is not None


def get_record_store() -> RecordStore:
    """FastAPI dependency; fails explicitly when no database is configured."""
    if database.pool is None:
        raise HTTPException(status_code=500, detail="DATABASE_URL is not configured")

    return RecordStore(database.pool)
