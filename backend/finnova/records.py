import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field, field_serializer, field_validator

from .auth import get_current_identity
from .identity import Identity
from .ledger import OptimisticLedger
from .store import RecordStore, RecordStoreError, get_record_store

router = APIRouter(prefix="/records", tags=["records"])

Collection = Literal["expenses", "savings"]
Amount = Annotated[Decimal, Field(gt=Decimal("0"), max_digits=12, decimal_places=2)]


def _money(value: Decimal | float) -> str:
    return str(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class RecordCreate(BaseModel):
    description: str = Field(min_length=1, max_length=160)
    amount: Amount
    category: str = Field(default="Other", max_length=60)
    date: datetime.date

    @field_validator("description", "category", mode="before")
    @classmethod
    def clean_text(cls, value: str | None) -> str | None:
        if isinstance(value, str):
            return value.strip()

        return value


class RecordResponse(BaseModel):
    id: UUID
    owner_id: UUID
    description: str
    amount: Decimal
    category: str
    date: datetime.date

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        return _money(value)


class RecordListResponse(BaseModel):
    items: list[RecordResponse]
    total: str


class RecordMutationResponse(BaseModel):
    record: RecordResponse
    items: list[RecordResponse]


class CategoryTotal(BaseModel):
    name: str
    value: str


class BreakdownResponse(BaseModel):
    collection: Collection
    categories: list[CategoryTotal]


async def _loaded_ledger(store: RecordStore, collection: str, owner_id: UUID) -> OptimisticLedger:
    ledger = OptimisticLedger(store, collection, owner_id)
    try:
        await ledger.refresh()
    except RecordStoreError as exc:
        raise HTTPException(status_code=502, detail=f"Failed to load {collection}") from exc
    return ledger


@router.get("/{collection}", response_model=RecordListResponse)
async def list_records(
    collection: Collection,
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
) -> RecordListResponse:
    ledger = await _loaded_ledger(store, collection, identity.id)

    return RecordListResponse(
        items=[RecordResponse.model_validate(row) for row in ledger.entries],
        total=_money(ledger.total()),
    )


@router.post("/{collection}", response_model=RecordMutationResponse, status_code=201)
async def create_record(
    collection: Collection,
    payload: RecordCreate,
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
) -> RecordMutationResponse:
    ledger = await _loaded_ledger(store, collection, identity.id)

    try:
        record = await ledger.add(
            description=payload.description,
            amount=float(payload.amount),
            category=payload.category or "Other",
            occurred_on=payload.date,
        )
    except RecordStoreError as exc:
        raise HTTPException(status_code=502, detail=f"Failed to save {collection} record") from exc

    return RecordMutationResponse(
        record=RecordResponse.model_validate(record),
        items=[RecordResponse.model_validate(row) for row in ledger.entries],
    )


@router.delete("/{collection}/{record_id}", status_code=204)
async def delete_record(
    collection: Collection,
    record_id: UUID,
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
) -> Response:
    ledger = await _loaded_ledger(store, collection, identity.id)

    try:
        deleted = await ledger.remove(record_id)
    except RecordStoreError as exc:
        raise HTTPException(status_code=502, detail=f"Failed to delete {collection} record") from exc

    if not deleted:
        raise HTTPException(status_code=404, detail="Record not found")

    return Response(status_code=204)


@router.get("/{collection}/breakdown", response_model=BreakdownResponse)
async def category_breakdown(
    collection: Collection,
    identity: Identity = Depends(get_current_identity),
    store: RecordStore = Depends(get_record_store),
) -> BreakdownResponse:
    ledger = await _loaded_ledger(store, collection, identity.id)

    return BreakdownResponse(
        collection=collection,
        categories=[
            CategoryTotal(name=name, value=_money(value))
            for name, value in ledger.breakdown().items()
        ],
    )
