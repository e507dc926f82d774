"""Administrative karma corrections, guarded by the admin key."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from karma_api.api.dependencies.security import require_admin_key
from karma_api.api.dependencies.services import get_ledger, get_publisher
from karma_api.domain import normalize_user, to_decimal
from karma_api.services.broadcast import BroadcastPublisher
from karma_api.services.ledger import KarmaLedger


router = APIRouter(
    prefix="/admin/karma",
    tags=["Admin"],
    dependencies=[Depends(require_admin_key)],
)


class SetKarmaRequest(BaseModel):
    value: Decimal = Field(..., description="Target karma value; clamped to the ledger bounds")


class AddKarmaRequest(BaseModel):
    delta: Decimal = Field(..., description="Non-zero amount added to the current value")


class KarmaChangeResponse(BaseModel):
    user: str
    value: float
    delta: float


def _key(user: str) -> str:
    key = normalize_user(user)
    if not key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User must not be blank")
    return key


def _amount(value: Decimal, field_name: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Body {{ {field_name}: number }} required",
        ) from error


async def _overwrite(
    ledger: KarmaLedger,
    publisher: BroadcastPublisher,
    user: str,
    target: Decimal,
    source: str,
) -> KarmaChangeResponse:
    key = _key(user)
    current = await ledger.get_user(key)
    if target == current:
        return KarmaChangeResponse(user=key, value=float(current), delta=0)
    value = await ledger.set_user(key, target)
    delta = value - current
    if delta:
        publisher.publish(key, value, delta, source)
    return KarmaChangeResponse(user=key, value=float(value), delta=float(delta))


@router.post("/reset/{user}", response_model=KarmaChangeResponse, summary="Reset a user's karma to zero")
async def reset_karma(
    user: str,
    ledger: KarmaLedger = Depends(get_ledger),
    publisher: BroadcastPublisher = Depends(get_publisher),
) -> KarmaChangeResponse:
    return await _overwrite(ledger, publisher, user, Decimal("0"), "admin:reset")


@router.post("/set/{user}", response_model=KarmaChangeResponse, summary="Overwrite a user's karma")
async def set_karma(
    user: str,
    payload: SetKarmaRequest,
    ledger: KarmaLedger = Depends(get_ledger),
    publisher: BroadcastPublisher = Depends(get_publisher),
) -> KarmaChangeResponse:
    target = _amount(payload.value, "value")
    return await _overwrite(ledger, publisher, user, target, "admin:set")


@router.post("/add/{user}", response_model=KarmaChangeResponse, summary="Add to a user's karma")
async def add_karma(
    user: str,
    payload: AddKarmaRequest,
    ledger: KarmaLedger = Depends(get_ledger),
    publisher: BroadcastPublisher = Depends(get_publisher),
) -> KarmaChangeResponse:
    delta = _amount(payload.delta, "delta")
    if not delta:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Body { delta: number (non-zero) } required",
        )
    key = _key(user)
    value = await ledger.apply_delta(key, delta)
    publisher.publish(key, value, delta, "admin:add")
    return KarmaChangeResponse(user=key, value=float(value), delta=float(delta))
