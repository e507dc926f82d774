"""Public read endpoints for the karma ledger and pending redemptions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from karma_api.api.dependencies.services import get_ledger, get_store
from karma_api.services.ledger import KarmaLedger
from karma_api.services.storage import KarmaStore


router = APIRouter(prefix="/karma", tags=["Karma"])


class KarmaValueResponse(BaseModel):
    user: str
    value: float


class PendingRedemptionResponse(BaseModel):
    id: str
    user: str
    title: str
    delta: float
    reward_id: str | None = None
    broadcaster_id: str | None = None
    created_at: str
    status: str


@router.get("", summary="All karma values")
async def list_karma(ledger: KarmaLedger = Depends(get_ledger)) -> dict[str, float]:
    values = await ledger.get_all()
    return {user: float(value) for user, value in values.items()}


@router.get("/pending", summary="Redemptions awaiting fulfillment")
async def list_pending(store: KarmaStore = Depends(get_store)) -> dict[str, PendingRedemptionResponse]:
    records = await store.pending_all()
    return {
        redemption_id: PendingRedemptionResponse(**record.as_dict())
        for redemption_id, record in records.items()
    }


@router.get("/{user}", response_model=KarmaValueResponse, summary="Karma value for one user")
async def get_karma(user: str, ledger: KarmaLedger = Depends(get_ledger)) -> KarmaValueResponse:
    try:
        value = await ledger.get_user(user)
    except ValueError as error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error)) from error
    return KarmaValueResponse(user=user, value=float(value))
