# --- START OF FILE controllers/wallet_controller.py ---

from fastapi import APIRouter, Depends, Query
from typing import Optional
from pydantic import BaseModel, Field
import logging

from ....models.database import User
from ....services import wallet_ledger
from ..dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["Wallet"])

# --- Pydantic Models ---

class TopUpRequest(BaseModel):
    amount: int = Field(..., gt=0, le=100000, description="Credits to add")
    note: Optional[str] = Field(default="", max_length=200)

class RefundRequest(BaseModel):
    txId: int


@router.get("/me")
async def get_my_wallet(user: User = Depends(get_current_user)):
    return {"balance": wallet_ledger.get_balance(user.id)}


@router.get("/transactions")
async def get_my_transactions(limit: int = Query(default=wallet_ledger.DEFAULT_PAGE_SIZE),
                              cursor: Optional[int] = Query(default=None, description="Id of the last item of the previous page"),
                              user: User = Depends(get_current_user)):
    items, next_cursor = wallet_ledger.list_transactions(user.id, limit=limit, before=cursor)
    body = {"items": [tx.to_dict() for tx in items]}
    if next_cursor is not None:
        body["nextCursor"] = next_cursor
    return body


@router.post("/topup")
async def top_up(request: TopUpRequest, user: User = Depends(get_current_user)):
    tx = wallet_ledger.credit(user.id, request.amount, source="topup", note=request.note or "")
    return {"ok": True, "balance": tx.balance_after, "txId": tx.id}


@router.post("/refund")
async def refund(request: RefundRequest, user: User = Depends(get_current_user)):
    tx = wallet_ledger.refund_transaction(user.id, request.txId)
    return {"ok": True, "balance": tx.balance_after, "refundTxId": tx.id}

# --- END OF FILE controllers/wallet_controller.py ---
