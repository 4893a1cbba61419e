"""Wallet balance, history and Paystack funding endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from database import managed_session
from handlers.dependencies import ServiceContainer, get_current_user, get_services
from handlers.schemas import DepositRequest, WithdrawRequest, serialize_ledger_entry
from models import User
from services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("")
def get_wallet(user: User = Depends(get_current_user), services: ServiceContainer = Depends(get_services)):
    with managed_session(services.session_factory) as session:
        wallet = LedgerService.get_or_create_wallet(session, user.id)
        balance = LedgerService.get_balance(session, wallet.id)
        return {"wallet_id": wallet.id, "currency": wallet.currency, "balance": f"{balance:.2f}"}


@router.get("/entries")
def list_entries(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    with services.session_factory() as session:
        wallet = LedgerService.get_wallet(session, user.id)
        if wallet is None:
            return {"entries": []}
        entries = LedgerService.list_entries(session, wallet.id, limit)
        return {"entries": [serialize_ledger_entry(entry) for entry in entries]}


@router.post("/deposit")
async def deposit(
    body: DepositRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.funding.initialize_deposit(user.id, body.amount)


@router.post("/withdraw")
async def withdraw(
    body: WithdrawRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.funding.initiate_withdrawal(user.id, body.amount, body.bank_code, body.account_number)


@router.get("/banks")
async def list_banks(
    currency: Optional[str] = None,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return {"banks": await services.paystack.list_banks(currency)}


@router.get("/resolve-account")
async def resolve_account(
    account_number: str = Query(..., min_length=10, max_length=10),
    bank_code: str = Query(...),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.paystack.resolve_account(account_number, bank_code)


@router.get("/deposits/{reference}/verify")
async def verify_deposit(
    reference: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.funding.verify_deposit(reference, user.id)
