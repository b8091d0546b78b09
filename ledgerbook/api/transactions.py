"""
Transaction endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..bank import TransactionQuery, parse_transaction_type
from ..utils import normalize_page
from .dependencies import BookkeepingSystem, get_system, get_tenant_id
from .schemas import CreateTransactionRequest


router = APIRouter()


@router.post("", status_code=201)
async def create_transaction(
    request: CreateTransactionRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Record a transaction and move the account balance"""
    transaction = system.bank_service.create_transaction(
        tenant_id,
        account_id=request.account_id,
        amount=request.amount,
        type=request.type,
        description=request.description,
        date=request.date
    )
    return {"success": True, "data": transaction.to_api(), "message": "Transaction created successfully"}


@router.get("")
async def list_transactions(
    account_id: Optional[str] = Query(None, alias="accountId"),
    type: Optional[str] = None,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    service = system.bank_service
    limit, offset = normalize_page(limit, offset, service.default_page_size, service.max_page_size)
    page, total = service.get_transactions(tenant_id, TransactionQuery(
        account_id=account_id,
        type=parse_transaction_type(type) if type else None,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset
    ))
    return {
        "success": True,
        "data": [transaction.to_api() for transaction in page],
        "pagination": {"total": total, "limit": limit, "offset": offset}
    }


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    transaction = system.bank_service.get_transaction(tenant_id, transaction_id)
    return {"success": True, "data": transaction.to_api()}


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Undo the transaction's balance effect and delete it"""
    system.bank_service.delete_transaction(tenant_id, transaction_id)
    return {"success": True, "message": "Transaction deleted successfully"}
