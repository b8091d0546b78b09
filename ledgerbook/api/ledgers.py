"""
Ledger endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..ledgers import BalanceType, LedgerSubtype
from ..money import format_amount
from .dependencies import BookkeepingSystem, get_system, get_tenant_id
from .schemas import CreateLedgerRequest, UpdateLedgerRequest, parse_enum


router = APIRouter()


@router.post("", status_code=201)
async def create_ledger(
    request: CreateLedgerRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    ledger = system.ledger_manager.create_ledger(
        tenant_id,
        request.name,
        subtype=parse_enum(LedgerSubtype, request.subtype, "subtype"),
        opening_balance=request.opening_balance,
        balance_type=(parse_enum(BalanceType, request.balance_type, "balanceType")
                      if request.balance_type else None),
        opening_balance_type=(parse_enum(BalanceType, request.opening_balance_type, "openingBalanceType")
                              if request.opening_balance_type else None),
        group=request.group,
        code=request.code,
        email=request.email,
        phone=request.phone,
        credit_limit=request.credit_limit,
        description=request.description
    )
    return {"success": True, "data": ledger.to_api(), "message": "Ledger created successfully"}


@router.get("")
async def list_ledgers(
    subtype: Optional[str] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    ledgers = system.ledger_manager.list_ledgers(
        tenant_id, subtype=parse_enum(LedgerSubtype, subtype, "subtype") if subtype else None
    )
    return {"success": True, "data": [ledger.to_api() for ledger in ledgers]}


@router.post("/bootstrap")
async def bootstrap_ledgers(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Seed the default ledgers; a no-op when the tenant already has ledgers"""
    created = system.ledger_manager.bootstrap_default_ledgers(tenant_id)
    return {"success": True, "data": [ledger.to_api() for ledger in created],
            "message": f"{len(created)} ledgers created"}


@router.get("/reconcile")
async def reconcile_ledgers(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    discrepancies = system.ledger_manager.reconcile(tenant_id)
    return {
        "success": True,
        "data": {
            "balanced": not discrepancies,
            "discrepancies": [
                {
                    "ledgerId": d.ledger_id,
                    "name": d.name,
                    "storedBalance": format_amount(d.stored_balance),
                    "expectedBalance": format_amount(d.expected_balance),
                    "difference": format_amount(d.difference),
                }
                for d in discrepancies
            ],
        }
    }


@router.get("/trial-balance")
async def trial_balance(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    return {"success": True, "data": system.ledger_manager.trial_balance(tenant_id)}


@router.get("/{ledger_id}")
async def get_ledger(
    ledger_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    ledger = system.ledger_manager.get_ledger(tenant_id, ledger_id)
    return {"success": True, "data": ledger.to_api()}


@router.put("/{ledger_id}")
async def update_ledger(
    ledger_id: str,
    request: UpdateLedgerRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    ledger = system.ledger_manager.update_ledger(
        tenant_id, ledger_id, **request.model_dump(exclude_unset=True)
    )
    return {"success": True, "data": ledger.to_api(), "message": "Ledger updated successfully"}


@router.delete("/{ledger_id}")
async def delete_ledger(
    ledger_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    system.ledger_manager.delete_ledger(tenant_id, ledger_id)
    return {"success": True, "message": "Ledger deleted successfully"}
