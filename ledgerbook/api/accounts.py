"""
Mock bank account endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import BookkeepingSystem, get_system, get_tenant_id
from .schemas import CreateAccountRequest, RenameAccountRequest


router = APIRouter()


@router.post("", status_code=201)
async def create_account(
    request: CreateAccountRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    account = system.bank_service.create_account(tenant_id, request.account_name, request.balance)
    return {"success": True, "data": account.to_api(), "message": "Account created successfully"}


@router.get("")
async def list_accounts(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    accounts = system.bank_service.list_accounts(tenant_id)
    return {"success": True, "data": [account.to_api() for account in accounts]}


@router.get("/{account_id}")
async def get_account(
    account_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    account = system.bank_service.get_account(tenant_id, account_id)
    return {"success": True, "data": account.to_api()}


@router.put("/{account_id}")
async def rename_account(
    account_id: str,
    request: RenameAccountRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Rename an account; balances only move through transactions"""
    account = system.bank_service.rename_account(tenant_id, account_id, request.account_name)
    return {"success": True, "data": account.to_api(), "message": "Account updated successfully"}


@router.delete("/{account_id}")
async def delete_account(
    account_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    system.bank_service.delete_account(tenant_id, account_id)
    return {"success": True, "message": "Account deleted successfully"}
