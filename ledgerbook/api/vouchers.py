"""
Voucher endpoints

Fixed paths (/types) are declared before /{voucher_id} so they are not
captured as voucher ids.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..utils import normalize_page
from ..vouchers import VoucherCategory, VoucherOptions, VoucherQuery, VoucherState, VoucherUpdate
from .dependencies import BookkeepingSystem, get_system, get_tenant_id
from .schemas import (
    CreateNumberingSeriesRequest, CreateVoucherRequest, CreateVoucherTypeRequest,
    ReverseVoucherRequest, UpdateVoucherRequest, parse_enum,
)


router = APIRouter()


# Voucher types and numbering series

@router.get("/types")
async def list_voucher_types(
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Voucher types of the tenant with their numbering series; defaults are created on first use"""
    manager = system.type_manager
    types = manager.ensure_default_voucher_types(tenant_id)
    data = []
    for voucher_type in types:
        item = voucher_type.to_api()
        item["numberingSeries"] = [s.to_api() for s in
                                   manager.list_numbering_series(tenant_id, voucher_type.id)]
        data.append(item)
    return {"success": True, "data": data}


@router.post("/types", status_code=201)
async def create_voucher_type(
    request: CreateVoucherTypeRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    voucher_type = system.type_manager.create_voucher_type(
        tenant_id,
        request.name,
        parse_enum(VoucherCategory, request.category, "category"),
        prefix=request.prefix,
        suffix=request.suffix,
        start_number=request.start_number
    )
    return {"success": True, "data": voucher_type.to_api(), "message": "Voucher type created successfully"}


@router.post("/types/{voucher_type_id}/series", status_code=201)
async def create_numbering_series(
    voucher_type_id: str,
    request: CreateNumberingSeriesRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    series = system.type_manager.create_numbering_series(
        tenant_id,
        voucher_type_id,
        request.name,
        prefix=request.prefix,
        suffix=request.suffix,
        start_number=request.start_number,
        is_default=request.is_default
    )
    return {"success": True, "data": series.to_api(), "message": "Numbering series created successfully"}


# Vouchers

@router.post("", status_code=201)
async def create_voucher(
    request: CreateVoucherRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Create a voucher; posted immediately unless autoPost is false"""
    voucher = system.voucher_engine.create_voucher(tenant_id, VoucherOptions(
        voucher_type_id=request.voucher_type_id,
        entries=[entry.to_entry() for entry in request.entries],
        date=request.date,
        narration=request.narration,
        reference=request.reference,
        party_ledger_id=request.party_ledger_id,
        numbering_series_id=request.numbering_series_id,
        voucher_number=request.voucher_number,
        auto_post=request.auto_post
    ))
    return {"success": True, "data": voucher.to_api(), "message": "Voucher created successfully"}


@router.get("")
async def list_vouchers(
    voucher_type_id: Optional[str] = Query(None, alias="voucherTypeId"),
    numbering_series_id: Optional[str] = Query(None, alias="numberingSeriesId"),
    status: Optional[str] = None,
    from_date: Optional[str] = Query(None, alias="fromDate"),
    to_date: Optional[str] = Query(None, alias="toDate"),
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    engine = system.voucher_engine
    limit, offset = normalize_page(limit, offset, engine.default_page_size, engine.max_page_size)
    page, total = engine.list_vouchers(tenant_id, VoucherQuery(
        voucher_type_id=voucher_type_id,
        numbering_series_id=numbering_series_id,
        state=parse_enum(VoucherState, status, "status") if status else None,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset
    ))
    return {
        "success": True,
        "data": [voucher.to_api() for voucher in page],
        "pagination": {"total": total, "limit": limit, "offset": offset}
    }


@router.get("/{voucher_id}")
async def get_voucher(
    voucher_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    voucher = system.voucher_engine.get_voucher(tenant_id, voucher_id)
    return {"success": True, "data": voucher.to_api()}


@router.put("/{voucher_id}")
async def update_voucher(
    voucher_id: str,
    request: UpdateVoucherRequest,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Edit a draft voucher"""
    voucher = system.voucher_engine.update_draft_voucher(tenant_id, voucher_id, VoucherUpdate(
        entries=[entry.to_entry() for entry in request.entries] if request.entries is not None else None,
        date=request.date,
        narration=request.narration,
        reference=request.reference,
        party_ledger_id=request.party_ledger_id
    ))
    return {"success": True, "data": voucher.to_api(), "message": "Voucher updated successfully"}


@router.post("/{voucher_id}/post")
async def post_voucher(
    voucher_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    voucher = system.voucher_engine.post_voucher(tenant_id, voucher_id)
    return {"success": True, "data": voucher.to_api(), "message": "Voucher posted successfully"}


@router.post("/{voucher_id}/reverse", status_code=201)
async def reverse_voucher(
    voucher_id: str,
    request: Optional[ReverseVoucherRequest] = None,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Post a reversing journal for a posted voucher"""
    request = request or ReverseVoucherRequest()
    reversal = system.voucher_engine.create_reversing_journal(
        tenant_id, voucher_id, date=request.date, narration=request.narration
    )
    return {"success": True, "data": reversal.to_api(), "message": "Reversing journal created successfully"}


@router.delete("/{voucher_id}")
async def delete_voucher(
    voucher_id: str,
    tenant_id: str = Depends(get_tenant_id),
    system: BookkeepingSystem = Depends(get_system)
):
    """Delete a draft, or reverse a posted voucher's balance effects"""
    voucher = system.voucher_engine.delete_voucher(tenant_id, voucher_id)
    message = ("Voucher deleted successfully" if voucher.state is VoucherState.DRAFT
               else "Voucher reversed successfully")
    return {"success": True, "data": {"id": voucher.id, "status": voucher.state.value},
            "message": message}
