"""
GST endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..gst import MappingType, RegistrationType, SupplyType, calculate_gst, gst_entries
from ..money import format_amount
from ..tenancy import Tenant
from .dependencies import BookkeepingSystem, get_system, get_tenant
from .schemas import (
    CreateLedgerMappingRequest, CreateRegistrationRequest, CreateTaxRateRequest,
    GstCalculateRequest, parse_enum,
)


router = APIRouter()


# Registrations

@router.get("/registrations")
async def list_registrations(
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    registrations = system.gst_manager.list_registrations(tenant.id)
    return {"success": True, "data": [r.to_api() for r in registrations]}


@router.post("/registrations", status_code=201)
async def create_registration(
    request: CreateRegistrationRequest,
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    registration = system.gst_manager.create_registration(
        tenant.id,
        request.gstin,
        request.state_code,
        request.start_date,
        registration_type=parse_enum(RegistrationType, request.registration_type, "registrationType"),
        legal_name=request.legal_name,
        trade_name=request.trade_name,
        state_name=request.state_name,
        end_date=request.end_date,
        is_default=request.is_default,
        is_active=request.is_active
    )
    return {"success": True, "data": registration.to_api(), "message": "GST registration created successfully"}


@router.get("/registrations/{registration_id}")
async def get_registration(
    registration_id: str,
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    registration = system.gst_manager.get_registration(tenant.id, registration_id)
    return {"success": True, "data": registration.to_api()}


@router.delete("/registrations/{registration_id}")
async def delete_registration(
    registration_id: str,
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    system.gst_manager.delete_registration(tenant.id, registration_id)
    return {"success": True, "message": "GST registration deleted successfully"}


# Tax rates

@router.get("/tax-rates")
async def list_tax_rates(
    registration_id: Optional[str] = Query(None, alias="registrationId"),
    supply_type: Optional[str] = Query(None, alias="supplyType"),
    hsn_sac: Optional[str] = Query(None, alias="hsnSac"),
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    rates = system.gst_manager.list_tax_rates(
        tenant.id,
        registration_id=registration_id,
        supply_type=parse_enum(SupplyType, supply_type, "supplyType") if supply_type else None,
        hsn_sac=hsn_sac
    )
    return {"success": True, "data": [r.to_api() for r in rates]}


@router.post("/tax-rates", status_code=201)
async def create_tax_rate(
    request: CreateTaxRateRequest,
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    rate = system.gst_manager.create_tax_rate(
        tenant.id,
        gst_rate=request.gst_rate,
        supply_type=parse_enum(SupplyType, request.supply_type, "supplyType"),
        registration_id=request.registration_id,
        tax_name=request.tax_name,
        hsn_sac=request.hsn_sac,
        description=request.description,
        cgst_rate=request.cgst_rate,
        sgst_rate=request.sgst_rate,
        igst_rate=request.igst_rate,
        cess_rate=request.cess_rate,
        effective_from=request.effective_from,
        effective_to=request.effective_to,
        is_active=request.is_active
    )
    return {"success": True, "data": rate.to_api(), "message": "Tax rate created successfully"}


# Ledger mappings

@router.get("/ledger-mappings")
async def list_ledger_mappings(
    registration_id: Optional[str] = Query(None, alias="registrationId"),
    mapping_type: Optional[str] = Query(None, alias="mappingType"),
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    mappings = system.gst_manager.list_ledger_mappings(
        tenant.id,
        registration_id=registration_id,
        mapping_type=parse_enum(MappingType, mapping_type, "mappingType") if mapping_type else None
    )
    return {"success": True, "data": [m.to_api() for m in mappings]}


@router.post("/ledger-mappings", status_code=201)
async def create_ledger_mapping(
    request: CreateLedgerMappingRequest,
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    mapping = system.gst_manager.create_ledger_mapping(
        tenant.id,
        parse_enum(MappingType, request.mapping_type, "mappingType"),
        request.ledger_name,
        registration_id=request.registration_id,
        ledger_code=request.ledger_code,
        description=request.description
    )
    return {"success": True, "data": mapping.to_api(), "message": "Ledger mapping created successfully"}


# Calculation

@router.post("/calculate")
async def calculate(
    request: GstCalculateRequest,
    tenant: Tenant = Depends(get_tenant),
    system: BookkeepingSystem = Depends(get_system)
):
    """
    Compute GST for a set of lines. The response also carries the tax
    entries a voucher would need, using the tenant's ledger mappings.
    """
    calculation = calculate_gst(
        [line.to_line() for line in request.lines],
        request.place_of_supply,
        request.company_state or system.company_state(tenant)
    )
    mappings = system.gst_manager.mapping_table(tenant.id, request.registration_id)
    entries = gst_entries(calculation, mappings, is_output=request.is_output)

    data = calculation.to_api()
    data["entries"] = [
        {"ledgerName": e.ledger_name, "entryType": e.entry_type.value, "amount": format_amount(e.amount)}
        for e in entries
    ]
    return {"success": True, "data": data}
