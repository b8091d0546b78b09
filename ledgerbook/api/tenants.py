"""
Tenant endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..errors import NotFoundError
from ..tenancy import SubscriptionTier
from .dependencies import BookkeepingSystem, get_system
from .schemas import CreateTenantRequest, UpdateTenantRequest, parse_enum


router = APIRouter()


@router.post("", status_code=201)
async def create_tenant(
    request: CreateTenantRequest,
    system: BookkeepingSystem = Depends(get_system)
):
    """Register a tenant; default voucher types and ledgers are seeded when configured"""
    tenant = system.onboard_tenant(
        request.name,
        request.code,
        display_name=request.display_name,
        description=request.description,
        subscription_tier=parse_enum(SubscriptionTier, request.subscription_tier, "subscriptionTier"),
        state_code=request.state_code,
        contact_email=request.contact_email,
        contact_phone=request.contact_phone
    )
    return {"success": True, "data": tenant.to_api(), "message": "Tenant created successfully"}


@router.get("")
async def list_tenants(
    is_active: Optional[bool] = None,
    system: BookkeepingSystem = Depends(get_system)
):
    tenants = system.tenant_manager.list_tenants(is_active=is_active)
    return {"success": True, "data": [t.to_api() for t in tenants]}


@router.get("/{tenant_id}")
async def get_tenant(
    tenant_id: str,
    system: BookkeepingSystem = Depends(get_system)
):
    tenant = system.tenant_manager.get_tenant(tenant_id)
    if not tenant:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    return {"success": True, "data": tenant.to_api()}


@router.put("/{tenant_id}")
async def update_tenant(
    tenant_id: str,
    request: UpdateTenantRequest,
    system: BookkeepingSystem = Depends(get_system)
):
    changes = request.model_dump(exclude_unset=True)
    if changes.get('subscription_tier') is not None:
        changes['subscription_tier'] = parse_enum(SubscriptionTier, changes['subscription_tier'],
                                                  "subscriptionTier")
    tenant = system.tenant_manager.update_tenant(tenant_id, **changes)
    return {"success": True, "data": tenant.to_api(), "message": "Tenant updated successfully"}


@router.post("/{tenant_id}/activate")
async def activate_tenant(
    tenant_id: str,
    system: BookkeepingSystem = Depends(get_system)
):
    tenant = system.tenant_manager.activate_tenant(tenant_id)
    return {"success": True, "data": tenant.to_api()}


@router.post("/{tenant_id}/deactivate")
async def deactivate_tenant(
    tenant_id: str,
    system: BookkeepingSystem = Depends(get_system)
):
    """Deactivated tenants are rejected by every tenant-scoped endpoint"""
    tenant = system.tenant_manager.deactivate_tenant(tenant_id)
    return {"success": True, "data": tenant.to_api()}


@router.get("/{tenant_id}/audit")
async def get_tenant_audit_events(
    tenant_id: str,
    limit: Optional[int] = 100,
    system: BookkeepingSystem = Depends(get_system)
):
    """Audit events recorded for a tenant, with a chain integrity check"""
    if not system.tenant_manager.get_tenant(tenant_id):
        raise NotFoundError(f"Tenant {tenant_id} not found")
    events = system.audit_trail.get_events_for_tenant(tenant_id, limit=limit)
    return {
        "success": True,
        "data": [
            {
                "id": event.id,
                "sequence": event.sequence,
                "eventType": event.event_type.value,
                "entityType": event.entity_type,
                "entityId": event.entity_id,
                "metadata": event.metadata,
                "createdAt": event.created_at.isoformat(),
            }
            for event in events
        ],
        "integrity": system.audit_trail.verify_integrity()
    }
