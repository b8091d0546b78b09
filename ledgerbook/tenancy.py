"""
Multi-Tenancy Support Module

Each business (startup) using the service is a tenant. Every bookkeeping
record carries a tenant_id and every service call takes the tenant id
explicitly; there is no ambient tenant state.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .errors import ConflictError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action


class SubscriptionTier(Enum):
    """Subscription tier options for tenants"""
    FREE = "free"
    BASIC = "basic"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


@dataclass
class Tenant:
    """Tenant data class representing one business using the service"""
    id: str
    name: str
    code: str  # Unique short code, e.g. "ACME_TRADERS"
    display_name: str
    description: str = ""
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    state_code: Optional[str] = None  # GST home state
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            'id': self.id,
            'name': self.name,
            'code': self.code,
            'display_name': self.display_name,
            'description': self.description,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'subscription_tier': self.subscription_tier.value,
            'state_code': self.state_code,
            'contact_email': self.contact_email,
            'contact_phone': self.contact_phone
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Tenant':
        """Create Tenant from dictionary"""
        data = dict(data)
        if isinstance(data.get('created_at'), str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if isinstance(data.get('updated_at'), str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        if isinstance(data.get('subscription_tier'), str):
            data['subscription_tier'] = SubscriptionTier(data['subscription_tier'])
        return cls(**data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "displayName": self.display_name,
            "description": self.description,
            "isActive": self.is_active,
            "subscriptionTier": self.subscription_tier.value,
            "stateCode": self.state_code,
            "contactEmail": self.contact_email,
            "contactPhone": self.contact_phone,
            "createdAt": self.created_at.isoformat(),
        }


class TenantManager:
    """Manager for tenant registry operations"""

    TENANT_TABLE = "tenants"
    UPDATABLE_FIELDS = {'name', 'display_name', 'description', 'subscription_tier',
                        'state_code', 'contact_email', 'contact_phone'}

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.logger = get_logger("ledgerbook.tenancy")

    def create_tenant(self, name: str, code: str, display_name: Optional[str] = None,
                      description: str = "",
                      subscription_tier: SubscriptionTier = SubscriptionTier.FREE,
                      state_code: Optional[str] = None,
                      contact_email: Optional[str] = None,
                      contact_phone: Optional[str] = None,
                      tenant_id: Optional[str] = None) -> Tenant:
        """Create a new tenant; the code must be unique"""
        if not name or not name.strip():
            raise ValidationError("Tenant name is required")
        if not code or not code.strip():
            raise ValidationError("Tenant code is required")
        code = code.strip().upper()

        tenant = Tenant(
            id=tenant_id or str(uuid.uuid4()),
            name=name.strip(),
            code=code,
            display_name=display_name or name.strip(),
            description=description,
            subscription_tier=subscription_tier,
            state_code=state_code,
            contact_email=contact_email,
            contact_phone=contact_phone
        )

        with self.storage.atomic():
            if self.get_tenant_by_code(code):
                raise ConflictError(f"Tenant code '{code}' already exists")
            self.storage.insert(self.TENANT_TABLE, tenant.id, tenant.to_dict())
            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.TENANT_CREATED, "tenant", tenant.id,
                    {"code": code, "name": tenant.name}, tenant_id=tenant.id
                )

        log_action(self.logger, "info", f"Tenant created: {code}",
                   tenant_id=tenant.id, action="create_tenant",
                   resource=f"tenant:{tenant.id}")
        return tenant

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        data = self.storage.load(self.TENANT_TABLE, tenant_id)
        if data:
            return Tenant.from_dict(data)
        return None

    def require_active_tenant(self, tenant_id: str) -> Tenant:
        """Resolve a tenant that exists and is active"""
        tenant = self.get_tenant(tenant_id)
        if not tenant or not tenant.is_active:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return tenant

    def get_tenant_by_code(self, code: str) -> Optional[Tenant]:
        tenants = self.storage.find(self.TENANT_TABLE, {'code': code.strip().upper()})
        if tenants:
            return Tenant.from_dict(tenants[0])
        return None

    def list_tenants(self, is_active: Optional[bool] = None) -> List[Tenant]:
        """List all tenants, optionally filtered by active status"""
        filters = {}
        if is_active is not None:
            filters['is_active'] = is_active
        return [Tenant.from_dict(data) for data in self.storage.find(self.TENANT_TABLE, filters)]

    def update_tenant(self, tenant_id: str, **kwargs) -> Tenant:
        """Update descriptive tenant fields"""
        tenant = self.get_tenant(tenant_id)
        if not tenant:
            raise NotFoundError(f"Tenant {tenant_id} not found")

        for key, value in kwargs.items():
            if key in self.UPDATABLE_FIELDS or key == 'is_active':
                setattr(tenant, key, value)

        tenant.updated_at = datetime.now(timezone.utc)
        with self.storage.atomic():
            self.storage.save(self.TENANT_TABLE, tenant.id, tenant.to_dict())
            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.TENANT_UPDATED, "tenant", tenant.id,
                    {"fields": sorted(kwargs)}, tenant_id=tenant.id
                )
        return tenant

    def activate_tenant(self, tenant_id: str) -> Tenant:
        return self.update_tenant(tenant_id, is_active=True)

    def deactivate_tenant(self, tenant_id: str) -> Tenant:
        return self.update_tenant(tenant_id, is_active=False)
