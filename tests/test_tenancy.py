"""
Tests for tenant registry
"""

import pytest

from ledgerbook.audit import AuditEventType, AuditTrail
from ledgerbook.errors import ConflictError, NotFoundError, ValidationError
from ledgerbook.storage import InMemoryStorage
from ledgerbook.tenancy import SubscriptionTier, TenantManager


class TestTenantManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = TenantManager(self.storage, self.audit_trail)

    def test_create_tenant(self):
        tenant = self.manager.create_tenant("Acme Traders", "acme", state_code="29")

        assert tenant.code == "ACME"
        assert tenant.display_name == "Acme Traders"
        assert tenant.is_active
        assert tenant.subscription_tier == SubscriptionTier.FREE
        assert self.manager.get_tenant(tenant.id).name == "Acme Traders"
        assert self.manager.get_tenant_by_code("acme").id == tenant.id

        events = self.audit_trail.get_events_for_entity("tenant", tenant.id)
        assert events[0].event_type == AuditEventType.TENANT_CREATED

    def test_duplicate_code_rejected(self):
        self.manager.create_tenant("Acme Traders", "ACME")
        with pytest.raises(ConflictError):
            self.manager.create_tenant("Acme Again", "acme")

    def test_name_and_code_required(self):
        with pytest.raises(ValidationError):
            self.manager.create_tenant("", "X")
        with pytest.raises(ValidationError):
            self.manager.create_tenant("Name", "  ")

    def test_deactivate_and_require_active(self):
        tenant = self.manager.create_tenant("Acme Traders", "ACME")
        self.manager.deactivate_tenant(tenant.id)

        with pytest.raises(NotFoundError):
            self.manager.require_active_tenant(tenant.id)
        assert [t.id for t in self.manager.list_tenants(is_active=False)] == [tenant.id]

        self.manager.activate_tenant(tenant.id)
        assert self.manager.require_active_tenant(tenant.id).is_active

    def test_update_tenant(self):
        tenant = self.manager.create_tenant("Acme Traders", "ACME")
        updated = self.manager.update_tenant(tenant.id, display_name="Acme", state_code="27",
                                             subscription_tier=SubscriptionTier.BASIC)
        assert updated.display_name == "Acme"
        assert self.manager.get_tenant(tenant.id).state_code == "27"
        assert self.manager.get_tenant(tenant.id).subscription_tier == SubscriptionTier.BASIC

    def test_update_missing_tenant(self):
        with pytest.raises(NotFoundError):
            self.manager.update_tenant("missing", name="x")
