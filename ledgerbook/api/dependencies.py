"""
System wiring and FastAPI dependencies
"""

from typing import Optional

from fastapi import Header, Request

from ..audit import AuditTrail
from ..bank import BankAccountService
from ..config import LedgerbookConfig, get_config
from ..errors import ValidationError
from ..gst import GstManager
from ..ledgers import LedgerManager
from ..logging_config import get_logger
from ..storage import StorageInterface, create_storage
from ..tally import TallyExporter, TallyImporter
from ..tenancy import Tenant, TenantManager
from ..vouchers import VoucherEngine, VoucherTypeManager


class BookkeepingSystem:
    """Bookkeeping service with all components initialized"""

    def __init__(self, config: Optional[LedgerbookConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config.storage_backend,
                                                 self.config.database_path)
        self.logger = get_logger("ledgerbook.system")

        self.audit_trail = AuditTrail(self.storage)
        self.tenant_manager = TenantManager(self.storage, self.audit_trail)
        self.ledger_manager = LedgerManager(self.storage, self.audit_trail)
        self.type_manager = VoucherTypeManager(self.storage, self.audit_trail)
        self.voucher_engine = VoucherEngine(
            self.storage, self.ledger_manager, self.type_manager, self.audit_trail,
            default_auto_post=self.config.default_auto_post,
            default_page_size=self.config.default_page_size,
            max_page_size=self.config.max_page_size
        )
        self.bank_service = BankAccountService(
            self.storage, self.audit_trail,
            default_page_size=self.config.default_page_size,
            max_page_size=self.config.max_page_size
        )
        self.gst_manager = GstManager(self.storage, self.audit_trail)
        self.tally_exporter = TallyExporter(self.ledger_manager, self.type_manager,
                                            self.voucher_engine, self.gst_manager)
        self.tally_importer = TallyImporter(self.storage, self.ledger_manager, self.type_manager,
                                            self.voucher_engine, self.audit_trail)

    def onboard_tenant(self, name: str, code: str, **kwargs) -> Tenant:
        """Create a tenant and, when configured, seed its voucher types and ledgers"""
        with self.storage.atomic():
            tenant = self.tenant_manager.create_tenant(name, code, **kwargs)
            if self.config.bootstrap_tenant_defaults:
                self.type_manager.ensure_default_voucher_types(tenant.id)
                self.ledger_manager.bootstrap_default_ledgers(tenant.id)
        return tenant

    def company_state(self, tenant: Tenant) -> str:
        return tenant.state_code or self.config.company_state_code

    def close(self) -> None:
        self.storage.close()


def get_system(request: Request) -> BookkeepingSystem:
    return request.app.state.system


def get_tenant(request: Request,
               x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")) -> Tenant:
    """Resolve the calling tenant from the X-Tenant-ID header"""
    if not x_tenant_id or not x_tenant_id.strip():
        raise ValidationError("Tenant context is required")
    system = get_system(request)
    return system.tenant_manager.require_active_tenant(x_tenant_id.strip())


def get_tenant_id(request: Request,
                  x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID")) -> str:
    return get_tenant(request, x_tenant_id).id
