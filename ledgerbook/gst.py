"""
GST Module

Indian Goods and Services Tax: line-level tax computation and the per-tenant
GST masters (registrations, tax rate slabs, ledger mappings) used to turn
computed tax into voucher entries.

Intra-state supplies (place of supply == company state) split the rate into
equal CGST and SGST halves; inter-state supplies charge IGST at the full rate.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .audit import AuditEventType, AuditTrail
from .errors import ConflictError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .money import ZERO, format_amount, quantize, to_decimal
from .storage import StorageInterface, StorageRecord
from .utils import to_utc_datetime
from .vouchers import EntryInput, EntryType


GSTIN_PATTERN = re.compile(r"^[0-9]{2}[0-9A-Z]{13}$")
HUNDRED = Decimal('100')


class RegistrationType(Enum):
    REGULAR = "REGULAR"
    COMPOSITION = "COMPOSITION"
    CASUAL = "CASUAL"
    SEZ = "SEZ"
    NON_RESIDENT = "NON_RESIDENT"


class SupplyType(Enum):
    GOODS = "GOODS"
    SERVICES = "SERVICES"


class MappingType(Enum):
    OUTPUT_CGST = "OUTPUT_CGST"
    OUTPUT_SGST = "OUTPUT_SGST"
    OUTPUT_IGST = "OUTPUT_IGST"
    OUTPUT_CESS = "OUTPUT_CESS"
    INPUT_CGST = "INPUT_CGST"
    INPUT_SGST = "INPUT_SGST"
    INPUT_IGST = "INPUT_IGST"
    INPUT_CESS = "INPUT_CESS"


@dataclass
class GstLine:
    """One priced line: taxable = quantity * rate - discount"""
    quantity: Any
    rate: Any
    gst_rate: Any = ZERO
    discount: Any = ZERO
    cess_rate: Any = ZERO
    hsn_sac: Optional[str] = None


@dataclass
class GstCalculation:
    taxable_amount: Decimal
    cgst_amount: Decimal
    sgst_amount: Decimal
    igst_amount: Decimal
    cess_amount: Decimal
    is_inter_state: bool

    @property
    def total_tax_amount(self) -> Decimal:
        return self.cgst_amount + self.sgst_amount + self.igst_amount + self.cess_amount

    @property
    def grand_total(self) -> Decimal:
        return self.taxable_amount + self.total_tax_amount

    def to_api(self) -> Dict[str, Any]:
        return {
            "taxableAmount": format_amount(self.taxable_amount),
            "cgstAmount": format_amount(self.cgst_amount),
            "sgstAmount": format_amount(self.sgst_amount),
            "igstAmount": format_amount(self.igst_amount),
            "cessAmount": format_amount(self.cess_amount),
            "totalTaxAmount": format_amount(self.total_tax_amount),
            "grandTotal": format_amount(self.grand_total),
            "isInterState": self.is_inter_state,
        }


def calculate_gst(lines: Sequence[GstLine], place_of_supply: str, company_state: str) -> GstCalculation:
    """
    Compute GST for a set of lines. Components are summed unrounded and
    rounded half-up to two places once at the end.
    """
    if not company_state:
        raise ValidationError("Company state is not configured")
    if not place_of_supply:
        raise ValidationError("Place of supply is required")
    inter_state = place_of_supply.strip().upper() != company_state.strip().upper()

    taxable = cgst = sgst = igst = cess = Decimal('0')
    for line in lines:
        quantity = to_decimal(line.quantity, "quantity")
        rate = to_decimal(line.rate, "rate")
        discount = to_decimal(line.discount if line.discount is not None else ZERO, "discount")
        gst_rate = to_decimal(line.gst_rate if line.gst_rate is not None else ZERO, "gstRate")
        cess_rate = to_decimal(line.cess_rate if line.cess_rate is not None else ZERO, "cessRate")
        if quantity < 0 or rate < 0 or discount < 0 or gst_rate < 0 or cess_rate < 0:
            raise ValidationError("GST line values cannot be negative")

        line_taxable = quantity * rate - discount
        if line_taxable < 0:
            raise ValidationError("Discount exceeds line value")
        taxable += line_taxable

        if gst_rate > 0:
            if inter_state:
                igst += line_taxable * gst_rate / HUNDRED
            else:
                half = gst_rate / 2
                cgst += line_taxable * half / HUNDRED
                sgst += line_taxable * half / HUNDRED
        cess += line_taxable * cess_rate / HUNDRED

    return GstCalculation(
        taxable_amount=quantize(taxable),
        cgst_amount=quantize(cgst),
        sgst_amount=quantize(sgst),
        igst_amount=quantize(igst),
        cess_amount=quantize(cess),
        is_inter_state=inter_state
    )


def gst_entries(calculation: GstCalculation, mappings: Dict[MappingType, str],
                is_output: bool) -> List[EntryInput]:
    """
    Voucher entries carrying the tax of a calculation: output tax (sales) is
    credited to the OUTPUT_* ledgers, input tax (purchases) debited to the
    INPUT_* ledgers. Components without a mapped ledger are skipped.
    """
    prefix = "OUTPUT" if is_output else "INPUT"
    entry_type = EntryType.CREDIT if is_output else EntryType.DEBIT
    components = [
        ("CGST", calculation.cgst_amount),
        ("SGST", calculation.sgst_amount),
        ("IGST", calculation.igst_amount),
        ("CESS", calculation.cess_amount),
    ]
    entries = []
    for component, amount in components:
        ledger_name = mappings.get(MappingType[f"{prefix}_{component}"])
        if amount > 0 and ledger_name:
            entries.append(EntryInput(ledger_name=ledger_name, entry_type=entry_type, amount=amount))
    return entries


@dataclass
class GstRegistration(StorageRecord):
    tenant_id: str
    gstin: str
    state_code: str
    start_date: datetime
    registration_type: RegistrationType = RegistrationType.REGULAR
    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    state_name: Optional[str] = None
    end_date: Optional[datetime] = None
    is_default: bool = False
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GstRegistration':
        data = dict(data)
        data['registration_type'] = RegistrationType(data['registration_type'])
        for key in ('start_date', 'end_date'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "gstin": self.gstin,
            "legalName": self.legal_name,
            "tradeName": self.trade_name,
            "registrationType": self.registration_type.value,
            "stateCode": self.state_code,
            "stateName": self.state_name,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "isDefault": self.is_default,
            "isActive": self.is_active,
        }


@dataclass
class GstTaxRate(StorageRecord):
    tenant_id: str
    supply_type: SupplyType
    gst_rate: Decimal
    cgst_rate: Decimal
    sgst_rate: Decimal
    igst_rate: Decimal
    cess_rate: Decimal
    registration_id: Optional[str] = None
    tax_name: Optional[str] = None
    hsn_sac: Optional[str] = None
    description: Optional[str] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GstTaxRate':
        data = dict(data)
        data['supply_type'] = SupplyType(data['supply_type'])
        for key in ('gst_rate', 'cgst_rate', 'sgst_rate', 'igst_rate', 'cess_rate'):
            data[key] = Decimal(data[key])
        for key in ('effective_from', 'effective_to'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "registrationId": self.registration_id,
            "taxName": self.tax_name,
            "supplyType": self.supply_type.value,
            "hsnSac": self.hsn_sac,
            "description": self.description,
            "gstRate": str(self.gst_rate),
            "cgstRate": str(self.cgst_rate),
            "sgstRate": str(self.sgst_rate),
            "igstRate": str(self.igst_rate),
            "cessRate": str(self.cess_rate),
            "effectiveFrom": self.effective_from.isoformat() if self.effective_from else None,
            "effectiveTo": self.effective_to.isoformat() if self.effective_to else None,
            "isActive": self.is_active,
        }


@dataclass
class GstLedgerMapping(StorageRecord):
    tenant_id: str
    mapping_type: MappingType
    ledger_name: str
    registration_id: Optional[str] = None
    ledger_code: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GstLedgerMapping':
        data = dict(data)
        data['mapping_type'] = MappingType(data['mapping_type'])
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "registrationId": self.registration_id,
            "mappingType": self.mapping_type.value,
            "ledgerName": self.ledger_name,
            "ledgerCode": self.ledger_code,
            "description": self.description,
        }


def _rate(value: Any, field: str) -> Decimal:
    result = to_decimal(value if value is not None else ZERO, field)
    if result < 0 or result > HUNDRED:
        raise ValidationError(f"{field} must be between 0 and 100")
    return result


class GstManager:
    """Per-tenant GST registrations, tax rates and ledger mappings"""

    REGISTRATION_TABLE = "gst_registrations"
    TAX_RATE_TABLE = "gst_tax_rates"
    MAPPING_TABLE = "gst_ledger_mappings"

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.logger = get_logger("ledgerbook.gst")

    # Registrations

    def list_registrations(self, tenant_id: str) -> List[GstRegistration]:
        registrations = [GstRegistration.from_dict(d) for d in
                         self.storage.find(self.REGISTRATION_TABLE, {'tenant_id': tenant_id})]
        registrations.sort(key=lambda r: (not r.is_default, r.created_at))
        return registrations

    def get_registration(self, tenant_id: str, registration_id: str) -> GstRegistration:
        data = self.storage.load(self.REGISTRATION_TABLE, registration_id)
        if not data or data.get('tenant_id') != tenant_id:
            raise NotFoundError("GST registration not found")
        return GstRegistration.from_dict(data)

    def create_registration(self, tenant_id: str, gstin: str, state_code: str, start_date: Any,
                            registration_type: RegistrationType = RegistrationType.REGULAR,
                            legal_name: Optional[str] = None, trade_name: Optional[str] = None,
                            state_name: Optional[str] = None, end_date: Any = None,
                            is_default: bool = False, is_active: bool = True) -> GstRegistration:
        gstin = (gstin or "").strip().upper()
        if not gstin:
            raise ValidationError("GSTIN is required")
        if not GSTIN_PATTERN.match(gstin):
            raise ValidationError("GSTIN must be 15 characters: a 2-digit state code followed by 13 alphanumerics")
        if not state_code or not state_code.strip():
            raise ValidationError("State code is required")
        start = to_utc_datetime(start_date, "startDate")
        if start is None:
            raise ValidationError("startDate is required")
        end = to_utc_datetime(end_date, "endDate")
        if end and end < start:
            raise ValidationError("endDate cannot be before startDate")

        now = datetime.now(timezone.utc)
        registration = GstRegistration(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            gstin=gstin,
            state_code=state_code.strip(),
            start_date=start,
            registration_type=registration_type,
            legal_name=(legal_name or "").strip() or None,
            trade_name=(trade_name or "").strip() or None,
            state_name=(state_name or "").strip() or None,
            end_date=end,
            is_default=is_default,
            is_active=is_active
        )

        with self.storage.atomic():
            existing = self.list_registrations(tenant_id)
            if any(r.gstin == gstin for r in existing):
                raise ConflictError("GSTIN already exists for this tenant")
            if is_default:
                for other in existing:
                    if other.is_default:
                        other.is_default = False
                        self.storage.save(self.REGISTRATION_TABLE, other.id, other.to_dict())
            self.storage.insert(self.REGISTRATION_TABLE, registration.id, registration.to_dict())
            self.audit_trail.log_event(
                AuditEventType.GST_REGISTRATION_CREATED, "gst_registration", registration.id,
                {"gstin": gstin, "state_code": registration.state_code}, tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"GST registration created: {gstin}",
                   tenant_id=tenant_id, action="create_gst_registration",
                   resource=f"gst_registration:{registration.id}")
        return registration

    def delete_registration(self, tenant_id: str, registration_id: str) -> None:
        with self.storage.atomic():
            registration = self.get_registration(tenant_id, registration_id)
            if registration.is_default:
                raise ConflictError("Default registration cannot be deleted")
            if (self.storage.find(self.TAX_RATE_TABLE, {'registration_id': registration_id}) or
                    self.storage.find(self.MAPPING_TABLE, {'registration_id': registration_id})):
                raise ConflictError("Remove associated tax rates and ledger mappings before deleting")
            self.storage.delete(self.REGISTRATION_TABLE, registration_id)

    # Tax rates

    def list_tax_rates(self, tenant_id: str, registration_id: Optional[str] = None,
                       supply_type: Optional[SupplyType] = None,
                       hsn_sac: Optional[str] = None) -> List[GstTaxRate]:
        filters: Dict[str, Any] = {'tenant_id': tenant_id}
        if registration_id:
            filters['registration_id'] = registration_id
        if supply_type:
            filters['supply_type'] = supply_type.value
        rates = [GstTaxRate.from_dict(d) for d in self.storage.find(self.TAX_RATE_TABLE, filters)]
        if hsn_sac:
            needle = hsn_sac.strip().lower()
            rates = [r for r in rates if r.hsn_sac and needle in r.hsn_sac.lower()]
        rates.sort(key=lambda r: r.created_at, reverse=True)
        return rates

    def create_tax_rate(self, tenant_id: str, gst_rate: Any = ZERO,
                        supply_type: SupplyType = SupplyType.GOODS,
                        registration_id: Optional[str] = None, tax_name: Optional[str] = None,
                        hsn_sac: Optional[str] = None, description: Optional[str] = None,
                        cgst_rate: Any = None, sgst_rate: Any = None, igst_rate: Any = None,
                        cess_rate: Any = None, effective_from: Any = None,
                        effective_to: Any = None, is_active: bool = True) -> GstTaxRate:
        """
        Add a tax rate slab. When no component rate is given the total rate
        is split into CGST/SGST halves.
        """
        total = _rate(gst_rate, "gstRate")
        if cgst_rate is None and sgst_rate is None and igst_rate is None:
            cgst = sgst = total / 2
            igst = ZERO
        else:
            cgst = _rate(cgst_rate, "cgstRate")
            sgst = _rate(sgst_rate, "sgstRate")
            igst = _rate(igst_rate, "igstRate")
        start = to_utc_datetime(effective_from, "effectiveFrom")
        end = to_utc_datetime(effective_to, "effectiveTo")
        if start and end and end < start:
            raise ValidationError("effectiveTo cannot be before effectiveFrom")

        now = datetime.now(timezone.utc)
        rate = GstTaxRate(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            supply_type=supply_type,
            gst_rate=total,
            cgst_rate=cgst,
            sgst_rate=sgst,
            igst_rate=igst,
            cess_rate=_rate(cess_rate, "cessRate"),
            registration_id=registration_id or None,
            tax_name=(tax_name or "").strip() or None,
            hsn_sac=(hsn_sac or "").strip() or None,
            description=(description or "").strip() or None,
            effective_from=start,
            effective_to=end,
            is_active=is_active
        )

        with self.storage.atomic():
            if registration_id:
                self.get_registration(tenant_id, registration_id)
            self.storage.insert(self.TAX_RATE_TABLE, rate.id, rate.to_dict())
            self.audit_trail.log_event(
                AuditEventType.GST_TAX_RATE_CREATED, "gst_tax_rate", rate.id,
                {"gst_rate": total, "hsn_sac": rate.hsn_sac}, tenant_id=tenant_id
            )
        return rate

    # Ledger mappings

    def list_ledger_mappings(self, tenant_id: str, registration_id: Optional[str] = None,
                             mapping_type: Optional[MappingType] = None) -> List[GstLedgerMapping]:
        filters: Dict[str, Any] = {'tenant_id': tenant_id}
        if registration_id:
            filters['registration_id'] = registration_id
        if mapping_type:
            filters['mapping_type'] = mapping_type.value
        mappings = [GstLedgerMapping.from_dict(d) for d in self.storage.find(self.MAPPING_TABLE, filters)]
        mappings.sort(key=lambda m: m.created_at, reverse=True)
        return mappings

    def create_ledger_mapping(self, tenant_id: str, mapping_type: MappingType, ledger_name: str,
                              registration_id: Optional[str] = None,
                              ledger_code: Optional[str] = None,
                              description: Optional[str] = None) -> GstLedgerMapping:
        if not ledger_name or not ledger_name.strip():
            raise ValidationError("Ledger name is required")

        now = datetime.now(timezone.utc)
        mapping = GstLedgerMapping(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            mapping_type=mapping_type,
            ledger_name=ledger_name.strip(),
            registration_id=registration_id or None,
            ledger_code=(ledger_code or "").strip() or None,
            description=(description or "").strip() or None
        )

        with self.storage.atomic():
            if registration_id:
                self.get_registration(tenant_id, registration_id)
            self.storage.insert(self.MAPPING_TABLE, mapping.id, mapping.to_dict())
            self.audit_trail.log_event(
                AuditEventType.GST_LEDGER_MAPPING_CREATED, "gst_ledger_mapping", mapping.id,
                {"mapping_type": mapping_type.value, "ledger_name": mapping.ledger_name},
                tenant_id=tenant_id
            )
        return mapping

    def mapping_table(self, tenant_id: str, registration_id: Optional[str] = None) -> Dict[MappingType, str]:
        """Mapping type -> ledger name for one registration (or the unscoped mappings)"""
        result = {}
        for mapping in self.list_ledger_mappings(tenant_id):
            if mapping.registration_id == (registration_id or None):
                result.setdefault(mapping.mapping_type, mapping.ledger_name)
        return result
