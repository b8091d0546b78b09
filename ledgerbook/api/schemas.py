"""
Pydantic schemas for API requests

Request bodies use camelCase keys. Amount fields are left untyped so the
service layer's Decimal parsing decides what is a valid amount; strings are
the preferred wire form.
"""

from enum import Enum
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ..errors import ValidationError
from ..gst import GstLine
from ..vouchers import EntryInput


E = TypeVar('E', bound=Enum)


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def parse_enum(enum_cls: Type[E], value: Any, field: str) -> E:
    """Map a request string onto an enum member by value or name"""
    if isinstance(value, enum_cls):
        return value
    text = str(value).strip()
    for member in enum_cls:
        if text == member.value or text.upper() == member.name:
            return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValidationError(f"{field} must be one of: {allowed}")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_camel, populate_by_name=True)


# Tenants

class CreateTenantRequest(CamelModel):
    name: str
    code: str
    display_name: Optional[str] = None
    description: str = ""
    subscription_tier: str = Field("free", description="free, basic, professional or enterprise")
    state_code: Optional[str] = Field(None, description="GST home state code, e.g. 29")
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None


class UpdateTenantRequest(CamelModel):
    name: Optional[str] = None
    display_name: Optional[str] = None
    description: Optional[str] = None
    subscription_tier: Optional[str] = None
    state_code: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None


# Ledgers

class CreateLedgerRequest(CamelModel):
    name: str
    subtype: str = Field("OTHER", description="CASH, BANK, CUSTOMER, SUPPLIER, ...")
    opening_balance: Any = Field("0", description="Decimal amount as string")
    balance_type: Optional[str] = Field(None, description="Natural side override: DEBIT or CREDIT")
    opening_balance_type: Optional[str] = Field(None, description="Side of the opening amount")
    group: Optional[str] = None
    code: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    credit_limit: Any = None
    description: Optional[str] = None


class UpdateLedgerRequest(CamelModel):
    name: Optional[str] = None
    group: Optional[str] = None
    code: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    credit_limit: Any = None
    description: Optional[str] = None


# Mock bank accounts and transactions

class CreateAccountRequest(CamelModel):
    account_name: str
    balance: Any = Field("0", description="Opening balance as decimal string")


class RenameAccountRequest(CamelModel):
    account_name: str


class CreateTransactionRequest(CamelModel):
    account_id: str
    amount: Any = Field(..., description="Positive decimal amount as string")
    type: str = Field(..., description="CREDIT or DEBIT")
    description: str
    date: Optional[str] = Field(None, description="ISO 8601 date, defaults to now")


# Vouchers

class EntryModel(CamelModel):
    ledger_name: str
    entry_type: str = Field(..., description="DEBIT or CREDIT")
    amount: Any = Field(..., description="Positive decimal amount as string")
    ledger_code: Optional[str] = None
    narration: Optional[str] = None
    cost_center_id: Optional[str] = None
    cost_category_id: Optional[str] = None

    def to_entry(self) -> EntryInput:
        return EntryInput(
            ledger_name=self.ledger_name,
            entry_type=self.entry_type,
            amount=self.amount,
            ledger_code=self.ledger_code,
            narration=self.narration,
            cost_center_id=self.cost_center_id,
            cost_category_id=self.cost_category_id
        )


class CreateVoucherRequest(CamelModel):
    voucher_type_id: str
    entries: List[EntryModel]
    date: Optional[str] = None
    narration: Optional[str] = None
    reference: Optional[str] = None
    party_ledger_id: Optional[str] = None
    numbering_series_id: Optional[str] = None
    voucher_number: Optional[str] = Field(None, description="Manual number; generated when omitted")
    auto_post: Optional[bool] = None


class UpdateVoucherRequest(CamelModel):
    entries: Optional[List[EntryModel]] = None
    date: Optional[str] = None
    narration: Optional[str] = None
    reference: Optional[str] = None
    party_ledger_id: Optional[str] = None


class ReverseVoucherRequest(CamelModel):
    date: Optional[str] = None
    narration: Optional[str] = None


class CreateVoucherTypeRequest(CamelModel):
    name: str
    category: str
    prefix: Optional[str] = None
    suffix: str = ""
    start_number: int = 1


class CreateNumberingSeriesRequest(CamelModel):
    name: str
    prefix: str = ""
    suffix: str = ""
    start_number: int = 1
    is_default: bool = False


# GST

class CreateRegistrationRequest(CamelModel):
    gstin: str
    state_code: str
    start_date: str
    registration_type: str = "REGULAR"
    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    state_name: Optional[str] = None
    end_date: Optional[str] = None
    is_default: bool = False
    is_active: bool = True


class CreateTaxRateRequest(CamelModel):
    gst_rate: Any = "0"
    supply_type: str = "GOODS"
    registration_id: Optional[str] = None
    tax_name: Optional[str] = None
    hsn_sac: Optional[str] = None
    description: Optional[str] = None
    cgst_rate: Any = None
    sgst_rate: Any = None
    igst_rate: Any = None
    cess_rate: Any = None
    effective_from: Optional[str] = None
    effective_to: Optional[str] = None
    is_active: bool = True


class CreateLedgerMappingRequest(CamelModel):
    mapping_type: str
    ledger_name: str
    registration_id: Optional[str] = None
    ledger_code: Optional[str] = None
    description: Optional[str] = None


class GstLineModel(CamelModel):
    quantity: Any = "1"
    rate: Any
    gst_rate: Any = "0"
    discount: Any = "0"
    cess_rate: Any = "0"
    hsn_sac: Optional[str] = None

    def to_line(self) -> GstLine:
        return GstLine(
            quantity=self.quantity,
            rate=self.rate,
            gst_rate=self.gst_rate,
            discount=self.discount,
            cess_rate=self.cess_rate,
            hsn_sac=self.hsn_sac
        )


class GstCalculateRequest(CamelModel):
    lines: List[GstLineModel]
    place_of_supply: str
    company_state: Optional[str] = Field(None, description="Defaults to the tenant's state")
    registration_id: Optional[str] = Field(None, description="Ledger mappings to use for entries")
    is_output: bool = Field(True, description="Sales (output tax) or purchases (input tax)")
