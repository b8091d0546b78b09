"""
Double-Entry Voucher Engine

A voucher is a balanced set of DEBIT/CREDIT entries against named ledgers.
Posting applies each entry's signed delta to its ledger; deleting a posted
voucher applies the exact inverse and marks it REVERSED.

Voucher lifecycle:

    DRAFT --post--> POSTED --delete--> REVERSED
      |
      +--delete--> (removed)

DRAFT vouchers have no balance effect and may be edited. POSTED vouchers are
immutable; corrections go through deletion (reversal) or a reversing journal.
Every create/post/delete runs inside one storage transaction.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .audit import AuditEventType, AuditTrail
from .errors import ConflictError, NotFoundError, ValidationError
from .ledgers import (
    VOUCHER_ENTRY_TABLE, VOUCHER_TABLE, BalanceType, Ledger, LedgerManager,
    credit_side_balance, signed_delta,
)
from .logging_config import get_logger, log_action
from .money import ZERO, format_amount, parse_amount
from .storage import DuplicateRecordError, StorageInterface, StorageRecord
from .utils import normalize_page, to_utc_datetime


VOUCHER_TYPE_TABLE = "voucher_types"
VOUCHER_TYPE_NAME_TABLE = "voucher_type_names"
NUMBERING_SERIES_TABLE = "numbering_series"
VOUCHER_NUMBER_TABLE = "voucher_numbers"  # unique (tenant, scope, number) keys

# Entries share the ledger DEBIT/CREDIT sides
EntryType = BalanceType


class VoucherCategory(Enum):
    """Accounting category of a voucher type"""
    PAYMENT = "PAYMENT"
    RECEIPT = "RECEIPT"
    CONTRA = "CONTRA"
    JOURNAL = "JOURNAL"
    SALES = "SALES"
    PURCHASE = "PURCHASE"
    DEBIT_NOTE = "DEBIT_NOTE"
    CREDIT_NOTE = "CREDIT_NOTE"
    REVERSING_JOURNAL = "REVERSING_JOURNAL"


class VoucherState(Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


DEFAULT_VOUCHER_TYPES = [
    ("Payment", VoucherCategory.PAYMENT, "PMT/"),
    ("Receipt", VoucherCategory.RECEIPT, "RCT/"),
    ("Contra", VoucherCategory.CONTRA, "CTR/"),
    ("Journal", VoucherCategory.JOURNAL, "JRN/"),
    ("Sales", VoucherCategory.SALES, "SAL/"),
    ("Purchase", VoucherCategory.PURCHASE, "PUR/"),
    ("Debit Note", VoucherCategory.DEBIT_NOTE, "DN/"),
    ("Credit Note", VoucherCategory.CREDIT_NOTE, "CN/"),
]

REVERSING_JOURNAL_TYPE = ("Reversing Journal", VoucherCategory.REVERSING_JOURNAL, "RJ/")


def parse_entry_type(value: Any) -> BalanceType:
    if isinstance(value, BalanceType):
        return value
    if isinstance(value, str):
        text = value.strip().upper()
        if text in ("DEBIT", "DR"):
            return BalanceType.DEBIT
        if text in ("CREDIT", "CR"):
            return BalanceType.CREDIT
    raise ValidationError("Entry type must be DEBIT or CREDIT")


@dataclass
class VoucherType(StorageRecord):
    tenant_id: str
    name: str
    category: VoucherCategory
    prefix: str = ""
    suffix: str = ""
    next_number: int = 1  # used when a voucher has no numbering series
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoucherType':
        data = dict(data)
        data['category'] = VoucherCategory(data['category'])
        data['next_number'] = int(Decimal(str(data['next_number'])))
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "prefix": self.prefix,
            "suffix": self.suffix,
            "nextNumber": self.next_number,
            "isActive": self.is_active,
        }


@dataclass
class NumberingSeries(StorageRecord):
    """Per-tenant monotonic counter producing prefix + number + suffix"""
    tenant_id: str
    voucher_type_id: str
    name: str
    prefix: str = ""
    suffix: str = ""
    next_number: int = 1
    is_default: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NumberingSeries':
        data = dict(data)
        data['next_number'] = int(Decimal(str(data['next_number'])))
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "voucherTypeId": self.voucher_type_id,
            "name": self.name,
            "prefix": self.prefix,
            "suffix": self.suffix,
            "nextNumber": self.next_number,
            "isDefault": self.is_default,
        }


@dataclass
class EntryInput:
    """One proposed voucher line as supplied by a caller"""
    ledger_name: str
    entry_type: Any
    amount: Any
    ledger_code: Optional[str] = None
    narration: Optional[str] = None
    cost_center_id: Optional[str] = None
    cost_category_id: Optional[str] = None


@dataclass
class VoucherEntry:
    id: str
    voucher_id: str
    tenant_id: str
    line_no: int
    ledger_id: str
    ledger_name: str
    entry_type: BalanceType
    amount: Decimal
    ledger_code: Optional[str] = None
    narration: Optional[str] = None
    cost_center_id: Optional[str] = None
    cost_category_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'voucher_id': self.voucher_id,
            'tenant_id': self.tenant_id,
            'line_no': self.line_no,
            'ledger_id': self.ledger_id,
            'ledger_name': self.ledger_name,
            'entry_type': self.entry_type.value,
            'amount': str(self.amount),
            'ledger_code': self.ledger_code,
            'narration': self.narration,
            'cost_center_id': self.cost_center_id,
            'cost_category_id': self.cost_category_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoucherEntry':
        data = dict(data)
        data['entry_type'] = BalanceType(data['entry_type'])
        data['amount'] = Decimal(data['amount'])
        return cls(**data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ledgerId": self.ledger_id,
            "ledgerName": self.ledger_name,
            "ledgerCode": self.ledger_code,
            "entryType": self.entry_type.value,
            "amount": format_amount(self.amount),
            "narration": self.narration,
            "costCenterId": self.cost_center_id,
            "costCategoryId": self.cost_category_id,
        }


@dataclass
class Voucher(StorageRecord):
    tenant_id: str
    voucher_number: str
    voucher_type_id: str
    date: datetime
    total_amount: Decimal
    state: VoucherState
    numbering_series_id: Optional[str] = None
    reference: Optional[str] = None
    narration: Optional[str] = None
    party_ledger_id: Optional[str] = None
    number_key: Optional[str] = None
    posted_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None
    reversal_of_id: Optional[str] = None   # set on a reversing journal
    reversed_by_id: Optional[str] = None   # set on the voucher it reverses
    entries: List[VoucherEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        # Entries live in their own table
        result.pop('entries', None)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Voucher':
        data = dict(data)
        data['state'] = VoucherState(data['state'])
        data['total_amount'] = Decimal(data['total_amount'])
        for key in ('date', 'posted_at', 'reversed_at'):
            if isinstance(data.get(key), str):
                data[key] = datetime.fromisoformat(data[key])
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "voucherNumber": self.voucher_number,
            "voucherTypeId": self.voucher_type_id,
            "numberingSeriesId": self.numbering_series_id,
            "date": self.date.isoformat(),
            "reference": self.reference,
            "narration": self.narration,
            "totalAmount": format_amount(self.total_amount),
            "status": self.state.value,
            "partyLedgerId": self.party_ledger_id,
            "postedAt": self.posted_at.isoformat() if self.posted_at else None,
            "reversedAt": self.reversed_at.isoformat() if self.reversed_at else None,
            "reversalOfId": self.reversal_of_id,
            "reversedById": self.reversed_by_id,
            "entries": [entry.to_api() for entry in self.entries],
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class VoucherOptions:
    """
    Recognized options for creating a voucher

    date defaults to now, auto_post to the configured default (True),
    voucher_number to the next number of the selected (or default) series.
    """
    voucher_type_id: str
    entries: Sequence[EntryInput]
    date: Any = None
    narration: Optional[str] = None
    reference: Optional[str] = None
    party_ledger_id: Optional[str] = None
    numbering_series_id: Optional[str] = None
    voucher_number: Optional[str] = None
    auto_post: Optional[bool] = None


@dataclass
class VoucherUpdate:
    """Editable fields of a DRAFT voucher; None leaves a field unchanged"""
    entries: Optional[Sequence[EntryInput]] = None
    date: Any = None
    narration: Optional[str] = None
    reference: Optional[str] = None
    party_ledger_id: Optional[str] = None


@dataclass
class VoucherQuery:
    voucher_type_id: Optional[str] = None
    numbering_series_id: Optional[str] = None
    state: Optional[VoucherState] = None
    from_date: Any = None
    to_date: Any = None
    limit: Optional[int] = None
    offset: Optional[int] = None


def validate_entries(entries: Sequence[EntryInput]) -> Tuple[List[EntryInput], Decimal]:
    """
    Check a proposed set of entries and return them normalized together
    with the balanced total. Pure; raises ValidationError.
    """
    if not entries or len(entries) < 2:
        raise ValidationError("At least two ledger entries are required")

    normalized = []
    debits = ZERO
    credits = ZERO
    for entry in entries:
        name = (entry.ledger_name or "").strip()
        if not name:
            raise ValidationError("Ledger name is required for every entry")
        entry_type = parse_entry_type(entry.entry_type)
        amount = parse_amount(entry.amount)
        if entry_type is BalanceType.DEBIT:
            debits += amount
        else:
            credits += amount
        normalized.append(EntryInput(
            ledger_name=name,
            entry_type=entry_type,
            amount=amount,
            ledger_code=entry.ledger_code,
            narration=entry.narration,
            cost_center_id=entry.cost_center_id,
            cost_category_id=entry.cost_category_id
        ))

    if debits != credits:
        raise ValidationError(
            f"Voucher is not balanced: debits {format_amount(debits)}, "
            f"credits {format_amount(credits)}"
        )
    return normalized, debits


class VoucherTypeManager:
    """Voucher types, numbering series and number generation"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.logger = get_logger("ledgerbook.voucher_types")

    def ensure_default_voucher_types(self, tenant_id: str) -> List[VoucherType]:
        """Create the standard voucher types when a tenant has none"""
        with self.storage.atomic():
            existing = self.list_voucher_types(tenant_id)
            if existing:
                return existing
            for name, category, prefix in DEFAULT_VOUCHER_TYPES:
                self.create_voucher_type(tenant_id, name, category, prefix=prefix)
            return self.list_voucher_types(tenant_id)

    def list_voucher_types(self, tenant_id: str) -> List[VoucherType]:
        types = [VoucherType.from_dict(d) for d in
                 self.storage.find(VOUCHER_TYPE_TABLE, {'tenant_id': tenant_id})]
        types.sort(key=lambda t: t.name.lower())
        return types

    def get_voucher_type(self, tenant_id: str, voucher_type_id: str) -> VoucherType:
        data = self.storage.load(VOUCHER_TYPE_TABLE, voucher_type_id)
        if not data or data.get('tenant_id') != tenant_id:
            raise NotFoundError(f"Voucher type {voucher_type_id} not found")
        return VoucherType.from_dict(data)

    def find_voucher_type_by_name(self, tenant_id: str, name: str) -> Optional[VoucherType]:
        key = self.storage.load(VOUCHER_TYPE_NAME_TABLE, f"{tenant_id}|{name.strip().lower()}")
        if not key:
            return None
        return self.get_voucher_type(tenant_id, key['voucher_type_id'])

    def find_voucher_type_by_category(self, tenant_id: str,
                                      category: VoucherCategory) -> Optional[VoucherType]:
        matches = self.storage.find(VOUCHER_TYPE_TABLE,
                                    {'tenant_id': tenant_id, 'category': category.value})
        return VoucherType.from_dict(matches[0]) if matches else None

    def create_voucher_type(self, tenant_id: str, name: str, category: VoucherCategory,
                            prefix: Optional[str] = None, suffix: str = "",
                            start_number: int = 1) -> VoucherType:
        """Create a voucher type together with its "Default" numbering series"""
        if not name or not name.strip():
            raise ValidationError("Voucher type name is required")
        if start_number < 1:
            raise ValidationError("startNumber must be at least 1")
        name = name.strip()
        if prefix is None:
            prefix = f"{name[:3].upper()}/"

        now = datetime.now(timezone.utc)
        voucher_type = VoucherType(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            name=name,
            category=category,
            prefix=prefix,
            suffix=suffix,
            next_number=start_number
        )

        with self.storage.atomic():
            try:
                self.storage.insert(VOUCHER_TYPE_NAME_TABLE, f"{tenant_id}|{name.lower()}",
                                    {"tenant_id": tenant_id, "voucher_type_id": voucher_type.id})
            except DuplicateRecordError:
                raise ConflictError(f"Voucher type '{name}' already exists")
            self.storage.insert(VOUCHER_TYPE_TABLE, voucher_type.id, voucher_type.to_dict())
            self.audit_trail.log_event(
                AuditEventType.VOUCHER_TYPE_CREATED, "voucher_type", voucher_type.id,
                {"name": name, "category": category.value}, tenant_id=tenant_id
            )
            self.create_numbering_series(tenant_id, voucher_type.id, "Default",
                                         prefix=prefix, suffix=suffix,
                                         start_number=start_number, is_default=True)

        log_action(self.logger, "info", f"Voucher type created: {name}",
                   tenant_id=tenant_id, action="create_voucher_type",
                   resource=f"voucher_type:{voucher_type.id}")
        return voucher_type

    def list_numbering_series(self, tenant_id: str, voucher_type_id: str) -> List[NumberingSeries]:
        return [NumberingSeries.from_dict(d) for d in self.storage.find(
            NUMBERING_SERIES_TABLE, {'tenant_id': tenant_id, 'voucher_type_id': voucher_type_id})]

    def get_numbering_series(self, tenant_id: str, series_id: str) -> NumberingSeries:
        data = self.storage.load(NUMBERING_SERIES_TABLE, series_id)
        if not data or data.get('tenant_id') != tenant_id:
            raise NotFoundError(f"Numbering series {series_id} not found")
        return NumberingSeries.from_dict(data)

    def default_series(self, tenant_id: str, voucher_type_id: str) -> Optional[NumberingSeries]:
        for series in self.list_numbering_series(tenant_id, voucher_type_id):
            if series.is_default:
                return series
        return None

    def create_numbering_series(self, tenant_id: str, voucher_type_id: str, name: str,
                                prefix: str = "", suffix: str = "", start_number: int = 1,
                                is_default: bool = False) -> NumberingSeries:
        """Add a numbering series; a new default unsets the previous one"""
        if not name or not name.strip():
            raise ValidationError("Numbering series name is required")
        if start_number < 1:
            raise ValidationError("startNumber must be at least 1")

        now = datetime.now(timezone.utc)
        series = NumberingSeries(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            voucher_type_id=voucher_type_id,
            name=name.strip(),
            prefix=prefix or "",
            suffix=suffix or "",
            next_number=start_number,
            is_default=is_default
        )

        with self.storage.atomic():
            self.get_voucher_type(tenant_id, voucher_type_id)
            siblings = self.list_numbering_series(tenant_id, voucher_type_id)
            if any(s.name.lower() == series.name.lower() for s in siblings):
                raise ConflictError(f"Numbering series '{series.name}' already exists")
            if not siblings:
                series.is_default = True
            elif is_default:
                for sibling in siblings:
                    if sibling.is_default:
                        sibling.is_default = False
                        self.storage.save(NUMBERING_SERIES_TABLE, sibling.id, sibling.to_dict())
            self.storage.insert(NUMBERING_SERIES_TABLE, series.id, series.to_dict())
            self.audit_trail.log_event(
                AuditEventType.NUMBERING_SERIES_CREATED, "numbering_series", series.id,
                {"voucher_type_id": voucher_type_id, "name": series.name},
                tenant_id=tenant_id
            )
        return series

    def claim_next_number(self, tenant_id: str, voucher_type: VoucherType,
                          series: Optional[NumberingSeries]) -> Tuple[str, str]:
        """
        Take the next free number from the series (or from the voucher type
        when there is no series). Returns (voucher_number, uniqueness key).
        Must run inside a storage transaction.
        """
        if series is not None:
            table, record_id, prefix, suffix = NUMBERING_SERIES_TABLE, series.id, series.prefix, series.suffix
        else:
            table, record_id, prefix, suffix = VOUCHER_TYPE_TABLE, voucher_type.id, voucher_type.prefix, voucher_type.suffix

        while True:
            claimed = int(self.storage.increment(table, record_id, 'next_number', Decimal(1))) - 1
            number = f"{prefix}{claimed}{suffix}"
            key = number_key(tenant_id, voucher_type.id, series.id if series else None, number)
            # Skip numbers already taken by manually numbered vouchers
            if not self.storage.exists(VOUCHER_NUMBER_TABLE, key):
                return number, key


def number_key(tenant_id: str, voucher_type_id: str, series_id: Optional[str], number: str) -> str:
    scope = f"series:{series_id}" if series_id else f"type:{voucher_type_id}"
    return f"{tenant_id}|{scope}|{number}"


class VoucherEngine:
    """
    Voucher posting, editing, reversal and listing

    Resolution (voucher type, series, ledgers, party) and validation happen
    before any write; the writes then run inside the same storage
    transaction so any failure leaves the store untouched.
    """

    def __init__(self, storage: StorageInterface, ledger_manager: LedgerManager,
                 type_manager: VoucherTypeManager, audit_trail: AuditTrail,
                 default_auto_post: bool = True, default_page_size: int = 50,
                 max_page_size: int = 200):
        self.storage = storage
        self.ledger_manager = ledger_manager
        self.type_manager = type_manager
        self.audit_trail = audit_trail
        self.default_auto_post = default_auto_post
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.logger = get_logger("ledgerbook.vouchers")

    # -- helpers -----------------------------------------------------------

    def _resolve_ledgers(self, tenant_id: str, entries: Sequence[EntryInput]) -> Dict[str, Ledger]:
        resolved: Dict[str, Ledger] = {}
        for entry in entries:
            key = entry.ledger_name.lower()
            if key not in resolved:
                resolved[key] = self.ledger_manager.get_ledger_by_name(tenant_id, entry.ledger_name)
        return resolved

    def _check_credit_limits(self, ledgers: Dict[str, Ledger], entries: Sequence[Any]) -> None:
        """Reject entries that push a limited ledger's credit balance past its limit"""
        projected: Dict[str, Decimal] = {}
        credited = set()
        for entry in entries:
            ledger = ledgers[entry.ledger_name.lower()]
            if ledger.credit_limit is None:
                continue
            projected.setdefault(ledger.id, ledger.current_balance)
            projected[ledger.id] += signed_delta(ledger.balance_type, entry.entry_type, entry.amount)
            if entry.entry_type is BalanceType.CREDIT:
                credited.add(ledger.id)

        for ledger in ledgers.values():
            if ledger.id not in credited:
                continue
            balance = credit_side_balance(ledger.balance_type, projected[ledger.id])
            if balance > ledger.credit_limit:
                raise ValidationError(
                    f"Credit limit exceeded for ledger: {ledger.name} "
                    f"(limit {format_amount(ledger.credit_limit)}, "
                    f"resulting credit balance {format_amount(balance)})"
                )

    def _apply_entries(self, tenant_id: str, entries: Sequence[VoucherEntry], reverse: bool = False) -> None:
        for entry in entries:
            ledger = self.ledger_manager.get_ledger(tenant_id, entry.ledger_id)
            delta = signed_delta(ledger.balance_type, entry.entry_type, entry.amount)
            self.ledger_manager.apply_delta(tenant_id, ledger.id, -delta if reverse else delta)

    def _load_entries(self, voucher_id: str) -> List[VoucherEntry]:
        entries = [VoucherEntry.from_dict(d) for d in
                   self.storage.find(VOUCHER_ENTRY_TABLE, {'voucher_id': voucher_id})]
        entries.sort(key=lambda e: e.line_no)
        return entries

    def _delete_entries(self, voucher_id: str) -> None:
        for entry in self.storage.find(VOUCHER_ENTRY_TABLE, {'voucher_id': voucher_id}):
            self.storage.delete(VOUCHER_ENTRY_TABLE, entry['id'])

    def _build_entries(self, tenant_id: str, voucher_id: str, entries: Sequence[EntryInput],
                       ledgers: Dict[str, Ledger]) -> List[VoucherEntry]:
        built = []
        for line_no, entry in enumerate(entries, start=1):
            ledger = ledgers[entry.ledger_name.lower()]
            built.append(VoucherEntry(
                id=str(uuid.uuid4()),
                voucher_id=voucher_id,
                tenant_id=tenant_id,
                line_no=line_no,
                ledger_id=ledger.id,
                ledger_name=ledger.name,
                entry_type=entry.entry_type,
                amount=entry.amount,
                ledger_code=entry.ledger_code or ledger.code,
                narration=entry.narration,
                cost_center_id=entry.cost_center_id,
                cost_category_id=entry.cost_category_id
            ))
        return built

    def _save(self, voucher: Voucher) -> None:
        self.storage.save(VOUCHER_TABLE, voucher.id, voucher.to_dict())

    # -- operations --------------------------------------------------------

    def create_voucher(self, tenant_id: str, options: VoucherOptions) -> Voucher:
        """
        Create a voucher and, when auto_post is on, post it

        Args:
            tenant_id: Owning tenant
            options: Voucher fields and entries

        Returns:
            The created Voucher with resolved entries

        Raises:
            ValidationError: malformed or unbalanced entries, credit limit breach
            NotFoundError: unknown voucher type, series, ledger or party ledger
            ConflictError: voucher number already used in its numbering scope
        """
        entries, total = validate_entries(options.entries)
        auto_post = self.default_auto_post if options.auto_post is None else options.auto_post
        voucher_date = to_utc_datetime(options.date) or datetime.now(timezone.utc)
        manual_number = (options.voucher_number or "").strip() or None

        with self.storage.atomic():
            voucher_type = self.type_manager.get_voucher_type(tenant_id, options.voucher_type_id)

            series = None
            if options.numbering_series_id:
                series = self.type_manager.get_numbering_series(tenant_id, options.numbering_series_id)
                if series.voucher_type_id != voucher_type.id:
                    raise ValidationError("Numbering series does not belong to the voucher type")
            else:
                # Manual and generated numbers share the default series scope
                series = self.type_manager.default_series(tenant_id, voucher_type.id)

            ledgers = self._resolve_ledgers(tenant_id, entries)
            if options.party_ledger_id:
                self.ledger_manager.get_ledger(tenant_id, options.party_ledger_id)
            if auto_post:
                self._check_credit_limits(ledgers, entries)

            if manual_number:
                voucher_number = manual_number
                key = number_key(tenant_id, voucher_type.id, series.id if series else None, manual_number)
            else:
                voucher_number, key = self.type_manager.claim_next_number(tenant_id, voucher_type, series)

            try:
                self.storage.insert(VOUCHER_NUMBER_TABLE, key, {"tenant_id": tenant_id})
            except DuplicateRecordError:
                raise ConflictError(f"Voucher number {voucher_number} already exists")

            now = datetime.now(timezone.utc)
            voucher = Voucher(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                tenant_id=tenant_id,
                voucher_number=voucher_number,
                voucher_type_id=voucher_type.id,
                numbering_series_id=series.id if series else None,
                date=voucher_date,
                total_amount=total,
                state=VoucherState.POSTED if auto_post else VoucherState.DRAFT,
                reference=options.reference,
                narration=options.narration,
                party_ledger_id=options.party_ledger_id,
                number_key=key,
                posted_at=now if auto_post else None
            )
            voucher.entries = self._build_entries(tenant_id, voucher.id, entries, ledgers)
            self.storage.insert(VOUCHER_TABLE, voucher.id, voucher.to_dict())
            for entry in voucher.entries:
                self.storage.insert(VOUCHER_ENTRY_TABLE, entry.id, entry.to_dict())

            if auto_post:
                self._apply_entries(tenant_id, voucher.entries)

            self.audit_trail.log_event(
                AuditEventType.VOUCHER_POSTED if auto_post else AuditEventType.VOUCHER_CREATED,
                "voucher", voucher.id,
                {"voucher_number": voucher_number, "total_amount": total,
                 "state": voucher.state.value},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Voucher created: {voucher_number}",
                   tenant_id=tenant_id, action="create_voucher",
                   resource=f"voucher:{voucher.id}",
                   extra={"state": voucher.state.value, "total_amount": format_amount(total),
                          "entries": len(voucher.entries)})
        return voucher

    def get_voucher(self, tenant_id: str, voucher_id: str) -> Voucher:
        data = self.storage.load(VOUCHER_TABLE, voucher_id)
        if not data or data.get('tenant_id') != tenant_id:
            raise NotFoundError(f"Voucher {voucher_id} not found")
        voucher = Voucher.from_dict(data)
        voucher.entries = self._load_entries(voucher.id)
        return voucher

    def _matching(self, tenant_id: str, query: VoucherQuery) -> List[Voucher]:
        from_date = to_utc_datetime(query.from_date, "fromDate")
        to_date = to_utc_datetime(query.to_date, "toDate", end_of_day=True)

        filters: Dict[str, Any] = {'tenant_id': tenant_id}
        if query.voucher_type_id:
            filters['voucher_type_id'] = query.voucher_type_id
        if query.numbering_series_id:
            filters['numbering_series_id'] = query.numbering_series_id
        if query.state:
            filters['state'] = query.state.value

        vouchers = [Voucher.from_dict(d) for d in self.storage.find(VOUCHER_TABLE, filters)]
        if from_date:
            vouchers = [v for v in vouchers if v.date >= from_date]
        if to_date:
            vouchers = [v for v in vouchers if v.date <= to_date]
        vouchers.sort(key=lambda v: (v.date, v.created_at), reverse=True)
        return vouchers

    def find_vouchers(self, tenant_id: str, query: Optional[VoucherQuery] = None) -> List[Voucher]:
        """Every matching voucher with its entries, newest first; ignores limit/offset"""
        vouchers = self._matching(tenant_id, query or VoucherQuery())
        for voucher in vouchers:
            voucher.entries = self._load_entries(voucher.id)
        return vouchers

    def list_vouchers(self, tenant_id: str, query: Optional[VoucherQuery] = None) -> Tuple[List[Voucher], int]:
        """Filtered vouchers, newest first; returns (page, total matching)"""
        query = query or VoucherQuery()
        limit, offset = normalize_page(query.limit, query.offset,
                                       self.default_page_size, self.max_page_size)
        vouchers = self._matching(tenant_id, query)

        page = vouchers[offset:offset + limit]
        for voucher in page:
            voucher.entries = self._load_entries(voucher.id)
        return page, len(vouchers)

    def update_draft_voucher(self, tenant_id: str, voucher_id: str, update: VoucherUpdate) -> Voucher:
        """Edit a DRAFT voucher; POSTED and REVERSED vouchers are immutable"""
        entries = total = None
        if update.entries is not None:
            entries, total = validate_entries(update.entries)

        with self.storage.atomic():
            voucher = self.get_voucher(tenant_id, voucher_id)
            if voucher.state is not VoucherState.DRAFT:
                raise ConflictError("Only draft vouchers can be edited")

            if entries is not None:
                ledgers = self._resolve_ledgers(tenant_id, entries)
                self._delete_entries(voucher.id)
                voucher.entries = self._build_entries(tenant_id, voucher.id, entries, ledgers)
                for entry in voucher.entries:
                    self.storage.insert(VOUCHER_ENTRY_TABLE, entry.id, entry.to_dict())
                voucher.total_amount = total
            if update.party_ledger_id is not None:
                if update.party_ledger_id:
                    self.ledger_manager.get_ledger(tenant_id, update.party_ledger_id)
                voucher.party_ledger_id = update.party_ledger_id or None
            if update.date is not None:
                voucher_date = to_utc_datetime(update.date)
                if voucher_date is None:
                    raise ValidationError("date must be an ISO 8601 date")
                voucher.date = voucher_date
            if update.narration is not None:
                voucher.narration = update.narration
            if update.reference is not None:
                voucher.reference = update.reference

            voucher.updated_at = datetime.now(timezone.utc)
            self._save(voucher)
            self.audit_trail.log_event(
                AuditEventType.VOUCHER_UPDATED, "voucher", voucher.id,
                {"voucher_number": voucher.voucher_number, "total_amount": voucher.total_amount},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Draft voucher updated: {voucher.voucher_number}",
                   tenant_id=tenant_id, action="update_voucher",
                   resource=f"voucher:{voucher.id}")
        return voucher

    def post_voucher(self, tenant_id: str, voucher_id: str) -> Voucher:
        """DRAFT -> POSTED, applying every entry's balance effect"""
        with self.storage.atomic():
            voucher = self.get_voucher(tenant_id, voucher_id)
            if voucher.state is not VoucherState.DRAFT:
                raise ConflictError(f"Voucher {voucher.voucher_number} is already {voucher.state.value.lower()}")

            # Re-validate against the current ledgers
            ledgers = {}
            for entry in voucher.entries:
                ledger = self.ledger_manager.get_ledger(tenant_id, entry.ledger_id)
                ledgers[entry.ledger_name.lower()] = ledger
            self._check_credit_limits(ledgers, voucher.entries)

            self._apply_entries(tenant_id, voucher.entries)
            now = datetime.now(timezone.utc)
            voucher.state = VoucherState.POSTED
            voucher.posted_at = now
            voucher.updated_at = now
            self._save(voucher)
            self.audit_trail.log_event(
                AuditEventType.VOUCHER_POSTED, "voucher", voucher.id,
                {"voucher_number": voucher.voucher_number, "total_amount": voucher.total_amount},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Voucher posted: {voucher.voucher_number}",
                   tenant_id=tenant_id, action="post_voucher",
                   resource=f"voucher:{voucher.id}")
        return voucher

    def delete_voucher(self, tenant_id: str, voucher_id: str) -> Voucher:
        """
        Delete a voucher

        A DRAFT is removed outright and its number released. A POSTED voucher
        has every entry's delta undone and is marked REVERSED, keeping its
        entries for audit. A REVERSED (or missing) voucher raises
        NotFoundError, so a repeated delete never reverses twice.

        Returns:
            The voucher as it was removed, or in its REVERSED state
        """
        with self.storage.atomic():
            voucher = self.get_voucher(tenant_id, voucher_id)
            if voucher.state is VoucherState.REVERSED:
                raise NotFoundError(f"Voucher {voucher_id} not found")
            if voucher.reversed_by_id:
                reversal = self.storage.load(VOUCHER_TABLE, voucher.reversed_by_id)
                if reversal and reversal.get('state') == VoucherState.POSTED.value:
                    raise ConflictError(
                        f"Voucher {voucher.voucher_number} is already reversed by a posted journal"
                    )

            if voucher.state is VoucherState.DRAFT:
                self._delete_entries(voucher.id)
                self.storage.delete(VOUCHER_TABLE, voucher.id)
                if voucher.number_key:
                    self.storage.delete(VOUCHER_NUMBER_TABLE, voucher.number_key)
                event = AuditEventType.VOUCHER_DELETED
            else:
                self._apply_entries(tenant_id, voucher.entries, reverse=True)
                now = datetime.now(timezone.utc)
                voucher.state = VoucherState.REVERSED
                voucher.reversed_at = now
                voucher.updated_at = now
                self._save(voucher)
                event = AuditEventType.VOUCHER_REVERSED

            self.audit_trail.log_event(
                event, "voucher", voucher.id,
                {"voucher_number": voucher.voucher_number, "total_amount": voucher.total_amount},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Voucher {event.value.split('_')[-1]}: {voucher.voucher_number}",
                   tenant_id=tenant_id, action="delete_voucher",
                   resource=f"voucher:{voucher.id}")
        return voucher

    def create_reversing_journal(self, tenant_id: str, voucher_id: str, date: Any = None,
                                 narration: Optional[str] = None) -> Voucher:
        """
        Post a new REVERSING_JOURNAL voucher with every entry's side flipped.
        The original stays POSTED and is linked to its reversal.
        """
        with self.storage.atomic():
            original = self.get_voucher(tenant_id, voucher_id)
            if original.state is not VoucherState.POSTED:
                raise ConflictError("Only posted vouchers can be reversed")
            if original.reversed_by_id:
                raise ConflictError(f"Voucher {original.voucher_number} already has a reversing journal")

            name, category, prefix = REVERSING_JOURNAL_TYPE
            voucher_type = self.type_manager.find_voucher_type_by_category(tenant_id, category)
            if voucher_type is None:
                voucher_type = self.type_manager.create_voucher_type(tenant_id, name, category, prefix=prefix)

            flipped = [
                EntryInput(
                    ledger_name=entry.ledger_name,
                    entry_type=entry.entry_type.opposite,
                    amount=entry.amount,
                    ledger_code=entry.ledger_code,
                    narration=entry.narration,
                    cost_center_id=entry.cost_center_id,
                    cost_category_id=entry.cost_category_id
                )
                for entry in original.entries
            ]
            reversal = self.create_voucher(tenant_id, VoucherOptions(
                voucher_type_id=voucher_type.id,
                entries=flipped,
                date=date,
                narration=narration or f"Reversal of {original.voucher_number}",
                reference=original.voucher_number,
                party_ledger_id=original.party_ledger_id,
                auto_post=True
            ))
            reversal.reversal_of_id = original.id
            self._save(reversal)

            original.reversed_by_id = reversal.id
            original.updated_at = datetime.now(timezone.utc)
            self._save(original)

        log_action(self.logger, "info", f"Reversing journal {reversal.voucher_number} "
                   f"for {original.voucher_number}",
                   tenant_id=tenant_id, action="reverse_voucher",
                   resource=f"voucher:{original.id}")
        return reversal
