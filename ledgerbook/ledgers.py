"""
Ledger Store

Named accounts ("ledgers") with a running balance. A ledger's balance is
kept on its natural side: for a DEBIT-natured ledger (cash, bank, debtors,
expenses) a DEBIT entry increases the balance, for a CREDIT-natured ledger
(capital, loans, creditors, income) a CREDIT entry does.

current_balance is only ever moved through apply_delta(), an atomic relative
increment performed by the storage backend. At any quiescent point

    current_balance == opening_balance + sum(signed POSTED entry amounts)

which reconcile() verifies.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .audit import AuditEventType, AuditTrail
from .errors import ConflictError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .money import ZERO, format_amount, parse_money, quantize
from .storage import DuplicateRecordError, StorageInterface, StorageRecord


LEDGER_TABLE = "ledgers"
LEDGER_NAME_TABLE = "ledger_names"  # unique (tenant, lower(name)) keys
VOUCHER_TABLE = "vouchers"
VOUCHER_ENTRY_TABLE = "voucher_entries"


class BalanceType(Enum):
    """Debit/credit side; also the side of a voucher entry"""
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"

    @property
    def opposite(self) -> 'BalanceType':
        return BalanceType.CREDIT if self is BalanceType.DEBIT else BalanceType.DEBIT


class LedgerSubtype(Enum):
    """Ledger classification"""
    CASH = "CASH"
    BANK = "BANK"
    CUSTOMER = "CUSTOMER"          # Sundry debtor
    SUPPLIER = "SUPPLIER"          # Sundry creditor
    SALES = "SALES"
    PURCHASE = "PURCHASE"
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    DUTIES_TAXES = "DUTIES_TAXES"
    CAPITAL = "CAPITAL"
    LOAN = "LOAN"
    STOCK = "STOCK"
    OTHER = "OTHER"


NATURAL_SIDE = {
    LedgerSubtype.CASH: BalanceType.DEBIT,
    LedgerSubtype.BANK: BalanceType.DEBIT,
    LedgerSubtype.CUSTOMER: BalanceType.DEBIT,
    LedgerSubtype.PURCHASE: BalanceType.DEBIT,
    LedgerSubtype.EXPENSE: BalanceType.DEBIT,
    LedgerSubtype.STOCK: BalanceType.DEBIT,
    LedgerSubtype.OTHER: BalanceType.DEBIT,
    LedgerSubtype.SUPPLIER: BalanceType.CREDIT,
    LedgerSubtype.SALES: BalanceType.CREDIT,
    LedgerSubtype.INCOME: BalanceType.CREDIT,
    LedgerSubtype.DUTIES_TAXES: BalanceType.CREDIT,
    LedgerSubtype.CAPITAL: BalanceType.CREDIT,
    LedgerSubtype.LOAN: BalanceType.CREDIT,
}

# Tally-style chart of account groups
GROUP_SUBTYPES = {
    "capital accounts": LedgerSubtype.CAPITAL,
    "capital account": LedgerSubtype.CAPITAL,
    "loans (secured/unsecured)": LedgerSubtype.LOAN,
    "loans": LedgerSubtype.LOAN,
    "secured loans": LedgerSubtype.LOAN,
    "unsecured loans": LedgerSubtype.LOAN,
    "current liabilities": LedgerSubtype.SUPPLIER,
    "sundry creditors": LedgerSubtype.SUPPLIER,
    "duties & taxes": LedgerSubtype.DUTIES_TAXES,
    "duties and taxes": LedgerSubtype.DUTIES_TAXES,
    "provisions": LedgerSubtype.SUPPLIER,
    "bank accounts": LedgerSubtype.BANK,
    "cash-in-hand": LedgerSubtype.CASH,
    "cash in hand": LedgerSubtype.CASH,
    "current assets": LedgerSubtype.OTHER,
    "sundry debtors": LedgerSubtype.CUSTOMER,
    "investments": LedgerSubtype.OTHER,
    "stock-in-hand": LedgerSubtype.STOCK,
    "purchase accounts": LedgerSubtype.PURCHASE,
    "sales accounts": LedgerSubtype.SALES,
    "direct expenses": LedgerSubtype.EXPENSE,
    "indirect expenses": LedgerSubtype.EXPENSE,
    "direct incomes": LedgerSubtype.INCOME,
    "indirect incomes": LedgerSubtype.INCOME,
}

DEFAULT_LEDGERS = [
    ("Cash", LedgerSubtype.CASH, "Cash-in-hand"),
    ("Petty Cash", LedgerSubtype.CASH, "Cash-in-hand"),
    ("Primary Bank", LedgerSubtype.BANK, "Bank Accounts"),
    ("Sales", LedgerSubtype.SALES, "Sales Accounts"),
    ("Purchases", LedgerSubtype.PURCHASE, "Purchase Accounts"),
    ("Capital Account", LedgerSubtype.CAPITAL, "Capital Accounts"),
    ("Opening Stock", LedgerSubtype.STOCK, "Stock-in-hand"),
]


def subtype_for_group(group: Optional[str]) -> LedgerSubtype:
    """Infer a ledger subtype from a Tally group name"""
    if not group:
        return LedgerSubtype.OTHER
    return GROUP_SUBTYPES.get(group.strip().lower(), LedgerSubtype.OTHER)


def signed_delta(balance_type: BalanceType, entry_type: BalanceType, amount: Decimal) -> Decimal:
    """Balance effect of one entry on a ledger with the given natural side"""
    return amount if entry_type is balance_type else -amount


def credit_side_balance(balance_type: BalanceType, balance: Decimal) -> Decimal:
    """How far a balance sits on the credit side (zero when in debit)"""
    if balance_type is BalanceType.CREDIT:
        return max(balance, ZERO)
    return max(-balance, ZERO)


@dataclass
class Ledger(StorageRecord):
    """A tenant-owned named account with a running balance"""
    tenant_id: str
    name: str
    subtype: LedgerSubtype
    balance_type: BalanceType
    opening_balance: Decimal
    current_balance: Decimal
    group: Optional[str] = None
    code: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    credit_limit: Optional[Decimal] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Ledger':
        data = dict(data)
        data['subtype'] = LedgerSubtype(data['subtype'])
        data['balance_type'] = BalanceType(data['balance_type'])
        data['opening_balance'] = Decimal(data['opening_balance'])
        data['current_balance'] = Decimal(data['current_balance'])
        if data.get('credit_limit') is not None:
            data['credit_limit'] = Decimal(data['credit_limit'])
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "subtype": self.subtype.value,
            "balanceType": self.balance_type.value,
            "openingBalance": format_amount(self.opening_balance),
            "currentBalance": format_amount(self.current_balance),
            "group": self.group,
            "code": self.code,
            "email": self.email,
            "phone": self.phone,
            "creditLimit": format_amount(self.credit_limit) if self.credit_limit is not None else None,
            "description": self.description,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class LedgerDiscrepancy:
    """A ledger whose stored balance disagrees with its posted entries"""
    ledger_id: str
    name: str
    stored_balance: Decimal
    expected_balance: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored_balance - self.expected_balance


class LedgerManager:
    """
    Tenant-scoped ledger registry

    Names are unique per tenant (case-insensitive); the uniqueness is held by
    an insert-only key table so it survives concurrent creates.
    """

    UPDATABLE_FIELDS = ('name', 'group', 'code', 'email', 'phone', 'credit_limit', 'description')

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.logger = get_logger("ledgerbook.ledgers")

    @staticmethod
    def _name_key(tenant_id: str, name: str) -> str:
        return f"{tenant_id}|{name.strip().lower()}"

    def _claim_name(self, tenant_id: str, name: str, ledger_id: str) -> None:
        try:
            self.storage.insert(LEDGER_NAME_TABLE, self._name_key(tenant_id, name),
                                {"tenant_id": tenant_id, "ledger_id": ledger_id})
        except DuplicateRecordError:
            raise ConflictError(f"Ledger '{name}' already exists")

    def create_ledger(
        self,
        tenant_id: str,
        name: str,
        subtype: LedgerSubtype = LedgerSubtype.OTHER,
        opening_balance: Any = ZERO,
        balance_type: Optional[BalanceType] = None,
        opening_balance_type: Optional[BalanceType] = None,
        group: Optional[str] = None,
        code: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        credit_limit: Any = None,
        description: Optional[str] = None
    ) -> Ledger:
        """
        Create a ledger

        Args:
            tenant_id: Owning tenant
            name: Ledger name, unique within the tenant
            subtype: Classification; decides the natural side unless balance_type is given
            opening_balance: Opening amount (non-negative when opening_balance_type is given)
            balance_type: Natural balance side override
            opening_balance_type: Side the opening amount sits on; an opening on the
                side opposite the natural one is stored as a negative balance
            credit_limit: Optional ceiling for the credit-side balance

        Returns:
            Created Ledger
        """
        if not name or not name.strip():
            raise ValidationError("Ledger name is required")
        name = name.strip()
        natural = balance_type or NATURAL_SIDE[subtype]

        opening = parse_money(opening_balance if opening_balance is not None else ZERO,
                              "openingBalance")
        if opening_balance_type is not None:
            opening = abs(opening)
            if opening_balance_type is not natural:
                opening = -opening

        limit = None
        if credit_limit is not None and credit_limit != "":
            limit = parse_money(credit_limit, "creditLimit")
            if limit < ZERO:
                raise ValidationError("creditLimit cannot be negative")

        now = datetime.now(timezone.utc)
        ledger = Ledger(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            name=name,
            subtype=subtype,
            balance_type=natural,
            opening_balance=opening,
            current_balance=opening,
            group=group,
            code=code,
            email=email,
            phone=phone,
            credit_limit=limit,
            description=description
        )

        with self.storage.atomic():
            self._claim_name(tenant_id, name, ledger.id)
            self.storage.insert(LEDGER_TABLE, ledger.id, ledger.to_dict())
            self.audit_trail.log_event(
                AuditEventType.LEDGER_CREATED, "ledger", ledger.id,
                {"name": name, "subtype": subtype.value,
                 "opening_balance": format_amount(opening)},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Ledger created: {name}",
                   tenant_id=tenant_id, action="create_ledger",
                   resource=f"ledger:{ledger.id}",
                   extra={"subtype": subtype.value, "opening_balance": format_amount(opening)})
        return ledger

    def get_ledger(self, tenant_id: str, ledger_id: str) -> Ledger:
        data = self.storage.load(LEDGER_TABLE, ledger_id)
        if not data or data.get('tenant_id') != tenant_id:
            raise NotFoundError(f"Ledger {ledger_id} not found")
        return Ledger.from_dict(data)

    def find_ledger_by_name(self, tenant_id: str, name: str) -> Optional[Ledger]:
        if not name:
            return None
        key = self.storage.load(LEDGER_NAME_TABLE, self._name_key(tenant_id, name))
        if not key:
            return None
        data = self.storage.load(LEDGER_TABLE, key['ledger_id'])
        return Ledger.from_dict(data) if data else None

    def get_ledger_by_name(self, tenant_id: str, name: str) -> Ledger:
        ledger = self.find_ledger_by_name(tenant_id, name)
        if not ledger:
            raise NotFoundError(f"Ledger not found: {name}")
        return ledger

    def list_ledgers(self, tenant_id: str, subtype: Optional[LedgerSubtype] = None) -> List[Ledger]:
        filters: Dict[str, Any] = {'tenant_id': tenant_id}
        if subtype:
            filters['subtype'] = subtype.value
        ledgers = [Ledger.from_dict(d) for d in self.storage.find(LEDGER_TABLE, filters)]
        ledgers.sort(key=lambda l: l.name.lower())
        return ledgers

    def update_ledger(self, tenant_id: str, ledger_id: str, **changes) -> Ledger:
        """Update descriptive fields; balances and sides are never editable"""
        unknown = set(changes) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        with self.storage.atomic():
            ledger = self.get_ledger(tenant_id, ledger_id)
            new_name = changes.get('name')
            if new_name is not None:
                new_name = new_name.strip()
                if not new_name:
                    raise ValidationError("Ledger name is required")
                if new_name.lower() != ledger.name.lower():
                    self._claim_name(tenant_id, new_name, ledger.id)
                    self.storage.delete(LEDGER_NAME_TABLE, self._name_key(tenant_id, ledger.name))
                changes['name'] = new_name

            if 'credit_limit' in changes and changes['credit_limit'] not in (None, ""):
                changes['credit_limit'] = parse_money(changes['credit_limit'], "creditLimit")
                if changes['credit_limit'] < ZERO:
                    raise ValidationError("creditLimit cannot be negative")
            elif 'credit_limit' in changes:
                changes['credit_limit'] = None

            for key, value in changes.items():
                setattr(ledger, key, value)
            ledger.updated_at = datetime.now(timezone.utc)
            self.storage.save(LEDGER_TABLE, ledger.id, ledger.to_dict())
            self.audit_trail.log_event(
                AuditEventType.LEDGER_UPDATED, "ledger", ledger.id,
                {"fields": sorted(changes)}, tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Ledger updated: {ledger.name}",
                   tenant_id=tenant_id, action="update_ledger",
                   resource=f"ledger:{ledger.id}")
        return ledger

    def is_referenced(self, ledger_id: str) -> bool:
        if self.storage.find(VOUCHER_ENTRY_TABLE, {'ledger_id': ledger_id}):
            return True
        return bool(self.storage.find(VOUCHER_TABLE, {'party_ledger_id': ledger_id}))

    def delete_ledger(self, tenant_id: str, ledger_id: str) -> None:
        with self.storage.atomic():
            ledger = self.get_ledger(tenant_id, ledger_id)
            if self.is_referenced(ledger_id):
                raise ConflictError("Cannot delete ledger with existing voucher entries")
            self.storage.delete(LEDGER_TABLE, ledger_id)
            self.storage.delete(LEDGER_NAME_TABLE, self._name_key(tenant_id, ledger.name))
            self.audit_trail.log_event(
                AuditEventType.LEDGER_DELETED, "ledger", ledger_id,
                {"name": ledger.name}, tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Ledger deleted: {ledger.name}",
                   tenant_id=tenant_id, action="delete_ledger",
                   resource=f"ledger:{ledger_id}")

    def bootstrap_default_ledgers(self, tenant_id: str) -> List[Ledger]:
        """Seed the standard ledgers for a tenant that has none"""
        if self.storage.find(LEDGER_TABLE, {'tenant_id': tenant_id}):
            return []
        with self.storage.atomic():
            return [
                self.create_ledger(tenant_id, name, subtype, group=group)
                for name, subtype, group in DEFAULT_LEDGERS
            ]

    def apply_delta(self, tenant_id: str, ledger_id: str, delta: Decimal) -> Decimal:
        """Atomically move a ledger's current balance by delta"""
        if not self.storage.exists(LEDGER_TABLE, ledger_id):
            raise NotFoundError(f"Ledger {ledger_id} not found")
        new_balance = self.storage.increment(LEDGER_TABLE, ledger_id, 'current_balance', quantize(delta))
        self.logger.debug(f"Ledger {ledger_id} moved by {delta} to {new_balance}")
        return new_balance

    def _posted_sums(self, tenant_id: str) -> Dict[str, Decimal]:
        posted = {
            v['id'] for v in self.storage.find(VOUCHER_TABLE, {'tenant_id': tenant_id})
            if v.get('state') == "POSTED"
        }
        sums: Dict[str, Decimal] = {}
        ledgers = {l.id: l for l in self.list_ledgers(tenant_id)}
        for entry in self.storage.find(VOUCHER_ENTRY_TABLE, {'tenant_id': tenant_id}):
            if entry['voucher_id'] not in posted:
                continue
            ledger = ledgers.get(entry['ledger_id'])
            if ledger is None:
                continue
            delta = signed_delta(ledger.balance_type, BalanceType(entry['entry_type']),
                                 Decimal(entry['amount']))
            sums[ledger.id] = sums.get(ledger.id, ZERO) + delta
        return sums

    def reconcile(self, tenant_id: str) -> List[LedgerDiscrepancy]:
        """
        Recompute every ledger balance from its opening balance and POSTED
        entries and return the ledgers whose stored balance disagrees.
        An empty list means the books reconcile.
        """
        sums = self._posted_sums(tenant_id)
        discrepancies = []
        for ledger in self.list_ledgers(tenant_id):
            expected = ledger.opening_balance + sums.get(ledger.id, ZERO)
            if expected != ledger.current_balance:
                discrepancies.append(LedgerDiscrepancy(
                    ledger_id=ledger.id,
                    name=ledger.name,
                    stored_balance=ledger.current_balance,
                    expected_balance=expected
                ))
        if discrepancies:
            log_action(self.logger, "warning", "Ledger reconciliation found discrepancies",
                       tenant_id=tenant_id, action="reconcile",
                       extra={"ledgers": [d.name for d in discrepancies]})
        return discrepancies

    def trial_balance(self, tenant_id: str) -> Dict[str, Any]:
        """Per-ledger debit/credit columns with totals"""
        rows = []
        total_debit = ZERO
        total_credit = ZERO
        for ledger in self.list_ledgers(tenant_id):
            side = ledger.balance_type if ledger.current_balance >= ZERO else ledger.balance_type.opposite
            amount = abs(ledger.current_balance)
            debit = amount if side is BalanceType.DEBIT else ZERO
            credit = amount if side is BalanceType.CREDIT else ZERO
            total_debit += debit
            total_credit += credit
            rows.append({
                "ledgerId": ledger.id,
                "name": ledger.name,
                "subtype": ledger.subtype.value,
                "debit": format_amount(debit),
                "credit": format_amount(credit),
            })
        return {
            "rows": rows,
            "totalDebit": format_amount(total_debit),
            "totalCredit": format_amount(total_credit),
            "difference": format_amount(total_debit - total_credit),
        }
