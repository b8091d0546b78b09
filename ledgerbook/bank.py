"""
Mock Bank Accounts and Transactions

Single-entry analog of voucher posting: each Transaction is linked 1:1 to a
balance delta on its MockBankAccount. CREDIT adds the amount, DEBIT
subtracts it. Creating or deleting a transaction and moving the balance
happen in one storage transaction; the balance move is an atomic increment.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .audit import AuditEventType, AuditTrail
from .errors import ConflictError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .money import ZERO, format_amount, parse_amount, parse_money
from .storage import StorageInterface, StorageRecord
from .utils import normalize_page, to_utc_datetime


class TransactionType(Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


def parse_transaction_type(value: Any) -> TransactionType:
    if isinstance(value, TransactionType):
        return value
    if isinstance(value, str) and value.strip().upper() in TransactionType.__members__:
        return TransactionType[value.strip().upper()]
    raise ValidationError("Transaction type must be CREDIT or DEBIT")


@dataclass
class MockBankAccount(StorageRecord):
    tenant_id: str
    account_name: str
    balance: Decimal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MockBankAccount':
        data = dict(data)
        data['balance'] = Decimal(data['balance'])
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "accountName": self.account_name,
            "balance": format_amount(self.balance),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class Transaction(StorageRecord):
    tenant_id: str
    account_id: str
    amount: Decimal
    type: TransactionType
    description: str
    date: datetime

    @property
    def delta(self) -> Decimal:
        """Balance effect of this transaction on its account"""
        return self.amount if self.type is TransactionType.CREDIT else -self.amount

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        data = dict(data)
        data['amount'] = Decimal(data['amount'])
        data['type'] = TransactionType(data['type'])
        if isinstance(data.get('date'), str):
            data['date'] = datetime.fromisoformat(data['date'])
        return super().from_dict(data)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "accountId": self.account_id,
            "amount": format_amount(self.amount),
            "type": self.type.value,
            "description": self.description,
            "date": self.date.isoformat(),
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class TransactionQuery:
    """Allowed filters for listing transactions"""
    account_id: Optional[str] = None
    type: Optional[TransactionType] = None
    start_date: Any = None
    end_date: Any = None
    limit: Optional[int] = None
    offset: Optional[int] = None


class BankAccountService:
    """Mock bank accounts and their balance-moving transactions"""

    ACCOUNT_TABLE = "bank_accounts"
    TRANSACTION_TABLE = "bank_transactions"

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 default_page_size: int = 50, max_page_size: int = 200):
        self.storage = storage
        self.audit_trail = audit_trail
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.logger = get_logger("ledgerbook.bank")

    # Accounts

    def create_account(self, tenant_id: str, account_name: str, balance: Any = ZERO) -> MockBankAccount:
        if not account_name or not account_name.strip():
            raise ValidationError("Account name is required")
        opening = parse_money(balance if balance is not None else ZERO, "balance")

        now = datetime.now(timezone.utc)
        account = MockBankAccount(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            tenant_id=tenant_id,
            account_name=account_name.strip(),
            balance=opening
        )
        with self.storage.atomic():
            self.storage.insert(self.ACCOUNT_TABLE, account.id, account.to_dict())
            self.audit_trail.log_event(
                AuditEventType.ACCOUNT_CREATED, "bank_account", account.id,
                {"account_name": account.account_name, "balance": opening},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Bank account created: {account.account_name}",
                   tenant_id=tenant_id, action="create_account",
                   resource=f"bank_account:{account.id}")
        return account

    def get_account(self, tenant_id: str, account_id: str) -> MockBankAccount:
        data = self.storage.load(self.ACCOUNT_TABLE, account_id)
        if not data or data.get('tenant_id') != tenant_id:
            raise NotFoundError("Account not found")
        return MockBankAccount.from_dict(data)

    def list_accounts(self, tenant_id: str) -> List[MockBankAccount]:
        accounts = [MockBankAccount.from_dict(d) for d in
                    self.storage.find(self.ACCOUNT_TABLE, {'tenant_id': tenant_id})]
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    def rename_account(self, tenant_id: str, account_id: str, account_name: str) -> MockBankAccount:
        """Only the name is editable; balances move through transactions"""
        if not account_name or not account_name.strip():
            raise ValidationError("Account name is required")
        with self.storage.atomic():
            account = self.get_account(tenant_id, account_id)
            account.account_name = account_name.strip()
            account.updated_at = datetime.now(timezone.utc)
            self.storage.save(self.ACCOUNT_TABLE, account.id, account.to_dict())
            self.audit_trail.log_event(
                AuditEventType.ACCOUNT_UPDATED, "bank_account", account.id,
                {"account_name": account.account_name}, tenant_id=tenant_id
            )
        return account

    def delete_account(self, tenant_id: str, account_id: str) -> None:
        with self.storage.atomic():
            account = self.get_account(tenant_id, account_id)
            if self.storage.find(self.TRANSACTION_TABLE, {'account_id': account_id}):
                raise ConflictError("Cannot delete account with existing transactions")
            self.storage.delete(self.ACCOUNT_TABLE, account_id)
            self.audit_trail.log_event(
                AuditEventType.ACCOUNT_DELETED, "bank_account", account_id,
                {"account_name": account.account_name}, tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Bank account deleted: {account.account_name}",
                   tenant_id=tenant_id, action="delete_account",
                   resource=f"bank_account:{account_id}")

    # Transactions

    def create_transaction(self, tenant_id: str, account_id: str, amount: Any, type: Any,
                           description: str, date: Any = None) -> Transaction:
        """
        Record a transaction and move the account balance

        Args:
            tenant_id: Calling tenant; the account must belong to it
            account_id: Target mock bank account
            amount: Positive amount with at most two decimal places
            type: CREDIT (adds) or DEBIT (subtracts)
            description: Free text, required
            date: Transaction date, defaults to now

        Returns:
            Created Transaction
        """
        value = parse_amount(amount)
        txn_type = parse_transaction_type(type)
        if not description or not str(description).strip():
            raise ValidationError("Description is required")
        txn_date = to_utc_datetime(date) or datetime.now(timezone.utc)

        now = datetime.now(timezone.utc)
        with self.storage.atomic():
            self.get_account(tenant_id, account_id)
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                tenant_id=tenant_id,
                account_id=account_id,
                amount=value,
                type=txn_type,
                description=str(description).strip(),
                date=txn_date
            )
            self.storage.insert(self.TRANSACTION_TABLE, transaction.id, transaction.to_dict())
            new_balance = self.storage.increment(self.ACCOUNT_TABLE, account_id, 'balance', transaction.delta)
            self.audit_trail.log_event(
                AuditEventType.TRANSACTION_CREATED, "bank_transaction", transaction.id,
                {"account_id": account_id, "type": txn_type.value, "amount": value,
                 "balance": new_balance},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Transaction created: {txn_type.value} {format_amount(value)}",
                   tenant_id=tenant_id, action="create_transaction",
                   resource=f"bank_transaction:{transaction.id}",
                   extra={"account_id": account_id, "balance": format_amount(new_balance)})
        return transaction

    def get_transaction(self, tenant_id: str, transaction_id: str) -> Transaction:
        data = self.storage.load(self.TRANSACTION_TABLE, transaction_id)
        if not data or data.get('tenant_id') != tenant_id:
            raise NotFoundError("Transaction not found")
        return Transaction.from_dict(data)

    def delete_transaction(self, tenant_id: str, transaction_id: str) -> Transaction:
        """Undo the balance effect and delete; a second call raises NotFoundError"""
        with self.storage.atomic():
            transaction = self.get_transaction(tenant_id, transaction_id)
            new_balance = self.storage.increment(self.ACCOUNT_TABLE, transaction.account_id,
                                                 'balance', -transaction.delta)
            self.storage.delete(self.TRANSACTION_TABLE, transaction.id)
            self.audit_trail.log_event(
                AuditEventType.TRANSACTION_DELETED, "bank_transaction", transaction.id,
                {"account_id": transaction.account_id, "type": transaction.type.value,
                 "amount": transaction.amount, "balance": new_balance},
                tenant_id=tenant_id
            )

        log_action(self.logger, "info", f"Transaction deleted: {transaction.id}",
                   tenant_id=tenant_id, action="delete_transaction",
                   resource=f"bank_transaction:{transaction.id}",
                   extra={"account_id": transaction.account_id, "balance": format_amount(new_balance)})
        return transaction

    def get_transactions(self, tenant_id: str,
                         query: Optional[TransactionQuery] = None) -> Tuple[List[Transaction], int]:
        """
        Filtered, paginated transactions ordered by date descending.

        Returns:
            (page, total) where total counts the whole filtered set
        """
        query = query or TransactionQuery()
        limit, offset = normalize_page(query.limit, query.offset,
                                       self.default_page_size, self.max_page_size)
        start = to_utc_datetime(query.start_date, "startDate")
        end = to_utc_datetime(query.end_date, "endDate", end_of_day=True)

        filters: Dict[str, Any] = {'tenant_id': tenant_id}
        if query.account_id:
            filters['account_id'] = query.account_id
        if query.type:
            filters['type'] = parse_transaction_type(query.type).value

        transactions = [Transaction.from_dict(d) for d in
                        self.storage.find(self.TRANSACTION_TABLE, filters)]
        if start:
            transactions = [t for t in transactions if t.date >= start]
        if end:
            transactions = [t for t in transactions if t.date <= end]
        transactions.sort(key=lambda t: (t.date, t.created_at), reverse=True)

        return transactions[offset:offset + limit], len(transactions)
