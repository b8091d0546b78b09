"""
Test suite for mock bank accounts and transactions
"""

import pytest
from decimal import Decimal

from ledgerbook.audit import AuditEventType, AuditTrail
from ledgerbook.bank import BankAccountService, TransactionQuery, TransactionType
from ledgerbook.errors import ConflictError, NotFoundError, ValidationError
from ledgerbook.storage import InMemoryStorage


TENANT = "tenant-1"


class TestBankAccounts:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.service = BankAccountService(self.storage, self.audit_trail)

    def test_create_account(self):
        account = self.service.create_account(TENANT, "  Current Account ", "1000")
        assert account.account_name == "Current Account"
        assert account.balance == Decimal("1000.00")
        assert self.service.get_account(TENANT, account.id).balance == Decimal("1000.00")
        assert self.service.create_account(TENANT, "Savings").balance == Decimal("0.00")

    def test_account_name_required(self):
        with pytest.raises(ValidationError):
            self.service.create_account(TENANT, "")

    def test_account_is_tenant_scoped(self):
        account = self.service.create_account(TENANT, "Current", "1000")
        with pytest.raises(NotFoundError) as exc_info:
            self.service.get_account("tenant-2", account.id)
        assert exc_info.value.message == "Account not found"
        assert self.service.list_accounts("tenant-2") == []

    def test_rename_account(self):
        account = self.service.create_account(TENANT, "Current", "1000")
        renamed = self.service.rename_account(TENANT, account.id, "Operating")
        assert renamed.account_name == "Operating"
        assert renamed.balance == Decimal("1000.00")

    def test_delete_account(self):
        account = self.service.create_account(TENANT, "Current", "1000")
        self.service.create_transaction(TENANT, account.id, "10", "CREDIT", "Deposit")
        with pytest.raises(ConflictError):
            self.service.delete_account(TENANT, account.id)

        empty = self.service.create_account(TENANT, "Spare")
        self.service.delete_account(TENANT, empty.id)
        with pytest.raises(NotFoundError):
            self.service.get_account(TENANT, empty.id)


class TestTransactions:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.service = BankAccountService(self.storage, self.audit_trail)
        self.account = self.service.create_account(TENANT, "Current", "1000")

    def balance(self):
        return self.service.get_account(TENANT, self.account.id).balance

    def test_debit_then_delete_restores_balance(self):
        txn = self.service.create_transaction(TENANT, self.account.id, "200", "DEBIT", "Rent")
        assert txn.type is TransactionType.DEBIT
        assert self.balance() == Decimal("800.00")

        self.service.delete_transaction(TENANT, txn.id)
        assert self.balance() == Decimal("1000.00")

    def test_credit_adds(self):
        self.service.create_transaction(TENANT, self.account.id, "250.50", "credit", "Deposit")
        assert self.balance() == Decimal("1250.50")

    def test_double_delete_raises_not_found(self):
        txn = self.service.create_transaction(TENANT, self.account.id, "200", "DEBIT", "Rent")
        self.service.delete_transaction(TENANT, txn.id)
        with pytest.raises(NotFoundError):
            self.service.delete_transaction(TENANT, txn.id)
        assert self.balance() == Decimal("1000.00")

    def test_foreign_account_rejected(self):
        with pytest.raises(NotFoundError):
            self.service.create_transaction("tenant-2", self.account.id, "200", "DEBIT", "Rent")
        assert self.balance() == Decimal("1000.00")

    @pytest.mark.parametrize("amount,type_,description", [
        ("0", "DEBIT", "Rent"),
        ("-5", "DEBIT", "Rent"),
        ("1.234", "DEBIT", "Rent"),
        ("10", "TRANSFER", "Rent"),
        ("10", "DEBIT", "  "),
    ])
    def test_invalid_transaction(self, amount, type_, description):
        with pytest.raises(ValidationError):
            self.service.create_transaction(TENANT, self.account.id, amount, type_, description)
        assert self.balance() == Decimal("1000.00")

    def test_events_recorded(self):
        txn = self.service.create_transaction(TENANT, self.account.id, "200", "DEBIT", "Rent")
        self.service.delete_transaction(TENANT, txn.id)
        events = self.audit_trail.get_events_for_entity("bank_transaction", txn.id)
        assert [e.event_type for e in events] == [
            AuditEventType.TRANSACTION_CREATED, AuditEventType.TRANSACTION_DELETED
        ]
        assert events[1].metadata["balance"] == "1000.00"

    def test_pagination_total_ignores_window(self):
        for day in range(1, 8):
            self.service.create_transaction(TENANT, self.account.id, "10", "CREDIT",
                                            f"Deposit {day}", date=f"2024-05-0{day}")

        page, total = self.service.get_transactions(TENANT, TransactionQuery(limit=3, offset=0))
        assert total == 7
        assert [t.description for t in page] == ["Deposit 7", "Deposit 6", "Deposit 5"]

        page, total = self.service.get_transactions(TENANT, TransactionQuery(limit=3, offset=6))
        assert total == 7
        assert len(page) == 1

    def test_filters(self):
        other = self.service.create_account(TENANT, "Savings")
        self.service.create_transaction(TENANT, self.account.id, "10", "CREDIT", "a", date="2024-05-01")
        self.service.create_transaction(TENANT, self.account.id, "10", "DEBIT", "b", date="2024-05-02")
        self.service.create_transaction(TENANT, other.id, "10", "CREDIT", "c", date="2024-05-03")

        _, total = self.service.get_transactions(TENANT, TransactionQuery(account_id=self.account.id))
        assert total == 2
        _, total = self.service.get_transactions(TENANT, TransactionQuery(type="CREDIT"))
        assert total == 2
        page, total = self.service.get_transactions(
            TENANT, TransactionQuery(start_date="2024-05-02", end_date="2024-05-02"))
        assert total == 1
        assert page[0].description == "b"

    def test_invalid_filters(self):
        with pytest.raises(ValidationError):
            self.service.get_transactions(TENANT, TransactionQuery(start_date="yesterday"))
        with pytest.raises(ValidationError):
            self.service.get_transactions(TENANT, TransactionQuery(limit=0))
