"""
Tests for the ledger store
"""

import pytest
from decimal import Decimal

from ledgerbook.audit import AuditTrail
from ledgerbook.errors import ConflictError, NotFoundError, ValidationError
from ledgerbook.ledgers import (
    LEDGER_TABLE, BalanceType, LedgerManager, LedgerSubtype, signed_delta, subtype_for_group
)
from ledgerbook.storage import InMemoryStorage
from ledgerbook.vouchers import EntryInput, VoucherEngine, VoucherOptions, VoucherTypeManager


TENANT = "tenant-1"


class TestSignConvention:

    def test_debit_natured_ledger(self):
        assert signed_delta(BalanceType.DEBIT, BalanceType.DEBIT, Decimal("100")) == Decimal("100")
        assert signed_delta(BalanceType.DEBIT, BalanceType.CREDIT, Decimal("100")) == Decimal("-100")

    def test_credit_natured_ledger(self):
        assert signed_delta(BalanceType.CREDIT, BalanceType.CREDIT, Decimal("100")) == Decimal("100")
        assert signed_delta(BalanceType.CREDIT, BalanceType.DEBIT, Decimal("100")) == Decimal("-100")

    def test_subtype_for_group(self):
        assert subtype_for_group("Sundry Debtors") == LedgerSubtype.CUSTOMER
        assert subtype_for_group("  bank accounts ") == LedgerSubtype.BANK
        assert subtype_for_group("Unknown Group") == LedgerSubtype.OTHER
        assert subtype_for_group(None) == LedgerSubtype.OTHER


class TestLedgerManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = LedgerManager(self.storage, self.audit_trail)

    def test_create_ledger_derives_natural_side(self):
        cash = self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH, opening_balance="1000")
        capital = self.manager.create_ledger(TENANT, "Capital", LedgerSubtype.CAPITAL)

        assert cash.balance_type == BalanceType.DEBIT
        assert cash.opening_balance == Decimal("1000.00")
        assert cash.current_balance == Decimal("1000.00")
        assert capital.balance_type == BalanceType.CREDIT

    def test_opening_on_opposite_side_is_negative(self):
        ledger = self.manager.create_ledger(
            TENANT, "Overdrawn Bank", LedgerSubtype.BANK,
            opening_balance="250", opening_balance_type=BalanceType.CREDIT
        )
        assert ledger.opening_balance == Decimal("-250.00")

    def test_duplicate_name_case_insensitive(self):
        self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        with pytest.raises(ConflictError) as exc_info:
            self.manager.create_ledger(TENANT, "cash", LedgerSubtype.CASH)
        assert "already exists" in exc_info.value.message

    def test_same_name_in_other_tenant(self):
        self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        other = self.manager.create_ledger("tenant-2", "Cash", LedgerSubtype.CASH)
        assert other.tenant_id == "tenant-2"

    def test_lookup_is_tenant_scoped(self):
        ledger = self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        with pytest.raises(NotFoundError):
            self.manager.get_ledger("tenant-2", ledger.id)
        with pytest.raises(NotFoundError) as exc_info:
            self.manager.get_ledger_by_name(TENANT, "Bank")
        assert exc_info.value.message == "Ledger not found: Bank"
        assert self.manager.get_ledger_by_name(TENANT, "CASH").id == ledger.id

    def test_invalid_input(self):
        with pytest.raises(ValidationError):
            self.manager.create_ledger(TENANT, "  ")
        with pytest.raises(ValidationError):
            self.manager.create_ledger(TENANT, "Party", credit_limit="-1")

    def test_update_descriptive_fields_and_rename(self):
        ledger = self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        updated = self.manager.update_ledger(TENANT, ledger.id, name="Cash in Hand",
                                             email="cash@example.com", credit_limit="500")

        assert updated.name == "Cash in Hand"
        assert updated.credit_limit == Decimal("500.00")
        assert self.manager.find_ledger_by_name(TENANT, "Cash") is None
        assert self.manager.get_ledger_by_name(TENANT, "cash in hand").id == ledger.id
        # Old name is free again
        self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)

    def test_balances_are_not_updatable(self):
        ledger = self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        with pytest.raises(ValidationError):
            self.manager.update_ledger(TENANT, ledger.id, current_balance="99")

    def test_rename_conflict(self):
        self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        bank = self.manager.create_ledger(TENANT, "Bank", LedgerSubtype.BANK)
        with pytest.raises(ConflictError):
            self.manager.update_ledger(TENANT, bank.id, name="cash")

    def test_apply_delta(self):
        ledger = self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH, opening_balance="100")
        assert self.manager.apply_delta(TENANT, ledger.id, Decimal("-30")) == Decimal("70.00")
        assert self.manager.get_ledger(TENANT, ledger.id).current_balance == Decimal("70.00")
        with pytest.raises(NotFoundError):
            self.manager.apply_delta(TENANT, "missing", Decimal("1"))

    def test_bootstrap_default_ledgers(self):
        created = self.manager.bootstrap_default_ledgers(TENANT)
        names = {ledger.name for ledger in created}
        assert names == {"Cash", "Petty Cash", "Primary Bank", "Sales", "Purchases",
                         "Capital Account", "Opening Stock"}
        # Second call is a no-op
        assert self.manager.bootstrap_default_ledgers(TENANT) == []
        assert len(self.manager.list_ledgers(TENANT)) == 7

    def test_list_by_subtype(self):
        self.manager.bootstrap_default_ledgers(TENANT)
        cash = self.manager.list_ledgers(TENANT, subtype=LedgerSubtype.CASH)
        assert [l.name for l in cash] == ["Cash", "Petty Cash"]


class TestLedgerReferencesAndReconciliation:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.manager = LedgerManager(self.storage, self.audit_trail)
        self.types = VoucherTypeManager(self.storage, self.audit_trail)
        self.engine = VoucherEngine(self.storage, self.manager, self.types, self.audit_trail)
        self.types.ensure_default_voucher_types(TENANT)
        self.journal = self.types.find_voucher_type_by_name(TENANT, "Journal")

        self.cash = self.manager.create_ledger(TENANT, "Cash", LedgerSubtype.CASH, opening_balance="1000")
        self.sales = self.manager.create_ledger(TENANT, "Sales", LedgerSubtype.SALES)

    def _post(self, amount="500"):
        return self.engine.create_voucher(TENANT, VoucherOptions(
            voucher_type_id=self.journal.id,
            entries=[
                EntryInput("Cash", "DEBIT", amount),
                EntryInput("Sales", "CREDIT", amount),
            ]
        ))

    def test_delete_unreferenced_ledger(self):
        spare = self.manager.create_ledger(TENANT, "Spare", LedgerSubtype.OTHER)
        self.manager.delete_ledger(TENANT, spare.id)
        with pytest.raises(NotFoundError):
            self.manager.get_ledger(TENANT, spare.id)
        assert self.manager.find_ledger_by_name(TENANT, "Spare") is None

    def test_delete_referenced_ledger_conflicts(self):
        self._post()
        with pytest.raises(ConflictError) as exc_info:
            self.manager.delete_ledger(TENANT, self.cash.id)
        assert exc_info.value.message == "Cannot delete ledger with existing voucher entries"

    def test_reconcile_clean_books(self):
        self._post("500")
        self._post("250.25")
        assert self.manager.reconcile(TENANT) == []

    def test_reconcile_reports_drift(self):
        self._post("500")
        # Simulate a balance moved outside of voucher posting
        self.storage.increment(LEDGER_TABLE, self.cash.id, "current_balance", Decimal("10"))

        discrepancies = self.manager.reconcile(TENANT)
        assert len(discrepancies) == 1
        assert discrepancies[0].name == "Cash"
        assert discrepancies[0].expected_balance == Decimal("1500.00")
        assert discrepancies[0].difference == Decimal("10.00")

    def test_trial_balance(self):
        self._post("500")
        capital = self.manager.create_ledger(TENANT, "Capital", LedgerSubtype.CAPITAL, opening_balance="1000")

        tb = self.manager.trial_balance(TENANT)
        rows = {row["name"]: row for row in tb["rows"]}
        assert rows["Cash"]["debit"] == "1500.00"
        assert rows["Sales"]["credit"] == "500.00"
        assert rows[capital.name]["credit"] == "1000.00"
        assert tb["totalDebit"] == tb["totalCredit"] == "1500.00"
        assert tb["difference"] == "0.00"
