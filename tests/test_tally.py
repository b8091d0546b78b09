"""
Test suite for Tally Excel import and export
"""

import pytest
from datetime import datetime
from decimal import Decimal
from io import BytesIO

import openpyxl

from ledgerbook.audit import AuditEventType, AuditTrail
from ledgerbook.errors import ValidationError
from ledgerbook.gst import GstManager, MappingType
from ledgerbook.ledgers import BalanceType, LedgerManager, LedgerSubtype
from ledgerbook.storage import InMemoryStorage
from ledgerbook.tally import (
    ENTRY_COLUMNS, LEDGER_COLUMNS, VOUCHER_COLUMNS, TallyExporter, TallyImporter, import_template
)
from ledgerbook.vouchers import EntryInput, VoucherEngine, VoucherOptions, VoucherState, VoucherTypeManager


TENANT = "tenant-1"


def make_workbook(sheets):
    """Build xlsx bytes from {sheet title: [header row, data rows...]}"""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def read_rows(content, sheet):
    wb = openpyxl.load_workbook(BytesIO(content))
    return [list(row) for row in wb[sheet].iter_rows(values_only=True)]


class TallyTestBase:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.ledgers = LedgerManager(self.storage, self.audit_trail)
        self.types = VoucherTypeManager(self.storage, self.audit_trail)
        self.engine = VoucherEngine(self.storage, self.ledgers, self.types, self.audit_trail)
        self.gst = GstManager(self.storage, self.audit_trail)
        self.exporter = TallyExporter(self.ledgers, self.types, self.engine, self.gst)
        self.importer = TallyImporter(self.storage, self.ledgers, self.types, self.engine, self.audit_trail)

    def balance(self, name):
        return self.ledgers.get_ledger_by_name(TENANT, name).current_balance


class TestTallyExport(TallyTestBase):

    def test_export_vouchers(self):
        self.types.ensure_default_voucher_types(TENANT)
        sales = self.types.find_voucher_type_by_name(TENANT, "Sales")
        self.ledgers.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        self.ledgers.create_ledger(TENANT, "Sales", LedgerSubtype.SALES)
        self.engine.create_voucher(TENANT, VoucherOptions(
            voucher_type_id=sales.id,
            entries=[EntryInput("Cash", "DEBIT", "500"), EntryInput("Sales", "CREDIT", "500")],
            date="2024-04-10",
            narration="Counter sale"
        ))

        content = self.exporter.export_vouchers(TENANT)
        wb = openpyxl.load_workbook(BytesIO(content))
        assert wb.sheetnames == ["Vouchers", "Voucher Entries"]

        vouchers = read_rows(content, "Vouchers")
        assert vouchers[0] == VOUCHER_COLUMNS
        row = vouchers[1]
        assert row[:4] == ["SAL/1", "Sales", "Default", "2024-04-10"]
        assert row[5:] == ["Counter sale", "500.00", "POSTED"]

        entries = read_rows(content, "Voucher Entries")
        assert entries[0] == ENTRY_COLUMNS
        assert [(row[2], row[4], row[5]) for row in entries[1:]] == [
            ("Cash", "DEBIT", "500.00"), ("Sales", "CREDIT", "500.00")
        ]

    def test_export_vouchers_filters_by_date(self):
        self.types.ensure_default_voucher_types(TENANT)
        journal = self.types.find_voucher_type_by_name(TENANT, "Journal")
        self.ledgers.create_ledger(TENANT, "Cash", LedgerSubtype.CASH)
        self.ledgers.create_ledger(TENANT, "Sales", LedgerSubtype.SALES)
        for day in ("2024-04-01", "2024-05-01"):
            self.engine.create_voucher(TENANT, VoucherOptions(
                voucher_type_id=journal.id,
                entries=[EntryInput("Cash", "DEBIT", "1"), EntryInput("Sales", "CREDIT", "1")],
                date=day
            ))

        content = self.exporter.export_vouchers(TENANT, from_date="2024-04-15")
        assert len(read_rows(content, "Vouchers")) == 2

    def test_export_ledgers(self):
        self.ledgers.create_ledger(TENANT, "Cash", LedgerSubtype.CASH, opening_balance="1000")
        self.ledgers.create_ledger(TENANT, "Overdraft", LedgerSubtype.BANK, opening_balance="300",
                                   opening_balance_type=BalanceType.CREDIT)

        rows = read_rows(self.exporter.export_ledgers(TENANT), "Ledgers")
        assert rows[0] == LEDGER_COLUMNS
        by_name = {row[0]: row for row in rows[1:]}
        assert by_name["Cash"][4:] == ["1000.00", "DEBIT", "1000.00"]
        assert by_name["Overdraft"][4:] == ["300.00", "CREDIT", "-300.00"]

    def test_export_gst(self):
        self.gst.create_registration(TENANT, "29ABCDE1234F1Z5", "29", "2024-04-01", is_default=True)
        self.gst.create_tax_rate(TENANT, gst_rate=18, hsn_sac="8471")
        self.gst.create_ledger_mapping(TENANT, MappingType.OUTPUT_IGST, "Output IGST")

        content = self.exporter.export_gst(TENANT)
        wb = openpyxl.load_workbook(BytesIO(content))
        assert wb.sheetnames == ["GST Registrations", "Tax Rates", "Ledger Mappings"]
        registrations = read_rows(content, "GST Registrations")
        assert registrations[1][0] == "29ABCDE1234F1Z5"
        assert registrations[1][8] == "Yes"
        assert read_rows(content, "Ledger Mappings")[1][:2] == ["OUTPUT_IGST", "Output IGST"]

    def test_empty_export_has_headers_only(self):
        rows = read_rows(self.exporter.export_vouchers(TENANT), "Vouchers")
        assert rows == [VOUCHER_COLUMNS]

    def test_header_is_styled(self):
        wb = openpyxl.load_workbook(BytesIO(self.exporter.export_ledgers(TENANT)))
        ws = wb["Ledgers"]
        assert ws["A1"].font.bold
        assert ws.freeze_panes == "A2"


class TestTallyImport(TallyTestBase):

    def test_import_template(self):
        stats = self.importer.import_workbook(TENANT, import_template(), "template.xlsx")

        assert stats.errors == []
        assert stats.ledgers_created == 5
        assert stats.parties_created == 2
        assert stats.vouchers_created == 2
        assert stats.voucher_entries_created == 4

        assert self.balance("HDFC Current Account") == Decimal("180000.00")
        assert self.balance("ABC Technologies Pvt Ltd") == Decimal("36800.00")
        assert self.balance("Sales Account") == Decimal("11800.00")
        assert self.ledgers.get_ledger_by_name(TENANT, "Premium Suppliers").subtype is LedgerSubtype.SUPPLIER
        assert self.ledgers.reconcile(TENANT) == []

        vouchers, total = self.engine.list_vouchers(TENANT)
        assert total == 2
        assert {v.voucher_number for v in vouchers} == {"SAL001", "PMT001"}
        assert all(v.state is VoucherState.POSTED for v in vouchers)

    def test_reimport_skips_masters_and_rejects_duplicate_vouchers(self):
        self.importer.import_workbook(TENANT, import_template())
        stats = self.importer.import_workbook(TENANT, import_template())

        assert stats.skipped == 7
        assert stats.vouchers_created == 0
        assert stats.errors == [
            "Voucher SAL001: Voucher number SAL001 already exists",
            "Voucher PMT001: Voucher number PMT001 already exists",
        ]
        assert self.balance("HDFC Current Account") == Decimal("180000.00")

    def test_column_aliases_and_signed_amounts(self):
        content = make_workbook({
            "Ledger": [
                ["Account Name", "Account Group", "Opening Bal", "Opening Type"],
                ["Bank", "Bank Accounts", 500, "Dr"],
            ],
            "Transactions": [
                ["Transaction Date", "Ref No", "Voucher Type", "Account", "Amount", "Description"],
                ["05-04-2024", "J1", "Journal", "Bank", -100, "Fees"],
                ["05-04-2024", "J1", "Journal", "Bank Charges", 100, "Fees"],
            ],
        })
        stats = self.importer.import_workbook(TENANT, content)

        assert stats.errors == []
        assert stats.ledgers_created == 1
        assert stats.vouchers_created == 1
        assert stats.warnings == [
            "Voucher J1: Ledger 'Bank Charges' was not in the Ledger sheet and was created"
        ]
        assert self.balance("Bank") == Decimal("400.00")
        voucher = self.engine.find_vouchers(TENANT)[0]
        assert voucher.date.date().isoformat() == "2024-04-05"
        assert voucher.narration == "Fees"

    def test_native_dates_and_numeric_voucher_numbers(self):
        content = make_workbook({
            "Transactions": [
                ["Date", "Voucher No", "Voucher Type", "Ledger Name", "Debit", "Credit"],
                [datetime(2024, 6, 1), 1001, "Receipt", "Cash", 75, None],
                [datetime(2024, 6, 1), 1001, "Receipt", "Customer", None, 75],
            ],
        })
        stats = self.importer.import_workbook(TENANT, content)

        assert stats.vouchers_created == 1
        voucher = self.engine.find_vouchers(TENANT)[0]
        assert voucher.voucher_number == "1001"
        assert self.types.get_voucher_type(TENANT, voucher.voucher_type_id).name == "Receipt"

    def test_float_cell_amounts_are_rounded(self):
        content = make_workbook({
            "Transactions": [
                ["Date", "Voucher No", "Voucher Type", "Ledger Name", "Debit", "Credit"],
                ["2024-04-01", "J1", "Journal", "Cash", 0.1 + 0.2, None],
                ["2024-04-01", "J1", "Journal", "Sales", None, 0.30000000000000004],
            ],
        })
        stats = self.importer.import_workbook(TENANT, content)

        assert stats.errors == []
        assert stats.vouchers_created == 1
        assert self.engine.find_vouchers(TENANT)[0].total_amount == Decimal("0.30")

    def test_text_amounts_keep_two_places(self):
        content = make_workbook({
            "Transactions": [
                ["Date", "Voucher No", "Voucher Type", "Ledger Name", "Debit", "Credit"],
                ["2024-04-01", "J1", "Journal", "Cash", "0.305", None],
                ["2024-04-01", "J1", "Journal", "Sales", None, "0.305"],
            ],
        })
        stats = self.importer.import_workbook(TENANT, content)

        assert stats.vouchers_created == 0
        assert stats.errors == [
            "Transaction row 2: Debit must have at most two decimal places",
            "Transaction row 3: Credit must have at most two decimal places",
        ]

    def test_row_problems_are_collected(self):
        content = make_workbook({
            "Transactions": [
                ["Date", "Voucher No", "Ledger Name", "Debit", "Credit"],
                ["2024-04-01", "V1", "Cash", 100, None],
                ["2024-04-01", "V1", "Sales", None, 90],
                ["2024-04-01", "", "Cash", 10, None],
                [None, "V2", "Cash", 10, None],
                ["2024-04-01", "V3", "Cash", "abc", None],
                ["2024-04-01", "V4", "Cash", None, None],
            ],
        })
        stats = self.importer.import_workbook(TENANT, content)

        assert stats.vouchers_created == 0
        assert stats.errors == [
            "Transaction row 6: Debit must be a number",
            "Voucher V1: Voucher is not balanced: debits 100.00, credits 90.00",
        ]
        assert stats.warnings == [
            "Transaction row 4: Missing voucher number",
            "Transaction row 5: Missing ledger name or date",
            "Transaction row 7: No debit or credit amount",
        ]
        # The failed voucher created nothing
        assert self.ledgers.find_ledger_by_name(TENANT, "Cash") is None

    def test_party_sheet(self):
        content = make_workbook({
            "Party Ledger": [
                ["Name", "Party Type", "Opening Balance", "Balance Type", "Email"],
                ["Acme", "Sundry Debtor", 100, "Debit", "a@acme.test"],
                ["Bolt", "Creditor", 50, "Credit", None],
                [None, "Customer", 1, "Debit", None],
            ],
        })
        stats = self.importer.import_workbook(TENANT, content)

        assert stats.parties_created == 2
        assert stats.warnings == ["Party row 4: Missing party name"]
        acme = self.ledgers.get_ledger_by_name(TENANT, "Acme")
        assert acme.subtype is LedgerSubtype.CUSTOMER
        assert acme.email == "a@acme.test"
        assert self.ledgers.get_ledger_by_name(TENANT, "Bolt").current_balance == Decimal("50.00")

    def test_history_and_audit(self):
        stats = self.importer.import_workbook(TENANT, import_template(), "books.xlsx")
        history = self.importer.list_history(TENANT)

        assert len(history) == 1
        assert history[0]["file_name"] == "books.xlsx"
        assert history[0]["total_records"] == 11
        assert history[0]["success_count"] == stats.success_count == 9
        assert history[0]["summary"]["vouchersCreated"] == 2
        assert self.importer.list_history("tenant-2") == []

        events = self.audit_trail.get_events_for_tenant(TENANT)
        assert events[-1].event_type == AuditEventType.TALLY_IMPORT_COMPLETED

    def test_unreadable_file(self):
        with pytest.raises(ValidationError) as exc_info:
            self.importer.import_workbook(TENANT, b"not a workbook")
        assert exc_info.value.message == "Uploaded file is not a readable Excel workbook"

    def test_workbook_without_known_sheets(self):
        content = make_workbook({"Sheet1": [["a", "b"], [1, 2]]})
        with pytest.raises(ValidationError):
            self.importer.import_workbook(TENANT, content)
