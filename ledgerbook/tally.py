"""
Tally Excel Import/Export

Export renders a tenant's vouchers, ledgers and GST masters as .xlsx
workbooks in Tally-compatible layouts. Import reads a Tally-style workbook
(Ledger, Party Ledger/Parties and Transactions sheets), creating ledgers and
posting one voucher per voucher number through the VoucherEngine.

Column names are matched against a list of aliases since Tally exports and
hand-built sheets rarely agree on headers. Row-level problems never abort an
import; they are collected in ImportStats. Each voucher is posted in its own
storage transaction so a bad voucher leaves the rest of the import intact.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from zipfile import BadZipFile

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.datetime import from_excel
from openpyxl.utils.exceptions import InvalidFileException

from .audit import AuditEventType, AuditTrail
from .errors import LedgerbookError, ValidationError
from .gst import GstManager
from .ledgers import BalanceType, LedgerManager, LedgerSubtype, subtype_for_group
from .logging_config import get_logger, log_action
from .money import ZERO, format_amount, parse_money, quantize, to_decimal
from .storage import StorageInterface
from .utils import to_utc_datetime
from .vouchers import (
    EntryInput, VoucherCategory, VoucherEngine, VoucherOptions, VoucherQuery,
    VoucherType, VoucherTypeManager,
)


IMPORT_HISTORY_TABLE = "import_history"

HEADER_FONT = Font(name='Calibri', bold=True, size=11, color='FFFFFF')
HEADER_FILL = PatternFill(start_color='2F5496', end_color='2F5496', fill_type='solid')
HEADER_ALIGNMENT = Alignment(vertical='center', horizontal='center')

VOUCHER_COLUMNS = ["Voucher Number", "Voucher Type", "Numbering Series", "Date",
                   "Reference", "Narration", "Total Amount", "Status"]
ENTRY_COLUMNS = ["Voucher Number", "Voucher Type", "Ledger Name", "Ledger Code",
                 "Entry Type", "Amount", "Narration", "Cost Center", "Cost Category"]
LEDGER_COLUMNS = ["Name", "Type", "Email", "Phone", "Opening Balance",
                  "Balance Type", "Current Balance"]
REGISTRATION_COLUMNS = ["GSTIN", "Legal Name", "Trade Name", "Registration Type",
                        "State Code", "State Name", "Start Date", "End Date",
                        "Is Default", "Is Active"]
TAX_RATE_COLUMNS = ["Tax Name", "Supply Type", "HSN/SAC", "Description", "GST Rate",
                    "CGST Rate", "SGST Rate", "IGST Rate", "CESS Rate",
                    "Effective From", "Effective To", "Is Active"]
MAPPING_COLUMNS = ["Mapping Type", "Ledger Name", "Ledger Code", "Description"]

# Import column aliases, first match wins
LEDGER_NAME = ("Ledger Name", "Account Name", "Account")
GROUP_NAME = ("Group", "Group Name", "Account Group")
OPENING_BALANCE = ("Opening Balance", "Opening Bal")
BALANCE_TYPE = ("Balance Type", "Opening Type")
PARTY_NAME = ("Party Name", "Name", "Debtor/Creditor")
PARTY_TYPE = ("Type", "Party Type")
VOUCHER_NO = ("Voucher No", "Ref No", "Voucher Number")
TXN_DATE = ("Date", "Transaction Date")
NARRATION = ("Narration", "Description")

VOUCHER_TYPE_NAMES = {
    "sales": ("Sales", VoucherCategory.SALES),
    "purchase": ("Purchase", VoucherCategory.PURCHASE),
    "journal": ("Journal", VoucherCategory.JOURNAL),
    "receipt": ("Receipt", VoucherCategory.RECEIPT),
    "payment": ("Payment", VoucherCategory.PAYMENT),
    "contra": ("Contra", VoucherCategory.CONTRA),
    "debit note": ("Debit Note", VoucherCategory.DEBIT_NOTE),
    "credit note": ("Credit Note", VoucherCategory.CREDIT_NOTE),
}

PARTY_SUBTYPES = {
    "customer": LedgerSubtype.CUSTOMER,
    "debtor": LedgerSubtype.CUSTOMER,
    "sundry debtor": LedgerSubtype.CUSTOMER,
    "supplier": LedgerSubtype.SUPPLIER,
    "creditor": LedgerSubtype.SUPPLIER,
    "sundry creditor": LedgerSubtype.SUPPLIER,
}

PARTY_GROUPS = {
    LedgerSubtype.CUSTOMER: "Sundry Debtors",
    LedgerSubtype.SUPPLIER: "Sundry Creditors",
}

DATE_FORMATS = ("%d-%m-%Y", "%d/%m/%Y", "%d-%b-%Y", "%d-%b-%y", "%d.%m.%Y")


# -- workbook writing -------------------------------------------------------

def _style_header(ws, max_col: int) -> None:
    for col in range(1, max_col + 1):
        cell = ws.cell(row=1, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = HEADER_ALIGNMENT


def _auto_width(ws, max_col: int, max_width: int = 50) -> None:
    for col in range(1, max_col + 1):
        max_len = 0
        for row in ws.iter_rows(min_row=1, max_row=min(ws.max_row, 200), min_col=col, max_col=col):
            for cell in row:
                if cell.value is not None:
                    max_len = max(max_len, min(len(str(cell.value)), max_width))
        ws.column_dimensions[get_column_letter(col)].width = max(max_len + 2, 12)


def _fill_sheet(ws, title: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]) -> None:
    ws.title = title
    ws.append(list(columns))
    for row in rows:
        ws.append(list(row))
    _style_header(ws, len(columns))
    _auto_width(ws, len(columns))
    ws.freeze_panes = 'A2'


def _to_bytes(wb) -> bytes:
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _day(value: Optional[datetime]) -> Optional[str]:
    return value.date().isoformat() if value else None


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


class TallyExporter:
    """Builds Tally-compatible .xlsx workbooks from a tenant's books"""

    def __init__(self, ledger_manager: LedgerManager, type_manager: VoucherTypeManager,
                 voucher_engine: VoucherEngine, gst_manager: GstManager):
        self.ledger_manager = ledger_manager
        self.type_manager = type_manager
        self.voucher_engine = voucher_engine
        self.gst_manager = gst_manager
        self.logger = get_logger("ledgerbook.tally")

    def export_vouchers(self, tenant_id: str, voucher_type_id: Optional[str] = None,
                        numbering_series_id: Optional[str] = None,
                        from_date: Any = None, to_date: Any = None) -> bytes:
        """
        Vouchers workbook: a "Vouchers" header sheet and a "Voucher Entries"
        sheet with one row per entry, newest vouchers first.
        """
        vouchers = self.voucher_engine.find_vouchers(tenant_id, VoucherQuery(
            voucher_type_id=voucher_type_id,
            numbering_series_id=numbering_series_id,
            from_date=from_date,
            to_date=to_date
        ))
        type_names = {t.id: t.name for t in self.type_manager.list_voucher_types(tenant_id)}
        series_names: Dict[str, str] = {}
        for type_id in type_names:
            for series in self.type_manager.list_numbering_series(tenant_id, type_id):
                series_names[series.id] = series.name

        voucher_rows = []
        entry_rows = []
        for voucher in vouchers:
            type_name = type_names.get(voucher.voucher_type_id, "")
            voucher_rows.append([
                voucher.voucher_number,
                type_name,
                series_names.get(voucher.numbering_series_id or "", ""),
                _day(voucher.date),
                voucher.reference or "",
                voucher.narration or "",
                format_amount(voucher.total_amount),
                voucher.state.value,
            ])
            for entry in voucher.entries:
                entry_rows.append([
                    voucher.voucher_number,
                    type_name,
                    entry.ledger_name,
                    entry.ledger_code or "",
                    entry.entry_type.value,
                    format_amount(entry.amount),
                    entry.narration or "",
                    entry.cost_center_id or "",
                    entry.cost_category_id or "",
                ])

        wb = openpyxl.Workbook()
        _fill_sheet(wb.active, "Vouchers", VOUCHER_COLUMNS, voucher_rows)
        _fill_sheet(wb.create_sheet(), "Voucher Entries", ENTRY_COLUMNS, entry_rows)

        log_action(self.logger, "info", f"Exported {len(voucher_rows)} vouchers",
                   tenant_id=tenant_id, action="export_vouchers",
                   extra={"entries": len(entry_rows)})
        return _to_bytes(wb)

    def export_ledgers(self, tenant_id: str) -> bytes:
        rows = []
        for ledger in self.ledger_manager.list_ledgers(tenant_id):
            rows.append([
                ledger.name,
                ledger.subtype.value,
                ledger.email or "",
                ledger.phone or "",
                format_amount(abs(ledger.opening_balance)),
                # Negative openings sit on the side opposite the natural one
                (ledger.balance_type if ledger.opening_balance >= ZERO
                 else ledger.balance_type.opposite).value,
                format_amount(ledger.current_balance),
            ])

        wb = openpyxl.Workbook()
        _fill_sheet(wb.active, "Ledgers", LEDGER_COLUMNS, rows)

        log_action(self.logger, "info", f"Exported {len(rows)} ledgers",
                   tenant_id=tenant_id, action="export_ledgers")
        return _to_bytes(wb)

    def export_gst(self, tenant_id: str) -> bytes:
        registrations = [[
            r.gstin, r.legal_name or "", r.trade_name or "", r.registration_type.value,
            r.state_code, r.state_name or "", _day(r.start_date), _day(r.end_date) or "",
            _yes_no(r.is_default), _yes_no(r.is_active),
        ] for r in self.gst_manager.list_registrations(tenant_id)]

        rates = [[
            r.tax_name or "", r.supply_type.value, r.hsn_sac or "", r.description or "",
            str(r.gst_rate), str(r.cgst_rate), str(r.sgst_rate), str(r.igst_rate),
            str(r.cess_rate), _day(r.effective_from) or "", _day(r.effective_to) or "",
            _yes_no(r.is_active),
        ] for r in self.gst_manager.list_tax_rates(tenant_id)]

        mappings = [[
            m.mapping_type.value, m.ledger_name, m.ledger_code or "", m.description or "",
        ] for m in self.gst_manager.list_ledger_mappings(tenant_id)]

        wb = openpyxl.Workbook()
        _fill_sheet(wb.active, "GST Registrations", REGISTRATION_COLUMNS, registrations)
        _fill_sheet(wb.create_sheet(), "Tax Rates", TAX_RATE_COLUMNS, rates)
        _fill_sheet(wb.create_sheet(), "Ledger Mappings", MAPPING_COLUMNS, mappings)

        log_action(self.logger, "info", "Exported GST masters",
                   tenant_id=tenant_id, action="export_gst",
                   extra={"registrations": len(registrations), "tax_rates": len(rates),
                          "mappings": len(mappings)})
        return _to_bytes(wb)


def import_template() -> bytes:
    """A sample workbook in the layout TallyImporter reads"""
    wb = openpyxl.Workbook()
    _fill_sheet(wb.active, "Ledger",
                ["Ledger Name", "Group Name", "Opening Balance", "Balance Type"], [
                    ["Cash Account", "Cash-in-Hand", 50000, "Debit"],
                    ["HDFC Current Account", "Bank Accounts", 200000, "Debit"],
                    ["Share Capital", "Capital Account", 250000, "Credit"],
                    ["Sales Account", "Sales Accounts", 0, "Credit"],
                    ["Rent Expense", "Indirect Expenses", 0, "Debit"],
                ])
    _fill_sheet(wb.create_sheet(), "Parties",
                ["Party Name", "Type", "Opening Balance", "Balance Type", "Email", "Mobile"], [
                    ["ABC Technologies Pvt Ltd", "Customer", 25000, "Debit",
                     "accounts@abc-tech.com", "9876543210"],
                    ["Premium Suppliers", "Supplier", 15000, "Credit",
                     "sales@premium-suppliers.com", "9876543213"],
                ])
    _fill_sheet(wb.create_sheet(), "Transactions",
                ["Date", "Voucher No", "Voucher Type", "Ledger Name", "Debit", "Credit",
                 "Narration", "Reference"], [
                    ["2024-04-01", "SAL001", "Sales", "ABC Technologies Pvt Ltd", 11800, 0,
                     "Consulting invoice", "INV-001"],
                    ["2024-04-01", "SAL001", "Sales", "Sales Account", 0, 11800,
                     "Consulting invoice", "INV-001"],
                    ["2024-04-05", "PMT001", "Payment", "Rent Expense", 20000, 0,
                     "April rent", ""],
                    ["2024-04-05", "PMT001", "Payment", "HDFC Current Account", 0, 20000,
                     "April rent", ""],
                ])
    return _to_bytes(wb)


# -- workbook reading -------------------------------------------------------

@dataclass
class ImportStats:
    ledgers_created: int = 0
    parties_created: int = 0
    vouchers_created: int = 0
    voucher_entries_created: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return self.ledgers_created + self.parties_created + self.vouchers_created

    def to_api(self) -> Dict[str, Any]:
        return {
            "ledgersCreated": self.ledgers_created,
            "partiesCreated": self.parties_created,
            "vouchersCreated": self.vouchers_created,
            "voucherEntriesCreated": self.voucher_entries_created,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


@dataclass
class _TxnRow:
    row_no: int
    ledger_name: str
    entry_type: BalanceType
    amount: Decimal
    date: datetime
    voucher_type: str
    narration: Optional[str]
    reference: Optional[str]


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _pick(row: Dict[str, Any], aliases: Sequence[str]) -> Any:
    for alias in aliases:
        value = row.get(alias)
        if value is not None and _text(value) != "":
            return value
    return None


def _sheet_rows(ws) -> List[Tuple[int, Dict[str, Any]]]:
    """(excel row number, {header: value}) for every non-blank data row"""
    rows = []
    headers: List[str] = []
    for row_no, values in enumerate(ws.iter_rows(values_only=True), start=1):
        if row_no == 1:
            headers = [_text(v) for v in values]
            continue
        if all(v is None or _text(v) == "" for v in values):
            continue
        rows.append((row_no, {h: v for h, v in zip(headers, values) if h}))
    return rows


def _cell_amount(value: Any, field_name: str) -> Decimal:
    if value is None or _text(value) == "":
        return ZERO
    if isinstance(value, float):
        # Formula results arrive as binary floats
        return quantize(to_decimal(value, field_name))
    return parse_money(value, field_name)


def _cell_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_utc_datetime(value)
    if isinstance(value, date):
        return to_utc_datetime(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Excel serial day number
        return to_utc_datetime(from_excel(value))
    text = _text(value)
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return to_utc_datetime(text, "Date")


def _side(value: Any, default: BalanceType = BalanceType.DEBIT) -> BalanceType:
    text = _text(value).lower()
    if text in ("credit", "cr"):
        return BalanceType.CREDIT
    if text in ("debit", "dr"):
        return BalanceType.DEBIT
    return default


class TallyImporter:
    """Imports a Tally-style workbook into a tenant's books"""

    def __init__(self, storage: StorageInterface, ledger_manager: LedgerManager,
                 type_manager: VoucherTypeManager, voucher_engine: VoucherEngine,
                 audit_trail: AuditTrail):
        self.storage = storage
        self.ledger_manager = ledger_manager
        self.type_manager = type_manager
        self.voucher_engine = voucher_engine
        self.audit_trail = audit_trail
        self.logger = get_logger("ledgerbook.tally")

    def import_workbook(self, tenant_id: str, content: bytes,
                        file_name: str = "import.xlsx") -> ImportStats:
        """
        Import ledgers, parties and transactions from an .xlsx workbook

        Args:
            tenant_id: Tenant receiving the data
            content: Raw workbook bytes
            file_name: Original file name, kept in the import history

        Returns:
            ImportStats with per-row warnings and errors

        Raises:
            ValidationError: the file is not a readable workbook or has none
                of the Ledger, Party Ledger/Parties or Transactions sheets
        """
        try:
            wb = openpyxl.load_workbook(BytesIO(content), data_only=True)
        except (BadZipFile, InvalidFileException, KeyError, OSError, ValueError):
            raise ValidationError("Uploaded file is not a readable Excel workbook")

        party_sheet = next((name for name in ("Party Ledger", "Parties") if name in wb.sheetnames), None)
        if "Ledger" not in wb.sheetnames and party_sheet is None and "Transactions" not in wb.sheetnames:
            raise ValidationError("Workbook has no Ledger, Parties or Transactions sheet")

        stats = ImportStats()
        total_rows = 0
        if "Ledger" in wb.sheetnames:
            rows = _sheet_rows(wb["Ledger"])
            total_rows += len(rows)
            self._import_ledgers(tenant_id, rows, stats)
        if party_sheet:
            rows = _sheet_rows(wb[party_sheet])
            total_rows += len(rows)
            self._import_parties(tenant_id, rows, stats)
        if "Transactions" in wb.sheetnames:
            rows = _sheet_rows(wb["Transactions"])
            total_rows += len(rows)
            self._import_transactions(tenant_id, rows, stats)

        self._record_history(tenant_id, file_name, total_rows, stats)
        log_action(self.logger, "info", f"Tally import completed: {file_name}",
                   tenant_id=tenant_id, action="tally_import",
                   extra={"ledgers": stats.ledgers_created, "parties": stats.parties_created,
                          "vouchers": stats.vouchers_created, "errors": len(stats.errors)})
        return stats

    # -- sheets ------------------------------------------------------------

    def _import_ledgers(self, tenant_id: str, rows, stats: ImportStats) -> None:
        for row_no, row in rows:
            name = _text(_pick(row, LEDGER_NAME))
            if not name:
                stats.warnings.append(f"Ledger row {row_no}: Missing ledger name")
                continue
            if self.ledger_manager.find_ledger_by_name(tenant_id, name):
                stats.skipped += 1
                continue
            group = _text(_pick(row, GROUP_NAME)) or None
            try:
                self.ledger_manager.create_ledger(
                    tenant_id, name,
                    subtype=subtype_for_group(group),
                    opening_balance=abs(_cell_amount(_pick(row, OPENING_BALANCE), "Opening Balance")),
                    opening_balance_type=_side(_pick(row, BALANCE_TYPE)),
                    group=group,
                    code=_text(_pick(row, ("Ledger Code", "Code"))) or None,
                    email=_text(row.get("Email")) or None,
                    phone=_text(_pick(row, ("Phone", "Mobile"))) or None
                )
                stats.ledgers_created += 1
            except LedgerbookError as e:
                stats.errors.append(f"Ledger row {row_no}: {e.message}")

    def _import_parties(self, tenant_id: str, rows, stats: ImportStats) -> None:
        for row_no, row in rows:
            name = _text(_pick(row, PARTY_NAME))
            if not name:
                stats.warnings.append(f"Party row {row_no}: Missing party name")
                continue
            if self.ledger_manager.find_ledger_by_name(tenant_id, name):
                stats.skipped += 1
                continue
            party_type = _text(_pick(row, PARTY_TYPE)) or "Other"
            subtype = PARTY_SUBTYPES.get(party_type.lower(), LedgerSubtype.OTHER)
            try:
                self.ledger_manager.create_ledger(
                    tenant_id, name,
                    subtype=subtype,
                    opening_balance=abs(_cell_amount(_pick(row, OPENING_BALANCE), "Opening Balance")),
                    opening_balance_type=_side(row.get("Balance Type")),
                    group=PARTY_GROUPS.get(subtype),
                    email=_text(row.get("Email")) or None,
                    phone=_text(_pick(row, ("Mobile", "Phone"))) or None,
                    description=_text(row.get("Address")) or None
                )
                stats.parties_created += 1
            except LedgerbookError as e:
                stats.errors.append(f"Party row {row_no}: {e.message}")

    def _parse_transaction(self, row_no: int, row: Dict[str, Any]) -> List[_TxnRow]:
        ledger_name = _text(_pick(row, LEDGER_NAME))
        txn_date = _cell_date(_pick(row, TXN_DATE))
        debit = _cell_amount(row.get("Debit"), "Debit")
        credit = _cell_amount(row.get("Credit"), "Credit")
        amount = _cell_amount(row.get("Amount"), "Amount")
        common = dict(
            row_no=row_no,
            ledger_name=ledger_name,
            date=txn_date,
            voucher_type=_text(row.get("Voucher Type")) or "Journal",
            narration=_text(_pick(row, NARRATION)) or None,
            reference=_text(row.get("Reference")) or None,
        )

        lines = []
        if debit > ZERO:
            lines.append(_TxnRow(entry_type=BalanceType.DEBIT, amount=debit, **common))
        if credit > ZERO:
            lines.append(_TxnRow(entry_type=BalanceType.CREDIT, amount=credit, **common))
        if not lines and amount != ZERO:
            # Signed amount column: positive debits, negative credits
            side = BalanceType.DEBIT if amount > ZERO else BalanceType.CREDIT
            lines.append(_TxnRow(entry_type=side, amount=abs(amount), **common))
        return lines

    def _import_transactions(self, tenant_id: str, rows, stats: ImportStats) -> None:
        grouped: Dict[str, List[_TxnRow]] = {}
        for row_no, row in rows:
            if not _text(_pick(row, LEDGER_NAME)) or not _text(_pick(row, TXN_DATE)):
                stats.warnings.append(f"Transaction row {row_no}: Missing ledger name or date")
                continue
            voucher_no = _text(_pick(row, VOUCHER_NO))
            if not voucher_no:
                stats.warnings.append(f"Transaction row {row_no}: Missing voucher number")
                continue
            try:
                lines = self._parse_transaction(row_no, row)
            except LedgerbookError as e:
                stats.errors.append(f"Transaction row {row_no}: {e.message}")
                continue
            if not lines:
                stats.warnings.append(f"Transaction row {row_no}: No debit or credit amount")
                continue
            grouped.setdefault(voucher_no, []).extend(lines)

        self.type_manager.ensure_default_voucher_types(tenant_id)
        type_cache: Dict[str, VoucherType] = {}
        for voucher_no, lines in grouped.items():
            warnings: List[str] = []
            try:
                with self.storage.atomic():
                    voucher_type = self._voucher_type(tenant_id, lines[0].voucher_type, type_cache)
                    for name in dict.fromkeys(line.ledger_name for line in lines):
                        if self.ledger_manager.find_ledger_by_name(tenant_id, name) is None:
                            self.ledger_manager.create_ledger(tenant_id, name)
                            warnings.append(f"Voucher {voucher_no}: Ledger '{name}' was not "
                                            f"in the Ledger sheet and was created")
                    voucher = self.voucher_engine.create_voucher(tenant_id, VoucherOptions(
                        voucher_type_id=voucher_type.id,
                        entries=[EntryInput(ledger_name=line.ledger_name,
                                            entry_type=line.entry_type,
                                            amount=line.amount)
                                 for line in lines],
                        date=lines[0].date,
                        narration=lines[0].narration,
                        reference=lines[0].reference,
                        voucher_number=voucher_no,
                        auto_post=True
                    ))
            except LedgerbookError as e:
                stats.errors.append(f"Voucher {voucher_no}: {e.message}")
                type_cache.clear()
                continue
            stats.vouchers_created += 1
            stats.voucher_entries_created += len(voucher.entries)
            stats.warnings.extend(warnings)

    def _voucher_type(self, tenant_id: str, type_name: str,
                      cache: Dict[str, VoucherType]) -> VoucherType:
        """Get or create the voucher type for a Tally voucher type name"""
        key = type_name.lower()
        if key in cache:
            return cache[key]
        name, category = VOUCHER_TYPE_NAMES.get(key, ("Journal", VoucherCategory.JOURNAL))
        voucher_type = (self.type_manager.find_voucher_type_by_name(tenant_id, name) or
                        self.type_manager.find_voucher_type_by_category(tenant_id, category) or
                        self.type_manager.create_voucher_type(tenant_id, name, category))
        cache[key] = voucher_type
        return voucher_type

    def _record_history(self, tenant_id: str, file_name: str, total_rows: int,
                        stats: ImportStats) -> None:
        now = datetime.now(timezone.utc)
        record_id = str(uuid.uuid4())
        with self.storage.atomic():
            self.storage.insert(IMPORT_HISTORY_TABLE, record_id, {
                "id": record_id,
                "tenant_id": tenant_id,
                "file_name": file_name,
                "import_type": "TALLY",
                "total_records": total_rows,
                "success_count": stats.success_count,
                "failure_count": len(stats.errors),
                "summary": stats.to_api(),
                "created_at": now.isoformat(),
                "updated_at": now.isoformat(),
            })
            self.audit_trail.log_event(
                AuditEventType.TALLY_IMPORT_COMPLETED, "import", record_id,
                {"file_name": file_name, "vouchers_created": stats.vouchers_created,
                 "errors": len(stats.errors)},
                tenant_id=tenant_id
            )

    def list_history(self, tenant_id: str) -> List[Dict[str, Any]]:
        history = self.storage.find(IMPORT_HISTORY_TABLE, {'tenant_id': tenant_id})
        history.sort(key=lambda h: h['created_at'], reverse=True)
        return history
