"""
Tests for GST calculation and GST masters
"""

import pytest
from decimal import Decimal

from ledgerbook.audit import AuditTrail
from ledgerbook.errors import ConflictError, NotFoundError, ValidationError
from ledgerbook.gst import (
    GstLine, GstManager, MappingType, RegistrationType, SupplyType, calculate_gst, gst_entries
)
from ledgerbook.storage import InMemoryStorage
from ledgerbook.vouchers import EntryType


TENANT = "tenant-1"
GSTIN = "29ABCDE1234F1Z5"


class TestCalculateGst:

    def test_intra_state_splits_rate(self):
        result = calculate_gst([GstLine(quantity=10, rate=100, gst_rate=18)], "29", "29")

        assert not result.is_inter_state
        assert result.taxable_amount == Decimal("1000.00")
        assert result.cgst_amount == Decimal("90.00")
        assert result.sgst_amount == Decimal("90.00")
        assert result.igst_amount == Decimal("0.00")
        assert result.grand_total == Decimal("1180.00")

    def test_inter_state_charges_igst(self):
        result = calculate_gst([GstLine(quantity=10, rate=100, gst_rate=18)], "27", "29")

        assert result.is_inter_state
        assert result.igst_amount == Decimal("180.00")
        assert result.cgst_amount == result.sgst_amount == Decimal("0.00")
        assert result.total_tax_amount == Decimal("180.00")

    def test_discount_and_cess(self):
        result = calculate_gst(
            [GstLine(quantity=2, rate="500", gst_rate=28, discount="100", cess_rate=12)], "29", "29")
        assert result.taxable_amount == Decimal("900.00")
        assert result.cgst_amount == Decimal("126.00")
        assert result.cess_amount == Decimal("108.00")

    def test_rounds_once_at_the_end(self):
        lines = [GstLine(quantity=1, rate="0.10", gst_rate=5) for _ in range(3)]
        result = calculate_gst(lines, "29", "29")
        # 3 x 0.0025 = 0.0075 per half, rounded once
        assert result.cgst_amount == Decimal("0.01")

    def test_zero_rated_line(self):
        result = calculate_gst([GstLine(quantity=1, rate=50)], "29", "29")
        assert result.total_tax_amount == Decimal("0.00")
        assert result.grand_total == Decimal("50.00")

    def test_invalid_input(self):
        with pytest.raises(ValidationError):
            calculate_gst([GstLine(quantity=1, rate=10, gst_rate=18)], "29", "")
        with pytest.raises(ValidationError):
            calculate_gst([GstLine(quantity=-1, rate=10)], "29", "29")
        with pytest.raises(ValidationError):
            calculate_gst([GstLine(quantity=1, rate=10, discount=20)], "29", "29")

    def test_api_shape(self):
        data = calculate_gst([GstLine(quantity=1, rate=100, gst_rate=12)], "29", "29").to_api()
        assert data["cgstAmount"] == "6.00"
        assert data["grandTotal"] == "112.00"
        assert data["isInterState"] is False


class TestGstEntries:

    def test_output_tax_is_credited(self):
        calculation = calculate_gst([GstLine(quantity=10, rate=100, gst_rate=18)], "29", "29")
        mappings = {MappingType.OUTPUT_CGST: "Output CGST", MappingType.OUTPUT_SGST: "Output SGST"}

        entries = gst_entries(calculation, mappings, is_output=True)
        assert [(e.ledger_name, e.entry_type, e.amount) for e in entries] == [
            ("Output CGST", EntryType.CREDIT, Decimal("90.00")),
            ("Output SGST", EntryType.CREDIT, Decimal("90.00")),
        ]

    def test_input_tax_is_debited_and_unmapped_skipped(self):
        calculation = calculate_gst([GstLine(quantity=1, rate=100, gst_rate=18)], "27", "29")
        entries = gst_entries(calculation, {MappingType.INPUT_CGST: "Input CGST"}, is_output=False)
        assert entries == []

        entries = gst_entries(calculation, {MappingType.INPUT_IGST: "Input IGST"}, is_output=False)
        assert entries[0].entry_type is EntryType.DEBIT
        assert entries[0].amount == Decimal("18.00")


class TestGstManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = GstManager(self.storage, AuditTrail(self.storage))

    def test_create_registration(self):
        registration = self.manager.create_registration(
            TENANT, GSTIN.lower(), "29", "2024-04-01", legal_name="Acme Traders", is_default=True)

        assert registration.gstin == GSTIN
        assert registration.registration_type is RegistrationType.REGULAR
        assert self.manager.get_registration(TENANT, registration.id).legal_name == "Acme Traders"
        with pytest.raises(NotFoundError):
            self.manager.get_registration("tenant-2", registration.id)

    @pytest.mark.parametrize("gstin", ["", "29ABC", "XXABCDE1234F1Z5", "29ABCDE1234F1Z5Q"])
    def test_invalid_gstin(self, gstin):
        with pytest.raises(ValidationError):
            self.manager.create_registration(TENANT, gstin, "29", "2024-04-01")

    def test_registration_dates(self):
        with pytest.raises(ValidationError):
            self.manager.create_registration(TENANT, GSTIN, "29", None)
        with pytest.raises(ValidationError):
            self.manager.create_registration(TENANT, GSTIN, "29", "2024-04-01", end_date="2024-03-01")

    def test_duplicate_gstin(self):
        self.manager.create_registration(TENANT, GSTIN, "29", "2024-04-01")
        with pytest.raises(ConflictError):
            self.manager.create_registration(TENANT, GSTIN, "29", "2024-04-01")
        # Another tenant may register the same GSTIN
        self.manager.create_registration("tenant-2", GSTIN, "29", "2024-04-01")

    def test_single_default_registration(self):
        first = self.manager.create_registration(TENANT, GSTIN, "29", "2024-04-01", is_default=True)
        second = self.manager.create_registration(TENANT, "27ABCDE1234F1Z5", "27", "2024-04-01",
                                                  is_default=True)
        registrations = self.manager.list_registrations(TENANT)
        assert registrations[0].id == second.id
        assert not self.manager.get_registration(TENANT, first.id).is_default

    def test_delete_registration(self):
        default = self.manager.create_registration(TENANT, GSTIN, "29", "2024-04-01", is_default=True)
        other = self.manager.create_registration(TENANT, "27ABCDE1234F1Z5", "27", "2024-04-01")

        with pytest.raises(ConflictError):
            self.manager.delete_registration(TENANT, default.id)

        self.manager.create_tax_rate(TENANT, gst_rate=18, registration_id=other.id)
        with pytest.raises(ConflictError):
            self.manager.delete_registration(TENANT, other.id)

        spare = self.manager.create_registration(TENANT, "07ABCDE1234F1Z5", "07", "2024-04-01")
        self.manager.delete_registration(TENANT, spare.id)
        assert len(self.manager.list_registrations(TENANT)) == 2

    def test_tax_rate_split(self):
        rate = self.manager.create_tax_rate(TENANT, gst_rate="18", hsn_sac="8471")
        assert rate.cgst_rate == rate.sgst_rate == Decimal("9")
        assert rate.igst_rate == Decimal("0")

        explicit = self.manager.create_tax_rate(TENANT, gst_rate=18, igst_rate=18,
                                                supply_type=SupplyType.SERVICES)
        assert explicit.igst_rate == Decimal("18")
        assert explicit.cgst_rate == Decimal("0")

        assert len(self.manager.list_tax_rates(TENANT, hsn_sac="847")) == 1
        assert len(self.manager.list_tax_rates(TENANT, supply_type=SupplyType.SERVICES)) == 1

    def test_tax_rate_validation(self):
        with pytest.raises(ValidationError):
            self.manager.create_tax_rate(TENANT, gst_rate=150)
        with pytest.raises(ValidationError):
            self.manager.create_tax_rate(TENANT, gst_rate=5, effective_from="2024-04-01",
                                         effective_to="2024-01-01")
        with pytest.raises(NotFoundError):
            self.manager.create_tax_rate(TENANT, gst_rate=5, registration_id="missing")

    def test_ledger_mappings(self):
        registration = self.manager.create_registration(TENANT, GSTIN, "29", "2024-04-01")
        self.manager.create_ledger_mapping(TENANT, MappingType.OUTPUT_CGST, "Output CGST")
        self.manager.create_ledger_mapping(TENANT, MappingType.OUTPUT_CGST, "Branch CGST",
                                           registration_id=registration.id)

        assert self.manager.mapping_table(TENANT) == {MappingType.OUTPUT_CGST: "Output CGST"}
        assert self.manager.mapping_table(TENANT, registration.id) == {
            MappingType.OUTPUT_CGST: "Branch CGST"
        }
        with pytest.raises(ValidationError):
            self.manager.create_ledger_mapping(TENANT, MappingType.INPUT_CGST, " ")
