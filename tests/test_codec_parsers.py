from datetime import date
from pathlib import Path

import pytest
from lxml import etree

from tally_order_sync.codec import (
    build_optional_vouchers_request,
    build_voucher_detail_request,
    decode_entities,
    display_to_tally_date,
    parse_import_response,
    parse_submission_response,
    parse_voucher_detail_xml,
    parse_voucher_list_xml,
    to_display_date,
)
from tally_order_sync.errors import MalformedResponseError
from tally_order_sync.outcomes import Created, Rejected, TransportError

FIX = Path(__file__).parent / "fixtures"


def read(p):
    return (FIX / p).read_text(encoding="utf-8")


class TestSubmissionResponse:
    def test_created(self):
        outcome = parse_submission_response(read("import_created.xml"), voucher_number="SO-1")
        assert isinstance(outcome, Created)
        assert outcome.ok
        assert outcome.voucher_number == "SO-1"

    def test_inline_counts(self):
        body = "<CREATED>1</CREATED><ERRORS>0</ERRORS><EXCEPTIONS>0</EXCEPTIONS>"
        assert isinstance(parse_submission_response(body), Created)

    def test_rejected_with_decoded_line_error(self):
        outcome = parse_submission_response(read("import_duplicate.xml"))
        assert isinstance(outcome, Rejected)
        assert outcome.errors == 1
        assert outcome.line_errors == [
            "Voucher Number 'SO-251016084812' already exists & cannot be duplicated"
        ]
        assert "Specific Errors:" in outcome.message

    def test_rejected_without_line_errors_has_no_error_list(self):
        outcome = parse_submission_response(read("import_errors_only.xml"))
        assert isinstance(outcome, Rejected)
        assert "Created: 0, Errors: 1, Exceptions: 0" in outcome.message
        assert "Specific Errors" not in outcome.message

    def test_created_with_exceptions_is_rejected(self):
        body = "<CREATED>1</CREATED><ERRORS>0</ERRORS><EXCEPTIONS>1</EXCEPTIONS>"
        assert isinstance(parse_submission_response(body), Rejected)

    def test_unrecognised_body_is_malformed(self):
        outcome = parse_submission_response("<html><body>Bad Gateway</body></html>")
        assert isinstance(outcome, TransportError)
        assert outcome.error == "malformed"

    def test_import_counts(self):
        counts = parse_import_response(read("approval_altered.xml"))
        assert counts.altered == 1
        assert counts.created == 0
        assert counts.last_voucher_id == "1042"

    def test_empty_body_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_import_response("")


class TestVoucherList:
    def test_rows_in_column_order(self):
        rows = parse_voucher_list_xml(read("optional_vouchers.xml"))
        assert [r.master_id for r in rows] == [98, 101, 105]
        first = rows[0]
        assert first.date == "14-Oct-25"
        assert first.invoice_no == "SO-251014101500"
        assert first.voucher_type == "Sales Order"
        assert first.customer == "Sharma & Sons"
        assert first.amount == -1200.0
        assert first.narration == "Urgent"
        assert rows[2].amount == -2500.5

    def test_no_rows(self):
        assert parse_voucher_list_xml("<ENVELOPE></ENVELOPE>") == []

    def test_tally_error_line_raises(self):
        body = "<ENVELOPE><LINEERROR>Could not find Company &apos;X&apos;</LINEERROR></ENVELOPE>"
        with pytest.raises(MalformedResponseError, match="Could not find Company 'X'"):
            parse_voucher_list_xml(body)

    @pytest.mark.parametrize("body", ["", "<html><body>502 Bad Gateway</body></html>", "Service Unavailable"])
    def test_non_row_set_raises(self, body):
        with pytest.raises(MalformedResponseError):
            parse_voucher_list_xml(body)

    def test_short_row(self):
        rows = parse_voucher_list_xml("<ROW><COL>7</COL><COL>20250101</COL></ROW>")
        assert rows[0].master_id == 7
        assert rows[0].customer == ""


class TestVoucherDetail:
    def test_header_and_entries(self):
        detail = parse_voucher_detail_xml(read("voucher_detail.xml"), master_id="101")
        assert detail.master_id == "101"
        assert detail.voucher_number == "SO-251016084812"
        assert detail.date == "16-Oct-25"
        assert detail.voucher_type == "Sales Order"
        assert detail.party == "Acme Distributors"
        assert detail.narration == "Deliver to godown 2"

        party, sales = detail.ledger_entries
        assert party.credit == 345.0 and party.debit == 0.0
        assert sales.debit == 345.0 and sales.credit == 0.0
        assert detail.total_debit == detail.total_credit == 345.0

        items = detail.inventory_entries
        assert [i.stock_item_name for i in items] == ["Widget A", "Widget & Bolt"]
        assert items[1].amount == 45.0

    def test_no_voucher_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_voucher_detail_xml("<ENVELOPE><BODY/></ENVELOPE>")

    def test_not_xml_raises(self):
        with pytest.raises(MalformedResponseError):
            parse_voucher_detail_xml("Internal Server Error")


class TestQueryTemplates:
    def test_watermark_filter(self):
        xml = build_optional_vouchers_request("Acme & Co", date(2025, 1, 1), date(2025, 10, 16), after_master_id=100)
        assert "$IsOptional AND $MasterID>100" in xml
        root = etree.fromstring(xml.encode("utf-8"))
        assert root.findtext(".//SVCURRENTCOMPANY") == "Acme & Co"
        assert '"01-Jan-25"' in xml
        assert '"16-Oct-25"' in xml

    def test_list_without_filter(self):
        xml = build_optional_vouchers_request("Acme", "1-Jan-25", "16-Oct-25")
        assert "$MasterID>" not in xml
        assert "where $IsOptional" in xml

    def test_detail_by_master_id(self):
        root = etree.fromstring(build_voucher_detail_request("Acme", 101).encode("utf-8"))
        id_el = root.find("HEADER/ID")
        assert id_el.text == "ID:101"
        assert id_el.get("TYPE") == "Name"
        assert [f.text for f in root.findall(".//FETCH")][:3] == ["Date", "VoucherTypeName", "VoucherNumber"]


class TestValues:
    def test_dates(self):
        assert to_display_date("20251016") == "16-Oct-25"
        assert to_display_date("garbage") == "garbage"
        assert display_to_tally_date("16-Oct-25") == "20251016"
        assert display_to_tally_date("6-oct-2025") == "20251006"
        assert display_to_tally_date("20251016") == "20251016"

    def test_decode_entities(self):
        assert decode_entities("A &amp; B&apos;s &#13;") == "A & B's"
