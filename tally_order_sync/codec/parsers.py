"""
Parsers for Tally gateway responses.

Handles:
- Import Data responses (CREATED / ALTERED / ERRORS / EXCEPTIONS / LINEERROR)
- ODBC result sets (<ROW><COL>...</COL></ROW>) for the optional-voucher list
- Object exports of a single VOUCHER

Import responses and ODBC rows are scanned with regular expressions because
the gateway wraps them inconsistently; voucher objects go through lxml.
"""
from __future__ import annotations
import html
import re
from lxml import etree
from loguru import logger

from ..errors import MalformedResponseError
from ..models import ImportCounts, InventoryEntry, LedgerEntry, PendingVoucher, VoucherDetail
from ..outcomes import Created, Rejected, SubmissionOutcome, TransportError
from .values import parse_bool, parse_float, parse_int, sanitize_xml, text, to_display_date

_COUNT_TAGS = ("CREATED", "ALTERED", "ERRORS", "EXCEPTIONS")
_LINE_ERROR_RE = re.compile(r"<LINEERROR>(.*?)</LINEERROR>", re.IGNORECASE | re.DOTALL)
_LAST_VCH_RE = re.compile(r"<LASTVCHID>\s*(\d+)\s*</LASTVCHID>", re.IGNORECASE)
_ROW_RE = re.compile(r"<ROW>(.*?)</ROW>", re.IGNORECASE | re.DOTALL)
_COL_RE = re.compile(r"<COL>(.*?)</COL>|<COL\s*/>", re.IGNORECASE | re.DOTALL)
_RESULT_SET_RE = re.compile(r"^\s*(<\?xml[^>]*>\s*)?<ENVELOPE\b|<RESULTSET\b|<ROW>", re.IGNORECASE)


def decode_entities(value: str) -> str:
    """Decode &amp; &apos; &#13; and friends in text Tally sends back."""
    return html.unescape(value or "").strip()


def _count(tag: str, xml_text: str) -> int | None:
    match = re.search(rf"<{tag}>\s*(\d+)\s*</{tag}>", xml_text, re.IGNORECASE)
    return int(match.group(1)) if match else None


def parse_import_response(xml_text: str) -> ImportCounts:
    """
    Extract the import counters from a Tally response.

    Missing counters read as zero. Raises MalformedResponseError when the
    body carries none of the counter tags and no line errors.
    """
    xml_text = xml_text or ""
    counts = {tag: _count(tag, xml_text) for tag in _COUNT_TAGS}
    line_errors = [decode_entities(m) for m in _LINE_ERROR_RE.findall(xml_text)]
    line_errors = [e for e in line_errors if e]

    if all(v is None for v in counts.values()) and not line_errors:
        preview = xml_text[:200].replace("\n", " ")
        raise MalformedResponseError(f"No import counters in response: {preview!r}")

    last_vch = _LAST_VCH_RE.search(xml_text)
    return ImportCounts(
        created=counts["CREATED"] or 0,
        altered=counts["ALTERED"] or 0,
        errors=counts["ERRORS"] or 0,
        exceptions=counts["EXCEPTIONS"] or 0,
        line_errors=line_errors,
        last_voucher_id=last_vch.group(1) if last_vch else None,
    )


def parse_submission_response(xml_text: str, voucher_number: str = "", optional: bool = False) -> SubmissionOutcome:
    """
    Classify the response to a voucher import.

    Created only when CREATED > 0 with no errors and no exceptions. A body
    without any recognizable tag is a malformed transport result, never a
    business rejection.
    """
    try:
        counts = parse_import_response(xml_text)
    except MalformedResponseError as e:
        logger.error(f"Unreadable import response: {e}")
        return TransportError(error="malformed", detail=str(e))

    if counts.created > 0 and counts.errors == 0 and counts.exceptions == 0:
        return Created(voucher_number=voucher_number, optional=optional)

    return Rejected(
        created=counts.created,
        errors=counts.errors,
        exceptions=counts.exceptions,
        line_errors=counts.line_errors,
    )


def _columns(row_xml: str) -> list[str]:
    return [decode_entities(m.group(1) or "") for m in _COL_RE.finditer(row_xml)]


def parse_voucher_list_xml(xml_text: str) -> list[PendingVoucher]:
    """
    Parse the ODBC row set of optional vouchers.

    Columns arrive in query order: MasterID, Date, InvNo, VoucherType,
    Customer, Amount, Narration. Rows whose MasterID is not numeric are
    dropped.

    Raises:
        MalformedResponseError: the body carries a LINEERROR, or is not a
            row set at all (an HTML error page, an empty body)
    """
    body = xml_text or ""
    line_errors = [decode_entities(e) for e in _LINE_ERROR_RE.findall(body)]
    if line_errors:
        raise MalformedResponseError(f"Tally reported an error: {line_errors[0]}")
    if not _RESULT_SET_RE.search(body):
        raise MalformedResponseError(f"Response is not an ODBC row set: {body[:200]!r}")

    vouchers: list[PendingVoucher] = []
    for row_xml in _ROW_RE.findall(body):
        cols = _columns(row_xml)
        if not cols:
            continue
        master_id = parse_int(cols[0])
        if master_id is None:
            logger.debug(f"Skipping row with non-numeric MasterID: {cols[0]!r}")
            continue
        cols += [""] * (7 - len(cols))
        vouchers.append(PendingVoucher(
            master_id=master_id,
            date=to_display_date(cols[1]),
            invoice_no=cols[2],
            voucher_type=cols[3],
            customer=cols[4],
            amount=parse_float(cols[5]),
            narration=cols[6],
        ))

    logger.debug(f"Parsed {len(vouchers)} optional vouchers")
    return vouchers


def _parse_ledger_entries(voucher: etree._Element) -> list[LedgerEntry]:
    entries = voucher.findall(".//LEDGERENTRIES.LIST") or voucher.findall(".//ALLLEDGERENTRIES.LIST")
    result = []
    for le in entries:
        ledger = text(le, "LEDGERNAME")
        if not ledger:
            continue
        amount = parse_float(text(le, "AMOUNT"))
        is_positive = parse_bool(text(le, "ISDEEMEDPOSITIVE"))
        # ISDEEMEDPOSITIVE=Yes is the credit side
        result.append(LedgerEntry(
            ledger_name=ledger,
            amount=amount,
            is_deemed_positive=is_positive,
            debit=0.0 if is_positive else abs(amount),
            credit=abs(amount) if is_positive else 0.0,
        ))
    return result


def _parse_inventory_entries(voucher: etree._Element) -> list[InventoryEntry]:
    entries = voucher.findall(".//ALLINVENTORYENTRIES.LIST") or voucher.findall(".//INVENTORYENTRIES.LIST")
    result = []
    for ie in entries:
        item = text(ie, "STOCKITEMNAME")
        if not item:
            continue
        result.append(InventoryEntry(
            stock_item_name=item,
            actual_qty=text(ie, "ACTUALQTY"),
            rate=text(ie, "RATE"),
            amount=parse_float(text(ie, "AMOUNT")),
        ))
    return result


def parse_voucher_detail_xml(xml_text: str, master_id: str = "") -> VoucherDetail:
    """
    Parse an Object export of one VOUCHER.

    Raises MalformedResponseError when the body is not XML or holds no
    VOUCHER element.
    """
    try:
        root = etree.fromstring(sanitize_xml(xml_text or "").encode("utf-8"))
    except etree.XMLSyntaxError as e:
        raise MalformedResponseError(f"Invalid XML from Tally: {e}") from e

    voucher = root if root.tag == "VOUCHER" else root.find(".//VOUCHER")
    if voucher is None:
        raise MalformedResponseError("No VOUCHER element in response")

    reference = text(voucher, "REFERENCE")
    detail = VoucherDetail(
        master_id=voucher.get("MASTERID") or text(voucher, "MASTERID") or master_id,
        voucher_number=text(voucher, "VOUCHERNUMBER") or reference,
        date=to_display_date(text(voucher, "DATE")),
        voucher_type=text(voucher, "VOUCHERTYPENAME") or voucher.get("VCHTYPE", ""),
        party=text(voucher, "PARTYLEDGERNAME") or text(voucher, "PARTYNAME"),
        narration=text(voucher, "NARRATION"),
        reference=reference,
        ledger_entries=_parse_ledger_entries(voucher),
        inventory_entries=_parse_inventory_entries(voucher),
    )
    logger.debug(
        f"Parsed voucher {detail.voucher_number or detail.master_id}: "
        f"{len(detail.ledger_entries)} ledger entries, {len(detail.inventory_entries)} inventory entries"
    )
    return detail
