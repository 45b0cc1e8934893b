"""
Import Data envelopes for Tally: sales orders, receipts and approvals.

Payloads are built as lxml element trees and serialized with
`etree.tostring`, so lxml escapes markup in names, narrations and
addresses. Characters XML 1.0 cannot carry are stripped from free text
before it is set on an element.
"""
from __future__ import annotations
import re
from datetime import date, datetime
from typing import Optional
from lxml import etree

from ..models import Order, OrderLine, Party, ReceiptLink
from .values import MONTHS, strip_invalid_chars, to_tally_date


def _add(parent: etree._Element, tag: str, text: object = None, **attrs: object) -> etree._Element:
    """SubElement with cleaned text and attribute values."""
    child = etree.SubElement(parent, tag, {k: strip_invalid_chars(v) for k, v in attrs.items()})
    if text is not None:
        child.text = strip_invalid_chars(text)
    return child


def _serialize(envelope: etree._Element) -> str:
    return etree.tostring(envelope, encoding="unicode", pretty_print=True)


def format_amount(value: float) -> str:
    return f"{value:.2f}"


def _number(value: float) -> str:
    """Quantities and rates without trailing zeros or exponents."""
    return f"{value:.6f}".rstrip("0").rstrip(".")


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def split_into_chunks(text: str, chunk_size: int = 20) -> list[str]:
    """Tally order-term lines hold at most 20 characters."""
    if not text:
        return []
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


def _address_lines(text: str) -> list[str]:
    return [line.strip() for line in re.split(r"\r?\n", text or "") if line.strip()]


def _strip_region(line: str, state: str, country: str) -> str:
    """Drop state and country names that the form appends to address lines."""
    if state:
        line = re.sub(rf"\s*{re.escape(state)}\s*,?\s*", "", line, flags=re.IGNORECASE)
    if country:
        line = re.sub(rf"\s*,?\s*{re.escape(country)}\s*", "", line, flags=re.IGNORECASE)
    return line.strip()


def _contact_lines(party: Party) -> list[str]:
    return [v for v in (party.contact, party.phone, party.mobile, party.email) if v]


def import_envelope(company_name: str, voucher: etree._Element) -> etree._Element:
    """Wrap one VOUCHER in the Import Data / Vouchers envelope."""
    envelope = etree.Element("ENVELOPE")
    _add(_add(envelope, "HEADER"), "TALLYREQUEST", "Import Data")
    import_data = _add(_add(envelope, "BODY"), "IMPORTDATA")
    desc = _add(import_data, "REQUESTDESC")
    _add(desc, "REPORTNAME", "Vouchers")
    _add(_add(desc, "STATICVARIABLES"), "SVCURRENTCOMPANY", company_name)
    request_data = _add(import_data, "REQUESTDATA")
    message = etree.SubElement(request_data, "TALLYMESSAGE", nsmap={"UDF": "TallyUDF"})
    message.append(voucher)
    return envelope


def _inventory_entry(line: OrderLine, order: Order) -> etree._Element:
    entry = etree.Element("ALLINVENTORYENTRIES.LIST")
    _add(entry, "STOCKITEMNAME", line.name)
    _add(entry, "ISDEEMEDPOSITIVE", "No")
    _add(entry, "RATE", _number(line.rate))
    _add(entry, "AMOUNT", format_amount(line.value))
    _add(entry, "ACTUALQTY", _number(line.quantity))
    _add(entry, "BILLEDQTY", _number(line.quantity))
    if line.discount_percent > 0:
        _add(entry, "DISCOUNT", _number(line.discount_percent))
    if line.tax_percent > 0:
        _add(entry, "TAXPERCENT", _number(line.tax_percent))

    batch = _add(entry, "BATCHALLOCATIONS.LIST")
    _add(batch, "BATCHNAME", line.batch.strip() if line.batch and line.batch.strip() else "Primary Batch")
    _add(batch, "ORDERNO", order.order_number)
    _add(batch, "ACTUALQTY", _number(line.quantity))
    _add(batch, "BILLEDQTY", _number(line.quantity))
    _add(batch, "AMOUNT", format_amount(line.value))
    _add(batch, "ORDERDUEDATE", order.due_date)

    description = [d.strip() for d in (line.description or "").split("\n") if d.strip()]
    if description:
        desc = _add(entry, "BASICUSERDESCRIPTION.LIST", TYPE="String")
        for d in description:
            _add(desc, "BASICUSERDESCRIPTION", d)
    return entry


def build_voucher_xml(order: Order, *, include_addresses: bool = True) -> str:
    """
    Build the Import Data request for a sales order.

    ISOPTIONAL comes from `order.post_as_optional`, which the submitter sets
    from the credit assessment. Inventory lines are the counter leg of the
    party ledger entry, which carries the negated order total.

    `include_addresses=False` leaves out the ADDRESS.LIST and
    BASICBUYERADDRESS.LIST blocks.
    """
    customer = order.customer
    consignee = order.consignee or Party(name="")
    vdate = to_tally_date(order.voucher_date)
    mailing_name = customer.mailing_name or customer.name

    v = etree.Element("VOUCHER")
    _add(v, "DATE", vdate)
    _add(v, "VOUCHERTYPENAME", order.voucher_type)
    _add(v, "VOUCHERNUMBER", order.order_number)
    _add(v, "PARTYNAME", customer.name)
    _add(v, "PARTYLEDGERNAME", customer.name)
    _add(v, "ISOPTIONAL", _yes_no(order.post_as_optional))
    _add(v, "REFERENCE", order.order_number)
    _add(v, "BASICORDERREF", "")
    _add(v, "PARTYGSTIN", customer.gstin)
    _add(v, "EFFECTIVEDATE", vdate)
    _add(v, "BASICDUEDATEOFPYMT", customer.payment_terms)
    _add(v, "NARRATION", customer.narration)
    _add(v, "STATENAME", customer.state)
    _add(v, "COUNTRYOFRESIDENCE", customer.country)
    _add(v, "PLACEOFSUPPLY", customer.state)
    _add(v, "GSTREGISTRATIONTYPE", customer.gst_type)
    _add(v, "CONSIGNEEGSTIN", customer.gstin)
    _add(v, "CONSIGNEEMAILINGNAME", consignee.name or mailing_name)
    _add(v, "CONSIGNEESTATENAME", consignee.state or customer.state)
    _add(v, "CONSIGNEECOUNTRYNAME", consignee.country or customer.country)
    _add(v, "BASICBASEPARTYNAME", mailing_name)
    _add(v, "PARTYPINCODE", customer.pincode)
    _add(v, "CONSIGNEEPINCODE", consignee.pincode or customer.pincode)

    if include_addresses:
        contacts = _contact_lines(customer)
        addresses = _add(v, "ADDRESS.LIST", TYPE="String")
        for line in _address_lines(customer.address) + contacts:
            _add(addresses, "ADDRESS", line)

        state = (consignee.state or customer.state).strip()
        country = (consignee.country or customer.country).strip()
        buyer = _add(v, "BASICBUYERADDRESS.LIST", TYPE="String")
        for line in _address_lines(consignee.address or customer.address):
            cleaned = _strip_region(line, state, country)
            if cleaned:
                _add(buyer, "BASICBUYERADDRESS", cleaned)
        for line in contacts:
            _add(buyer, "BASICBUYERADDRESS", line)

    if customer.delivery_terms:
        terms = _add(v, "BASICORDERTERMS.LIST", TYPE="String")
        for chunk in split_into_chunks(customer.delivery_terms, 20):
            _add(terms, "BASICORDERTERMS", chunk)

    v.extend(_inventory_entry(line, order) for line in order.lines)

    party = _add(v, "LEDGERENTRIES.LIST")
    _add(party, "LEDGERNAME", customer.name)
    _add(party, "ISDEEMEDPOSITIVE", "Yes")
    _add(party, "AMOUNT", format_amount(-order.total))

    return _serialize(import_envelope(order.company.name, v))


def build_receipt_xml(
    company_name: str,
    customer_name: str,
    bank_ledger: str,
    link: ReceiptLink,
    voucher_date: Optional[date] = None,
) -> str:
    """
    Build the Receipt voucher recorded after an online payment.

    The customer leg carries a bill allocation naming the order; the bank
    leg carries the opposite amount.
    """
    vdate = to_tally_date(voucher_date or link.paid_at.date())
    amount = format_amount(link.amount)

    v = etree.Element("VOUCHER")
    _add(v, "DATE", vdate)
    _add(v, "NARRATION", link.narration())
    _add(v, "VOUCHERTYPENAME", "Receipt")
    _add(v, "PARTYLEDGERNAME", customer_name)
    _add(v, "ISOPTIONAL", "No")
    _add(v, "EFFECTIVEDATE", vdate)

    party = _add(v, "ALLLEDGERENTRIES.LIST")
    _add(party, "LEDGERNAME", customer_name)
    _add(party, "ISDEEMEDPOSITIVE", "No")
    _add(party, "AMOUNT", amount)
    bill = _add(party, "BILLALLOCATIONS.LIST")
    _add(bill, "NAME", link.bill_reference())
    _add(bill, "BILLTYPE", "New Ref")
    _add(bill, "AMOUNT", amount)

    bank = _add(v, "ALLLEDGERENTRIES.LIST")
    _add(bank, "LEDGERNAME", bank_ledger)
    _add(bank, "ISDEEMEDPOSITIVE", "Yes")
    _add(bank, "AMOUNT", format_amount(-link.amount))

    return _serialize(import_envelope(company_name, v))


def approval_narration(current: str, approver: str, when: datetime) -> str:
    """Append 'Approved by: <user> on 16-Oct-25 08:48' to the existing narration."""
    stamp = f"{when.day}-{MONTHS[when.month - 1]}-{when.strftime('%y %H:%M')}"
    info = f"Approved by: {approver} on {stamp}"
    return f"{current} | {info}" if current else info


def build_approval_xml(company_name: str, master_id: str, voucher_date: str, narration: str) -> str:
    """
    Alter an optional voucher in place: clear ISOPTIONAL and replace the
    narration. `voucher_date` is YYYYMMDD.
    """
    envelope = etree.Element("ENVELOPE")
    header = _add(envelope, "HEADER")
    _add(header, "VERSION", "1")
    _add(header, "TALLYREQUEST", "IMPORT")
    _add(header, "TYPE", "DATA")
    _add(header, "ID", "Vouchers")
    body = _add(envelope, "BODY")
    _add(_add(_add(body, "DESC"), "STATICVARIABLES"), "SVCURRENTCOMPANY", company_name)
    message = _add(_add(body, "DATA"), "TALLYMESSAGE")
    voucher = _add(message, "VOUCHER", DATE=voucher_date, TAGNAME="MASTERID", TAGVALUE=master_id, ACTION="Alter")
    _add(voucher, "ISOPTIONAL", "No")
    _add(voucher, "NARRATION", narration)
    return _serialize(envelope)
