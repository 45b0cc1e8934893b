"""
XML codec for the Tally gateway.

- Builders: sales order, receipt and approval Import Data envelopes
- Templates: read-only query envelopes (optional vouchers, voucher detail)
- Parsers: import responses, ODBC row sets, voucher objects
"""

from .builder import (
    build_voucher_xml,
    build_receipt_xml,
    build_approval_xml,
    approval_narration,
)
from .templates import (
    build_optional_vouchers_request,
    build_voucher_detail_request,
    build_list_groups_request,
)
from .parsers import (
    decode_entities,
    parse_import_response,
    parse_submission_response,
    parse_voucher_list_xml,
    parse_voucher_detail_xml,
)
from .values import sanitize_xml, strip_invalid_chars, to_display_date, display_to_tally_date

__all__ = [
    # Builders
    "build_voucher_xml",
    "build_receipt_xml",
    "build_approval_xml",
    "approval_narration",
    # Templates
    "build_optional_vouchers_request",
    "build_voucher_detail_request",
    "build_list_groups_request",
    # Parsers
    "decode_entities",
    "parse_import_response",
    "parse_submission_response",
    "parse_voucher_list_xml",
    "parse_voucher_detail_xml",
    # Values
    "sanitize_xml",
    "strip_invalid_chars",
    "to_display_date",
    "display_to_tally_date",
]
