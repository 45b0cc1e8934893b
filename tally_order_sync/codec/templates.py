"""
Rendering of the read-only query envelopes (optional-voucher list, voucher
detail, connection check).

Templates are rendered with autoescaping on, so company names such as
"A & B Traders" are escaped the same way the builder escapes them.
"""
from __future__ import annotations
from datetime import date
from typing import Optional
from jinja2 import StrictUndefined, Template

from .requests import load_template
from .values import to_query_date


def _render(name: str, **context) -> str:
    return Template(load_template(name), autoescape=True, undefined=StrictUndefined).render(**context)


def build_optional_vouchers_request(
    company: str,
    from_date: date | str,
    to_date: date | str,
    after_master_id: Optional[int] = None,
) -> str:
    """
    ODBC report of optional vouchers in a date window.

    With `after_master_id` the query only returns rows whose MasterID is
    strictly greater, which is what the background poller asks for.
    """
    if isinstance(from_date, date):
        from_date = to_query_date(from_date)
    if isinstance(to_date, date):
        to_date = to_query_date(to_date)
    if after_master_id is not None:
        after_master_id = int(after_master_id)
    return _render(
        "optional_vouchers",
        company=company,
        from_date=from_date,
        to_date=to_date,
        after_master_id=after_master_id,
    )


def build_voucher_detail_request(company: str, master_id: int | str) -> str:
    """Object export of one voucher by MasterID."""
    return _render("voucher_detail", company=company, master_id=master_id)


def build_list_groups_request(company: str) -> str:
    return _render("list_groups", company=company)
