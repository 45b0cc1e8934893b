"""
Authorization of optional vouchers.

Lists optional vouchers, shows one in detail, and approves it by altering
the voucher in place (ISOPTIONAL=No plus an "Approved by" note in the
narration). Approved vouchers drop out of later listings because Tally no
longer reports them as optional.
"""
from __future__ import annotations
from datetime import date, datetime
from typing import Optional
from loguru import logger

from .client import TallyClient
from .codec import (
    approval_narration,
    build_approval_xml,
    build_optional_vouchers_request,
    build_voucher_detail_request,
    display_to_tally_date,
    parse_import_response,
    parse_voucher_detail_xml,
    parse_voucher_list_xml,
)
from .codec.values import IST
from .errors import MalformedResponseError, TallyAuthError, TallyError, TallyTimeoutError
from .models import PendingVoucher, VoucherDetail
from .outcomes import ACCESS_DENIED_MESSAGE, ApprovalOutcome


class VoucherAuthorizer:
    """
    Holds the pending list shown to the approver.

    `load_pending` and `fetch_detail` raise TallyError on transport
    failures and on bodies Tally rejected; `approve` always returns an
    ApprovalOutcome.

    Approvals are remembered for this instance only. Each listing forgets
    approvals Tally no longer reports as optional, so the set stays no larger
    than the optional vouchers still lagging in Tally.
    """

    def __init__(self, client: TallyClient):
        self.client = client
        self.pending: list[PendingVoucher] = []
        self._approved: set[str] = set()

    async def load_pending(
        self,
        from_date: Optional[date | str] = None,
        to_date: Optional[date | str] = None,
    ) -> list[PendingVoucher]:
        """Fetch optional vouchers in the date window, newest first."""
        xml = build_optional_vouchers_request(
            self.client.company.name,
            from_date=from_date or self.client.config.optional_since,
            to_date=to_date or datetime.now(IST).date(),
        )
        body = await self.client.fetch_xml(xml)
        rows = parse_voucher_list_xml(body)
        self._approved &= {str(r.master_id) for r in rows}
        self.pending = sorted(
            (r for r in rows if str(r.master_id) not in self._approved),
            key=lambda r: r.master_id,
            reverse=True,
        )
        logger.info(f"{len(self.pending)} optional voucher(s) pending for {self.client.company.name}")
        return self.pending

    async def fetch_detail(self, master_id: int | str) -> VoucherDetail:
        xml = build_voucher_detail_request(self.client.company.name, master_id)
        body = await self.client.fetch_xml(xml)
        return parse_voucher_detail_xml(body, master_id=str(master_id))

    async def approve(
        self,
        master_id: int | str,
        display_date: str,
        narration: str,
        approver_name: str,
        now: Optional[datetime] = None,
    ) -> ApprovalOutcome:
        """
        Approve one optional voucher.

        A MasterID already approved through this instance is not sent again.
        """
        key = str(master_id)
        if key in self._approved:
            return ApprovalOutcome(
                master_id=key, approved=True, already_approved=True, message="Voucher already approved"
            )

        new_narration = approval_narration(narration, approver_name, now or datetime.now(IST))
        xml = build_approval_xml(
            self.client.company.name, key, display_to_tally_date(display_date), new_narration
        )

        logger.info(f"Approving voucher {key} as {approver_name}")
        try:
            body = await self.client.post_xml(xml, timeout=self.client.config.submit_timeout)
            counts = parse_import_response(body)
        except TallyAuthError:
            message = ACCESS_DENIED_MESSAGE.format(company=f'"{self.client.company.name}"')
            return ApprovalOutcome(master_id=key, approved=False, message=message)
        except TallyTimeoutError as e:
            logger.warning(f"Approval of voucher {key} timed out")
            return ApprovalOutcome(
                master_id=key,
                approved=False,
                message=f"Request timed out after {e.timeout:g} seconds. Refresh the list before approving again.",
            )
        except MalformedResponseError as e:
            logger.error(f"Unreadable approval response for voucher {key}: {e}")
            return ApprovalOutcome(
                master_id=key, approved=False, message="Tally returned a response that could not be read."
            )
        except TallyError as e:
            return ApprovalOutcome(master_id=key, approved=False, message=f"Failed to approve voucher: {e}")

        if counts.errors or counts.exceptions or counts.created + counts.altered == 0:
            reason = counts.line_errors[0] if counts.line_errors else "Failed to approve voucher"
            logger.warning(f"Tally refused approval of voucher {key}: {reason}")
            return ApprovalOutcome(master_id=key, approved=False, message=reason)

        self._approved.add(key)
        self.pending = [p for p in self.pending if str(p.master_id) != key]
        logger.info(f"Voucher {key} approved")
        return ApprovalOutcome(master_id=key, approved=True, message="Voucher approved successfully")
