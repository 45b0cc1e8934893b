"""
Credit check run before every order submission.

The party's credit limit, closing balance and overdue bills come from the
gateway's credit endpoint. A breached limit or any overdue bill flags the
order optional (pending authorization), or blocks it outright when the
company enforces a hard block. A failed or slow lookup never blocks.
"""
from __future__ import annotations
import asyncio
from typing import Optional
from loguru import logger
from pydantic import ValidationError

from .client import TallyClient
from .errors import MalformedResponseError, TallyError
from .models import CreditAssessment, CreditDecision, CreditLimitInfo, OverdueBill

REASON_BOTH = "Order exceeds credit limit and customer has overdue bills"
REASON_LIMIT = "Order exceeds available credit limit"
REASON_OVERDUE = "Customer has overdue bills"
REASON_UNAVAILABLE = "Failed to fetch credit information"


def evaluate_credit(
    party: str,
    order_total: float,
    info: CreditLimitInfo,
    overdue_bills: list[OverdueBill],
    hard_block: bool = False,
) -> CreditAssessment:
    """
    Apply the credit rules to fetched data.

    Limit and balance are compared by magnitude since Tally signs them by
    Dr/Cr side. A zero limit means no limit is set.
    """
    limit = abs(info.credit_limit)
    balance = abs(info.closing_balance)
    limit_exceeded = limit > 0 and order_total > limit - balance
    has_overdue = len(overdue_bills) > 0

    if limit_exceeded and has_overdue:
        reason = REASON_BOTH
    elif limit_exceeded:
        reason = REASON_LIMIT
    elif has_overdue:
        reason = REASON_OVERDUE
    else:
        reason = ""

    if not reason:
        decision = CreditDecision.ALLOW
    elif hard_block:
        decision = CreditDecision.BLOCK
    else:
        decision = CreditDecision.ALLOW_AS_OPTIONAL

    return CreditAssessment(
        party=party,
        order_total=order_total,
        credit_limit=limit,
        closing_balance=balance,
        overdue_bills=overdue_bills,
        decision=decision,
        reason=reason,
    )


class CreditGate:
    """Fetches credit data for a party and decides how its order may proceed."""

    def __init__(self, client: TallyClient, hard_block: Optional[bool] = None, timeout: Optional[float] = None):
        self.client = client
        self.hard_block = client.config.hard_block_on_credit if hard_block is None else hard_block
        self.timeout = timeout or client.config.credit_timeout

    async def _fetch(self, party: str) -> tuple[CreditLimitInfo, list[OverdueBill]]:
        company = self.client.company
        payload = {
            "tallyloc_id": company.tallyloc_id,
            "company": company.name,
            "guid": company.guid,
            "ledgername": party,
        }
        data = await self.client.post_json(self.client.credit_url, payload, timeout=self.timeout)
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict) or "creditLimitInfo" not in data:
            raise MalformedResponseError("Credit response has no creditLimitInfo")

        info = CreditLimitInfo.model_validate(data["creditLimitInfo"] or {})
        bills = [OverdueBill.model_validate(b) for b in data.get("overdueBills") or []]
        return info, bills

    async def assess(self, party: str, order_total: float) -> CreditAssessment:
        """
        Assess one order. Always returns an assessment; lookup failures
        degrade to ALLOW with `degraded=True`.
        """
        try:
            info, bills = await asyncio.wait_for(self._fetch(party), self.timeout)
        except (TallyError, ValidationError, asyncio.TimeoutError) as e:
            logger.warning(f"Credit check unavailable for '{party}', allowing order: {e}")
            return CreditAssessment.allow(party, order_total, reason=REASON_UNAVAILABLE, degraded=True)

        assessment = evaluate_credit(party, order_total, info, bills, hard_block=self.hard_block)
        logger.info(
            f"Credit check for '{party}': limit={assessment.credit_limit:.2f} "
            f"balance={assessment.closing_balance:.2f} order={order_total:.2f} "
            f"overdue={len(bills)} -> {assessment.decision.value}"
        )
        return assessment
