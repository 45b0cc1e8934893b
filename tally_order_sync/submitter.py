"""
Voucher submission: build, send once, interpret.

A voucher import is never retried here. Tally may commit a voucher even when
the client gives up waiting, so a replay could post a duplicate; retrying is
left to the user after checking Tally.
"""
from __future__ import annotations
import asyncio
from datetime import datetime
from typing import Optional
from loguru import logger

from .client import TallyClient
from .codec import build_voucher_xml, parse_submission_response
from .codec.values import IST
from .errors import TallyAuthError, TallyConnectionError, TallyHTTPError, TallyTimeoutError
from .models import CreditAssessment, CreditDecision, Order
from .outcomes import Blocked, SubmissionOutcome, Timeout, TransportError


def generate_order_number(prefix: str = "", suffix: str = "", now: Optional[datetime] = None) -> str:
    """YYMMDDHHMMSS in India Standard Time, e.g. SO-251016084812."""
    now = now.astimezone(IST) if now else datetime.now(IST)
    return f"{prefix}{now.strftime('%y%m%d%H%M%S')}{suffix}"


async def send_voucher(
    client: TallyClient,
    xml: str,
    *,
    voucher_number: str = "",
    optional: bool = False,
    timeout: Optional[float] = None,
    auth_token: Optional[str] = None,
) -> SubmissionOutcome:
    """
    POST one Import Data envelope and turn whatever happens into an outcome.

    Shared by order and receipt submission. Never raises for transport or
    parse failures.
    """
    try:
        body = await client.post_xml(xml, timeout=timeout, auth_token=auth_token)
    except TallyTimeoutError as e:
        return Timeout(seconds=e.timeout)
    except TallyAuthError:
        return TransportError(error="http", status_code=403, company=client.company.name)
    except TallyHTTPError as e:
        return TransportError(error="http", status_code=e.status_code, detail=e.body[:500])
    except TallyConnectionError as e:
        return TransportError(error="network", detail=str(e))

    return parse_submission_response(body, voucher_number=voucher_number, optional=optional)


class VoucherSubmitter:
    """
    Submits sales orders to Tally.

    Usage:
        submitter = VoucherSubmitter(client)
        assessment = await CreditGate(client).assess(order.customer.name, order.total)
        outcome = await submitter.submit(order, assessment)
    """

    def __init__(self, client: TallyClient, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout or client.config.submit_timeout
        self._in_flight: set[asyncio.Task] = set()

    async def submit(
        self,
        order: Order,
        assessment: CreditAssessment,
        auth_token: Optional[str] = None,
    ) -> SubmissionOutcome:
        """
        Submit one order with ISOPTIONAL taken from the credit assessment.

        Cancelling the caller does not cancel the request: it runs to
        completion and its outcome is logged and dropped.
        """
        if assessment.decision == CreditDecision.BLOCK:
            logger.warning(f"Order {order.order_number} blocked by credit check: {assessment.reason}")
            return Blocked(reason=assessment.reason)

        update = {"post_as_optional": assessment.post_as_optional}
        if "voucher_type" not in order.model_fields_set:
            update["voucher_type"] = self.client.config.voucher_type_name
        order = order.model_copy(update=update)
        xml = build_voucher_xml(order)
        logger.info(
            f"Submitting order {order.order_number} for '{order.customer.name}' "
            f"total={order.total:.2f} optional={order.post_as_optional}"
        )

        task = asyncio.ensure_future(send_voucher(
            self.client,
            xml,
            voucher_number=order.order_number,
            optional=order.post_as_optional,
            timeout=self.timeout,
            auth_token=auth_token,
        ))
        self._in_flight.add(task)
        task.add_done_callback(self._finished(order.order_number))
        return await asyncio.shield(task)

    def _finished(self, order_number: str):
        def callback(task: asyncio.Task) -> None:
            self._in_flight.discard(task)
            if task.cancelled() or task.exception() is not None:
                return
            outcome = task.result()
            if outcome.ok:
                logger.info(f"Order {order_number}: {outcome.message}")
            else:
                logger.warning(f"Order {order_number} not created ({outcome.kind}): {outcome.message}")
        return callback
