"""
Result types handed back to the form layer.

Each operation returns exactly one variant; callers branch on `kind` or
`isinstance` and show `message` to the user.
"""
from __future__ import annotations
from enum import Enum
from typing import Annotated, Literal, Union
from pydantic import BaseModel, Field

from .models import SyncWatermark

ACCESS_DENIED_MESSAGE = (
    "Access denied: you don't have permission to post vouchers for {company}. "
    "Your session may have expired or the company access was revoked. "
    "Try logging in again or selecting a different company."
)


# --- voucher submission ---------------------------------------------------

class Created(BaseModel):
    kind: Literal["created"] = "created"
    voucher_number: str
    optional: bool = False

    @property
    def ok(self) -> bool:
        return True

    @property
    def message(self) -> str:
        suffix = " (posted as optional, pending authorization)" if self.optional else ""
        return f"Voucher {self.voucher_number} created in Tally{suffix}"


class Rejected(BaseModel):
    kind: Literal["rejected"] = "rejected"
    created: int = 0
    errors: int = 0
    exceptions: int = 0
    line_errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        msg = (
            "Tally could not create the voucher.\n\n"
            f"Created: {self.created}, Errors: {self.errors}, Exceptions: {self.exceptions}"
        )
        if self.line_errors:
            msg += "\n\nSpecific Errors:\n" + "\n".join(self.line_errors)
        return msg


class Blocked(BaseModel):
    kind: Literal["blocked"] = "blocked"
    reason: str

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return f"Order blocked by credit check: {self.reason}"


class TransportError(BaseModel):
    """Network failure, non-2xx status or an unreadable 2xx body."""
    kind: Literal["transport_error"] = "transport_error"
    # "network", "http" or "malformed"
    error: str
    status_code: int | None = None
    detail: str = ""
    company: str = ""

    @property
    def ok(self) -> bool:
        return False

    @property
    def auth_revoked(self) -> bool:
        return self.status_code == 403

    @property
    def message(self) -> str:
        if self.auth_revoked:
            return ACCESS_DENIED_MESSAGE.format(company=f'"{self.company}"' if self.company else "this company")
        if self.error == "malformed":
            return "Tally returned a response that could not be read. Please check the voucher in Tally before retrying."
        if self.status_code is not None:
            return f"Failed to reach Tally. Status: {self.status_code}"
        return "Network error. Please check your connection and try again."


class Timeout(BaseModel):
    kind: Literal["timeout"] = "timeout"
    seconds: float

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        # Tally may still have committed the voucher
        return (
            f"Request timed out after {self.seconds:g} seconds. "
            "Check Tally for the voucher before submitting again."
        )


SubmissionOutcome = Annotated[
    Union[Created, Rejected, Blocked, TransportError, Timeout],
    Field(discriminator="kind"),
]


# --- payment reconciliation -----------------------------------------------

class NoPaymentRequested(BaseModel):
    kind: Literal["no_payment"] = "no_payment"

    @property
    def message(self) -> str:
        return "Order created. You can collect payment later."


class PaymentSucceeded(BaseModel):
    kind: Literal["paid"] = "paid"
    payment_id: str
    gateway_order_id: str
    receipt: SubmissionOutcome

    @property
    def receipt_created(self) -> bool:
        return self.receipt.ok

    @property
    def message(self) -> str:
        head = f"Payment ID: {self.payment_id}\nRazorpay Order ID: {self.gateway_order_id}"
        if self.receipt_created:
            return f"Order created & payment successful.\n{head}\n\nReceipt created in Tally."
        return (
            "Order created & payment successful - receipt failed.\n"
            f"{head}\n\n{self.receipt.message}\n\nPlease create receipt manually in Tally."
        )


class PaymentFailed(BaseModel):
    kind: Literal["payment_failed"] = "payment_failed"
    reason: str

    @property
    def message(self) -> str:
        return f"Order created - payment failed: {self.reason}\n\nYou can collect payment later."


class PaymentCancelled(BaseModel):
    kind: Literal["payment_cancelled"] = "payment_cancelled"

    @property
    def message(self) -> str:
        return "Order created - payment cancelled. You can collect payment later."


ReconciliationOutcome = Annotated[
    Union[NoPaymentRequested, PaymentSucceeded, PaymentFailed, PaymentCancelled],
    Field(discriminator="kind"),
]


# --- authorization --------------------------------------------------------

class ApprovalOutcome(BaseModel):
    master_id: str
    approved: bool
    already_approved: bool = False
    message: str = ""


# --- background poll ------------------------------------------------------

class PollStatus(str, Enum):
    ADVANCED = "advanced"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    # another poll for the same company was already in flight
    SKIPPED = "skipped"


class PollResult(BaseModel):
    company_key: str
    status: PollStatus
    new_count: int = 0
    watermark: SyncWatermark
    detail: str = ""
