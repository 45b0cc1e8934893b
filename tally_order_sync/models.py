"""
Typed records exchanged between the order form, the protocol codec and the
sync services.
"""
from __future__ import annotations
from datetime import date, datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class Company(BaseModel):
    """Selected company; its fields travel as x-tallyloc-id / x-company / x-guid."""
    model_config = ConfigDict(frozen=True)

    tallyloc_id: str
    name: str
    guid: str

    @property
    def key(self) -> str:
        """Storage key for per-company state."""
        return f"{self.tallyloc_id}:{self.guid or self.name}"


class Party(BaseModel):
    """Ordering customer or consignee as picked in the order form."""
    model_config = ConfigDict(frozen=True)

    name: str
    gstin: str = ""
    address: str = ""
    state: str = ""
    country: str = ""
    pincode: str = ""
    contact: str = ""
    phone: str = ""
    mobile: str = ""
    email: str = ""
    mailing_name: str = ""
    gst_type: str = ""
    payment_terms: str = ""
    delivery_terms: str = ""
    narration: str = ""


class OrderLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    quantity: float
    rate: float
    discount_percent: float = 0.0
    tax_percent: float = 0.0
    batch: str | None = None
    description: str | None = None

    @property
    def value(self) -> float:
        """quantity x rate x (1 - discount/100), rounded to paise."""
        return round(self.quantity * self.rate * (1 - self.discount_percent / 100), 2)


class Order(BaseModel):
    """
    A sales order assembled by the form layer.

    Frozen: the submitter derives a copy with the final ISOPTIONAL flag
    instead of mutating the caller's instance.
    """
    model_config = ConfigDict(frozen=True)

    company: Company
    order_number: str
    customer: Party
    consignee: Party | None = None
    lines: list[OrderLine]
    due_date: str = ""
    voucher_type: str = "Sales Order"
    post_as_optional: bool = False
    voucher_date: date = Field(default_factory=date.today)

    @property
    def total(self) -> float:
        return round(sum(line.value for line in self.lines), 2)


class CreditLimitInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    credit_limit: float = Field(0.0, alias="CREDITLIMIT")
    closing_balance: float = Field(0.0, alias="CLOSINGBALANCE")


class OverdueBill(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ref_no: str = Field("", alias="REFNO")
    date: str = Field("", alias="DATE")
    due_on: str = Field("", alias="DUEON")
    overdue_days: int = Field(0, alias="OVERDUEDAYS")
    opening_balance: float = Field(0.0, alias="OPENINGBALANCE")
    closing_balance: float = Field(0.0, alias="CLOSINGBALANCE")

    @property
    def amount(self) -> float:
        return abs(self.closing_balance)


class CreditDecision(str, Enum):
    ALLOW = "allow"
    ALLOW_AS_OPTIONAL = "allow_as_optional"
    BLOCK = "block"


class CreditAssessment(BaseModel):
    """Result of one credit check; computed fresh for every submission."""

    party: str
    order_total: float
    credit_limit: float = 0.0
    closing_balance: float = 0.0
    overdue_bills: list[OverdueBill] = Field(default_factory=list)
    decision: CreditDecision = CreditDecision.ALLOW
    reason: str = ""
    # True when the fetch failed and the gate let the order through
    degraded: bool = False

    @property
    def post_as_optional(self) -> bool:
        return self.decision != CreditDecision.ALLOW

    @classmethod
    def allow(cls, party: str, order_total: float, reason: str = "", degraded: bool = False) -> "CreditAssessment":
        return cls(party=party, order_total=order_total, reason=reason, degraded=degraded)


class ImportCounts(BaseModel):
    """Counters Tally reports after an Import Data request."""

    created: int = 0
    altered: int = 0
    errors: int = 0
    exceptions: int = 0
    line_errors: list[str] = Field(default_factory=list)
    last_voucher_id: str | None = None


class PendingVoucher(BaseModel):
    """One optional voucher row awaiting authorization."""

    master_id: int
    date: str
    invoice_no: str = ""
    voucher_type: str = ""
    customer: str = ""
    amount: float = 0.0
    narration: str = ""


class LedgerEntry(BaseModel):
    ledger_name: str
    amount: float
    is_deemed_positive: bool
    debit: float = 0.0
    credit: float = 0.0


class InventoryEntry(BaseModel):
    stock_item_name: str
    actual_qty: str = ""
    rate: str = ""
    amount: float = 0.0


class VoucherDetail(BaseModel):
    master_id: str = ""
    voucher_number: str = ""
    date: str = ""
    voucher_type: str = ""
    party: str = ""
    narration: str = ""
    reference: str = ""
    ledger_entries: list[LedgerEntry] = Field(default_factory=list)
    inventory_entries: list[InventoryEntry] = Field(default_factory=list)

    @property
    def total_debit(self) -> float:
        return round(sum(e.debit for e in self.ledger_entries), 2)

    @property
    def total_credit(self) -> float:
        return round(sum(e.credit for e in self.ledger_entries), 2)


class SyncWatermark(BaseModel):
    """Highest optional-voucher MasterID already seen for one company."""
    model_config = ConfigDict(frozen=True)

    company_key: str
    last_master_id: int = 0
    last_checked_at: datetime | None = None

    def advance(self, master_ids: list[int], checked_at: datetime) -> "SyncWatermark":
        """
        Move forward to the highest id seen. An empty list leaves the
        watermark untouched; the id never decreases.
        """
        if not master_ids:
            return self
        return SyncWatermark(
            company_key=self.company_key,
            last_master_id=max(self.last_master_id, max(master_ids)),
            last_checked_at=checked_at,
        )

    def touch(self, checked_at: datetime) -> "SyncWatermark":
        """Record a successful check without moving the id."""
        return self.model_copy(update={"last_checked_at": checked_at})


class ReceiptLink(BaseModel):
    """
    Ties a receipt voucher back to its order. Tally has no foreign key for
    this, so the link lives only in the receipt's narration and bill name.
    """

    order_number: str
    gateway_order_id: str
    payment_id: str
    amount: float
    paid_at: datetime
    user_name: str = ""

    def narration(self) -> str:
        stamp = self.paid_at.strftime("%d/%m/%Y %H:%M:%S")
        return (
            f"Payment received for Order {self.order_number} via Razorpay - "
            f"Payment ID: {self.payment_id} | Order ID: {self.gateway_order_id} | Date: {stamp}"
        )

    def bill_reference(self) -> str:
        return f"{self.order_number}/{self.user_name} | Razorpay: {self.payment_id}"
