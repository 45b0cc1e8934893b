"""
Tally Order Sync - sales order submission and optional-voucher sync for Tally.

Posts sales orders from a field-sales order form to TallyPrime through the
portal gateway, and keeps the approval side in step.

Key Features:
- Escaped Import Data envelopes for orders, receipts and approvals
- Credit check that flags orders optional (or blocks them) before posting
- Single-shot submission with a hard deadline and typed outcomes
- Online payment follow-up with a linked Receipt voucher
- Background check for new optional vouchers using a MasterID watermark
- Listing, detail and approval of optional vouchers

Usage:
    # One manual check
    python -m tally_order_sync poll

    # Timer loop
    python -m tally_order_sync watch

    # Approve a voucher
    python -m tally_order_sync approve 1234 --approver "Asha"
"""

__version__ = "0.1.0"

from .config import TallyOrderConfig
from .client import TallyClient
from .credit import CreditGate
from .submitter import VoucherSubmitter, generate_order_number
from .payments import PaymentGatewayClient, PaymentReconciler, PaymentSignatureVerifier
from .poller import BackgroundPoller
from .authorizer import VoucherAuthorizer
from .watermark import JsonFileWatermarkStore, MemoryWatermarkStore

__all__ = [
    "TallyOrderConfig",
    "TallyClient",
    "CreditGate",
    "VoucherSubmitter",
    "generate_order_number",
    "PaymentGatewayClient",
    "PaymentReconciler",
    "PaymentSignatureVerifier",
    "BackgroundPoller",
    "VoucherAuthorizer",
    "JsonFileWatermarkStore",
    "MemoryWatermarkStore",
    "__version__",
]
