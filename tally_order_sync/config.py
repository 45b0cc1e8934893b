"""
Configuration management for Tally Order Sync.

Loads settings from environment variables with sensible defaults.
A `.env` file in the working directory is picked up automatically.
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

from .models import Company

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class TallyOrderConfig:
    """Configuration settings for Tally Order Sync."""

    # Tally gateway (the portal API that relays XML to Tally)
    api_base_url: str = field(
        default_factory=lambda: os.getenv(
            "TALLY_API_URL", "https://itcatalystindia.com/Development/CustomerPortal_API"
        )
    )
    tally_data_path: str = field(
        default_factory=lambda: os.getenv("TALLY_DATA_PATH", "/api/tally/tallydata")
    )
    credit_path: str = field(
        default_factory=lambda: os.getenv("TALLY_CREDIT_PATH", "/api/tally/creditdayslimit")
    )
    auth_token: str = field(default_factory=lambda: os.getenv("TALLY_AUTH_TOKEN", ""))

    # Selected company
    tallyloc_id: str = field(default_factory=lambda: os.getenv("TALLY_LOCATION_ID", ""))
    company: str = field(default_factory=lambda: os.getenv("TALLY_COMPANY", ""))
    company_guid: str = field(default_factory=lambda: os.getenv("TALLY_COMPANY_GUID", ""))

    # Timeouts (seconds)
    submit_timeout: float = field(
        default_factory=lambda: float(os.getenv("TALLY_SUBMIT_TIMEOUT", "30"))
    )
    query_timeout: float = field(
        default_factory=lambda: float(os.getenv("TALLY_QUERY_TIMEOUT", "60"))
    )
    credit_timeout: float = field(
        default_factory=lambda: float(os.getenv("TALLY_CREDIT_TIMEOUT", "15"))
    )
    # Only read-only queries are retried; voucher imports never are
    retry_attempts: int = field(
        default_factory=lambda: int(os.getenv("TALLY_RETRY_ATTEMPTS", "3"))
    )

    # Order entry
    voucher_type_name: str = field(
        default_factory=lambda: os.getenv("TALLY_VOUCHER_TYPE", "Sales Order")
    )
    hard_block_on_credit: bool = field(
        default_factory=lambda: _env_bool("TALLY_CREDIT_HARD_BLOCK")
    )

    # Online payment
    online_payment_enabled: bool = field(
        default_factory=lambda: _env_bool("ONLINE_PAYMENT_ENABLED")
    )
    receipt_bank_ledger: str = field(
        default_factory=lambda: os.getenv("RAZORPAY_LEDGER_NAME", "Bank")
    )
    payment_api_url: str = field(
        default_factory=lambda: os.getenv("PAYMENT_API_URL", "http://localhost:4000")
    )
    payment_key_secret: str = field(
        default_factory=lambda: os.getenv("RAZORPAY_KEY_SECRET", "")
    )

    # Background check for optional vouchers
    poll_interval_minutes: float = field(
        default_factory=lambda: float(os.getenv("TALLY_POLL_INTERVAL_MINUTES", "5"))
    )
    optional_since: str = field(
        default_factory=lambda: os.getenv("TALLY_OPTIONAL_SINCE", "1-Jan-25")
    )
    watermark_file: str = field(
        default_factory=lambda: os.getenv("TALLY_WATERMARK_FILE", ".tally_watermarks.json")
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_file: Optional[str] = field(
        default_factory=lambda: os.getenv("TALLY_ORDER_SYNC_LOG_FILE")
    )

    @classmethod
    def from_env(cls) -> "TallyOrderConfig":
        """Create config from environment variables."""
        return cls()

    @property
    def tally_data_url(self) -> str:
        return self.api_base_url.rstrip("/") + self.tally_data_path

    @property
    def credit_url(self) -> str:
        return self.api_base_url.rstrip("/") + self.credit_path

    def selected_company(self) -> Company:
        """Company identity built from the TALLY_* settings."""
        return Company(
            tallyloc_id=self.tallyloc_id,
            name=self.company,
            guid=self.company_guid,
        )

    def validate(self) -> list[str]:
        """Validate configuration and return list of errors."""
        errors = []
        if not self.api_base_url:
            errors.append("TALLY_API_URL is required")
        if not self.auth_token:
            errors.append("TALLY_AUTH_TOKEN is required")
        if not self.company:
            errors.append("TALLY_COMPANY is required")
        if not self.tallyloc_id:
            errors.append("TALLY_LOCATION_ID is required")
        if self.submit_timeout <= 0:
            errors.append("TALLY_SUBMIT_TIMEOUT must be positive")
        if self.poll_interval_minutes <= 0:
            errors.append("TALLY_POLL_INTERVAL_MINUTES must be positive")
        if self.online_payment_enabled and not self.payment_api_url:
            errors.append("PAYMENT_API_URL is required when online payment is enabled")
        return errors
