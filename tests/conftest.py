from datetime import date
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from tally_order_sync.client import TallyClient
from tally_order_sync.config import TallyOrderConfig
from tally_order_sync.models import Company, Order, OrderLine, Party

FIX = Path(__file__).parent / "fixtures"


def read(p):
    return (FIX / p).read_text(encoding="utf-8")


@pytest.fixture
def config(tmp_path):
    return TallyOrderConfig(
        api_base_url="https://gateway.example.com",
        auth_token="test-token-0123456789",
        tallyloc_id="42",
        company="Acme Trading Co",
        company_guid="guid-0001",
        submit_timeout=30,
        query_timeout=60,
        credit_timeout=15,
        retry_attempts=1,
        hard_block_on_credit=False,
        online_payment_enabled=True,
        receipt_bank_ledger="HDFC Bank",
        watermark_file=str(tmp_path / "watermarks.json"),
    )


@pytest.fixture
def company(config):
    return config.selected_company()


@pytest.fixture
def order(company):
    return Order(
        company=company,
        order_number="SO-251016084812",
        customer=Party(name="Acme Distributors", state="Karnataka", country="India"),
        lines=[
            OrderLine(name="Widget A", quantity=3, rate=100),
            OrderLine(name="Widget B", quantity=1, rate=50, discount_percent=10),
        ],
        voucher_date=date(2025, 10, 16),
    )


@pytest.fixture
def client(config, company):
    """TallyClient double with async transport methods."""
    mock = Mock(spec=TallyClient)
    mock.config = config
    mock.company = company
    mock.credit_url = config.credit_url
    mock.post_xml = AsyncMock()
    mock.fetch_xml = AsyncMock()
    mock.post_json = AsyncMock()
    return mock
