import asyncio
from datetime import datetime
from pathlib import Path

import pytest

from tally_order_sync.authorizer import VoucherAuthorizer
from tally_order_sync.errors import (
    MalformedResponseError,
    TallyAuthError,
    TallyConnectionError,
    TallyTimeoutError,
)

FIX = Path(__file__).parent / "fixtures"
WHEN = datetime(2025, 10, 16, 8, 48)


def read(p):
    return (FIX / p).read_text(encoding="utf-8")


@pytest.fixture
def authorizer(client):
    return VoucherAuthorizer(client)


def approve(authorizer, master_id="1042", narration="Urgent", approver="Priya"):
    return asyncio.run(authorizer.approve(master_id, "16-Oct-25", narration, approver, now=WHEN))


class TestPending:
    def test_newest_first(self, authorizer, client):
        client.fetch_xml.return_value = read("optional_vouchers.xml")
        pending = asyncio.run(authorizer.load_pending())
        assert [p.master_id for p in pending] == [105, 101, 98]
        assert pending[-1].customer == "Sharma & Sons"
        xml = client.fetch_xml.call_args[0][0]
        assert "<SVCURRENTCOMPANY>Acme Trading Co</SVCURRENTCOMPANY>" in xml
        assert "$MasterID>" not in xml

    def test_fetch_failure_propagates(self, authorizer, client):
        client.fetch_xml.side_effect = TallyConnectionError("down")
        with pytest.raises(TallyConnectionError):
            asyncio.run(authorizer.load_pending())

    def test_tally_error_body_raises(self, authorizer, client):
        client.fetch_xml.return_value = "<ENVELOPE><LINEERROR>Could not find Company 'X'</LINEERROR></ENVELOPE>"
        with pytest.raises(MalformedResponseError, match="Could not find Company"):
            asyncio.run(authorizer.load_pending())
        assert authorizer.pending == []

    def test_detail(self, authorizer, client):
        client.fetch_xml.return_value = read("voucher_detail.xml")
        detail = asyncio.run(authorizer.fetch_detail(1042))
        assert detail.master_id == "1042"
        assert detail.voucher_number == "SO-251016084812"
        assert "ID:1042" in client.fetch_xml.call_args[0][0]


class TestApprove:
    def test_success_removes_from_pending(self, authorizer, client):
        client.fetch_xml.return_value = read("optional_vouchers.xml")
        asyncio.run(authorizer.load_pending())
        client.post_xml.return_value = read("approval_altered.xml")

        outcome = approve(authorizer, master_id="101")

        assert outcome.approved
        assert not outcome.already_approved
        assert [p.master_id for p in authorizer.pending] == [105, 98]

    def test_alter_request(self, authorizer, client):
        client.post_xml.return_value = read("approval_altered.xml")
        approve(authorizer)
        xml = client.post_xml.call_args[0][0]
        assert 'DATE="20251016"' in xml
        assert 'TAGVALUE="1042"' in xml
        assert 'ACTION="Alter"' in xml
        assert "<ISOPTIONAL>No</ISOPTIONAL>" in xml
        assert "<NARRATION>Urgent | Approved by: Priya on 16-Oct-25 08:48</NARRATION>" in xml

    def test_second_approval_is_not_sent(self, authorizer, client):
        client.post_xml.return_value = read("approval_altered.xml")
        approve(authorizer)
        outcome = approve(authorizer)
        assert outcome.approved
        assert outcome.already_approved
        assert client.post_xml.await_count == 1

    def test_approved_vouchers_stay_out_of_listing(self, authorizer, client):
        client.post_xml.return_value = read("approval_altered.xml")
        approve(authorizer, master_id="105")
        client.fetch_xml.return_value = read("optional_vouchers.xml")
        pending = asyncio.run(authorizer.load_pending())
        assert [p.master_id for p in pending] == [101, 98]

    def test_approvals_gone_from_tally_are_forgotten(self, authorizer, client):
        client.post_xml.return_value = read("approval_altered.xml")
        approve(authorizer, master_id="105")
        approve(authorizer, master_id="777")
        client.fetch_xml.return_value = read("optional_vouchers.xml")
        asyncio.run(authorizer.load_pending())
        assert authorizer._approved == {"105"}

    def test_tally_error_line(self, authorizer, client):
        client.post_xml.return_value = read("import_duplicate.xml")
        outcome = approve(authorizer)
        assert not outcome.approved
        assert "already exists & cannot be duplicated" in outcome.message

    def test_nothing_altered(self, authorizer, client):
        client.post_xml.return_value = "<RESPONSE><CREATED>0</CREATED><ALTERED>0</ALTERED><ERRORS>0</ERRORS></RESPONSE>"
        outcome = approve(authorizer)
        assert not outcome.approved
        assert outcome.message == "Failed to approve voucher"

    def test_access_denied(self, authorizer, client):
        client.post_xml.side_effect = TallyAuthError("Forbidden")
        outcome = approve(authorizer)
        assert not outcome.approved
        assert "Access denied" in outcome.message
        assert '"Acme Trading Co"' in outcome.message

    def test_timeout(self, authorizer, client):
        client.post_xml.side_effect = TallyTimeoutError(30)
        outcome = approve(authorizer)
        assert not outcome.approved
        assert "timed out after 30 seconds" in outcome.message
        # a failed approval may be retried
        client.post_xml.side_effect = None
        client.post_xml.return_value = read("approval_altered.xml")
        assert approve(authorizer).approved
