"""Tests for overpayment detection."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from qbo_bridge.entities import EntityType
from qbo_bridge.overpayments import (
    LinkedDocIndex,
    account_labels,
    detect_overpayments,
    fetch_linked_documents,
    resolve_account_label,
)
from qbo_bridge.qbo.client import QBOAPIError

BANK_ACCOUNTS = [
    {"Id": "35", "Name": "HDFC Current", "AcctNum": "1010"},
    {"Id": "36", "Name": "Petty Cash"},
]


def customer_payment(p_id, total, links, **extra):
    return {
        "Id": p_id,
        "TxnDate": "2024-08-01",
        "TotalAmt": total,
        "CustomerRef": {"value": "58", "name": "Acme Traders"},
        "Line": [
            {"Amount": amount, "LinkedTxn": [{"TxnId": txn_id, "TxnType": txn_type}]}
            for txn_type, txn_id, amount in links
        ],
        **extra,
    }


class TestAccountLabels:
    def test_labels_include_account_number(self):
        assert account_labels(BANK_ACCOUNTS) == {"35": "1010 HDFC Current", "36": "Petty Cash"}

    def test_inline_name_wins(self):
        labels = account_labels(BANK_ACCOUNTS)

        assert resolve_account_label({"value": "35", "name": "Inline"}, labels) == "Inline"
        assert resolve_account_label({"value": "35"}, labels) == "1010 HDFC Current"
        assert resolve_account_label({"value": "99"}, labels) == ""
        assert resolve_account_label(None, labels) == ""


class TestDetectOverpayments:
    """Tests for detect_overpayments."""

    def test_fully_applied_payment_is_not_reported(self):
        report = detect_overpayments(
            [customer_payment("P1", 500, [("Invoice", "I1", 300), ("Invoice", "I2", 200)])],
            [],
            BANK_ACCOUNTS,
        )

        assert report.customer_summary == []
        assert len(report.customer_rows) == 2

    def test_unapplied_remainder_is_reported(self):
        payment = customer_payment(
            "P2",
            750,
            [("Invoice", "I1", 500)],
            DepositToAccountRef={"value": "35"},
            PaymentRefNum="UTR-88",
            CurrencyRef={"value": "INR"},
        )

        report = detect_overpayments([payment], [], BANK_ACCOUNTS)

        (record,) = report.customer_summary
        assert record.instrument_type == "Payment"
        assert record.instrument_id == "P2"
        assert record.total_received == 750.0
        assert record.applied_total == 500.0
        assert record.unapplied == 250.0
        assert record.deposit_account == "1010 HDFC Current"
        assert record.ref_number == "UTR-88"
        assert record.currency == "INR"
        assert record.exchange_rate == 1

    def test_payment_without_links_gets_one_blank_apply_line(self):
        report = detect_overpayments([customer_payment("P3", 100, [])], [], [])

        (line,) = report.customer_rows
        assert line.txn_type == ""
        assert line.applied is None
        assert report.customer_summary[0].unapplied == 100.0

    def test_sub_cent_difference_is_not_an_overpayment(self):
        report = detect_overpayments(
            [customer_payment("P4", 100.004, [("Invoice", "I1", 100)])], [], []
        )

        assert report.customer_summary == []

    def test_vendor_overpayment_uses_bank_account(self):
        bill_payment = {
            "Id": "BP1",
            "TxnDate": "2024-08-02",
            "TotalAmt": 400,
            "VendorRef": {"name": "Steel Supply Co"},
            "CheckPayment": {"BankAccountRef": {"value": "36"}, "CheckNumber": "000123"},
            "Line": [{"Amount": 150, "LinkedTxn": [{"TxnId": "B7", "TxnType": "Bill"}]}],
        }

        report = detect_overpayments([], [bill_payment], BANK_ACCOUNTS)

        (record,) = report.vendor_summary
        assert record.instrument_type == "BillPayment"
        assert record.unapplied == 250.0
        assert record.deposit_account == "Petty Cash"
        assert record.ref_number == "000123"
        assert report.vendor_rows[0].txn_id == "B7"

    def test_apply_lines_carry_linked_document_details(self):
        linked = LinkedDocIndex()
        linked.add(
            EntityType.INVOICE,
            [{"Id": "I1", "DocNumber": "1001", "TxnDate": "2024-07-01", "TotalAmt": 500, "Balance": 0}],
        )

        report = detect_overpayments(
            [customer_payment("P5", 500, [("Invoice", "I1", 500)])], [], [], linked
        )

        (line,) = report.customer_rows
        assert line.info.number == "1001"
        assert line.info.open_balance == 0.0
        assert line.applied == 500.0


class TestFetchLinkedDocuments:
    """Tests for fetch_linked_documents."""

    @pytest.mark.asyncio
    async def test_fetches_each_linked_type(self):
        docs = {
            EntityType.INVOICE: [{"Id": "I1", "DocNumber": "1001", "TotalAmt": 500}],
            EntityType.BILL: [{"Id": "B7", "DocNumber": "B-7", "TotalAmt": 150}],
        }
        client = MagicMock()
        client.fetch_by_ids = AsyncMock(side_effect=lambda entity_type, ids: docs.get(entity_type, []))

        index = await fetch_linked_documents(
            client,
            [customer_payment("P1", 500, [("Invoice", "I1", 500)])],
            [{"Id": "BP1", "Line": [{"Amount": 150, "LinkedTxn": [{"TxnId": "B7", "TxnType": "Bill"}]}]}],
        )

        assert index.get("Invoice", "I1").number == "1001"
        assert index.get("bill", "B7").number == "B-7"
        assert client.fetch_by_ids.await_count == 5
        requested = {c.args[0]: c.args[1] for c in client.fetch_by_ids.await_args_list}
        assert requested[EntityType.INVOICE] == ["I1"]
        assert requested[EntityType.CREDIT_MEMO] == []

    @pytest.mark.asyncio
    async def test_deposit_failure_degrades_to_empty(self):
        def _fetch(entity_type, ids):
            if entity_type is EntityType.DEPOSIT:
                raise QBOAPIError("API error: 400", status_code=400)
            return [{"Id": "I1", "TotalAmt": 10}] if entity_type is EntityType.INVOICE else []

        client = MagicMock()
        client.fetch_by_ids = AsyncMock(side_effect=_fetch)

        index = await fetch_linked_documents(
            client,
            [customer_payment("P1", 10, [("Invoice", "I1", 10), ("Deposit", "D1", 0)])],
            [],
        )

        assert index.get("Invoice", "I1") is not None
        assert index.get("Deposit", "D1") is None

    @pytest.mark.asyncio
    async def test_other_failures_propagate(self):
        client = MagicMock()
        client.fetch_by_ids = AsyncMock(side_effect=QBOAPIError("API error: 500", status_code=500))

        with pytest.raises(QBOAPIError):
            await fetch_linked_documents(client, [], [])
