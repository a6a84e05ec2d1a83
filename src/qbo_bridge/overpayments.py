"""Overpayment detection for customer payments and vendor bill payments.

A payment whose linked transactions absorb less than its total has an
unapplied remainder. Those instruments are reported with the account the
money went to, alongside one apply line per linkage for auditing.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from qbo_bridge.allocation import Linkage, bill_payment_ref_number, linked_transactions, payment_ref_number
from qbo_bridge.entities import EntityType
from qbo_bridge.qbo.client import QBOClient, describe_error
from qbo_bridge.rounding import as_float, first_not_none, round2

logger = structlog.get_logger(__name__)

BANK_ACCOUNT_WHERE = "AccountType IN ('Bank','Other Current Asset')"

CUSTOMER_LINK_TYPES = (EntityType.INVOICE, EntityType.CREDIT_MEMO, EntityType.DEPOSIT)
VENDOR_LINK_TYPES = (EntityType.BILL, EntityType.VENDOR_CREDIT)


@dataclass(frozen=True)
class TxnInfo:
    """Summary of a document referenced by a linkage."""

    id: str
    type: str
    date: str
    number: str
    due_date: str
    amount: float
    open_balance: float

    @classmethod
    def from_doc(cls, doc: dict[str, Any], txn_type: str) -> "TxnInfo":
        return cls(
            id=str(doc.get("Id") or ""),
            type=txn_type,
            date=doc.get("TxnDate") or "",
            number=doc.get("DocNumber") or "",
            due_date=doc.get("DueDate") or "",
            amount=as_float(doc.get("TotalAmt")),
            open_balance=as_float(
                first_not_none(doc.get("Balance"), doc.get("RemainingCredit"), doc.get("TotalAmt"))
            ),
        )


@dataclass
class LinkedDocIndex:
    """Linked documents by lower-cased TxnType, then id."""

    by_type: dict[str, dict[str, TxnInfo]] = field(default_factory=dict)

    def add(self, entity_type: EntityType, docs: list[dict[str, Any]]) -> None:
        bucket = self.by_type.setdefault(entity_type.value.lower(), {})
        for doc in docs:
            info = TxnInfo.from_doc(doc, entity_type.value)
            bucket[info.id] = info

    def get(self, txn_type: str, txn_id: str) -> TxnInfo | None:
        return self.by_type.get(txn_type.lower(), {}).get(str(txn_id))


@dataclass
class ApplyLine:
    """One linkage of a payment, or a blank line for a payment with none."""

    instrument_id: str
    date: str
    party: str
    total: float
    ref_number: str
    account: str
    txn_type: str = ""
    txn_id: str = ""
    info: TxnInfo | None = None
    applied: float | None = None


@dataclass
class OverpaymentRecord:
    instrument_type: str
    instrument_id: str
    date: str
    party: str
    total_received: float
    applied_total: float
    unapplied: float
    ref_number: str
    deposit_account: str
    email: str = ""
    currency: str = ""
    exchange_rate: Any = None


@dataclass
class OverpaymentReport:
    customer_rows: list[ApplyLine] = field(default_factory=list)
    vendor_rows: list[ApplyLine] = field(default_factory=list)
    customer_summary: list[OverpaymentRecord] = field(default_factory=list)
    vendor_summary: list[OverpaymentRecord] = field(default_factory=list)


def account_labels(accounts: list[dict[str, Any]]) -> dict[str, str]:
    """Account id -> "<AcctNum> <Name>" (or just the name when there is no number)."""
    labels = {}
    for account in accounts:
        name = account.get("Name") or ""
        code = account.get("AcctNum") or ""
        labels[str(account.get("Id"))] = f"{code} {name}".strip() if code else name
    return labels


def resolve_account_label(ref: dict[str, Any] | None, labels: dict[str, str]) -> str:
    """Inline ref name, else the label of the referenced account, else blank."""
    if not ref:
        return ""
    if ref.get("name"):
        return ref["name"]
    account_id = str(ref.get("value") or "")
    return labels.get(account_id, "") if account_id else ""


def deposit_account_ref(payment: dict[str, Any]) -> dict[str, Any] | None:
    return payment.get("DepositToAccountRef") or payment.get("DepositToRef") or payment.get("DepositTo")


def bank_account_ref(bill_payment: dict[str, Any]) -> dict[str, Any] | None:
    return (bill_payment.get("CheckPayment") or {}).get("BankAccountRef") or (
        bill_payment.get("CreditCardPayment") or {}
    ).get("CCAccountRef")


def _apply_lines(
    doc: dict[str, Any],
    linkages: list[Linkage],
    party: str,
    ref_number: str,
    account: str,
    linked: LinkedDocIndex,
) -> list[ApplyLine]:
    base = dict(
        instrument_id=str(doc.get("Id") or ""),
        date=doc.get("TxnDate") or "",
        party=party,
        total=as_float(doc.get("TotalAmt")),
        ref_number=ref_number,
        account=account,
    )
    if not linkages:
        return [ApplyLine(**base)]
    return [
        ApplyLine(
            **base,
            txn_type=ln.txn_type,
            txn_id=ln.txn_id,
            info=linked.get(ln.txn_type, ln.txn_id),
            applied=ln.amount,
        )
        for ln in linkages
    ]


def detect_overpayments(
    payments: list[dict[str, Any]],
    bill_payments: list[dict[str, Any]],
    bank_accounts: list[dict[str, Any]],
    linked: LinkedDocIndex | None = None,
) -> OverpaymentReport:
    """Flag payments and bill payments with a strictly positive unapplied amount."""
    labels = account_labels(bank_accounts)
    linked = linked or LinkedDocIndex()
    report = OverpaymentReport()

    for payment in payments:
        linkages = linked_transactions(payment)
        customer = (payment.get("CustomerRef") or {}).get("name") or ""
        ref_number = payment_ref_number(payment)
        deposit_to = resolve_account_label(deposit_account_ref(payment), labels)
        report.customer_rows.extend(
            _apply_lines(payment, linkages, customer, ref_number, deposit_to, linked)
        )

        total = as_float(payment.get("TotalAmt"))
        applied = sum(ln.amount for ln in linkages)
        unapplied = round2(total - applied)
        if unapplied > 0:
            report.customer_summary.append(
                OverpaymentRecord(
                    instrument_type=EntityType.PAYMENT.value,
                    instrument_id=str(payment.get("Id") or ""),
                    date=payment.get("TxnDate") or "",
                    party=customer,
                    total_received=total,
                    applied_total=round2(applied),
                    unapplied=unapplied,
                    ref_number=ref_number,
                    deposit_account=deposit_to,
                    email=(payment.get("BillEmail") or {}).get("Address")
                    or (payment.get("PrimaryEmailAddr") or {}).get("Address")
                    or (payment.get("CustomerRef") or {}).get("email")
                    or "",
                    currency=(payment.get("CurrencyRef") or {}).get("value") or "",
                    exchange_rate=payment.get("ExchangeRate") or 1,
                )
            )

    for bill_payment in bill_payments:
        linkages = linked_transactions(bill_payment)
        vendor = (bill_payment.get("VendorRef") or {}).get("name") or ""
        ref_number = bill_payment_ref_number(bill_payment)
        bank_account = resolve_account_label(bank_account_ref(bill_payment), labels)
        report.vendor_rows.extend(
            _apply_lines(bill_payment, linkages, vendor, ref_number, bank_account, linked)
        )

        total = as_float(bill_payment.get("TotalAmt"))
        applied = sum(ln.amount for ln in linkages)
        unapplied = round2(total - applied)
        if unapplied > 0:
            report.vendor_summary.append(
                OverpaymentRecord(
                    instrument_type=EntityType.BILL_PAYMENT.value,
                    instrument_id=str(bill_payment.get("Id") or ""),
                    date=bill_payment.get("TxnDate") or "",
                    party=vendor,
                    total_received=total,
                    applied_total=round2(applied),
                    unapplied=unapplied,
                    ref_number=ref_number,
                    deposit_account=bank_account,
                )
            )

    logger.info(
        "overpayments_detected",
        payments=len(payments),
        bill_payments=len(bill_payments),
        customer_overpayments=len(report.customer_summary),
        vendor_overpayments=len(report.vendor_summary),
    )
    return report


async def fetch_linked_documents(
    client: QBOClient,
    payments: list[dict[str, Any]],
    bill_payments: list[dict[str, Any]],
) -> LinkedDocIndex:
    """Batch-fetch every document linked from the given payments, per type concurrently."""
    wanted: dict[EntityType, list[str]] = {t: [] for t in CUSTOMER_LINK_TYPES + VENDOR_LINK_TYPES}
    for docs, types in ((payments, CUSTOMER_LINK_TYPES), (bill_payments, VENDOR_LINK_TYPES)):
        by_kind = {t.value.lower(): t for t in types}
        for doc in docs:
            for ln in linked_transactions(doc):
                entity_type = by_kind.get(ln.kind)
                if entity_type is not None:
                    wanted[entity_type].append(ln.txn_id)

    async def _fetch(entity_type: EntityType) -> list[dict[str, Any]]:
        if entity_type is not EntityType.DEPOSIT:
            return await client.fetch_by_ids(entity_type, wanted[entity_type])
        # Deposit details are display-only
        try:
            return await client.fetch_by_ids(entity_type, wanted[entity_type])
        except Exception as e:
            logger.warning("linked_deposits_unavailable", error=describe_error(e))
            return []

    types = list(wanted)
    results = await asyncio.gather(*(_fetch(t) for t in types))

    index = LinkedDocIndex()
    for entity_type, docs in zip(types, results):
        index.add(entity_type, docs)
    return index
