"""Credit memo and vendor credit allocation reconciliation.

Payments and bill payments carry ``LinkedTxn`` records (on each line and on
the document itself) pointing at the invoices, bills and credits they settle.
This module rebuilds, for every credit memo and vendor credit, the list of
allocations that consumed it and the balance left over.

A customer payment that settles several invoices at once is apportioned
evenly across those invoices. Real partial payments are rarely split evenly,
but the exports have always reported it this way.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from qbo_bridge.entities import EntityType, build_date_where
from qbo_bridge.rounding import as_float, first_not_none, round2

logger = structlog.get_logger(__name__)


class AllocationFilter(str, Enum):
    """Which side of the allocation the date range restricts."""

    INVOICE = "invoice"
    PAYMENT = "payment"


@dataclass(frozen=True)
class Linkage:
    """One LinkedTxn record found on a payment-like document."""

    txn_type: str
    txn_id: str
    amount: float

    @property
    def kind(self) -> str:
        return self.txn_type.lower()


def linked_transactions(doc: dict[str, Any]) -> list[Linkage]:
    """Linkage records of ``doc``: line-level first, then document-level.

    A line-level linkage without its own amount takes the line amount.
    """
    linkages = []
    for line in doc.get("Line") or []:
        for linked in line.get("LinkedTxn") or []:
            linkages.append(
                Linkage(
                    txn_type=linked.get("TxnType") or "",
                    txn_id=str(linked.get("TxnId") or ""),
                    amount=as_float(first_not_none(linked.get("Amount"), line.get("Amount"))),
                )
            )
    for linked in doc.get("LinkedTxn") or []:
        linkages.append(
            Linkage(
                txn_type=linked.get("TxnType") or "",
                txn_id=str(linked.get("TxnId") or ""),
                amount=as_float(linked.get("Amount")),
            )
        )
    return linkages


def linked_ids(linkages: Iterable[Linkage], kind: str) -> list[str]:
    """Distinct ids linked with TxnType ``kind`` (case-insensitive), in first-seen order."""
    return list(dict.fromkeys(ln.txn_id for ln in linkages if ln.kind == kind and ln.txn_id))


def explode_ids(value: Any) -> list[str]:
    """Split an id list or comma-separated string into one id per output row.

    Nothing to split still produces one (blank) row.
    """
    if not value:
        return [""]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value] if value else [""]
    text = str(value)
    if "," in text:
        return [part.strip() for part in text.split(",") if part.strip()]
    return [text.strip()]


def payment_ref_number(doc: dict[str, Any]) -> str:
    return (
        doc.get("PaymentRefNum")
        or doc.get("DocNumber")
        or doc.get("TxnNumber")
        or doc.get("ReferenceNumber")
        or ""
    )


def bill_payment_ref_number(doc: dict[str, Any]) -> str:
    return (doc.get("CheckPayment") or {}).get("CheckNumber") or payment_ref_number(doc)


@dataclass
class AllocationEntry:
    """One allocation of a payment or bill payment against a credit."""

    instrument_type: str
    source_id: str
    date: str
    amount: float
    ref_number: str
    applied_invoice_ids: list[str] = field(default_factory=list)
    bill_id: str = ""
    bill_number: str = ""

    @property
    def share_count(self) -> int:
        """How many output rows (and amount shares) this entry stands for."""
        if self.instrument_type == EntityType.PAYMENT.value:
            return len(explode_ids(self.applied_invoice_ids))
        return 1


@dataclass
class CreditBucket:
    """A credit memo or vendor credit and the allocations that consumed it."""

    credit_id: str
    doc: dict[str, Any]
    entries: list[AllocationEntry] = field(default_factory=list)

    @property
    def total(self) -> float:
        return as_float(self.doc.get("TotalAmt"))

    @property
    def _raw_allocated(self) -> float:
        return sum(e.amount * e.share_count for e in self.entries)

    @property
    def allocated(self) -> float:
        return round2(self._raw_allocated)

    @property
    def remaining(self) -> float:
        return round2(self.total - self._raw_allocated)


@dataclass(frozen=True)
class InvoiceRef:
    number: str
    total: float


@dataclass
class AllocationReport:
    credit_memos: list[CreditBucket] = field(default_factory=list)
    vendor_credits: list[CreditBucket] = field(default_factory=list)
    invoices: dict[str, InvoiceRef] = field(default_factory=dict)


def reconcile_allocations(
    credit_memos: list[dict[str, Any]],
    vendor_credits: list[dict[str, Any]],
    payments: list[dict[str, Any]],
    bill_payments: list[dict[str, Any]],
    invoices: list[dict[str, Any]],
) -> AllocationReport:
    """Attribute payments to credit memos and bill payments to vendor credits."""
    cm_buckets = {str(cm.get("Id")): CreditBucket(str(cm.get("Id")), cm) for cm in credit_memos}
    vc_buckets = {str(vc.get("Id")): CreditBucket(str(vc.get("Id")), vc) for vc in vendor_credits}

    for payment in payments:
        linkages = linked_transactions(payment)
        credit_memo_ids = linked_ids(linkages, "creditmemo")
        if not credit_memo_ids:
            continue
        invoice_ids = linked_ids(linkages, "invoice")

        total = as_float(payment.get("TotalAmt"))
        amount = round2(total / len(invoice_ids)) if invoice_ids else total

        for cm_id in credit_memo_ids:
            bucket = cm_buckets.get(cm_id)
            if bucket is None:
                continue
            bucket.entries.append(
                AllocationEntry(
                    instrument_type=EntityType.PAYMENT.value,
                    source_id=str(payment.get("Id") or ""),
                    date=payment.get("TxnDate") or "",
                    amount=amount,
                    ref_number=payment_ref_number(payment),
                    applied_invoice_ids=invoice_ids or [""],
                )
            )

    for bill_payment in bill_payments:
        for linkage in linked_transactions(bill_payment):
            if linkage.kind != "vendorcredit":
                continue
            bucket = vc_buckets.get(linkage.txn_id)
            if bucket is None:
                continue
            bucket.entries.append(
                AllocationEntry(
                    instrument_type=EntityType.BILL_PAYMENT.value,
                    source_id=str(bill_payment.get("Id") or ""),
                    date=bill_payment.get("TxnDate") or "",
                    amount=linkage.amount,
                    ref_number=bill_payment_ref_number(bill_payment),
                    bill_id=str(bill_payment.get("Id") or ""),
                    bill_number=bill_payment.get("DocNumber") or "",
                )
            )

    invoice_map = {
        str(inv.get("Id")): InvoiceRef(number=inv.get("DocNumber") or "", total=as_float(inv.get("TotalAmt")))
        for inv in invoices
    }
    logger.info(
        "allocations_reconciled",
        credit_memos=len(cm_buckets),
        vendor_credits=len(vc_buckets),
        payments=len(payments),
        bill_payments=len(bill_payments),
    )
    return AllocationReport(
        credit_memos=list(cm_buckets.values()),
        vendor_credits=list(vc_buckets.values()),
        invoices=invoice_map,
    )


def allocation_where_clauses(
    filter_by: AllocationFilter | str,
    from_date: str | None = None,
    to_date: str | None = None,
) -> dict[EntityType, str]:
    """Where clause per fetched entity; the date range lands on one side only."""
    filter_by = AllocationFilter(filter_by)
    where = build_date_where("TxnDate", from_date, to_date)
    on_invoice = where if filter_by is AllocationFilter.INVOICE else ""
    on_payment = where if filter_by is AllocationFilter.PAYMENT else ""
    return {
        EntityType.CREDIT_MEMO: on_invoice,
        EntityType.VENDOR_CREDIT: on_invoice,
        EntityType.INVOICE: on_invoice,
        EntityType.PAYMENT: on_payment,
        EntityType.BILL_PAYMENT: on_payment,
    }
