"""Entity types known to the bridge and how documents are matched across tenants.

Every QBO entity the bridge reads or writes is a member of :class:`EntityType`.
The endpoint table below must cover every member; adding a type means adding
one enum case and one table entry.

Business keys are the human-facing numbers (invoice number, reference number)
used to find the same logical document in another company, since internal ids
differ between tenants. The extraction policy is a per-type strategy so it can
be swapped without touching the migration engine.
"""

from collections.abc import Callable
from enum import Enum
from typing import Any


class EntityType(str, Enum):
    """QBO entity types addressed by the bridge."""

    INVOICE = "Invoice"
    CREDIT_MEMO = "CreditMemo"
    BILL = "Bill"
    VENDOR_CREDIT = "VendorCredit"
    SALES_RECEIPT = "SalesReceipt"
    ESTIMATE = "Estimate"
    CREDIT_CARD_CHARGE = "CreditCardCharge"
    PURCHASE = "Purchase"
    CHECK = "Check"
    DELAYED_CHARGE = "DelayedCharge"
    JOURNAL_ENTRY = "JournalEntry"
    PAYMENT = "Payment"
    REFUND_RECEIPT = "RefundReceipt"
    BILL_PAYMENT = "BillPayment"
    DEPOSIT = "Deposit"
    ACCOUNT = "Account"
    ATTACHABLE = "Attachable"
    TAX_CODE = "TaxCode"
    TAX_RATE = "TaxRate"

    @property
    def endpoint(self) -> str:
        """Path segment of the per-entity read endpoint."""
        return ENDPOINTS[self]

    @property
    def root_key(self) -> str:
        """Top-level JSON key wrapping the entity in API responses."""
        return self.value

    @classmethod
    def parse(cls, value: "str | EntityType") -> "EntityType":
        """Resolve a type name case-insensitively ("invoice", "Invoice")."""
        if isinstance(value, cls):
            return value
        wanted = str(value).strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        raise ValueError(f"Unknown entity type: {value!r}")


ENDPOINTS: dict[EntityType, str] = {
    EntityType.INVOICE: "invoice",
    EntityType.CREDIT_MEMO: "creditmemo",
    EntityType.BILL: "bill",
    EntityType.VENDOR_CREDIT: "vendorcredit",
    EntityType.SALES_RECEIPT: "salesreceipt",
    EntityType.ESTIMATE: "estimate",
    EntityType.CREDIT_CARD_CHARGE: "creditcardcharge",
    EntityType.PURCHASE: "purchase",
    EntityType.CHECK: "check",
    EntityType.DELAYED_CHARGE: "delayedcharge",
    EntityType.JOURNAL_ENTRY: "journalentry",
    EntityType.PAYMENT: "payment",
    EntityType.REFUND_RECEIPT: "refundreceipt",
    EntityType.BILL_PAYMENT: "billpayment",
    EntityType.DEPOSIT: "deposit",
    EntityType.ACCOUNT: "account",
    EntityType.ATTACHABLE: "attachable",
    EntityType.TAX_CODE: "taxcode",
    EntityType.TAX_RATE: "taxrate",
}


# Attachment scan looks at every transaction type that can carry files;
# copy defaults to the types that have a usable DocNumber in practice.
SCAN_ENTITY_TYPES: tuple[EntityType, ...] = (
    EntityType.INVOICE,
    EntityType.CREDIT_MEMO,
    EntityType.BILL,
    EntityType.VENDOR_CREDIT,
    EntityType.SALES_RECEIPT,
    EntityType.ESTIMATE,
    EntityType.CREDIT_CARD_CHARGE,
    EntityType.PURCHASE,
    EntityType.CHECK,
    EntityType.DELAYED_CHARGE,
    EntityType.JOURNAL_ENTRY,
    EntityType.PAYMENT,
    EntityType.REFUND_RECEIPT,
)

COPY_ENTITY_TYPES: tuple[EntityType, ...] = (
    EntityType.INVOICE,
    EntityType.CREDIT_MEMO,
    EntityType.BILL,
    EntityType.VENDOR_CREDIT,
    EntityType.SALES_RECEIPT,
    EntityType.ESTIMATE,
)


# === Business keys ===

BusinessKeyStrategy = Callable[[dict[str, Any]], str]

BUSINESS_KEY_FIELDS: tuple[str, ...] = ("DocNumber", "TxnNumber", "RefNumber", "PaymentRefNum")

# Field compared on the target side when looking a document up by business key
TARGET_MATCH_FIELD = "DocNumber"


def first_present_field(doc: dict[str, Any], fields: tuple[str, ...] = BUSINESS_KEY_FIELDS) -> str:
    """Return the first non-empty value among ``fields``."""
    for name in fields:
        value = doc.get(name)
        if value not in (None, ""):
            return str(value)
    return ""


_STRATEGIES: dict[EntityType, BusinessKeyStrategy] = {
    entity_type: first_present_field for entity_type in EntityType
}


def register_business_key_strategy(
    entity_type: EntityType, strategy: BusinessKeyStrategy
) -> BusinessKeyStrategy:
    """Replace the business-key strategy for one entity type.

    Returns the strategy previously registered so callers can restore it.
    """
    previous = _STRATEGIES[entity_type]
    _STRATEGIES[entity_type] = strategy
    return previous


def business_key_for(entity_type: EntityType, doc: dict[str, Any] | None) -> str:
    """Extract the matching key of ``doc``; empty string when it has none."""
    if not doc:
        return ""
    return _STRATEGIES[entity_type](doc)


def escape_query_literal(value: str) -> str:
    """Escape a value for a single-quoted literal in the QBO query language."""
    return value.replace("'", "''")


def build_date_where(field_name: str, from_date: str | None, to_date: str | None) -> str:
    """Query-language date range on ``field_name``; either bound may be omitted."""
    if from_date and to_date:
        return f"{field_name} >= '{from_date}' AND {field_name} <= '{to_date}'"
    if from_date:
        return f"{field_name} >= '{from_date}'"
    if to_date:
        return f"{field_name} <= '{to_date}'"
    return ""
