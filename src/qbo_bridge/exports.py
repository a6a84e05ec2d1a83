"""Spreadsheet exports: fixed column schemas, row builders and the workbook writer.

Row builders turn QBO documents (plus the derived allocation and overpayment
reports) into value lists matching the column schemas below, one list per
output row. The column order is the contract consumed downstream.
"""

from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import IO, Any

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from qbo_bridge.allocation import AllocationReport, explode_ids
from qbo_bridge.overpayments import ApplyLine, OverpaymentReport
from qbo_bridge.rounding import as_float, round2
from qbo_bridge.tax import LineTaxResult, TaxMaster, extract_line_taxes

Row = list[Any]
Sheet = tuple[str, Sequence[str], Iterable[Row]]

TAX_INCLUSIVE = "TaxInclusive"
TAX_EXCLUDED = "TaxExcluded"
GST_COMPONENTS = ("CGST", "SGST", "IGST")

ADDRESS_COLUMNS = ("Line1", "Line2", "City", "State", "PostalCode", "Country")

INVOICE_COLUMNS = (
    "Doc Type", "Invoice ID", "Invoice Number", "Txn Date", "Due Date", "Created Time", "Updated Time",
    "Customer ID", "Customer Name", "Customer Email", "Customer GSTIN",
    "Terms", "Tax Mode", "Currency", "Exchange Rate", "PO Number", "Reference Number", "Private Note",
    "Discount Total", "Tax Total", "Total Amount", "Balance",
    "Bill Addr Line1", "Bill Addr Line2", "Bill City", "Bill State", "Bill Postal Code", "Bill Country",
    "Ship Addr Line1", "Ship Addr Line2", "Ship City", "Ship State", "Ship Postal Code", "Ship Country",
    "Line No", "Item ID", "Item Name", "Class ID", "Class Name", "Service Date", "Description", "Qty", "Rate",
    "Line Amount Raw", "Line Amount Excl Tax", "Tax Code", "Tax Rate", "Line Tax Amount", "Line Amount Incl Tax",
    "CGST %", "SGST %", "IGST %", "CGST Amount", "SGST Amount", "IGST Amount",
)

_DOC_ADDRESS_COLUMNS = (
    "Bill To Line1", "Bill To Line2", "Bill To City", "Bill To State", "Bill To PostalCode", "Bill To Country",
    "Ship To Line1", "Ship To Line2", "Ship To City", "Ship To State", "Ship To PostalCode", "Ship To Country",
)

_DOC_LINE_COLUMNS = (
    "Line No", "Item ID", "Item Name", "Class ID", "Class Name", "Service Date", "Line Description",
    "Qty", "Rate", "Line Amount", "Line Tax Code", "Line Tax %", "Line Tax Amount",
    "CGST %", "SGST %", "IGST %", "CGST Amt", "SGST Amt", "IGST Amt",
)

ESTIMATE_COLUMNS = (
    "Doc Type", "Doc ID", "Doc Number", "Txn Date", "Expiry Date", "Created Date", "Last Updated Time",
    "Customer ID", "Customer Name", "Customer Email", "Terms", "Currency", "Exchange Rate", "PO Number",
    "Ref Number", "Private Note", "Sales Tax Total", "Txn Total Amount",
    *_DOC_ADDRESS_COLUMNS,
    *_DOC_LINE_COLUMNS,
)

CREDIT_MEMO_COLUMNS = (
    "Doc Type", "Doc ID", "Doc Number", "Txn Date", "Created Date", "Last Updated Time",
    "Customer ID", "Customer Name", "Customer Email", "Terms", "Currency", "Exchange Rate",
    "Ref Number", "Private Note", "Discount", "Sales Tax Total", "Txn Total Amount", "Balance",
    *_DOC_ADDRESS_COLUMNS,
    *_DOC_LINE_COLUMNS,
)

CREDIT_MEMO_ALLOCATION_COLUMNS = (
    "CreditMemo ID", "CreditMemo Number", "CreditMemo Date", "Customer ID", "Customer Name", "Currency",
    "CreditMemo Total", "Total Allocated", "Remaining Balance",
    "Applied Invoice ID", "Applied Invoice Number", "Applied Invoice Amount",
    "Alloc Type", "Alloc Source ID", "Alloc Date", "Alloc Amount", "Alloc Ref Number",
)

VENDOR_CREDIT_ALLOCATION_COLUMNS = (
    "VendorCredit ID", "VendorCredit Number", "VendorCredit Date", "Vendor ID", "Vendor Name", "Currency",
    "VendorCredit Total", "Total Allocated", "Remaining Balance",
    "Applied Bill ID", "Applied Bill Number",
    "Alloc Type", "Alloc Source ID", "Alloc Date", "Alloc Amount", "Alloc Ref Number",
)

CUSTOMER_APPLY_COLUMNS = (
    "Payment ID", "Payment Date", "Customer", "Amount Received", "Payment Ref No", "Deposit To",
    "Linked Txn Type", "Linked Txn ID", "Txn Date", "No.", "Due Date", "Amount", "Open Balance",
    "Applied (Payment Column)",
)

CUSTOMER_OVERPAYMENT_COLUMNS = (
    "Type", "Payment ID", "Payment Date", "Customer", "Amount Received", "Applied Total", "Unapplied",
    "Payment Ref", "Deposit To", "Email", "Currency", "Exchange Rate",
)

VENDOR_APPLY_COLUMNS = (
    "BillPayment ID", "Payment Date", "Vendor", "Payment Total", "Ref No / Check No", "Bank Account",
    "Linked Txn Type", "Linked Txn ID", "Txn Date", "No.", "Due Date", "Amount", "Open Balance", "Applied",
)

VENDOR_OVERPAYMENT_COLUMNS = (
    "Type", "BillPayment ID", "Payment Date", "Vendor", "Payment Total", "Applied Total", "Unapplied",
    "Ref No / Check No", "Bank Account",
)


# === Shared document helpers ===


def _ref(doc: dict[str, Any], key: str, attr: str = "value") -> str:
    return (doc.get(key) or {}).get(attr) or ""


def _address(addr: dict[str, Any] | None) -> Row:
    addr = addr or {}
    return [
        addr.get("Line1") or "",
        addr.get("Line2") or "",
        addr.get("City") or "",
        addr.get("CountrySubDivisionCode") or "",
        addr.get("PostalCode") or "",
        addr.get("Country") or "",
    ]


def _terms(doc: dict[str, Any]) -> str:
    return _ref(doc, "SalesTermRef", "name") or _ref(doc, "SalesTermRef")


def _private_note(doc: dict[str, Any]) -> str:
    return str(doc.get("PrivateNote") or "").strip()


def _metadata(doc: dict[str, Any]) -> Row:
    meta = doc.get("MetaData") or {}
    return [meta.get("CreateTime") or "", meta.get("LastUpdatedTime") or ""]


def discount_total(doc: dict[str, Any]) -> float:
    """Discount lines plus sales lines whose item name mentions "discount"."""
    total = 0.0
    for line in doc.get("Line") or []:
        amount = abs(as_float(line.get("Amount")))
        if line.get("DetailType") == "DiscountLineDetail":
            total += amount
            continue
        item_name = ((line.get("SalesItemLineDetail") or {}).get("ItemRef") or {}).get("name") or ""
        if "discount" in str(item_name).lower():
            total += amount
    return round2(total)


def tax_mode(doc: dict[str, Any]) -> str:
    return doc.get("GlobalTaxCalculation") or TAX_EXCLUDED


def _component_columns(line: LineTaxResult, base_amount: float) -> Row:
    rates = [line.component_rate(label) for label in GST_COMPONENTS]
    return [*rates, *(round2((base_amount * rate) / 100) for rate in rates)]


def _line_columns(line: LineTaxResult) -> Row:
    return [
        line.line_no,
        line.item_id,
        line.item_name,
        line.class_id,
        line.class_name,
        line.service_date,
        line.description,
        line.qty,
        line.rate,
    ]


# === Document exports ===


def invoice_rows(doc: dict[str, Any], tax_master: TaxMaster) -> list[Row]:
    """One row per sales line; amounts split by the document's tax mode."""
    mode = tax_mode(doc)
    header = [
        "Invoice",
        doc.get("Id") or "",
        doc.get("DocNumber") or "",
        doc.get("TxnDate") or "",
        doc.get("DueDate") or "",
        *_metadata(doc),
        _ref(doc, "CustomerRef"),
        _ref(doc, "CustomerRef", "name"),
        _ref(doc, "BillEmail", "Address"),
        "",
        _terms(doc),
        mode,
        _ref(doc, "CurrencyRef"),
        doc.get("ExchangeRate") or "",
        doc.get("PONumber") or "",
        _ref(doc, "CustomerMemo") or doc.get("DocNumber") or "",
        _private_note(doc),
        discount_total(doc),
        (doc.get("TxnTaxDetail") or {}).get("TotalTax") or 0,
        doc.get("TotalAmt") or 0,
        doc.get("Balance") or 0,
        *_address(doc.get("BillAddr")),
        *_address(doc.get("ShipAddr")),
    ]

    rows = []
    for line in extract_line_taxes(doc, tax_master):
        raw = line.amount
        if mode == TAX_INCLUSIVE:
            excl, incl = round2(raw - line.tax_amount), raw
        else:
            excl, incl = raw, round2(raw + line.tax_amount)
        rows.append(
            [
                *header,
                *_line_columns(line),
                raw,
                excl,
                line.tax_code,
                line.tax_rate,
                line.tax_amount,
                incl,
                *_component_columns(line, excl),
            ]
        )
    return rows


def estimate_rows(doc: dict[str, Any], tax_master: TaxMaster) -> list[Row]:
    """One row per sales line, or one header-only row when there are none."""
    mode = tax_mode(doc)
    header = [
        "Estimate",
        doc.get("Id") or "",
        doc.get("DocNumber") or "",
        doc.get("TxnDate") or "",
        doc.get("ExpirationDate") or "",
        *_metadata(doc),
        _ref(doc, "CustomerRef"),
        _ref(doc, "CustomerRef", "name"),
        _ref(doc, "BillEmail", "Address"),
        _terms(doc),
        _ref(doc, "CurrencyRef"),
        doc.get("ExchangeRate") or "",
        doc.get("PONumber") or "",
        _ref(doc, "CustomerMemo"),
        _private_note(doc),
        (doc.get("TxnTaxDetail") or {}).get("TotalTax") or 0,
        doc.get("TotalAmt") or 0,
        *_address(doc.get("BillAddr")),
        *_address(doc.get("ShipAddr")),
    ]

    lines = extract_line_taxes(doc, tax_master)
    if not lines:
        return [[*header, *([""] * 9), 0, "", 0, 0, 0, 0, 0, 0, 0, 0]]

    rows = []
    for line in lines:
        excl = line.amount
        if mode == TAX_INCLUSIVE:
            excl = round2(line.amount - line.tax_amount)
        rows.append(
            [
                *header,
                *_line_columns(line),
                line.amount,
                line.tax_code,
                line.tax_rate,
                line.tax_amount,
                *_component_columns(line, excl),
            ]
        )
    return rows


def credit_memo_rows(doc: dict[str, Any], tax_master: TaxMaster) -> list[Row]:
    header = [
        "CreditMemo",
        doc.get("Id") or "",
        doc.get("DocNumber") or "",
        doc.get("TxnDate") or "",
        *_metadata(doc),
        _ref(doc, "CustomerRef"),
        _ref(doc, "CustomerRef", "name"),
        _ref(doc, "BillEmail", "Address"),
        _terms(doc),
        _ref(doc, "CurrencyRef"),
        doc.get("ExchangeRate") or "",
        _ref(doc, "CustomerMemo"),
        _private_note(doc),
        discount_total(doc),
        (doc.get("TxnTaxDetail") or {}).get("TotalTax") or 0,
        doc.get("TotalAmt") or 0,
        doc.get("Balance") or 0,
        *_address(doc.get("BillAddr")),
        *_address(doc.get("ShipAddr")),
    ]
    return [
        [
            *header,
            *_line_columns(line),
            line.amount,
            line.tax_code,
            line.tax_rate,
            line.tax_amount,
            *_component_columns(line, line.amount),
        ]
        for line in extract_line_taxes(doc, tax_master)
    ]


# === Allocation export ===


def credit_memo_allocation_rows(report: AllocationReport) -> list[Row]:
    """One row per (allocation, applied invoice); unallocated credits get one row."""
    rows = []
    for bucket in report.credit_memos:
        doc = bucket.doc
        head = [
            bucket.credit_id,
            doc.get("DocNumber") or "",
            doc.get("TxnDate") or "",
            _ref(doc, "CustomerRef"),
            _ref(doc, "CustomerRef", "name"),
            _ref(doc, "CurrencyRef"),
            bucket.total,
        ]
        if not bucket.entries:
            rows.append([*head, 0, bucket.total, *([""] * 8)])
            continue
        for entry in bucket.entries:
            for invoice_id in explode_ids(entry.applied_invoice_ids):
                invoice = report.invoices.get(invoice_id) if invoice_id else None
                rows.append(
                    [
                        *head,
                        bucket.allocated,
                        bucket.remaining,
                        invoice_id,
                        invoice.number if invoice else "",
                        invoice.total if invoice else "",
                        entry.instrument_type,
                        entry.source_id,
                        entry.date,
                        entry.amount,
                        entry.ref_number,
                    ]
                )
    return rows


def vendor_credit_allocation_rows(report: AllocationReport) -> list[Row]:
    rows = []
    for bucket in report.vendor_credits:
        doc = bucket.doc
        head = [
            bucket.credit_id,
            doc.get("DocNumber") or "",
            doc.get("TxnDate") or "",
            _ref(doc, "VendorRef"),
            _ref(doc, "VendorRef", "name"),
            _ref(doc, "CurrencyRef"),
            bucket.total,
        ]
        if not bucket.entries:
            rows.append([*head, 0, bucket.total, *([""] * 7)])
            continue
        for entry in bucket.entries:
            rows.append(
                [
                    *head,
                    bucket.allocated,
                    bucket.remaining,
                    entry.bill_id,
                    entry.bill_number,
                    entry.instrument_type,
                    entry.source_id,
                    entry.date,
                    entry.amount,
                    entry.ref_number,
                ]
            )
    return rows


def allocation_sheets(report: AllocationReport) -> list[Sheet]:
    return [
        ("CreditMemoAllocation", CREDIT_MEMO_ALLOCATION_COLUMNS, credit_memo_allocation_rows(report)),
        ("VendorCreditAllocation", VENDOR_CREDIT_ALLOCATION_COLUMNS, vendor_credit_allocation_rows(report)),
    ]


# === Overpayment export ===


def apply_line_row(line: ApplyLine) -> Row:
    info = line.info
    return [
        line.instrument_id,
        line.date,
        line.party,
        line.total,
        line.ref_number,
        line.account,
        line.txn_type,
        line.txn_id,
        info.date if info else "",
        info.number if info else "",
        info.due_date if info else "",
        info.amount if info else "",
        info.open_balance if info else "",
        line.applied if line.applied is not None else "",
    ]


def overpayment_sheets(report: OverpaymentReport) -> list[Sheet]:
    customer_summary = [
        [
            r.instrument_type,
            r.instrument_id,
            r.date,
            r.party,
            r.total_received,
            r.applied_total,
            r.unapplied,
            r.ref_number,
            r.deposit_account,
            r.email,
            r.currency,
            r.exchange_rate,
        ]
        for r in report.customer_summary
    ]
    vendor_summary = [
        [
            r.instrument_type,
            r.instrument_id,
            r.date,
            r.party,
            r.total_received,
            r.applied_total,
            r.unapplied,
            r.ref_number,
            r.deposit_account,
        ]
        for r in report.vendor_summary
    ]
    return [
        ("CustomerPaymentApplyLines", CUSTOMER_APPLY_COLUMNS, [apply_line_row(r) for r in report.customer_rows]),
        ("CustomerOverpaymentSummary", CUSTOMER_OVERPAYMENT_COLUMNS, customer_summary),
        ("VendorBillPaymentApplyLines", VENDOR_APPLY_COLUMNS, [apply_line_row(r) for r in report.vendor_rows]),
        ("VendorOverpaymentSummary", VENDOR_OVERPAYMENT_COLUMNS, vendor_summary),
    ]


# === Writer ===


def clean_row(row: Iterable[Any]) -> Row:
    """Strip control characters openpyxl refuses to write from string cells."""
    return [ILLEGAL_CHARACTERS_RE.sub("", value) if isinstance(value, str) else value for value in row]


class SpreadsheetWriter:
    """Write-only xlsx workbook; rows are appended as they are produced."""

    def __init__(self) -> None:
        self._workbook = Workbook(write_only=True)

    def add_sheet(self, title: str, header: Sequence[str]) -> Any:
        sheet = self._workbook.create_sheet(title=title)
        sheet.append(list(header))
        return sheet

    def save(self, destination: str | Path | IO[bytes]) -> None:
        self._workbook.save(destination)


def write_workbook(destination: str | Path | IO[bytes], sheets: Iterable[Sheet]) -> None:
    writer = SpreadsheetWriter()
    for title, header, rows in sheets:
        sheet = writer.add_sheet(title, header)
        for row in rows:
            sheet.append(clean_row(row))
    writer.save(destination)
