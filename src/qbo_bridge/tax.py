"""Tax master loading and line-level tax reconstruction.

QBO documents only expose an aggregate tax percentage at document level
(``TxnTaxDetail``). To report per-line tax and its named components (for
example CGST + SGST under a dual-rate system) each sales line's tax code is
resolved against the company's TaxCode and TaxRate tables.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from qbo_bridge.entities import EntityType
from qbo_bridge.qbo.client import QBOClient
from qbo_bridge.rounding import as_float, round2

logger = structlog.get_logger(__name__)

SALES_ITEM_LINE = "SalesItemLineDetail"
FALLBACK_COMPONENT_NAME = "GST"


@dataclass(frozen=True)
class TaxComponent:
    """One named rate inside a tax code."""

    rate: float
    name: str


@dataclass
class TaxMaster:
    """TaxCode and TaxRate tables of one company."""

    tax_codes: list[dict[str, Any]] = field(default_factory=list)
    tax_rates: list[dict[str, Any]] = field(default_factory=list)

    def find_code(self, ref: Any) -> dict[str, Any] | None:
        """Resolve a TaxCodeRef value by Id or Name; first match wins."""
        if ref is None:
            return None
        wanted = str(ref)
        for code in self.tax_codes:
            if str(code.get("Id")) == wanted or str(code.get("Name")) == wanted:
                return code
        return None

    def find_rate(self, rate_id: Any) -> dict[str, Any] | None:
        wanted = str(rate_id)
        for rate in self.tax_rates:
            if str(rate.get("Id")) == wanted:
                return rate
        return None

    def components_for(self, ref: Any) -> list[TaxComponent]:
        """Named rates of the tax code ``ref``; unknown rate ids are dropped."""
        code = self.find_code(ref)
        if not code:
            return []
        details = (code.get("SalesTaxRateList") or {}).get("TaxRateDetail") or []
        components = []
        for detail in details:
            rate_ref = (detail.get("TaxRateRef") or {}).get("value")
            rate = self.find_rate(rate_ref)
            if rate:
                components.append(
                    TaxComponent(rate=as_float(rate.get("RateValue")), name=rate.get("Name") or "")
                )
        return components


@dataclass
class LineTaxResult:
    """Tax view of one sales line of a document."""

    line_no: int
    line_index: int
    description: str
    qty: Any
    rate: Any
    amount: float
    tax_code: str | None
    tax_rate: float
    tax_amount: float
    tax_breakup: list[TaxComponent]
    item_id: str = ""
    item_name: str = ""
    class_id: str = ""
    class_name: str = ""
    service_date: str = ""

    def component_rate(self, label: str) -> float:
        """Rate of the first component whose name contains ``label`` (e.g. "CGST")."""
        wanted = label.upper()
        for component in self.tax_breakup:
            if wanted in (component.name or "").upper():
                return component.rate
        return 0.0


async def load_tax_master(client: QBOClient) -> TaxMaster:
    """Load TaxCode and TaxRate concurrently; either failing fails the load."""
    tax_codes, tax_rates = await asyncio.gather(
        client.query_all(EntityType.TAX_CODE),
        client.query_all(EntityType.TAX_RATE),
    )
    logger.debug("tax_master_loaded", tax_codes=len(tax_codes), tax_rates=len(tax_rates))
    return TaxMaster(tax_codes=tax_codes, tax_rates=tax_rates)


def document_tax_percent(doc: dict[str, Any]) -> float:
    """Document-level tax percentage from the first TxnTaxDetail tax line."""
    tax_lines = (doc.get("TxnTaxDetail") or {}).get("TaxLine") or []
    if not tax_lines:
        return 0.0
    detail = tax_lines[0].get("TaxLineDetail") or {}
    return as_float(detail.get("TaxPercent"))


def extract_line_taxes(doc: dict[str, Any] | None, tax_master: TaxMaster | None) -> list[LineTaxResult]:
    """Decompose a document's sales lines into amount, tax and named components.

    Only ``SalesItemLineDetail`` lines are reported; discount and subtotal
    lines are skipped and do not consume a line number. When the line's tax
    code cannot be resolved into components a single synthetic GST component
    carrying the document percentage is used instead.
    """
    if not isinstance(doc, dict) or not isinstance(doc.get("Line"), list):
        return []

    tax_percent = document_tax_percent(doc)
    results: list[LineTaxResult] = []
    line_no = 1

    for index, line in enumerate(doc["Line"]):
        if line.get("DetailType") != SALES_ITEM_LINE:
            continue

        detail = line.get(SALES_ITEM_LINE) or {}
        amount = as_float(line.get("Amount"))
        tax_code = (detail.get("TaxCodeRef") or {}).get("value")

        breakup = tax_master.components_for(tax_code) if tax_master else []
        if not breakup:
            breakup = [TaxComponent(rate=tax_percent, name=FALLBACK_COMPONENT_NAME)]

        item_ref = detail.get("ItemRef") or {}
        class_ref = detail.get("ClassRef") or {}

        results.append(
            LineTaxResult(
                line_no=line_no,
                line_index=index,
                description=line.get("Description") or "",
                qty=detail.get("Qty"),
                rate=detail.get("UnitPrice"),
                amount=amount,
                tax_code=tax_code,
                tax_rate=tax_percent,
                tax_amount=round2(amount * (tax_percent / 100)),
                tax_breakup=breakup,
                item_id=item_ref.get("value") or "",
                item_name=item_ref.get("name") or "",
                class_id=class_ref.get("value") or "",
                class_name=class_ref.get("name") or "",
                service_date=detail.get("ServiceDate") or "",
            )
        )
        line_no += 1

    return results
