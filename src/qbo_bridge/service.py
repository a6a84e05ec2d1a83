"""Bridge operations over the connected companies.

Each operation snapshots the connections it needs when it starts, builds its
own API clients from those snapshots and closes them when it finishes.
"""

import asyncio
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import IO, Any

import structlog

from qbo_bridge.allocation import AllocationFilter, AllocationReport, allocation_where_clauses
from qbo_bridge.allocation import reconcile_allocations as reconcile
from qbo_bridge.attachments import AttachmentMigrator, MigrationResult, ScanResult
from qbo_bridge.auth import build_authorization_url, exchange_authorization_code
from qbo_bridge.config.settings import FlatSettings, get_settings
from qbo_bridge.connections import Connection, ConnectionSlot, ConnectionStore
from qbo_bridge.entities import COPY_ENTITY_TYPES, SCAN_ENTITY_TYPES, EntityType, build_date_where
from qbo_bridge.exports import (
    CREDIT_MEMO_COLUMNS,
    ESTIMATE_COLUMNS,
    INVOICE_COLUMNS,
    SpreadsheetWriter,
    allocation_sheets,
    clean_row,
    credit_memo_rows,
    estimate_rows,
    invoice_rows,
    overpayment_sheets,
    write_workbook,
)
from qbo_bridge.overpayments import BANK_ACCOUNT_WHERE, OverpaymentReport, fetch_linked_documents
from qbo_bridge.overpayments import detect_overpayments as detect
from qbo_bridge.qbo.client import QBOClient, describe_error
from qbo_bridge.tax import LineTaxResult, extract_line_taxes, load_tax_master

logger = structlog.get_logger(__name__)

INVOICE_EXPORT_PAGE_SIZE = 500

Destination = str | Path | IO[bytes]
ClientFactory = Callable[[Connection], QBOClient]


class DocumentNotFoundError(LookupError):
    """The requested document does not exist in the company."""


class BridgeService:
    """Entry point for every bridge operation."""

    def __init__(
        self,
        store: ConnectionStore | None = None,
        settings: FlatSettings | None = None,
        client_factory: ClientFactory | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or ConnectionStore.from_settings(self.settings)
        self._client_factory = client_factory or QBOClient

    def _client(self, slot: ConnectionSlot) -> QBOClient:
        return self._client_factory(self.store.require(slot))

    # === Connections ===

    def status(self) -> dict[str, dict[str, Any]]:
        return self.store.status()

    def disconnect(self, slot: ConnectionSlot | str) -> ConnectionSlot:
        return self.store.disconnect(slot)

    def authorization_url(self, slot: ConnectionSlot | str) -> str | None:
        return build_authorization_url(slot, self.settings)

    async def complete_authorization(
        self, code: str, realm_id: str, state: str | None = None
    ) -> tuple[ConnectionSlot, Connection]:
        """Exchange the callback code and store the connection in the slot named by ``state``."""
        slot = ConnectionSlot.from_state(state)
        connection = await exchange_authorization_code(code, realm_id, self.settings)
        self.store.set(slot, connection)
        return slot, connection

    # === Attachments ===

    async def scan_attachments(
        self, entity_types: Iterable[EntityType] = SCAN_ENTITY_TYPES
    ) -> ScanResult:
        """Count attachables per type in the FROM company."""
        async with self._client(ConnectionSlot.FROM) as source:
            return await AttachmentMigrator(source).scan(entity_types)

    async def copy_attachments(
        self, entity_types: Iterable[EntityType] = COPY_ENTITY_TYPES
    ) -> MigrationResult:
        """Copy FROM attachments onto the matching TO documents."""
        source = self._client(ConnectionSlot.FROM)
        target = self._client(ConnectionSlot.TO)
        async with source, target:
            result = await AttachmentMigrator(source, target).migrate(entity_types)
        logger.info("attachment_copy_completed", copied=result.copied, errors=len(result.errors))
        return result

    # === Tax extraction ===

    async def extract_document_taxes(
        self, entity_type: EntityType | str, doc_id: str
    ) -> list[LineTaxResult]:
        entity_type = EntityType.parse(entity_type)
        async with self._client(ConnectionSlot.MAIN) as client:
            tax_master, doc = await asyncio.gather(
                load_tax_master(client),
                client.fetch_by_id(entity_type, doc_id),
            )
        if doc is None:
            raise DocumentNotFoundError(f"{entity_type.value} #{doc_id} not found")
        return extract_line_taxes(doc, tax_master)

    # === Allocations ===

    async def reconcile_allocations(
        self,
        from_date: str | None = None,
        to_date: str | None = None,
        filter_by: AllocationFilter | str = AllocationFilter.INVOICE,
    ) -> AllocationReport:
        """Rebuild credit memo and vendor credit allocations from MAIN."""
        where = allocation_where_clauses(filter_by, from_date, to_date)
        types = list(where)
        async with self._client(ConnectionSlot.MAIN) as client:
            results = await asyncio.gather(*(client.query_all(t, where=where[t]) for t in types))
        docs = dict(zip(types, results))
        return reconcile(
            credit_memos=docs[EntityType.CREDIT_MEMO],
            vendor_credits=docs[EntityType.VENDOR_CREDIT],
            payments=docs[EntityType.PAYMENT],
            bill_payments=docs[EntityType.BILL_PAYMENT],
            invoices=docs[EntityType.INVOICE],
        )

    # === Overpayments ===

    async def detect_overpayments(
        self, from_date: str | None = None, to_date: str | None = None
    ) -> OverpaymentReport:
        """Find payments and bill payments in MAIN with an unapplied remainder."""
        where = build_date_where("TxnDate", from_date, to_date)
        async with self._client(ConnectionSlot.MAIN) as client:
            bank_accounts = await client.query_all(EntityType.ACCOUNT, where=BANK_ACCOUNT_WHERE)
            payments, bill_payments = await asyncio.gather(
                client.query_all(EntityType.PAYMENT, where=where),
                client.query_all(EntityType.BILL_PAYMENT, where=where),
            )
            linked = await fetch_linked_documents(client, payments, bill_payments)
        return detect(payments, bill_payments, bank_accounts, linked)

    # === Exports ===

    async def export_invoices(
        self,
        destination: Destination,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> int:
        """Write the invoice workbook page by page; returns the number of data rows."""
        where = build_date_where("TxnDate", from_date, to_date)
        writer = SpreadsheetWriter()
        sheet = writer.add_sheet("Invoices", INVOICE_COLUMNS)
        count = 0
        async with self._client(ConnectionSlot.MAIN) as client:
            tax_master = await load_tax_master(client)
            async for page in client.iter_pages(
                EntityType.INVOICE, where=where, page_size=INVOICE_EXPORT_PAGE_SIZE
            ):
                for doc in page:
                    for row in invoice_rows(doc, tax_master):
                        sheet.append(clean_row(row))
                        count += 1
                logger.debug("invoice_page_exported", invoices=len(page), rows=count)
        writer.save(destination)
        logger.info("invoices_exported", rows=count)
        return count

    async def export_estimates(
        self,
        destination: Destination,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> int:
        where = build_date_where("TxnDate", from_date, to_date)
        rows = []
        async with self._client(ConnectionSlot.MAIN) as client:
            tax_master = await load_tax_master(client)
            for doc in await client.query_all(EntityType.ESTIMATE, where=where):
                full = doc
                if not doc.get("Line"):
                    try:
                        full = await client.fetch_by_id(EntityType.ESTIMATE, str(doc.get("Id"))) or doc
                    except Exception as e:
                        logger.warning(
                            "estimate_fetch_failed", estimate_id=doc.get("Id"), error=describe_error(e)
                        )
                rows.extend(estimate_rows(full, tax_master))
        write_workbook(destination, [("Estimates", ESTIMATE_COLUMNS, rows)])
        logger.info("estimates_exported", rows=len(rows))
        return len(rows)

    async def export_credit_memos(
        self,
        destination: Destination,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> int:
        where = build_date_where("TxnDate", from_date, to_date)
        async with self._client(ConnectionSlot.MAIN) as client:
            tax_master, credit_memos = await asyncio.gather(
                load_tax_master(client),
                client.query_all(EntityType.CREDIT_MEMO, where=where),
            )
        rows = [row for doc in credit_memos for row in credit_memo_rows(doc, tax_master)]
        write_workbook(destination, [("CreditMemos", CREDIT_MEMO_COLUMNS, rows)])
        logger.info("credit_memos_exported", rows=len(rows))
        return len(rows)

    async def export_allocations(
        self,
        destination: Destination,
        from_date: str | None = None,
        to_date: str | None = None,
        filter_by: AllocationFilter | str = AllocationFilter.INVOICE,
    ) -> AllocationReport:
        report = await self.reconcile_allocations(from_date, to_date, filter_by)
        write_workbook(destination, allocation_sheets(report))
        return report

    async def export_overpayments(
        self,
        destination: Destination,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> OverpaymentReport:
        report = await self.detect_overpayments(from_date, to_date)
        write_workbook(destination, overpayment_sheets(report))
        return report
