"""QBO Bridge - attachment migration, tax extraction and reconciliation for QuickBooks Online."""

__version__ = "0.1.0"

from qbo_bridge.allocation import AllocationFilter, AllocationReport, reconcile_allocations
from qbo_bridge.attachments import AttachmentMigrator, MigrationResult, ScanResult
from qbo_bridge.config import configure_logging, get_settings
from qbo_bridge.connections import (
    Connection,
    ConnectionNotConfiguredError,
    ConnectionSlot,
    ConnectionStore,
)
from qbo_bridge.entities import EntityType, business_key_for, register_business_key_strategy
from qbo_bridge.overpayments import OverpaymentReport, detect_overpayments
from qbo_bridge.qbo import QBOAPIError, QBOClient, RetryPolicy
from qbo_bridge.service import BridgeService
from qbo_bridge.tax import LineTaxResult, TaxMaster, extract_line_taxes, load_tax_master

__all__ = [
    # Version
    "__version__",
    # Service
    "BridgeService",
    # Connections
    "Connection",
    "ConnectionSlot",
    "ConnectionStore",
    "ConnectionNotConfiguredError",
    # API client
    "QBOClient",
    "QBOAPIError",
    "RetryPolicy",
    # Entities
    "EntityType",
    "business_key_for",
    "register_business_key_strategy",
    # Engines
    "AttachmentMigrator",
    "ScanResult",
    "MigrationResult",
    "TaxMaster",
    "LineTaxResult",
    "load_tax_master",
    "extract_line_taxes",
    "AllocationFilter",
    "AllocationReport",
    "reconcile_allocations",
    "OverpaymentReport",
    "detect_overpayments",
    # Config
    "get_settings",
    "configure_logging",
]
