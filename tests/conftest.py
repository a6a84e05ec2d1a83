"""Pytest configuration and fixtures."""

import json
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("CLIENT_ID", "test-client-id")
os.environ.setdefault("CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("PUBLIC_URL", "https://bridge.example.com")

from qbo_bridge.connections import Connection  # noqa: E402
from qbo_bridge.qbo.client import QBOClient  # noqa: E402
from qbo_bridge.qbo.retry import RetryPolicy  # noqa: E402
from qbo_bridge.tax import TaxMaster  # noqa: E402


@pytest.fixture
def connection():
    """A usable company connection."""
    return Connection(
        access_token="access-token-123",
        refresh_token="refresh-token-123",
        realm_id="9130000000000001",
        company_name="Test Company",
    )


@pytest.fixture
def fake_sleep():
    """Sleep replacement recording requested waits."""
    return AsyncMock()


@pytest.fixture
def qbo_client(connection, fake_sleep):
    """QBOClient with retries on a fake clock."""
    return QBOClient(
        connection,
        base_url="https://qbo.test",
        minor_version=75,
        retry_policy=RetryPolicy(sleep=fake_sleep),
    )


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.post = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def make_response():
    """Factory for mock httpx responses."""

    def _make(status_code=200, data=None, content=None):
        response = MagicMock()
        response.status_code = status_code
        response.json.return_value = data if data is not None else {}
        if content is None:
            content = json.dumps(data).encode() if data is not None else b""
        response.content = content
        response.text = content.decode("utf-8", errors="ignore")
        return response

    return _make


@pytest.fixture
def gst_tax_master():
    """Tax master with an 18% code split into CGST 9% and SGST 9%, and an IGST 18% code."""
    return TaxMaster(
        tax_codes=[
            {
                "Id": "5",
                "Name": "GST 18%",
                "SalesTaxRateList": {
                    "TaxRateDetail": [
                        {"TaxRateRef": {"value": "11"}},
                        {"TaxRateRef": {"value": "12"}},
                    ]
                },
            },
            {
                "Id": "6",
                "Name": "IGST 18%",
                "SalesTaxRateList": {"TaxRateDetail": [{"TaxRateRef": {"value": "13"}}]},
            },
        ],
        tax_rates=[
            {"Id": "11", "Name": "CGST 9%", "RateValue": 9},
            {"Id": "12", "Name": "SGST 9%", "RateValue": 9},
            {"Id": "13", "Name": "IGST 18%", "RateValue": 18},
        ],
    )


@pytest.fixture
def mock_invoice():
    """Invoice with two sales lines, a subtotal line and a discount line at 18%."""
    return {
        "Id": "130",
        "DocNumber": "INV-1001",
        "TxnDate": "2024-05-10",
        "DueDate": "2024-06-09",
        "GlobalTaxCalculation": "TaxExcluded",
        "CustomerRef": {"value": "58", "name": "Acme Traders"},
        "BillEmail": {"Address": "ap@acme.example"},
        "CurrencyRef": {"value": "INR"},
        "BillAddr": {"Line1": "12 MG Road", "City": "Pune", "CountrySubDivisionCode": "MH"},
        "TxnTaxDetail": {
            "TotalTax": 54.0,
            "TaxLine": [{"Amount": 54.0, "TaxLineDetail": {"TaxPercent": 18}}],
        },
        "TotalAmt": 344.0,
        "Balance": 344.0,
        "Line": [
            {
                "Id": "1",
                "Amount": 200.0,
                "Description": "Widgets",
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {
                    "ItemRef": {"value": "7", "name": "Widget"},
                    "Qty": 4,
                    "UnitPrice": 50,
                    "TaxCodeRef": {"value": "5"},
                },
            },
            {"Amount": 200.0, "DetailType": "SubTotalLineDetail", "SubTotalLineDetail": {}},
            {
                "Id": "2",
                "Amount": 100.0,
                "Description": "Service",
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": {
                    "ItemRef": {"value": "8", "name": "Install"},
                    "Qty": 1,
                    "UnitPrice": 100,
                    "TaxCodeRef": {"value": "99"},
                },
            },
            {"Amount": 10.0, "DetailType": "DiscountLineDetail", "DiscountLineDetail": {}},
        ],
    }
