"""QuickBooks Online API client bound to one company connection."""

import json
from collections.abc import AsyncIterator, Iterable
from typing import Any

import httpx
import structlog

from qbo_bridge.config import get_settings
from qbo_bridge.connections import Connection
from qbo_bridge.entities import EntityType
from qbo_bridge.qbo.retry import RetryPolicy

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 1000
ID_CHUNK_SIZE = 30


class QBOAPIError(Exception):
    """Base exception for QBO API errors."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    @property
    def fault_message(self) -> str:
        """First fault message reported by QBO, falling back to the exception text."""
        if isinstance(self.details, dict):
            fault = self.details.get("Fault") or self.details.get("fault") or {}
            errors = fault.get("Error") or fault.get("error") or []
            if errors and isinstance(errors[0], dict):
                first = errors[0]
                message = first.get("Message") or first.get("message") or first.get("Detail")
                if message:
                    return str(message)
        return str(self)


class AuthenticationError(QBOAPIError):
    """Token rejected or OAuth exchange failed."""

    pass


class RateLimitError(QBOAPIError):
    """Rate limit exceeded."""

    pass


def describe_error(error: Exception) -> str:
    """Human-readable message for an error raised while talking to QBO."""
    if isinstance(error, QBOAPIError):
        return error.fault_message
    return str(error) or error.__class__.__name__


def chunked(values: list[str], size: int) -> list[list[str]]:
    return [values[i : i + size] for i in range(0, len(values), size)]


class QBOClient:
    """Async client for the QBO v3 REST and query API of a single company."""

    def __init__(
        self,
        connection: Connection,
        base_url: str | None = None,
        minor_version: int | None = None,
        timeout: float | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        settings = get_settings()
        self.connection = connection
        self.base_url = (base_url or settings.qbo_api_url).rstrip("/")
        self._minor_version = minor_version or settings.qbo_minor_version
        self._timeout = timeout or settings.qbo_timeout
        self._retry = retry_policy or RetryPolicy(
            max_retries=settings.qbo_max_retries,
            base_delay=settings.qbo_retry_base_delay,
        )
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "QBOClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def realm_id(self) -> str:
        return self.connection.realm_id

    def _company_path(self, suffix: str) -> str:
        return f"/v3/company/{self.connection.realm_id}/{suffix}"

    def _get_headers(self, accept: str = "application/json") -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.connection.access_token}",
            "Accept": accept,
        }

    # === Generic Request Methods ===

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        accept: str = "application/json",
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request and raise :class:`QBOAPIError` on a failure status."""
        client = await self._get_client()
        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                headers=self._get_headers(accept),
                **kwargs,
            )
        except httpx.RequestError as e:
            raise QBOAPIError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except Exception:
                error_detail = {"raw": response.text[:500] if response.text else "empty response"}
            error_cls: type[QBOAPIError] = QBOAPIError
            if response.status_code == 401:
                error_cls = AuthenticationError
            elif response.status_code == 429:
                error_cls = RateLimitError
            raise error_cls(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )
        return response

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        query_params = {"minorversion": self._minor_version}
        if params:
            query_params.update(params)
        response = await self._request("GET", path, params=query_params)
        data = response.json() if response.content else {}
        return data if isinstance(data, dict) else {}

    # === Query API ===

    async def query(self, statement: str) -> dict[str, Any]:
        """Run one query-language statement and return its ``QueryResponse``."""

        async def _once() -> dict[str, Any]:
            data = await self._get_json(self._company_path("query"), {"query": statement})
            response = data.get("QueryResponse")
            return response if isinstance(response, dict) else {}

        return await self._retry.run(_once, operation="query")

    async def iter_pages(
        self,
        entity_name: EntityType | str,
        where: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield result pages until a short or empty page comes back."""
        name = entity_name.value if isinstance(entity_name, EntityType) else str(entity_name)
        start = 1
        while True:
            statement = f"SELECT * FROM {name}"
            if where and where.strip():
                statement += f" WHERE {where}"
            statement += f" STARTPOSITION {start} MAXRESULTS {page_size}"

            response = await self.query(statement)
            page = response.get(name) or []
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            start += page_size

    async def query_all(
        self,
        entity_name: EntityType | str,
        where: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """Fetch every row of ``entity_name`` matching ``where``."""
        rows: list[dict[str, Any]] = []
        async for page in self.iter_pages(entity_name, where, page_size):
            rows.extend(page)
        return rows

    async def fetch_by_ids(
        self,
        entity_name: EntityType | str,
        ids: Iterable[Any],
        chunk_size: int = ID_CHUNK_SIZE,
    ) -> list[dict[str, Any]]:
        """Batch-fetch documents by id with chunked ``Id IN (...)`` queries."""
        unique = list(dict.fromkeys(str(i) for i in ids if i))
        rows: list[dict[str, Any]] = []
        for part in chunked(unique, chunk_size):
            in_clause = ", ".join(f"'{value}'" for value in part)
            rows.extend(await self.query_all(entity_name, where=f"Id IN ({in_clause})"))
        return rows

    # === Entity reads ===

    async def fetch_by_id(self, entity_type: EntityType, entity_id: str) -> dict[str, Any] | None:
        """Read one entity through its REST endpoint; None when it is absent."""

        async def _once() -> dict[str, Any]:
            return await self._get_json(self._company_path(f"{entity_type.endpoint}/{entity_id}"))

        data = await self._retry.run(_once, operation=f"read_{entity_type.endpoint}")
        doc = data.get(entity_type.root_key)
        return doc if isinstance(doc, dict) and doc else None

    async def get_company_name(self) -> str:
        data = await self._get_json(self._company_path(f"companyinfo/{self.connection.realm_id}"))
        info = data.get("CompanyInfo") or {}
        return (
            info.get("CompanyName")
            or info.get("LegalName")
            or info.get("CompanyNameFormatted")
            or info.get("CompanyNameOnChecks")
            or ""
        )

    # === Attachments ===

    async def download(self, url: str) -> bytes:
        """Download binary content; relative URLs resolve against the API base."""
        response = await self._request("GET", url, accept="*/*")
        return response.content

    async def upload_attachment(
        self,
        entity_type: EntityType,
        target_id: str,
        file_name: str,
        content: bytes,
        note: str = "",
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        """Upload a file and link it to ``entity_type`` #``target_id``."""
        metadata = {
            "AttachableRef": [
                {"EntityRef": {"type": entity_type.value, "value": target_id}},
            ],
            "FileName": file_name,
            "Note": note or "",
            "Category": "Document",
        }
        files = [
            ("file_metadata_01", ("attachment.json", json.dumps(metadata), "application/json")),
            ("file_content_01", (file_name, content, content_type)),
        ]
        response = await self._request(
            "POST",
            self._company_path("upload"),
            params={"minorversion": self._minor_version},
            files=files,
        )
        data = response.json() if response.content else {}
        for item in data.get("AttachableResponse") or []:
            if isinstance(item, dict) and item.get("Fault"):
                raise QBOAPIError(
                    "Upload rejected",
                    status_code=response.status_code,
                    details={"Fault": item["Fault"]},
                )
        return data
