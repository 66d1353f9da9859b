"""HTTP client for the clinic's record store service.

The service exposes one REST resource per entity kind and wraps every
response in ``{"success": ..., "data": ...}``; listings return a page object
whose records sit under ``content``.  Documents are posted as raw JSON text.
``requests`` is blocking, so every call is pushed to a worker thread.
"""

from __future__ import annotations

import asyncio
from urllib.parse import quote
from typing import Any, Dict, List, Mapping, Optional

import requests
import structlog

from clinicbill.config import BillingSettings
from clinicbill.documents import DocumentCodec, EntityKind
from clinicbill.entities import DocumentRecord
from clinicbill.errors import PersistenceError
from clinicbill.gateways import RecordFilter, RecordPage, RecordSources


logger = structlog.get_logger(__name__)


RESOURCE_PATHS: Dict[EntityKind, str] = {
    EntityKind.PATIENT: "pacientes",
    EntityKind.EMPLOYEE: "empleados",
    EntityKind.PROCEDURE_CODE: "codigos-cups",
    EntityKind.APPOINTMENT: "citas",
    EntityKind.INVOICE: "facturacion",
}

# Resources that can be looked up by natural key directly.
NATURAL_KEY_PATHS: Dict[EntityKind, str] = {
    EntityKind.PROCEDURE_CODE: "codigos-cups/codigo",
}


class StoreClient:
    """Thin ``requests`` wrapper that unwraps the store's response envelope."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._session = session or requests.Session()

    def _headers(self, has_body: bool) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if has_body:
            headers["Content-Type"] = "application/json"
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[str] = None,
        allow_missing: bool = False,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                data=body.encode("utf-8") if body is not None else None,
                headers=self._headers(body is not None),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("store_request_failed", method=method, url=url, error=str(exc))
            raise PersistenceError(f"{method} {url} failed: {exc}", operation=method) from exc

        if allow_missing and response.status_code == 404:
            return None
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            logger.error(
                "store_request_rejected", method=method, url=url, status=response.status_code
            )
            raise PersistenceError(
                f"{method} {url} returned {response.status_code}", operation=method
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise PersistenceError(f"{method} {url} returned invalid JSON", operation=method) from exc

        if isinstance(payload, Mapping) and "success" in payload:
            if not payload.get("success"):
                message = payload.get("message") or payload.get("error") or "request rejected"
                raise PersistenceError(f"{method} {url}: {message}", operation=method)
            return payload.get("data")
        return payload


def _page_items(data: Any) -> List[Mapping[str, Any]]:
    if isinstance(data, Mapping):
        data = data.get("content", [])
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, Mapping)]


def _page_total(data: Any) -> Optional[int]:
    if isinstance(data, Mapping):
        total = data.get("totalElements")
        if isinstance(total, int):
            return total
    return None


class RemoteRecordSource:
    """Record source and invoice gateway for one resource of the store."""

    def __init__(self, client: StoreClient, kind: EntityKind, codec: Optional[DocumentCodec] = None) -> None:
        self._client = client
        self.kind = EntityKind(kind)
        self.path = RESOURCE_PATHS[self.kind]
        self._codec = codec or DocumentCodec()

    def _record(self, data: Any) -> Optional[DocumentRecord]:
        if not isinstance(data, Mapping):
            return None
        return DocumentRecord.from_mapping(data)

    def _written(self, data: Any, operation: str) -> DocumentRecord:
        record = self._record(data)
        if record is None:
            raise PersistenceError(f"{operation} {self.path} returned no record", operation=operation)
        return record

    def _matches(self, record: DocumentRecord, natural_key: str) -> bool:
        found = self._codec.normalize(record.document, self.kind).natural_key
        return found == natural_key.strip()

    async def get_by_id(self, record_id: object) -> Optional[DocumentRecord]:
        data = await asyncio.to_thread(
            self._client.request_json, "GET", f"{self.path}/{record_id}", allow_missing=True
        )
        return self._record(data)

    async def _list_by_key(self, filter: RecordFilter, path: str) -> RecordPage:
        key = filter.natural_key.strip()
        data = await asyncio.to_thread(
            self._client.request_json, "GET", f"{path}/{quote(key, safe='')}", allow_missing=True
        )
        if isinstance(data, Mapping) and "content" in data:
            records = [DocumentRecord.from_mapping(item) for item in _page_items(data)]
        else:
            record = self._record(data)
            records = [record] if record is not None else []
        if filter.active_only:
            records = [record for record in records if record.active is not False]
        items = records if filter.page == 0 else []
        return RecordPage(items=items, page=filter.page, size=filter.size, total=len(records))

    async def list_all(self, filter: RecordFilter) -> RecordPage:
        key_path = NATURAL_KEY_PATHS.get(self.kind)
        if filter.natural_key and filter.natural_key.strip() and key_path:
            return await self._list_by_key(filter, key_path)

        params = {"page": filter.page, "size": filter.size}
        data = await asyncio.to_thread(self._client.request_json, "GET", self.path, params=params)
        records = [DocumentRecord.from_mapping(item) for item in _page_items(data)]
        # ``total`` stays the unfiltered count so callers keep paging past
        # pages the filters below empty out.
        total = _page_total(data)
        if filter.active_only:
            records = [record for record in records if record.active is not False]
        if filter.natural_key:
            records = [record for record in records if self._matches(record, filter.natural_key)]
        return RecordPage(items=records, page=filter.page, size=filter.size, total=total)

    async def create(self, document: str) -> DocumentRecord:
        data = await asyncio.to_thread(self._client.request_json, "POST", self.path, body=document)
        return self._written(data, "POST")

    async def update(self, record_id: object, document: str) -> DocumentRecord:
        data = await asyncio.to_thread(
            self._client.request_json, "PUT", f"{self.path}/{record_id}", body=document
        )
        return self._written(data, "PUT")


def build_remote_sources(client: StoreClient, codec: Optional[DocumentCodec] = None) -> RecordSources:
    def source(kind: EntityKind) -> RemoteRecordSource:
        return RemoteRecordSource(client, kind, codec)

    return RecordSources(
        patients=source(EntityKind.PATIENT),
        employees=source(EntityKind.EMPLOYEE),
        procedure_codes=source(EntityKind.PROCEDURE_CODE),
        appointments=source(EntityKind.APPOINTMENT),
        invoices=source(EntityKind.INVOICE),
    )


def client_from_settings(settings: BillingSettings) -> StoreClient:
    if not settings.store_url:
        raise ValueError("CLINICBILL_STORE_URL is not configured")
    return StoreClient(settings.store_url, token=settings.store_token, timeout=settings.store_timeout)


__all__ = [
    "RESOURCE_PATHS",
    "NATURAL_KEY_PATHS",
    "StoreClient",
    "RemoteRecordSource",
    "build_remote_sources",
    "client_from_settings",
]
