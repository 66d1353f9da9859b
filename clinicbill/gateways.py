"""Capabilities the billing core needs from the record store.

Only the shapes are defined here; :mod:`clinicbill.store` and
:mod:`clinicbill.remote` provide implementations, and tests pass in-memory
fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol, runtime_checkable

from clinicbill.entities import DocumentRecord


@dataclass(frozen=True)
class RecordFilter:
    natural_key: Optional[str] = None
    active_only: bool = False
    page: int = 0
    size: int = 1000


@dataclass(frozen=True)
class RecordPage:
    items: List[DocumentRecord] = field(default_factory=list)
    page: int = 0
    size: int = 0
    total: Optional[int] = None

    @property
    def has_more(self) -> bool:
        if self.total is None:
            return False
        return (self.page + 1) * self.size < self.total


@runtime_checkable
class RecordSource(Protocol):
    async def get_by_id(self, record_id: object) -> Optional[DocumentRecord]:
        ...

    async def list_all(self, filter: RecordFilter) -> RecordPage:
        ...


@runtime_checkable
class InvoiceRepositoryGateway(RecordSource, Protocol):
    async def create(self, document: str) -> DocumentRecord:
        ...

    async def update(self, record_id: object, document: str) -> DocumentRecord:
        ...


@dataclass
class RecordSources:
    """The five collections a billing run reads from."""

    patients: RecordSource
    employees: RecordSource
    procedure_codes: RecordSource
    appointments: RecordSource
    invoices: InvoiceRepositoryGateway


async def list_everything(source: RecordSource, filter: Optional[RecordFilter] = None) -> List[DocumentRecord]:
    """Walk every page of ``source`` and return all records."""

    current = filter or RecordFilter()
    records: List[DocumentRecord] = []
    while True:
        page = await source.list_all(current)
        records.extend(page.items)
        if not page.has_more:
            return records
        current = RecordFilter(
            natural_key=current.natural_key,
            active_only=current.active_only,
            page=current.page + 1,
            size=current.size,
        )


__all__ = [
    "RecordFilter",
    "RecordPage",
    "RecordSource",
    "InvoiceRepositoryGateway",
    "RecordSources",
    "list_everything",
]
