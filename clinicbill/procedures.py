"""Pricing of procedure codes (CUPS) for invoice line items."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

import structlog

from clinicbill.entities import DEFAULT_PROCEDURE_NAME, ProcedureCode
from clinicbill.gateways import RecordFilter, RecordSource, list_everything
from clinicbill.lookup_cache import NOT_FOUND, EntityLookupCache, normalize_key


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProcedureValuation:
    code: Optional[str]
    display_name: str
    value: float
    unpriced: bool


class ProcedureValuationResolver:
    """Resolve a procedure code to its billable value.

    Codes that cannot be found, or whose value is unset or not positive, are
    valued at ``0`` and flagged ``unpriced`` so the line still appears on the
    invoice.
    """

    def __init__(
        self,
        source: RecordSource,
        *,
        cache: Optional[EntityLookupCache[ProcedureCode]] = None,
        list_size: int = 1000,
    ) -> None:
        self._source = source
        self._cache: EntityLookupCache[ProcedureCode] = cache or EntityLookupCache("procedure_codes")
        self._list_size = list_size

    async def preload(self) -> int:
        """Index every procedure code from a single listing."""

        async def load() -> Iterable[ProcedureCode]:
            records = await list_everything(self._source, RecordFilter(size=self._list_size))
            return [ProcedureCode.from_record(record) for record in records]

        return await self._cache.populate(load, lambda item: (item.code,))

    async def _fetch(self, code: str) -> Optional[ProcedureCode]:
        page = await self._source.list_all(RecordFilter(natural_key=code, size=self._list_size))
        for record in page.items:
            candidate = ProcedureCode.from_record(record)
            if normalize_key(candidate.code) == code:
                return candidate
        return None

    async def resolve(self, code: Any) -> Optional[ProcedureCode]:
        key = normalize_key(code)
        if key is None:
            return None
        found = await self._cache.get_or_fetch(key, lambda: self._fetch(key))
        return None if found is NOT_FOUND else found

    async def resolve_value(self, code: Any) -> ProcedureValuation:
        key = normalize_key(code)
        procedure = await self.resolve(key) if key else None
        if procedure is None:
            logger.info("procedure_code_unresolved", code=key)
            return ProcedureValuation(key, DEFAULT_PROCEDURE_NAME, 0.0, True)

        name = procedure.name or DEFAULT_PROCEDURE_NAME
        if not procedure.has_value:
            logger.info("procedure_code_unpriced", code=key)
            return ProcedureValuation(key, name, 0.0, True)
        return ProcedureValuation(key, name, float(procedure.value), False)


__all__ = ["ProcedureValuation", "ProcedureValuationResolver"]
