"""SQLAlchemy-backed record store.

Every entity kind lives in its own table holding the raw document text plus
the few columns needed to look records up (natural key, soft-delete flag,
patient id for appointments).  The tables are SQLAlchemy Core ``Table``
objects; blocking calls run in a worker thread so the billing engine can
await them.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from clinicbill.config import BillingSettings
from clinicbill.documents import DocumentCodec, EntityKind
from clinicbill.entities import DocumentRecord
from clinicbill.errors import PersistenceError
from clinicbill.gateways import RecordFilter, RecordPage, RecordSources
from clinicbill.time_utils import from_epoch_seconds, to_epoch_seconds, utc_now


logger = structlog.get_logger(__name__)

metadata = MetaData()


def _document_table(name: str, *extra: Column) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("document", Text, nullable=True),
        Column("natural_key", String, nullable=True),
        Column("active", Boolean, nullable=True),
        *extra,
        Column("created_at", Float, nullable=False),
        Column("updated_at", Float, nullable=False),
        Index(f"idx_{name}_natural_key", "natural_key"),
    )


pacientes = _document_table("pacientes")
empleados = _document_table("empleados")
codigos_cups = _document_table("codigos_cups")
citas = _document_table("citas", Column("patient_id", String, nullable=True))
facturas = _document_table("facturas")

TABLES_BY_KIND: Dict[EntityKind, Table] = {
    EntityKind.PATIENT: pacientes,
    EntityKind.EMPLOYEE: empleados,
    EntityKind.PROCEDURE_CODE: codigos_cups,
    EntityKind.APPOINTMENT: citas,
    EntityKind.INVOICE: facturas,
}


def create_store_engine(database_url: str, settings: Optional[BillingSettings] = None) -> Engine:
    """Create an engine for ``database_url``; in-memory SQLite shares one connection."""

    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    options: Dict[str, Any] = settings.engine_options() if settings else {"future": True}
    return create_engine(database_url, **options)


def create_tables(engine: Engine) -> None:
    with engine.begin() as conn:
        metadata.create_all(conn, tables=list(TABLES_BY_KIND.values()))


def _now() -> float:
    return to_epoch_seconds(utc_now()) or 0.0


class SqlRecordStore:
    """Record source and invoice gateway over one document table."""

    def __init__(self, engine: Engine, kind: EntityKind, codec: Optional[DocumentCodec] = None) -> None:
        self._engine = engine
        self.kind = EntityKind(kind)
        self.table = TABLES_BY_KIND[self.kind]
        self._codec = codec or DocumentCodec()

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------
    def _to_record(self, row: Any) -> DocumentRecord:
        data = row._mapping
        attributes: Dict[str, Any] = {}
        if "patient_id" in data and data["patient_id"] is not None:
            attributes["pacienteId"] = data["patient_id"]
        return DocumentRecord(
            id=data["id"],
            document=data["document"],
            active=data["active"],
            created_at=from_epoch_seconds(data["created_at"]),
            updated_at=from_epoch_seconds(data["updated_at"]),
            attributes=attributes,
        )

    def _indexed_columns(self, document: str) -> Dict[str, Any]:
        doc = self._codec.normalize(document, self.kind)
        values: Dict[str, Any] = {"natural_key": doc.natural_key}
        if self.kind is EntityKind.APPOINTMENT:
            patient_id = doc.body().get("pacienteId")
            values["patient_id"] = str(patient_id) if patient_id not in (None, "") else None
        return values

    @staticmethod
    def _coerce_id(record_id: Any) -> Optional[int]:
        try:
            return int(str(record_id).strip())
        except (TypeError, ValueError):
            return None

    def _failed(self, operation: str, exc: SQLAlchemyError) -> PersistenceError:
        logger.error("record_store_failed", table=self.table.name, operation=operation, error=str(exc))
        return PersistenceError(f"{operation} on {self.table.name} failed: {exc}", operation=operation)

    # ------------------------------------------------------------------
    # Blocking operations
    # ------------------------------------------------------------------
    def fetch(self, record_id: Any) -> Optional[DocumentRecord]:
        key = self._coerce_id(record_id)
        if key is None:
            return None
        try:
            with self._engine.connect() as conn:
                row = conn.execute(select(self.table).where(self.table.c.id == key)).first()
        except SQLAlchemyError as exc:
            raise self._failed("get", exc) from exc
        return self._to_record(row) if row is not None else None

    def fetch_page(self, filter: RecordFilter) -> RecordPage:
        conditions = []
        if filter.natural_key:
            conditions.append(self.table.c.natural_key == filter.natural_key.strip())
        if filter.active_only:
            conditions.append(or_(self.table.c.active.is_(None), self.table.c.active.is_(True)))
        size = max(1, filter.size)
        page = max(0, filter.page)
        query = select(self.table).where(*conditions).order_by(self.table.c.id)
        counter = select(func.count()).select_from(self.table).where(*conditions)
        try:
            with self._engine.connect() as conn:
                total = conn.execute(counter).scalar_one()
                rows = conn.execute(query.offset(page * size).limit(size)).all()
        except SQLAlchemyError as exc:
            raise self._failed("list", exc) from exc
        return RecordPage(items=[self._to_record(row) for row in rows], page=page, size=size, total=total)

    def insert(self, document: str, *, active: Optional[bool] = None) -> DocumentRecord:
        now = _now()
        values = {"document": document, "active": active, "created_at": now, "updated_at": now}
        values.update(self._indexed_columns(document))
        try:
            with self._engine.begin() as conn:
                result = conn.execute(self.table.insert().values(**values))
                new_id = result.inserted_primary_key[0]
                row = conn.execute(select(self.table).where(self.table.c.id == new_id)).first()
        except SQLAlchemyError as exc:
            raise self._failed("create", exc) from exc
        return self._to_record(row)

    def replace(self, record_id: Any, document: str) -> DocumentRecord:
        key = self._coerce_id(record_id)
        if key is None:
            raise PersistenceError(f"invalid id {record_id!r} for {self.table.name}", operation="update")
        values = {"document": document, "updated_at": _now()}
        values.update(self._indexed_columns(document))
        try:
            with self._engine.begin() as conn:
                result = conn.execute(self.table.update().where(self.table.c.id == key).values(**values))
                if result.rowcount == 0:
                    raise PersistenceError(
                        f"{self.table.name} record {record_id} does not exist", operation="update"
                    )
                row = conn.execute(select(self.table).where(self.table.c.id == key)).first()
        except SQLAlchemyError as exc:
            raise self._failed("update", exc) from exc
        return self._to_record(row)

    # ------------------------------------------------------------------
    # Async capabilities
    # ------------------------------------------------------------------
    async def get_by_id(self, record_id: object) -> Optional[DocumentRecord]:
        return await asyncio.to_thread(self.fetch, record_id)

    async def list_all(self, filter: RecordFilter) -> RecordPage:
        return await asyncio.to_thread(self.fetch_page, filter)

    async def create(self, document: str) -> DocumentRecord:
        return await asyncio.to_thread(self.insert, document)

    async def update(self, record_id: object, document: str) -> DocumentRecord:
        return await asyncio.to_thread(self.replace, record_id, document)


def build_sql_sources(engine: Engine, codec: Optional[DocumentCodec] = None) -> RecordSources:
    """Return a :class:`RecordSources` where every kind reads from ``engine``."""

    def store(kind: EntityKind) -> SqlRecordStore:
        return SqlRecordStore(engine, kind, codec)

    return RecordSources(
        patients=store(EntityKind.PATIENT),
        employees=store(EntityKind.EMPLOYEE),
        procedure_codes=store(EntityKind.PROCEDURE_CODE),
        appointments=store(EntityKind.APPOINTMENT),
        invoices=store(EntityKind.INVOICE),
    )


__all__ = [
    "metadata",
    "pacientes",
    "empleados",
    "codigos_cups",
    "citas",
    "facturas",
    "TABLES_BY_KIND",
    "create_store_engine",
    "create_tables",
    "SqlRecordStore",
    "build_sql_sources",
]
