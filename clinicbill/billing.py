"""Invoice aggregation for attended appointments.

:class:`BillingAggregationEngine` turns a selection of attended appointment
ids into a priced :class:`DraftInvoice`, issues it as a persisted
:class:`IssuedInvoice` and later marks it paid.  Every run joins
appointments with patients, physicians and procedure codes through a fresh
:class:`RunCaches`, so nothing is fetched twice and nothing is shared
between runs.

Invoices are snapshots: line items copy the names, documents and values
found at draft time and never change afterwards, even if the source records
do.  The stored document keeps the layout the front office already reads::

    {"numeroFactura", "fechaEmision", "estado", "total",
     "citas": [{"id", "paciente": {...}, "medico": {...}, "procedimiento",
                "codigoCups", "fechaAtencion", "valor", "sinValor"}]}
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from clinicbill.config import (
    DEFAULT_DRAFT_PREFIX,
    DEFAULT_INVOICE_PREFIX,
    DEFAULT_LIST_SIZE,
    DEFAULT_MAX_APPOINTMENTS,
    BillingSettings,
)
from clinicbill.documents import DocumentCodec, EntityKind, NormalizedDocument, build_document
from clinicbill.entities import (
    DEFAULT_PROCEDURE_NAME,
    NOT_AVAILABLE,
    UNASSIGNED_PHYSICIAN,
    UNIDENTIFIED_PATIENT,
    Appointment,
    DocumentRecord,
    Employee,
    Patient,
    ProcedureCode,
    coerce_amount,
)
from clinicbill.errors import (
    EmptySelectionError,
    IneligibleAppointmentError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    PersistenceError,
    SelectionMismatchError,
    SelectionTooLargeError,
)
from clinicbill.gateways import RecordFilter, RecordSources, list_everything
from clinicbill.lookup_cache import NOT_FOUND, EntityLookupCache, normalize_key
from clinicbill.procedures import ProcedureValuationResolver
from clinicbill.time_utils import parse_timestamp, to_iso, utc_now


logger = structlog.get_logger(__name__)


DEFAULT_INVOICE_LIST_LIMIT = 10


class InvoiceStatus(str, enum.Enum):
    DRAFT = "BORRADOR"
    ISSUED = "PENDIENTE"
    PAID = "PAGADA"

    @classmethod
    def from_wire(cls, value: Any) -> Optional["InvoiceStatus"]:
        text = str(value or "").strip().upper()
        if not text:
            return None
        if text == "VENCIDA":
            return cls.ISSUED
        for member in cls:
            if text in (member.value, member.name):
                return member
        return None


# ---------------------------------------------------------------------------
# Invoice model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItem:
    appointment_id: Any
    patient_name: str
    patient_document: str
    physician_name: str
    physician_document: str
    procedure_code: Optional[str]
    procedure_name: str
    attended_at: Optional[str]
    value: float
    unpriced: bool

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.appointment_id,
            "paciente": {"nombre": self.patient_name, "documento": self.patient_document},
            "medico": {"nombre": self.physician_name, "documento": self.physician_document},
            "procedimiento": self.procedure_name,
            "codigoCups": self.procedure_code,
            "fechaAtencion": self.attended_at,
            "valor": self.value,
            "sinValor": self.unpriced,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "LineItem":
        patient_name, patient_document = _party(data.get("paciente"), UNIDENTIFIED_PATIENT)
        physician_name, physician_document = _party(data.get("medico"), UNASSIGNED_PHYSICIAN)
        value = coerce_amount(data.get("valor"))
        unpriced = data.get("sinValor")
        if not isinstance(unpriced, bool):
            unpriced = value is None or value <= 0
        attended_at = data.get("fechaAtencion")
        return cls(
            appointment_id=data.get("id"),
            patient_name=patient_name,
            patient_document=patient_document,
            physician_name=physician_name,
            physician_document=physician_document,
            procedure_code=str(data["codigoCups"]) if data.get("codigoCups") else None,
            procedure_name=str(data.get("procedimiento") or DEFAULT_PROCEDURE_NAME),
            attended_at=str(attended_at) if attended_at else None,
            value=value if value is not None and value > 0 else 0.0,
            unpriced=unpriced,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "patient_name": self.patient_name,
            "patient_document": self.patient_document,
            "physician_name": self.physician_name,
            "physician_document": self.physician_document,
            "procedure_code": self.procedure_code,
            "procedure_name": self.procedure_name,
            "attended_at": self.attended_at,
            "value": self.value,
            "unpriced": self.unpriced,
        }


def _party(value: Any, fallback: str) -> Tuple[str, str]:
    if isinstance(value, Mapping):
        name = str(value.get("nombre") or "").strip() or fallback
        document = str(value.get("documento") or "").strip() or NOT_AVAILABLE
        return name, document
    if value:
        return str(value), NOT_AVAILABLE
    return fallback, NOT_AVAILABLE


def _total(lines: Iterable[LineItem]) -> float:
    total = 0.0
    for line in lines:
        total += line.value
    return total


@dataclass(frozen=True)
class DraftInvoice:
    number: str
    created_at: datetime
    lines: Tuple[LineItem, ...]

    @property
    def status(self) -> InvoiceStatus:
        return InvoiceStatus.DRAFT

    @property
    def total(self) -> float:
        return _total(self.lines)

    @property
    def appointment_ids(self) -> List[Any]:
        return [line.appointment_id for line in self.lines]

    @property
    def unpriced_count(self) -> int:
        return sum(1 for line in self.lines if line.unpriced)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "status": self.status.name,
            "created_at": to_iso(self.created_at),
            "total": self.total,
            "unpriced_count": self.unpriced_count,
            "lines": [line.to_dict() for line in self.lines],
        }


@dataclass(frozen=True)
class IssuedInvoice:
    id: Any
    number: Optional[str]
    status: Optional[InvoiceStatus]
    issued_at: Optional[datetime]
    lines: Tuple[LineItem, ...]
    status_label: str = ""
    stored_total: Optional[float] = field(default=None, compare=False)
    doc: Optional[NormalizedDocument] = field(default=None, compare=False, repr=False)

    @property
    def total(self) -> float:
        return _total(self.lines)

    @property
    def wire_status(self) -> str:
        return self.status.value if self.status is not None else self.status_label

    @property
    def appointment_ids(self) -> List[Any]:
        return [line.appointment_id for line in self.lines]

    @property
    def unpriced_count(self) -> int:
        return sum(1 for line in self.lines if line.unpriced)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "number": self.number,
            "status": self.status.name if self.status is not None else self.status_label,
            "issued_at": to_iso(self.issued_at),
            "total": self.total,
            "unpriced_count": self.unpriced_count,
            "lines": [line.to_dict() for line in self.lines],
        }


def encode_invoice(invoice: IssuedInvoice, codec: Optional[DocumentCodec] = None) -> str:
    """Serialise ``invoice`` into its stored document, keeping unknown keys."""

    fields: Dict[str, Any] = dict(invoice.doc.fields) if invoice.doc else {}
    extra: Dict[str, Any] = dict(invoice.doc.extra) if invoice.doc else {}
    fields.update({"numeroFactura": invoice.number, "estado": invoice.wire_status})
    extra.update(
        {
            "numeroFactura": invoice.number,
            "fechaEmision": to_iso(invoice.issued_at),
            "estado": invoice.wire_status,
            "total": invoice.total,
            "citas": [line.to_document() for line in invoice.lines],
        }
    )
    doc = build_document(EntityKind.INVOICE, fields=fields, extra=extra)
    return (codec or DocumentCodec()).encode(doc)


def decode_invoice(record: DocumentRecord, codec: Optional[DocumentCodec] = None) -> IssuedInvoice:
    """Read a stored invoice record; malformed parts yield empty values."""

    doc = record.normalized(EntityKind.INVOICE, codec)
    body = doc.body()
    label = str(body.get("estado") or "").strip().upper()
    entries = body.get("citas")
    if not isinstance(entries, list):
        entries = []
    lines = tuple(LineItem.from_document(entry) for entry in entries if isinstance(entry, Mapping))
    return IssuedInvoice(
        id=record.id,
        number=doc.natural_key,
        status=InvoiceStatus.from_wire(label),
        issued_at=parse_timestamp(body.get("fechaEmision")) or record.created_at,
        lines=lines,
        status_label=label,
        stored_total=coerce_amount(body.get("total")),
        doc=doc,
    )


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


class InvoiceNumberGenerator:
    """Issue ``<prefix>-YYYYMMDD-HHMMSSmmm`` numbers, strictly increasing."""

    def __init__(self, prefix: str = DEFAULT_INVOICE_PREFIX, clock: Callable[[], datetime] = utc_now) -> None:
        self.prefix = prefix
        self._clock = clock
        self._last: Optional[datetime] = None
        self._lock = Lock()

    def next_number(self) -> str:
        with self._lock:
            now = self._clock()
            now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(milliseconds=1)
            self._last = now
        return f"{self.prefix}-{now:%Y%m%d}-{now:%H%M%S}{now.microsecond // 1000:03d}"


@lru_cache(maxsize=None)
def number_generator_for(prefix: str) -> InvoiceNumberGenerator:
    """Return the process-wide generator for ``prefix``."""

    return InvoiceNumberGenerator(prefix)


# ---------------------------------------------------------------------------
# Run state and filters
# ---------------------------------------------------------------------------


@dataclass
class RunCaches:
    """Lookup caches scoped to a single billing run."""

    patients: EntityLookupCache[Patient] = field(default_factory=lambda: EntityLookupCache("patients"))
    physicians: EntityLookupCache[Employee] = field(default_factory=lambda: EntityLookupCache("physicians"))
    procedures: EntityLookupCache[ProcedureCode] = field(
        default_factory=lambda: EntityLookupCache("procedure_codes")
    )
    physicians_loaded: bool = False

    def stats(self) -> Dict[str, Dict[str, int]]:
        return {
            cache.name: {"hits": cache.hits, "misses": cache.misses, "entries": len(cache)}
            for cache in (self.patients, self.physicians, self.procedures)
        }


@dataclass(frozen=True)
class AppointmentFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    patient_document: Optional[str] = None
    physician: Optional[str] = None
    procedure: Optional[str] = None


@dataclass(frozen=True)
class InvoiceFilters:
    number: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: Optional[int] = DEFAULT_INVOICE_LIST_LIMIT


@dataclass(frozen=True)
class BillableAppointment:
    """An attended, not yet invoiced appointment and its line preview."""

    appointment: Appointment
    preview: LineItem

    def to_dict(self) -> Dict[str, Any]:
        data = self.preview.to_dict()
        data["patient_id"] = self.appointment.patient_id
        data["reason"] = self.appointment.reason
        return data


@dataclass(frozen=True)
class InvoiceSummary:
    count: int
    total_billed: float
    by_status: Dict[str, int]
    unpriced_lines: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "total_billed": self.total_billed,
            "by_status": dict(self.by_status),
            "unpriced_lines": self.unpriced_lines,
        }


def _contains(haystack: Optional[str], needle: Optional[str]) -> bool:
    if not needle or not needle.strip():
        return True
    return needle.strip().lower() in (haystack or "").lower()


def _within(moment: Optional[datetime], start: Optional[date], end: Optional[date]) -> bool:
    if start is None and end is None:
        return True
    if moment is None:
        return False
    day = moment.date()
    if start is not None and day < start:
        return False
    if end is not None and day > end:
        return False
    return True


def _newest_first(moment: Optional[datetime]) -> Tuple[int, float]:
    if moment is None:
        return (1, 0.0)
    return (0, -moment.timestamp())


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class BillingAggregationEngine:
    """Build, issue and settle invoices from attended appointments."""

    def __init__(
        self,
        sources: RecordSources,
        *,
        numbers: Optional[InvoiceNumberGenerator] = None,
        codec: Optional[DocumentCodec] = None,
        max_appointments: int = DEFAULT_MAX_APPOINTMENTS,
        list_size: int = DEFAULT_LIST_SIZE,
        draft_prefix: str = DEFAULT_DRAFT_PREFIX,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.sources = sources
        self.numbers = numbers or number_generator_for(DEFAULT_INVOICE_PREFIX)
        self.codec = codec or DocumentCodec()
        self.max_appointments = max_appointments
        self.list_size = list_size
        self.draft_prefix = draft_prefix
        self._clock = clock

    @classmethod
    def from_settings(cls, sources: RecordSources, settings: BillingSettings) -> "BillingAggregationEngine":
        return cls(
            sources,
            numbers=number_generator_for(settings.invoice_prefix),
            max_appointments=settings.max_appointments_per_invoice,
            list_size=settings.list_size,
            draft_prefix=settings.draft_prefix,
        )

    # ------------------------------------------------------------------
    # Selection helpers
    # ------------------------------------------------------------------
    def _selection(self, selected_ids: Optional[Iterable[Any]]) -> List[str]:
        keys: List[str] = []
        seen: Set[str] = set()
        for raw in selected_ids or ():
            key = normalize_key(raw)
            if key is None or key in seen:
                continue
            seen.add(key)
            keys.append(key)
        if not keys:
            raise EmptySelectionError()
        if len(keys) > self.max_appointments:
            raise SelectionTooLargeError(len(keys), self.max_appointments)
        return keys

    async def _load_appointment(self, key: str, known: Mapping[str, Appointment]) -> Appointment:
        appointment = known.get(key)
        if appointment is None:
            record = await self.sources.appointments.get_by_id(key)
            if record is None:
                raise IneligibleAppointmentError(key, "la cita no existe")
            appointment = Appointment.from_record(record, self.codec)
        if not appointment.is_attended:
            raise IneligibleAppointmentError(
                key, f"estado {appointment.status.value}, se requiere ATENDIDO"
            )
        return appointment

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------
    def _resolver(self, caches: RunCaches) -> ProcedureValuationResolver:
        return ProcedureValuationResolver(
            self.sources.procedure_codes, cache=caches.procedures, list_size=self.list_size
        )

    async def _fetch_patient(self, key: str) -> Optional[Patient]:
        record = await self.sources.patients.get_by_id(key)
        return Patient.from_record(record, self.codec) if record is not None else None

    async def _fetch_employee(self, key: str) -> Optional[Employee]:
        record = await self.sources.employees.get_by_id(key)
        return Employee.from_record(record, self.codec) if record is not None else None

    async def _load_physicians(self, caches: RunCaches) -> None:
        if caches.physicians_loaded:
            return
        caches.physicians_loaded = True

        async def load() -> List[Employee]:
            records = await list_everything(self.sources.employees, RecordFilter(size=self.list_size))
            return [Employee.from_record(record, self.codec) for record in records]

        await caches.physicians.populate(load, Employee.aliases)

    async def _patient_columns(self, appointment: Appointment, caches: RunCaches) -> Tuple[str, str]:
        key = normalize_key(appointment.patient_id)
        if key is None:
            return UNIDENTIFIED_PATIENT, NOT_AVAILABLE
        patient = await caches.patients.get_or_fetch(key, lambda: self._fetch_patient(key))
        if patient is NOT_FOUND:
            return f"Paciente {key}", NOT_AVAILABLE
        return patient.display_name, patient.document_label

    async def _physician_columns(self, appointment: Appointment, caches: RunCaches) -> Tuple[str, str]:
        label = normalize_key(appointment.physician_label)
        if label is None:
            return UNASSIGNED_PHYSICIAN, NOT_AVAILABLE
        await self._load_physicians(caches)

        async def by_id() -> Optional[Employee]:
            # Labels are free text; only numeric ones can be record ids.
            if not label.isdigit():
                return None
            return await self._fetch_employee(label)

        employee = await caches.physicians.get_or_fetch(label, by_id)
        if employee is NOT_FOUND:
            return label, NOT_AVAILABLE
        return employee.display_name, employee.document_label

    async def _line_for(
        self, appointment: Appointment, caches: RunCaches, resolver: ProcedureValuationResolver
    ) -> LineItem:
        patient_name, patient_document = await self._patient_columns(appointment, caches)
        physician_name, physician_document = await self._physician_columns(appointment, caches)
        valuation = await resolver.resolve_value(appointment.procedure_code)
        procedure_name = valuation.display_name
        if procedure_name == DEFAULT_PROCEDURE_NAME and appointment.reason:
            procedure_name = appointment.reason
        return LineItem(
            appointment_id=appointment.id,
            patient_name=patient_name,
            patient_document=patient_document,
            physician_name=physician_name,
            physician_document=physician_document,
            procedure_code=valuation.code,
            procedure_name=procedure_name,
            attended_at=appointment.attended_at,
            value=valuation.value,
            unpriced=valuation.unpriced,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def build_draft(
        self,
        selected_ids: Optional[Sequence[Any]],
        appointments: Optional[Iterable[Appointment]] = None,
        *,
        caches: Optional[RunCaches] = None,
    ) -> DraftInvoice:
        """Price the selected attended appointments into a draft invoice.

        Line order follows ``selected_ids``; repeated ids keep their first
        position.  ``appointments`` may carry already-loaded appointments so
        they are not fetched again.
        """

        keys = self._selection(selected_ids)
        known = {str(item.id): item for item in appointments or ()}
        chosen = [await self._load_appointment(key, known) for key in keys]

        run = caches or RunCaches()
        resolver = self._resolver(run)
        lines = tuple([await self._line_for(appointment, run, resolver) for appointment in chosen])
        draft = DraftInvoice(
            number=f"{self.draft_prefix}-{uuid.uuid4().hex[:12].upper()}",
            created_at=self._clock(),
            lines=lines,
        )
        logger.info(
            "invoice_draft_built",
            number=draft.number,
            lines=len(lines),
            total=draft.total,
            unpriced=draft.unpriced_count,
            caches=run.stats(),
        )
        return draft

    async def issue(self, draft: DraftInvoice, selected_ids: Optional[Sequence[Any]]) -> IssuedInvoice:
        """Persist ``draft`` under a fresh invoice number.

        ``selected_ids`` must name exactly the draft's appointments.  Store
        failures propagate unchanged and nothing is kept.
        """

        keys = self._selection(selected_ids)
        drafted = [normalize_key(item) for item in draft.appointment_ids]
        missing = [key for key in drafted if key not in keys]
        unexpected = [key for key in keys if key not in drafted]
        if missing or unexpected:
            raise SelectionMismatchError(missing, unexpected)

        invoice = IssuedInvoice(
            id=None,
            number=self.numbers.next_number(),
            status=InvoiceStatus.ISSUED,
            issued_at=self._clock(),
            lines=draft.lines,
            status_label=InvoiceStatus.ISSUED.value,
        )
        record = await self.sources.invoices.create(encode_invoice(invoice, self.codec))
        issued = replace(invoice, id=record.id, stored_total=invoice.total)
        logger.info(
            "invoice_issued",
            invoice_id=issued.id,
            number=issued.number,
            lines=len(issued.lines),
            total=issued.total,
        )
        return issued

    async def mark_paid(self, invoice_id: Any) -> IssuedInvoice:
        record = await self.sources.invoices.get_by_id(invoice_id)
        if record is None:
            raise InvoiceNotFoundError(invoice_id)
        invoice = decode_invoice(record, self.codec)
        if invoice.status is not InvoiceStatus.ISSUED:
            current = invoice.status.name if invoice.status is not None else (invoice.status_label or "?")
            raise InvalidTransitionError(invoice_id, current, InvoiceStatus.PAID.name)

        paid = replace(invoice, status=InvoiceStatus.PAID, status_label=InvoiceStatus.PAID.value)
        await self.sources.invoices.update(invoice.id, encode_invoice(paid, self.codec))
        logger.info("invoice_paid", invoice_id=invoice.id, number=invoice.number, total=paid.total)
        return replace(paid, stored_total=paid.total)

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------
    async def _stored_invoices(self) -> List[IssuedInvoice]:
        records = await list_everything(self.sources.invoices, RecordFilter(size=self.list_size))
        return [decode_invoice(record, self.codec) for record in records]

    async def _invoiced_appointment_ids(self) -> Set[str]:
        try:
            invoices = await self._stored_invoices()
        except PersistenceError as exc:
            logger.warning("invoiced_appointments_unavailable", error=str(exc))
            return set()
        invoiced: Set[str] = set()
        for invoice in invoices:
            for appointment_id in invoice.appointment_ids:
                key = normalize_key(appointment_id)
                if key is not None:
                    invoiced.add(key)
        return invoiced

    async def list_billable_appointments(
        self, filters: Optional[AppointmentFilters] = None
    ) -> List[BillableAppointment]:
        """Attended appointments that no stored invoice includes yet."""

        filters = filters or AppointmentFilters()
        records = await list_everything(self.sources.appointments, RecordFilter(size=self.list_size))
        attended = [
            appointment
            for appointment in (Appointment.from_record(record, self.codec) for record in records)
            if appointment.is_attended
        ]
        invoiced = await self._invoiced_appointment_ids()
        pending = [item for item in attended if normalize_key(item.id) not in invoiced]

        run = RunCaches()
        resolver = self._resolver(run)
        if pending:
            await resolver.preload()

        results: List[BillableAppointment] = []
        for appointment in pending:
            if not _within(appointment.attended_datetime, filters.date_from, filters.date_to):
                continue
            preview = await self._line_for(appointment, run, resolver)
            if not _contains(preview.patient_document, filters.patient_document):
                continue
            if not _contains(preview.physician_name, filters.physician):
                continue
            procedure_text = f"{preview.procedure_code or ''} {preview.procedure_name}"
            if not _contains(procedure_text, filters.procedure):
                continue
            results.append(BillableAppointment(appointment=appointment, preview=preview))

        results.sort(key=lambda item: _newest_first(item.appointment.attended_datetime))
        logger.info(
            "billable_appointments_listed",
            attended=len(attended),
            invoiced=len(attended) - len(pending),
            returned=len(results),
        )
        return results

    def _matching(self, invoices: Iterable[IssuedInvoice], filters: InvoiceFilters) -> List[IssuedInvoice]:
        matched = [
            invoice
            for invoice in invoices
            if _contains(invoice.number, filters.number)
            and _within(invoice.issued_at, filters.date_from, filters.date_to)
        ]
        matched.sort(key=lambda invoice: _newest_first(invoice.issued_at))
        return matched

    async def list_invoices(self, filters: Optional[InvoiceFilters] = None) -> List[IssuedInvoice]:
        filters = filters or InvoiceFilters()
        matched = self._matching(await self._stored_invoices(), filters)
        if filters.limit is not None and filters.limit >= 0:
            matched = matched[: filters.limit]
        return matched

    async def summarize_invoices(self, filters: Optional[InvoiceFilters] = None) -> InvoiceSummary:
        filters = filters or InvoiceFilters()
        matched = self._matching(await self._stored_invoices(), filters)
        by_status: Dict[str, int] = {status.name: 0 for status in InvoiceStatus if status is not InvoiceStatus.DRAFT}
        for invoice in matched:
            label = invoice.status.name if invoice.status is not None else (invoice.status_label or "UNKNOWN")
            by_status[label] = by_status.get(label, 0) + 1
        return InvoiceSummary(
            count=len(matched),
            total_billed=_total(line for invoice in matched for line in invoice.lines),
            by_status=by_status,
            unpriced_lines=sum(invoice.unpriced_count for invoice in matched),
        )


__all__ = [
    "InvoiceStatus",
    "LineItem",
    "DraftInvoice",
    "IssuedInvoice",
    "encode_invoice",
    "decode_invoice",
    "InvoiceNumberGenerator",
    "number_generator_for",
    "RunCaches",
    "AppointmentFilters",
    "InvoiceFilters",
    "BillableAppointment",
    "InvoiceSummary",
    "BillingAggregationEngine",
]
