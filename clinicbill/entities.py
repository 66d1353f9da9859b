"""Domain readers for the records the billing core consumes.

Each reader takes a :class:`DocumentRecord` as returned by a store and pulls
the few values billing needs out of its normalised document.  Readers never
fail on malformed payloads; missing values fall back to the display text the
clinic staff are used to seeing (``N/A``, ``Paciente 12``...).
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple

from clinicbill.documents import DocumentCodec, EntityKind, NormalizedDocument
from clinicbill.time_utils import from_epoch_seconds, parse_timestamp


NOT_AVAILABLE = "N/A"
UNIDENTIFIED_PATIENT = "Paciente no identificado"
UNASSIGNED_PHYSICIAN = "Médico no asignado"
DEFAULT_PROCEDURE_NAME = "Procedimiento médico"

_DOCUMENT_KEYS = ("document", "jsonData", "datosJson")
_ACTIVE_KEYS = ("active", "activo")
_CREATED_KEYS = ("createdAt", "created_at", "fechaCreacion")
_UPDATED_KEYS = ("updatedAt", "updated_at", "fechaActualizacion")
_RESERVED_KEYS = {"id", *_DOCUMENT_KEYS, *_ACTIVE_KEYS, *_CREATED_KEYS, *_UPDATED_KEYS}


def _first(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _coerce_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_epoch_seconds(value)
    return parse_timestamp(value)


def _coerce_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "si", "sí"}
    return bool(value)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def join_name(*parts: Any) -> str:
    """Join the non-blank name ``parts`` with single spaces."""

    return " ".join(text for text in (_text(part) for part in parts) if text)


def coerce_amount(value: Any) -> Optional[float]:
    """Return ``value`` as a float, or ``None`` when it is unset or not numeric."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = _text(value)
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class DocumentRecord:
    """A row of the store: identity, lifecycle flags and the document text."""

    id: Any
    document: Optional[str] = None
    active: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DocumentRecord":
        """Build a record from a store payload using either naming convention."""

        document = _first(data, _DOCUMENT_KEYS)
        if document is not None and not isinstance(document, str):
            document = json.dumps(document, ensure_ascii=False)
        attributes = {k: v for k, v in data.items() if k not in _RESERVED_KEYS}
        return cls(
            id=data.get("id"),
            document=document,
            active=_coerce_bool(_first(data, _ACTIVE_KEYS)),
            created_at=_coerce_timestamp(_first(data, _CREATED_KEYS)),
            updated_at=_coerce_timestamp(_first(data, _UPDATED_KEYS)),
            attributes=attributes,
        )

    def normalized(self, kind: EntityKind, codec: Optional[DocumentCodec] = None) -> NormalizedDocument:
        return (codec or DocumentCodec()).normalize(self.document, kind)


# ---------------------------------------------------------------------------
# Patients and employees
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Patient:
    id: Any
    document_number: Optional[str]
    document_type: Optional[str]
    display_name: str
    doc: NormalizedDocument = field(compare=False, repr=False)

    @property
    def document_label(self) -> str:
        return self.document_number or NOT_AVAILABLE

    @classmethod
    def from_record(cls, record: DocumentRecord, codec: Optional[DocumentCodec] = None) -> "Patient":
        doc = record.normalized(EntityKind.PATIENT, codec)
        personal = doc.section("informacionPersonal")
        name = join_name(
            personal.get("primerNombre"),
            personal.get("segundoNombre"),
            personal.get("primerApellido"),
            personal.get("segundoApellido"),
        )
        number = doc.natural_key or _text(record.attributes.get("numeroDocumento")) or None
        return cls(
            id=record.id,
            document_number=number,
            document_type=_text(doc.fields.get("tipoDocumento")) or None,
            display_name=name or f"Paciente {record.id}",
            doc=doc,
        )


@dataclass(frozen=True)
class Employee:
    id: Any
    document_number: Optional[str]
    base_name: str
    specialty: Optional[str]
    doc: NormalizedDocument = field(compare=False, repr=False)

    @property
    def display_name(self) -> str:
        if self.base_name and self.specialty:
            return f"{self.base_name} - {self.specialty}"
        return self.base_name or self.document_number or f"Empleado {self.id}"

    @property
    def document_label(self) -> str:
        return self.document_number or NOT_AVAILABLE

    def aliases(self) -> List[Any]:
        """Every key an appointment may use to name this employee."""

        keys: List[Any] = [self.id, self.document_number, self.display_name]
        if self.base_name:
            keys.append(self.base_name)
        return keys

    @classmethod
    def from_record(cls, record: DocumentRecord, codec: Optional[DocumentCodec] = None) -> "Employee":
        doc = record.normalized(EntityKind.EMPLOYEE, codec)
        personal = doc.section("informacionPersonal")
        work = doc.section("informacionLaboral")
        base = join_name(
            personal.get("primerNombre"),
            personal.get("segundoNombre"),
            personal.get("primerApellido"),
        )
        return cls(
            id=record.id,
            document_number=doc.natural_key,
            base_name=base,
            specialty=_text(work.get("especialidad")) or None,
            doc=doc,
        )


# ---------------------------------------------------------------------------
# Procedure codes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProcedureCode:
    id: Any
    code: Optional[str]
    name: Optional[str]
    value: Optional[float]

    @property
    def has_value(self) -> bool:
        return self.value is not None and self.value > 0

    @classmethod
    def from_record(
        cls, record: DocumentRecord, codec: Optional[DocumentCodec] = None
    ) -> "ProcedureCode":
        doc = record.normalized(EntityKind.PROCEDURE_CODE, codec)
        body = doc.body()
        code = doc.natural_key or _text(body.get("codigo")) or None
        return cls(
            id=record.id,
            code=code,
            name=_text(body.get("nombreCup")) or _text(body.get("nombre")) or None,
            value=coerce_amount(body.get("valor")),
        )


# ---------------------------------------------------------------------------
# Appointments
# ---------------------------------------------------------------------------


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "PENDIENTE"
    CONFIRMED = "CONFIRMADA"
    ATTENDED = "ATENDIDO"
    CANCELLED = "CANCELADA"
    NO_SHOW = "NO_ASISTIO"
    UNKNOWN = "DESCONOCIDO"

    @classmethod
    def from_wire(cls, value: Any) -> "AppointmentStatus":
        text = _text(value).upper()
        if not text:
            return cls.UNKNOWN
        for member in cls:
            if text in (member.value, member.name):
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class Appointment:
    id: Any
    patient_id: Any
    physician_label: Optional[str]
    procedure_code: Optional[str]
    reason: Optional[str]
    status: AppointmentStatus
    attended_at: Optional[str]

    @property
    def is_attended(self) -> bool:
        return self.status is AppointmentStatus.ATTENDED

    @property
    def attended_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.attended_at)

    @classmethod
    def from_record(
        cls, record: DocumentRecord, codec: Optional[DocumentCodec] = None
    ) -> "Appointment":
        body = record.normalized(EntityKind.APPOINTMENT, codec).body()
        patient_id = record.attributes.get("pacienteId")
        if patient_id in (None, ""):
            patient_id = body.get("pacienteId")
        attended_at = body.get("fechaHoraCita")
        return cls(
            id=record.id,
            patient_id=patient_id if patient_id not in (None, "") else None,
            physician_label=_text(body.get("medicoAsignado")) or None,
            procedure_code=_text(body.get("codigoCups")) or None,
            reason=_text(body.get("motivo")) or None,
            status=AppointmentStatus.from_wire(body.get("estado")),
            attended_at=str(attended_at) if attended_at not in (None, "") else None,
        )


__all__ = [
    "NOT_AVAILABLE",
    "UNIDENTIFIED_PATIENT",
    "UNASSIGNED_PHYSICIAN",
    "DEFAULT_PROCEDURE_NAME",
    "join_name",
    "coerce_amount",
    "DocumentRecord",
    "Patient",
    "Employee",
    "ProcedureCode",
    "AppointmentStatus",
    "Appointment",
]
