import json
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

# Ensure the repository root is on sys.path so tests can import the package
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from clinicbill.billing import BillingAggregationEngine, InvoiceNumberGenerator
from clinicbill.documents import EntityKind, normalize
from clinicbill.entities import DocumentRecord
from clinicbill.errors import PersistenceError
from clinicbill.gateways import RecordFilter, RecordPage, RecordSources
from clinicbill.time_utils import utc_now


class MemorySource:
    """In-memory record source recording every call it receives."""

    def __init__(self, kind: EntityKind) -> None:
        self.kind = kind
        self.records: Dict[str, DocumentRecord] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.fail_on: Set[str] = set()
        self._next_id = 1

    def add(
        self,
        document: Optional[str],
        *,
        record_id: Any = None,
        active: Optional[bool] = None,
        attributes: Optional[Dict[str, Any]] = None,
    ) -> DocumentRecord:
        if record_id is None:
            record_id = self._next_id
        self._next_id = max(self._next_id, int(record_id)) + 1
        now = utc_now()
        record = DocumentRecord(
            id=record_id,
            document=document,
            active=active,
            created_at=now,
            updated_at=now,
            attributes=dict(attributes or {}),
        )
        self.records[str(record_id)] = record
        return record

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise PersistenceError(f'{operation} failed', operation=operation)

    async def get_by_id(self, record_id: object) -> Optional[DocumentRecord]:
        self.calls.append(('get', str(record_id)))
        self._check('get')
        return self.records.get(str(record_id).strip())

    async def list_all(self, filter: RecordFilter) -> RecordPage:
        self.calls.append(('list', filter))
        self._check('list')
        items = list(self.records.values())
        if filter.natural_key:
            items = [
                record
                for record in items
                if normalize(record.document, self.kind).natural_key == filter.natural_key
            ]
        if filter.active_only:
            items = [record for record in items if record.active is not False]
        start = filter.page * filter.size
        return RecordPage(
            items=items[start:start + filter.size],
            page=filter.page,
            size=filter.size,
            total=len(items),
        )

    async def create(self, document: str) -> DocumentRecord:
        self.calls.append(('create', document))
        self._check('create')
        return self.add(document)

    async def update(self, record_id: object, document: str) -> DocumentRecord:
        self.calls.append(('update', str(record_id)))
        self._check('update')
        current = self.records[str(record_id)]
        updated = DocumentRecord(
            id=current.id,
            document=document,
            active=current.active,
            created_at=current.created_at,
            updated_at=utc_now(),
            attributes=dict(current.attributes),
        )
        self.records[str(record_id)] = updated
        return updated


# ---------------------------------------------------------------------------
# Document builders in the layouts the store actually holds
# ---------------------------------------------------------------------------


def patient_document(numero, primer_nombre, primer_apellido, *, shape='A', **personal):
    info = {'primerNombre': primer_nombre, 'primerApellido': primer_apellido, **personal}
    if shape == 'B':
        return json.dumps({
            'numeroDocumento': numero,
            'tipoDocumento': 'CC',
            'informacionPersonalJson': json.dumps(info),
            'informacionContactoJson': json.dumps({'telefono': '3001234567'}),
        })
    return json.dumps({
        'numeroDocumento': numero,
        'tipoDocumento': 'CC',
        'jsonData': json.dumps({
            'informacionPersonal': info,
            'informacionContacto': {'telefono': '3001234567'},
        }),
    })


def employee_document(numero, nombre, apellido, especialidad=None):
    laboral = {'cargo': 'Médico'}
    if especialidad:
        laboral['especialidad'] = especialidad
    return json.dumps({
        'numeroDocumento': numero,
        'jsonData': json.dumps({
            'informacionPersonal': {'primerNombre': nombre, 'primerApellido': apellido},
            'informacionLaboral': laboral,
        }),
    })


def procedure_document(code, name, valor=None):
    body = {'nombreCup': name}
    if valor is not None:
        body['valor'] = valor
    return json.dumps({'codigoCup': code, 'jsonData': json.dumps(body)})


def appointment_document(code, medico, *, estado='ATENDIDO', fecha='2024-05-10T09:30:00', motivo=None):
    body = {'estado': estado, 'codigoCups': code, 'medicoAsignado': medico, 'fechaHoraCita': fecha}
    if motivo:
        body['motivo'] = motivo
    return json.dumps({'jsonData': json.dumps(body)})


PHYSICIAN = 'Carlos Ruiz - Medicina General'


@dataclass
class Clinic:
    patients: MemorySource
    employees: MemorySource
    procedures: MemorySource
    appointments: MemorySource
    invoices: MemorySource

    @property
    def sources(self) -> RecordSources:
        return RecordSources(
            patients=self.patients,
            employees=self.employees,
            procedure_codes=self.procedures,
            appointments=self.appointments,
            invoices=self.invoices,
        )

    def all_sources(self) -> List[MemorySource]:
        return [self.patients, self.employees, self.procedures, self.appointments, self.invoices]

    def total_calls(self) -> int:
        return sum(len(source.calls) for source in self.all_sources())

    def add_appointment(self, record_id, patient_id, code, medico=PHYSICIAN, **kwargs):
        attributes = {'pacienteId': patient_id} if patient_id is not None else {}
        return self.appointments.add(
            appointment_document(code, medico, **kwargs),
            record_id=record_id,
            active=True,
            attributes=attributes,
        )


@pytest.fixture
def clinic() -> Clinic:
    data = Clinic(
        patients=MemorySource(EntityKind.PATIENT),
        employees=MemorySource(EntityKind.EMPLOYEE),
        procedures=MemorySource(EntityKind.PROCEDURE_CODE),
        appointments=MemorySource(EntityKind.APPOINTMENT),
        invoices=MemorySource(EntityKind.INVOICE),
    )
    data.patients.add(patient_document('1001', 'Ana', 'Gómez', segundoApellido='Pérez'), record_id=1, active=True)
    data.employees.add(employee_document('2002', 'Carlos', 'Ruiz', 'Medicina General'), record_id=10, active=True)
    data.procedures.add(procedure_document('890201', 'Consulta de primera vez por medicina general', 50000), record_id=1)
    data.procedures.add(procedure_document('890301', 'Consulta de control por medicina general', 30000), record_id=2)
    data.procedures.add(procedure_document('999999', 'Procedimiento sin tarifa'), record_id=3)
    data.add_appointment(100, 1, '890201', fecha='2024-05-10T09:30:00')
    data.add_appointment(101, 1, '890301', fecha='2024-05-12T10:00:00')
    data.add_appointment(102, 1, '890201', estado='PENDIENTE', fecha='2024-05-14T08:00:00')
    data.add_appointment(103, 1, '999999', fecha='2024-05-11T11:00:00')
    return data


@pytest.fixture
def engine(clinic: Clinic) -> BillingAggregationEngine:
    return BillingAggregationEngine(clinic.sources, numbers=InvoiceNumberGenerator('FM'))
