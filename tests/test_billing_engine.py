import dataclasses
import json
import re
from datetime import date, datetime, timedelta, timezone

import pytest

from clinicbill.billing import (
    AppointmentFilters,
    BillingAggregationEngine,
    InvoiceFilters,
    InvoiceNumberGenerator,
    InvoiceStatus,
    RunCaches,
    decode_invoice,
)
from clinicbill.entities import Appointment
from clinicbill.errors import (
    EmptySelectionError,
    IneligibleAppointmentError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    NoSelectionError,
    PersistenceError,
    SelectionMismatchError,
    SelectionTooLargeError,
)

from conftest import PHYSICIAN, patient_document, procedure_document


NUMBER_PATTERN = re.compile(r"^FM-\d{8}-\d{9}$")


@pytest.mark.asyncio
async def test_happy_path_builds_and_issues_invoice(clinic, engine):
    draft = await engine.build_draft(["100", "101"])

    assert draft.status is InvoiceStatus.DRAFT
    assert draft.number.startswith("BORRADOR-")
    assert draft.total == 80000
    assert [line.appointment_id for line in draft.lines] == [100, 101]
    first = draft.lines[0]
    assert first.patient_name == "Ana Gómez Pérez"
    assert first.patient_document == "1001"
    assert first.physician_name == PHYSICIAN
    assert first.physician_document == "2002"
    assert first.procedure_code == "890201"
    assert first.value == 50000
    assert first.unpriced is False

    issued = await engine.issue(draft, ["100", "101"])

    assert issued.status is InvoiceStatus.ISSUED
    assert NUMBER_PATTERN.match(issued.number)
    assert issued.total == 80000
    assert issued.lines == draft.lines
    assert len(clinic.invoices.records) == 1

    stored = clinic.invoices.records[str(issued.id)]
    outer = json.loads(stored.document)
    assert outer["numeroFactura"] == issued.number
    assert outer["estado"] == "PENDIENTE"
    inner = json.loads(outer["jsonData"])
    assert inner["total"] == 80000
    assert [cita["id"] for cita in inner["citas"]] == [100, 101]
    assert inner["citas"][0]["paciente"] == {"nombre": "Ana Gómez Pérez", "documento": "1001"}


@pytest.mark.asyncio
async def test_line_order_follows_selection_and_collapses_duplicates(engine):
    draft = await engine.build_draft([101, "100", 101])

    assert [line.appointment_id for line in draft.lines] == [101, 100]


@pytest.mark.asyncio
async def test_empty_selection_is_rejected_without_io(clinic, engine):
    with pytest.raises(EmptySelectionError):
        await engine.build_draft([])
    with pytest.raises(NoSelectionError):
        await engine.build_draft(None)

    assert clinic.total_calls() == 0


@pytest.mark.asyncio
async def test_issue_with_empty_selection_does_not_persist(clinic, engine):
    draft = await engine.build_draft(["100"])
    calls_before = clinic.total_calls()

    with pytest.raises(EmptySelectionError):
        await engine.issue(draft, [])

    assert clinic.total_calls() == calls_before
    assert clinic.invoices.records == {}


@pytest.mark.asyncio
async def test_selection_over_limit_is_rejected_without_io(clinic):
    engine = BillingAggregationEngine(clinic.sources, max_appointments=2)

    with pytest.raises(SelectionTooLargeError) as excinfo:
        await engine.build_draft(["100", "101", "103"])

    assert excinfo.value.limit == 2
    assert clinic.total_calls() == 0


@pytest.mark.asyncio
async def test_non_attended_appointment_is_ineligible(engine):
    with pytest.raises(IneligibleAppointmentError) as excinfo:
        await engine.build_draft(["100", "102"])

    assert excinfo.value.appointment_id == "102"


@pytest.mark.asyncio
async def test_unknown_appointment_is_ineligible(engine):
    with pytest.raises(IneligibleAppointmentError):
        await engine.build_draft(["404"])


@pytest.mark.asyncio
async def test_unpriced_procedure_is_kept_with_zero_value(engine):
    draft = await engine.build_draft(["103", "100"])

    unpriced = draft.lines[0]
    assert unpriced.procedure_code == "999999"
    assert unpriced.procedure_name == "Procedimiento sin tarifa"
    assert unpriced.value == 0
    assert unpriced.unpriced is True
    assert draft.total == 50000
    assert draft.unpriced_count == 1


@pytest.mark.asyncio
async def test_unknown_procedure_code_falls_back_to_reason(clinic, engine):
    clinic.add_appointment(104, 1, "123456", motivo="Curación de herida")

    draft = await engine.build_draft(["104"])

    line = draft.lines[0]
    assert line.procedure_name == "Curación de herida"
    assert line.value == 0
    assert line.unpriced is True


@pytest.mark.asyncio
async def test_malformed_patient_document_uses_fallbacks(clinic, engine):
    clinic.patients.add(
        json.dumps({"numeroDocumento": "3003", "jsonData": "{not json"}), record_id=2
    )
    clinic.add_appointment(105, 2, "890201")

    draft = await engine.build_draft(["105"])

    line = draft.lines[0]
    assert line.patient_name == "Paciente 2"
    assert line.patient_document == "3003"
    assert line.value == 50000


@pytest.mark.asyncio
async def test_missing_patient_and_physician_fallbacks(clinic, engine):
    clinic.add_appointment(106, None, "890201", medico="")
    clinic.add_appointment(107, 77, "890201", medico="Dra. Laura Méndez")

    draft = await engine.build_draft(["106", "107"])

    unidentified, unknown = draft.lines
    assert unidentified.patient_name == "Paciente no identificado"
    assert unidentified.patient_document == "N/A"
    assert unidentified.physician_name == "Médico no asignado"
    assert unknown.patient_name == "Paciente 77"
    assert unknown.physician_name == "Dra. Laura Méndez"
    assert unknown.physician_document == "N/A"


@pytest.mark.asyncio
async def test_physician_matches_by_document_and_base_name(clinic, engine):
    clinic.add_appointment(108, 1, "890201", medico="2002")
    clinic.add_appointment(109, 1, "890201", medico="Carlos Ruiz")

    draft = await engine.build_draft(["108", "109"])

    assert [line.physician_name for line in draft.lines] == [PHYSICIAN, PHYSICIAN]


@pytest.mark.asyncio
async def test_repeated_procedure_code_prices_every_line(clinic, engine):
    clinic.add_appointment(108, 1, "890201")
    clinic.add_appointment(109, 1, "890201")
    caches = RunCaches()

    draft = await engine.build_draft(["108", "109"], caches=caches)

    assert [line.value for line in draft.lines] == [50000, 50000]
    assert [line.unpriced for line in draft.lines] == [False, False]
    assert draft.total == 100000
    assert caches.procedures.misses == 1
    assert caches.procedures.hits == 1


@pytest.mark.asyncio
async def test_each_entity_is_fetched_once_per_run(clinic, engine):
    caches = RunCaches()

    await engine.build_draft(["100", "101", "103"], caches=caches)

    patient_gets = [call for call in clinic.patients.calls if call[0] == "get"]
    assert patient_gets == [("get", "1")]
    assert caches.patients.hits == 2
    employee_lists = [call for call in clinic.employees.calls if call[0] == "list"]
    assert len(employee_lists) == 1


@pytest.mark.asyncio
async def test_runs_do_not_share_caches(clinic, engine):
    await engine.build_draft(["100"])
    await engine.build_draft(["100"])

    assert [call for call in clinic.patients.calls if call[0] == "get"] == [("get", "1"), ("get", "1")]


@pytest.mark.asyncio
async def test_preloaded_appointments_are_not_fetched(clinic, engine):
    loaded = [Appointment.from_record(clinic.appointments.records["100"])]

    await engine.build_draft(["100"], appointments=loaded)

    assert clinic.appointments.calls == []


@pytest.mark.asyncio
async def test_draft_is_a_snapshot(clinic, engine):
    draft = await engine.build_draft(["100", "103"])

    clinic.procedures.add(procedure_document("890201", "Tarifa nueva", 99999), record_id=1)
    clinic.patients.add(patient_document("9999", "Otra", "Persona"), record_id=1)

    assert draft.lines[0].value == 50000
    assert draft.lines[0].patient_document == "1001"
    with pytest.raises(dataclasses.FrozenInstanceError):
        draft.lines[0].value = 1  # type: ignore[misc]
    assert isinstance(draft.lines, tuple)


@pytest.mark.asyncio
async def test_total_is_reproducible_from_lines(clinic, engine):
    draft = await engine.build_draft(["100", "101", "103"])
    issued = await engine.issue(draft, ["103", "101", "100"])

    stored = decode_invoice(clinic.invoices.records[str(issued.id)])

    assert draft.total == sum(line.value for line in draft.lines) == 80000
    assert stored.total == issued.total == draft.total
    assert stored.stored_total == 80000
    assert stored.unpriced_count == 1


@pytest.mark.asyncio
async def test_issue_rejects_selection_that_differs_from_draft(clinic, engine):
    draft = await engine.build_draft(["100", "101"])

    with pytest.raises(SelectionMismatchError) as excinfo:
        await engine.issue(draft, ["100", "103"])

    assert excinfo.value.missing == ["101"]
    assert excinfo.value.unexpected == ["103"]
    assert not [call for call in clinic.invoices.calls if call[0] == "create"]


@pytest.mark.asyncio
async def test_persistence_failure_propagates_and_keeps_nothing(clinic, engine):
    draft = await engine.build_draft(["100"])
    clinic.invoices.fail_on.add("create")

    with pytest.raises(PersistenceError):
        await engine.issue(draft, ["100"])

    assert clinic.invoices.records == {}


@pytest.mark.asyncio
async def test_issued_numbers_are_unique(engine):
    draft = await engine.build_draft(["100"])

    first = await engine.issue(draft, ["100"])
    second = await engine.issue(draft, ["100"])

    assert first.number < second.number


@pytest.mark.asyncio
async def test_mark_paid_moves_issued_invoice_to_paid(clinic, engine):
    draft = await engine.build_draft(["100", "101"])
    issued = await engine.issue(draft, ["100", "101"])

    paid = await engine.mark_paid(issued.id)

    assert paid.status is InvoiceStatus.PAID
    assert paid.number == issued.number
    assert paid.total == 80000
    outer = json.loads(clinic.invoices.records[str(issued.id)].document)
    assert outer["estado"] == "PAGADA"
    assert json.loads(outer["jsonData"])["estado"] == "PAGADA"

    with pytest.raises(InvalidTransitionError):
        await engine.mark_paid(issued.id)


@pytest.mark.asyncio
async def test_mark_paid_recomputes_tampered_total(clinic, engine):
    draft = await engine.build_draft(["100"])
    issued = await engine.issue(draft, ["100"])
    outer = json.loads(clinic.invoices.records[str(issued.id)].document)
    inner = json.loads(outer["jsonData"])
    inner["total"] = 1
    outer["jsonData"] = json.dumps(inner)
    clinic.invoices.add(json.dumps(outer), record_id=issued.id)

    paid = await engine.mark_paid(issued.id)

    stored = json.loads(json.loads(clinic.invoices.records[str(issued.id)].document)["jsonData"])
    assert paid.total == 50000
    assert stored["total"] == 50000


@pytest.mark.asyncio
async def test_mark_paid_unknown_invoice(engine):
    with pytest.raises(InvoiceNotFoundError):
        await engine.mark_paid("999")


@pytest.mark.asyncio
async def test_mark_paid_rejects_draft_status(clinic, engine):
    clinic.invoices.add(
        json.dumps({"numeroFactura": "X-1", "jsonData": json.dumps({"estado": "BORRADOR", "citas": []})}),
        record_id=50,
    )

    with pytest.raises(InvalidTransitionError) as excinfo:
        await engine.mark_paid(50)

    assert excinfo.value.current == "DRAFT"


def test_number_generator_is_strictly_increasing_with_frozen_clock():
    moment = datetime(2024, 5, 10, 9, 30, 15, 123456, tzinfo=timezone.utc)
    generator = InvoiceNumberGenerator("FM", clock=lambda: moment)

    numbers = [generator.next_number() for _ in range(3)]

    assert numbers == [
        "FM-20240510-093015123",
        "FM-20240510-093015124",
        "FM-20240510-093015125",
    ]


def test_number_generator_never_goes_backwards():
    moments = iter([
        datetime(2024, 5, 10, 9, 30, 15, tzinfo=timezone.utc),
        datetime(2024, 5, 10, 9, 30, 14, tzinfo=timezone.utc),
    ])
    generator = InvoiceNumberGenerator("FM", clock=lambda: next(moments))

    first, second = generator.next_number(), generator.next_number()

    assert first < second


def test_invoice_status_wire_values():
    assert InvoiceStatus.from_wire("PENDIENTE") is InvoiceStatus.ISSUED
    assert InvoiceStatus.from_wire("issued") is InvoiceStatus.ISSUED
    assert InvoiceStatus.from_wire("VENCIDA") is InvoiceStatus.ISSUED
    assert InvoiceStatus.from_wire("PAGADA") is InvoiceStatus.PAID
    assert InvoiceStatus.from_wire("CANCELADA") is None
    assert InvoiceStatus.from_wire(None) is None


@pytest.mark.asyncio
async def test_billable_appointments_exclude_invoiced_and_sort_newest_first(engine):
    draft = await engine.build_draft(["100"])
    await engine.issue(draft, ["100"])

    items = await engine.list_billable_appointments()

    assert [item.appointment.id for item in items] == [101, 103]
    assert items[0].preview.value == 30000
    assert items[1].preview.unpriced is True


@pytest.mark.asyncio
async def test_billable_appointments_filters(engine):
    by_date = await engine.list_billable_appointments(
        AppointmentFilters(date_from=date(2024, 5, 11), date_to=date(2024, 5, 11))
    )
    by_procedure = await engine.list_billable_appointments(AppointmentFilters(procedure="control"))
    by_physician = await engine.list_billable_appointments(AppointmentFilters(physician="ruiz"))
    by_document = await engine.list_billable_appointments(AppointmentFilters(patient_document="0000"))

    assert [item.appointment.id for item in by_date] == [103]
    assert [item.appointment.id for item in by_procedure] == [101]
    assert len(by_physician) == 3
    assert by_document == []


@pytest.mark.asyncio
async def test_billable_appointments_survive_invoice_read_failure(clinic, engine):
    clinic.invoices.fail_on.add("list")

    items = await engine.list_billable_appointments()

    assert {item.appointment.id for item in items} == {100, 101, 103}


@pytest.mark.asyncio
async def test_list_invoices_newest_first_with_limit(clinic):
    ticks = iter(datetime(2024, 6, 1, tzinfo=timezone.utc) + timedelta(days=offset) for offset in range(10))
    engine = BillingAggregationEngine(clinic.sources, numbers=InvoiceNumberGenerator("FM"), clock=lambda: next(ticks))
    issued = []
    for appointment_id in ("100", "101", "103"):
        draft = await engine.build_draft([appointment_id])
        issued.append(await engine.issue(draft, [appointment_id]))

    latest = await engine.list_invoices(InvoiceFilters(limit=2))
    by_number = await engine.list_invoices(InvoiceFilters(number=issued[0].number))

    assert [invoice.id for invoice in latest] == [issued[2].id, issued[1].id]
    assert [invoice.id for invoice in by_number] == [issued[0].id]


@pytest.mark.asyncio
async def test_summarize_invoices(engine):
    first = await engine.issue(await engine.build_draft(["100"]), ["100"])
    await engine.issue(await engine.build_draft(["101", "103"]), ["101", "103"])
    await engine.mark_paid(first.id)

    summary = await engine.summarize_invoices()

    assert summary.count == 2
    assert summary.total_billed == 80000
    assert summary.by_status == {"ISSUED": 1, "PAID": 1}
    assert summary.unpriced_lines == 1
