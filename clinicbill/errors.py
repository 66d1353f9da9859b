"""Exceptions raised by the billing core.

Decode failures and lookup misses never surface here: the codec and the
lookup cache contain them and hand back fallback values.  What remains are
the failures a caller has to act on.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


class BillingError(Exception):
    """Base class for errors surfaced by the billing core."""


class SelectionError(BillingError):
    """The appointment selection cannot be invoiced as given."""


class EmptySelectionError(SelectionError):
    """Raised when no appointments were selected for invoicing."""

    def __init__(self, message: str = "Debe seleccionar al menos una cita para facturar") -> None:
        super().__init__(message)


NoSelectionError = EmptySelectionError


class SelectionTooLargeError(SelectionError):
    """Raised when a selection exceeds the per-invoice appointment limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"No se pueden incluir más de {limit} citas en una sola factura (seleccionadas: {size})"
        )
        self.size = size
        self.limit = limit


class SelectionMismatchError(SelectionError):
    """Raised when the selection handed to ``issue`` differs from the draft."""

    def __init__(self, missing: Iterable[Any] = (), unexpected: Iterable[Any] = ()) -> None:
        self.missing = list(missing)
        self.unexpected = list(unexpected)
        super().__init__(
            "La selección de citas no coincide con el borrador "
            f"(faltantes: {self.missing}, adicionales: {self.unexpected})"
        )


class IneligibleAppointmentError(SelectionError):
    """Raised when a selected appointment is unknown or not attended."""

    def __init__(self, appointment_id: Any, reason: str) -> None:
        super().__init__(f"La cita {appointment_id} no se puede facturar: {reason}")
        self.appointment_id = appointment_id
        self.reason = reason


class PersistenceError(BillingError):
    """Raised by store adapters when a read or write against the store fails."""

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation


class InvoiceNotFoundError(BillingError):
    """Raised when an invoice id does not exist in the store."""

    def __init__(self, invoice_id: Any) -> None:
        super().__init__(f"Factura no encontrada con ID: {invoice_id}")
        self.invoice_id = invoice_id


class InvalidTransitionError(BillingError):
    """Raised for invoice status changes outside DRAFT -> ISSUED -> PAID."""

    def __init__(self, invoice_id: Any, current: str, target: str) -> None:
        super().__init__(
            f"La factura {invoice_id} no puede pasar de {current} a {target}"
        )
        self.invoice_id = invoice_id
        self.current = current
        self.target = target


__all__ = [
    "BillingError",
    "SelectionError",
    "EmptySelectionError",
    "NoSelectionError",
    "SelectionTooLargeError",
    "SelectionMismatchError",
    "IneligibleAppointmentError",
    "PersistenceError",
    "InvoiceNotFoundError",
    "InvalidTransitionError",
]
