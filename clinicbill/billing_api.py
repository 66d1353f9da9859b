"""FastAPI routes for the billing workflow."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from clinicbill.billing import AppointmentFilters, BillingAggregationEngine, InvoiceFilters
from clinicbill.errors import (
    BillingError,
    IneligibleAppointmentError,
    InvalidTransitionError,
    InvoiceNotFoundError,
    PersistenceError,
    SelectionError,
)


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


class SuccessResponse(BaseModel):
    """Standard successful response envelope."""

    success: Literal[True] = True
    data: Any | None = None


class ErrorDetail(BaseModel):
    code: int | str | None = None
    message: str
    details: Any | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    success: Literal[False] = False
    error: ErrorDetail


class SelectionRequest(BaseModel):
    appointment_ids: List[int | str] = Field(default_factory=list)


def error_payload(status_code: int, message: str, details: Any = None) -> Dict[str, Any]:
    return ErrorResponse(error=ErrorDetail(code=status_code, message=message, details=details)).model_dump()


def status_for(exc: BillingError) -> int:
    """HTTP status for a billing error."""

    if isinstance(exc, IneligibleAppointmentError):
        return 422
    if isinstance(exc, SelectionError):
        return 400
    if isinstance(exc, InvoiceNotFoundError):
        return 404
    if isinstance(exc, InvalidTransitionError):
        return 409
    if isinstance(exc, PersistenceError):
        return 502
    return 500


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("billing_request_failed", path=request.url.path, status=status_code, error=str(exc))
    return JSONResponse(
        status_code=status_code,
        content=error_payload(status_code, str(exc), type(exc).__name__),
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Convert ``HTTPException`` instances into the standard error envelope."""

    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.status_code, str(exc.detail)),
        headers=dict(exc.headers or {}),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, billing_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)


def get_engine(request: Request) -> BillingAggregationEngine:
    engine = getattr(request.app.state, "billing_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Billing engine not configured")
    return engine


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/appointments")
async def list_billable_appointments(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    patient_document: Optional[str] = None,
    physician: Optional[str] = None,
    procedure: Optional[str] = None,
    engine: BillingAggregationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    items = await engine.list_billable_appointments(
        AppointmentFilters(
            date_from=date_from,
            date_to=date_to,
            patient_document=patient_document,
            physician=physician,
            procedure=procedure,
        )
    )
    return SuccessResponse(data=[item.to_dict() for item in items]).model_dump()


@router.post("/draft")
async def build_draft(
    payload: SelectionRequest, engine: BillingAggregationEngine = Depends(get_engine)
) -> Dict[str, Any]:
    draft = await engine.build_draft(payload.appointment_ids)
    return SuccessResponse(data=draft.to_dict()).model_dump()


@router.post("/invoices", status_code=201)
async def issue_invoice(
    payload: SelectionRequest, engine: BillingAggregationEngine = Depends(get_engine)
) -> Dict[str, Any]:
    draft = await engine.build_draft(payload.appointment_ids)
    invoice = await engine.issue(draft, payload.appointment_ids)
    return SuccessResponse(data=invoice.to_dict()).model_dump()


@router.get("/invoices")
async def list_invoices(
    number: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = Query(10, ge=1, le=500),
    engine: BillingAggregationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    invoices = await engine.list_invoices(
        InvoiceFilters(number=number, date_from=date_from, date_to=date_to, limit=limit)
    )
    return SuccessResponse(data=[invoice.to_dict() for invoice in invoices]).model_dump()


@router.get("/invoices/summary")
async def summarize_invoices(
    number: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    engine: BillingAggregationEngine = Depends(get_engine),
) -> Dict[str, Any]:
    summary = await engine.summarize_invoices(
        InvoiceFilters(number=number, date_from=date_from, date_to=date_to, limit=None)
    )
    return SuccessResponse(data=summary.to_dict()).model_dump()


@router.post("/invoices/{invoice_id}/paid")
async def mark_invoice_paid(
    invoice_id: str, engine: BillingAggregationEngine = Depends(get_engine)
) -> Dict[str, Any]:
    invoice = await engine.mark_paid(invoice_id)
    return SuccessResponse(data=invoice.to_dict()).model_dump()


__all__ = [
    "router",
    "SuccessResponse",
    "ErrorResponse",
    "SelectionRequest",
    "status_for",
    "register_error_handlers",
    "get_engine",
]
