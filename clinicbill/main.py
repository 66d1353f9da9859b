"""ASGI application wiring the billing routes to a record store."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from clinicbill.billing import BillingAggregationEngine
from clinicbill.billing_api import register_error_handlers, router
from clinicbill.config import BillingSettings, get_settings
from clinicbill.gateways import RecordSources
from clinicbill.logging_config import configure_logging
from clinicbill.remote import build_remote_sources, client_from_settings
from clinicbill.store import build_sql_sources, create_store_engine, create_tables


logger = structlog.get_logger(__name__)


def build_sources(settings: BillingSettings) -> RecordSources:
    """Return the remote store when one is configured, else the SQL store."""

    if settings.uses_remote_store:
        logger.info("record_store_selected", kind="remote", url=settings.store_url)
        return build_remote_sources(client_from_settings(settings))

    engine = create_store_engine(settings.database_url, settings)
    create_tables(engine)
    logger.info("record_store_selected", kind="sql", dialect=engine.dialect.name)
    return build_sql_sources(engine)


def create_app(
    settings: Optional[BillingSettings] = None,
    *,
    engine: Optional[BillingAggregationEngine] = None,
) -> FastAPI:
    """Build the app; without ``engine`` the record store is opened at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.billing_engine is None:
            resolved = app.state.settings or get_settings()
            app.state.settings = resolved
            app.state.billing_engine = BillingAggregationEngine.from_settings(
                build_sources(resolved), resolved
            )
        logger.info("lifespan_startup")
        yield
        logger.info("lifespan_shutdown_complete")

    app = FastAPI(title="Clinic Billing API", lifespan=lifespan)
    app.state.settings = settings
    app.state.billing_engine = engine
    register_error_handlers(app)
    app.include_router(router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


def _build_default_app() -> FastAPI:
    configure_logging()
    return create_app()


app = _build_default_app()
