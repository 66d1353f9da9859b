"""Configuration helpers for the billing core."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from platformdirs import user_data_dir


APP_NAME = "clinicbill"

DEFAULT_INVOICE_PREFIX = "FM"
DEFAULT_DRAFT_PREFIX = "BORRADOR"
DEFAULT_MAX_APPOINTMENTS = 50
DEFAULT_LIST_SIZE = 1000
DEFAULT_STORE_TIMEOUT = 5.0


@dataclass(frozen=True)
class BillingSettings:
    """Resolved configuration for the billing core and its store adapters."""

    database_url: str
    store_url: Optional[str] = None
    store_token: Optional[str] = None
    store_timeout: float = DEFAULT_STORE_TIMEOUT
    invoice_prefix: str = DEFAULT_INVOICE_PREFIX
    draft_prefix: str = DEFAULT_DRAFT_PREFIX
    max_appointments_per_invoice: int = DEFAULT_MAX_APPOINTMENTS
    list_size: int = DEFAULT_LIST_SIZE
    echo: bool = False

    def engine_options(self) -> Dict[str, object]:
        """Return keyword arguments for :func:`sqlalchemy.create_engine`."""

        options: Dict[str, object] = {"echo": self.echo, "future": True}
        if self.is_sqlite:
            options["connect_args"] = {"check_same_thread": False}
        return options

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def uses_remote_store(self) -> bool:
        return bool(self.store_url)


def _default_sqlite_path() -> Path:
    data_dir = Path(user_data_dir(APP_NAME, APP_NAME))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "billing.db"


def _normalise_sqlite_path(path: str | os.PathLike[str]) -> Path:
    resolved = Path(path).expanduser()
    if resolved.is_dir():
        resolved = resolved / "billing.db"
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def _get_int_env(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer; got {raw!r}") from exc


def _get_float_env(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number; got {raw!r}") from exc


def _resolve_database_url() -> str:
    url = os.getenv("CLINICBILL_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url:
        return url

    path_override = os.getenv("CLINICBILL_DB_PATH")
    if path_override:
        db_path = _normalise_sqlite_path(path_override)
    else:
        db_path = _default_sqlite_path()
    return f"sqlite:///{db_path}"


@lru_cache(maxsize=1)
def get_settings() -> BillingSettings:
    """Return the active billing settings derived from the environment."""

    max_appointments = _get_int_env("CLINICBILL_MAX_APPOINTMENTS")
    list_size = _get_int_env("CLINICBILL_LIST_SIZE")
    timeout = _get_float_env("CLINICBILL_STORE_TIMEOUT")

    return BillingSettings(
        database_url=_resolve_database_url(),
        store_url=os.getenv("CLINICBILL_STORE_URL") or None,
        store_token=os.getenv("CLINICBILL_STORE_TOKEN") or None,
        store_timeout=timeout if timeout is not None else DEFAULT_STORE_TIMEOUT,
        invoice_prefix=os.getenv("CLINICBILL_INVOICE_PREFIX") or DEFAULT_INVOICE_PREFIX,
        max_appointments_per_invoice=(
            max_appointments if max_appointments is not None else DEFAULT_MAX_APPOINTMENTS
        ),
        list_size=list_size if list_size is not None else DEFAULT_LIST_SIZE,
        echo=os.getenv("CLINICBILL_DB_ECHO", "").lower() in {"1", "true", "yes"},
    )
