#!/usr/bin/env python3
"""Bootstrap the clinic billing database and its procedure-code catalogue."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog

from clinicbill.config import get_settings
from clinicbill.documents import EntityKind, build_document, encode
from clinicbill.gateways import RecordFilter
from clinicbill.logging_config import configure_logging
from clinicbill.store import SqlRecordStore, create_store_engine, create_tables


logger = structlog.get_logger(__name__)


# Consultation codes most clinics bill from day one.
DEFAULT_PROCEDURES: Tuple[Dict[str, Any], ...] = (
    {"codigoCup": "890201", "nombreCup": "Consulta de primera vez por medicina general", "valor": 50000},
    {"codigoCup": "890301", "nombreCup": "Consulta de control por medicina general", "valor": 30000},
    {"codigoCup": "890202", "nombreCup": "Consulta de primera vez por medicina especializada", "valor": 85000},
    {"codigoCup": "890302", "nombreCup": "Consulta de control por medicina especializada", "valor": 60000},
)


def load_procedures(path: Optional[Path]) -> List[Mapping[str, Any]]:
    if path is None:
        return [dict(item) for item in DEFAULT_PROCEDURES]
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, Mapping):
        payload = payload.get("procedures", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a list of procedure codes")
    return [item for item in payload if isinstance(item, Mapping) and item.get("codigoCup")]


def procedure_document(entry: Mapping[str, Any]) -> str:
    code = str(entry["codigoCup"]).strip()
    body = {key: value for key, value in entry.items() if key != "codigoCup"}
    return encode(build_document(EntityKind.PROCEDURE_CODE, fields={"codigoCup": code}, extra=body))


def seed_procedure_codes(
    store: SqlRecordStore, entries: Iterable[Mapping[str, Any]], *, overwrite: bool = False
) -> Tuple[int, int]:
    """Insert missing codes; replace existing ones only when ``overwrite``."""

    created = updated = 0
    for entry in entries:
        code = str(entry["codigoCup"]).strip()
        existing = store.fetch_page(RecordFilter(natural_key=code, size=1)).items
        if existing and not overwrite:
            continue
        document = procedure_document(entry)
        if existing:
            store.replace(existing[0].id, document)
            updated += 1
        else:
            store.insert(document)
            created += 1
    logger.info("procedure_codes_seeded", created=created, updated=updated)
    return created, updated


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create the clinic billing tables and seed procedure codes.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy database URL (default: CLINICBILL_DATABASE_URL or the per-user SQLite file)",
    )
    parser.add_argument(
        "--procedures",
        type=Path,
        default=None,
        help="JSON file with a list of {codigoCup, nombreCup, valor} entries",
    )
    parser.add_argument(
        "--overwrite-procedures",
        action="store_true",
        help="Replace procedure codes that already exist instead of preserving them.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging()

    settings = get_settings()
    url = args.database_url or settings.database_url
    engine = create_store_engine(url, settings)
    try:
        create_tables(engine)
        store = SqlRecordStore(engine, EntityKind.PROCEDURE_CODE)
        created, updated = seed_procedure_codes(
            store, load_procedures(args.procedures), overwrite=args.overwrite_procedures
        )
    finally:
        engine.dispose()

    print(f"Database initialised at {url}")
    print(f"Procedure codes: {created} created, {updated} updated.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
