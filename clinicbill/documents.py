"""Codec for the JSON document field shared by every entity kind.

Each record in the store carries its payload in a single text column.  Two
layouts of that text exist side by side:

* **Shape A** – an outer object with natural-key fields (``numeroDocumento``,
  ``codigoCup`` ...) and a nested, re-serialised document string under
  ``jsonData`` (older writers used ``datosJson``) holding the section
  objects.
* **Shape B** – no nested string; every section is serialised on its own as
  ``<section>Json`` on the outer object.

Decoding runs in two stages.  :func:`detect` parses the outer text and tags
it as :class:`ShapeA`, :class:`ShapeB` or :class:`Unparseable`;
:meth:`DocumentCodec.normalize` turns the tagged value into a
:class:`NormalizedDocument` where every section the entity kind declares is
present.  Nothing here raises on bad input: each level that fails to parse
is replaced by an empty value and reported through
:attr:`NormalizedDocument.failures`.  Encoding always writes Shape A.
"""

from __future__ import annotations

import copy
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import structlog


logger = structlog.get_logger(__name__)


INNER_DOCUMENT_KEY = "jsonData"
INNER_DOCUMENT_KEYS: Tuple[str, ...] = ("jsonData", "datosJson")
SECTION_STRING_SUFFIX = "Json"

# Documents have been observed re-serialised twice; anything deeper is
# treated as corrupt.
MAX_STRING_NESTING = 2


class EntityKind(str, enum.Enum):
    PATIENT = "patient"
    EMPLOYEE = "employee"
    PROCEDURE_CODE = "procedure_code"
    APPOINTMENT = "appointment"
    INVOICE = "invoice"


@dataclass(frozen=True)
class DocumentLayout:
    """Section names and natural key expected for one entity kind."""

    kind: EntityKind
    sections: Tuple[str, ...] = ()
    natural_key: Optional[str] = None

    def section_string_keys(self) -> Dict[str, str]:
        return {name + SECTION_STRING_SUFFIX: name for name in self.sections}


LAYOUTS: Dict[EntityKind, DocumentLayout] = {
    EntityKind.PATIENT: DocumentLayout(
        EntityKind.PATIENT,
        sections=(
            "informacionPersonal",
            "informacionContacto",
            "informacionMedica",
            "consentimientoInformado",
            "contactoEmergencia",
        ),
        natural_key="numeroDocumento",
    ),
    EntityKind.EMPLOYEE: DocumentLayout(
        EntityKind.EMPLOYEE,
        sections=("informacionPersonal", "informacionContacto", "informacionLaboral"),
        natural_key="numeroDocumento",
    ),
    EntityKind.PROCEDURE_CODE: DocumentLayout(EntityKind.PROCEDURE_CODE, natural_key="codigoCup"),
    EntityKind.APPOINTMENT: DocumentLayout(EntityKind.APPOINTMENT),
    EntityKind.INVOICE: DocumentLayout(EntityKind.INVOICE, natural_key="numeroFactura"),
}


def layout_for(kind: Union[EntityKind, str]) -> DocumentLayout:
    """Return the :class:`DocumentLayout` for ``kind`` (enum member or value)."""

    return LAYOUTS[EntityKind(kind)]


@dataclass(frozen=True)
class DecodeFailure:
    """A level of a document that could not be decoded.

    ``level`` is ``"outer"``, ``"inner"`` or the name of the section whose
    text was malformed.
    """

    level: str
    message: str


# ---------------------------------------------------------------------------
# Stage one: shape detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ShapeA:
    """Outer object with an optional nested document string."""

    outer: Dict[str, Any]
    inner_key: Optional[str] = None
    inner: Any = None


@dataclass(frozen=True)
class ShapeB:
    """Outer object carrying one serialised string per section."""

    outer: Dict[str, Any]
    section_values: Dict[str, Any]


@dataclass(frozen=True)
class Unparseable:
    """Outer text that is not a JSON object."""

    raw: Any
    error: str


DetectedShape = Union[ShapeA, ShapeB, Unparseable]


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray)):
        return not value.strip()
    return False


def _parse_object(value: Any) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Return ``(object, None)`` or ``(None, error)`` for ``value``.

    Strings are parsed up to :data:`MAX_STRING_NESTING` times so a document
    that was serialised twice still yields its object.
    """

    parsed = value
    for _ in range(MAX_STRING_NESTING + 1):
        if isinstance(parsed, Mapping):
            return dict(parsed), None
        if isinstance(parsed, (bytes, bytearray)):
            parsed = parsed.decode("utf-8", errors="replace")
        if isinstance(parsed, str):
            try:
                parsed = json.loads(parsed)
            except (TypeError, ValueError, RecursionError) as exc:
                return None, str(exc)
            continue
        return None, f"expected a JSON object, got {type(parsed).__name__}"
    return None, "document nested too deeply"


def detect(raw: Any, kind: Union[EntityKind, str]) -> DetectedShape:
    """Parse the outer document and tag which layout it uses."""

    layout = layout_for(kind)
    outer, error = _parse_object(raw)
    if outer is None:
        return Unparseable(raw=raw, error=error or "empty document")

    for key in INNER_DOCUMENT_KEYS:
        if key in outer:
            return ShapeA(outer=outer, inner_key=key, inner=outer[key])

    string_keys = layout.section_string_keys()
    present = {section: outer[key] for key, section in string_keys.items() if key in outer}
    if present:
        return ShapeB(outer=outer, section_values=present)
    return ShapeA(outer=outer)


# ---------------------------------------------------------------------------
# Stage two: normalisation
# ---------------------------------------------------------------------------


@dataclass
class NormalizedDocument:
    """Shape-independent view of a document field.

    ``fields`` holds the outer-level values (natural keys and anything else
    written beside the nested document), ``sections`` every declared section
    of the kind, and ``extra`` the nested document's remaining values.
    ``shape`` and ``failures`` describe how the text was read and take no
    part in equality.
    """

    kind: EntityKind
    fields: Dict[str, Any] = field(default_factory=dict)
    sections: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)
    shape: str = field(default="A", compare=False)
    failures: Tuple[DecodeFailure, ...] = field(default=(), compare=False)

    @property
    def ok(self) -> bool:
        return not self.failures

    def section(self, name: str) -> Dict[str, Any]:
        return self.sections.get(name) or {}

    def body(self) -> Dict[str, Any]:
        """Return outer fields merged with the nested body (nested wins)."""

        merged = dict(self.fields)
        merged.update(self.extra)
        return merged

    @property
    def natural_key(self) -> Optional[str]:
        key = layout_for(self.kind).natural_key
        if not key:
            return None
        value = self.fields.get(key)
        if _is_blank(value):
            value = self.extra.get(key)
        if _is_blank(value):
            return None
        return str(value).strip()


def empty_document(kind: Union[EntityKind, str]) -> NormalizedDocument:
    """Return a document of ``kind`` with every section present and empty."""

    layout = layout_for(kind)
    return NormalizedDocument(kind=layout.kind, sections={name: {} for name in layout.sections})


class DocumentCodec:
    """Read any known layout of a document field and write Shape A."""

    def __init__(self, inner_key: str = INNER_DOCUMENT_KEY) -> None:
        self.inner_key = inner_key

    def detect(self, raw: Any, kind: Union[EntityKind, str]) -> DetectedShape:
        return detect(raw, kind)

    def normalize(self, raw: Any, kind: Union[EntityKind, str]) -> NormalizedDocument:
        """Return the normalised document for ``raw``; never raises."""

        layout = layout_for(kind)
        shape = detect(raw, layout.kind)
        if isinstance(shape, Unparseable):
            doc = empty_document(layout.kind)
            doc.shape = "unparseable"
            doc.failures = (DecodeFailure("outer", shape.error),)
        elif isinstance(shape, ShapeB):
            doc = self._from_shape_b(shape, layout)
        else:
            doc = self._from_shape_a(shape, layout)

        for failure in doc.failures:
            logger.warning(
                "document_decode_failed",
                kind=layout.kind.value,
                level=failure.level,
                error=failure.message,
            )
        return doc

    def encode(self, doc: NormalizedDocument) -> str:
        """Serialise ``doc`` as Shape A text."""

        layout = layout_for(doc.kind)
        inner: Dict[str, Any] = copy.deepcopy(doc.extra)
        for name in layout.sections:
            inner[name] = copy.deepcopy(doc.sections.get(name) or {})
        outer: Dict[str, Any] = {
            key: copy.deepcopy(value)
            for key, value in doc.fields.items()
            if key not in INNER_DOCUMENT_KEYS
        }
        outer[self.inner_key] = json.dumps(inner, ensure_ascii=False)
        return json.dumps(outer, ensure_ascii=False)

    # ------------------------------------------------------------------
    # Shape readers
    # ------------------------------------------------------------------
    def _from_shape_a(self, shape: ShapeA, layout: DocumentLayout) -> NormalizedDocument:
        failures: List[DecodeFailure] = []
        fields = {k: v for k, v in shape.outer.items() if k not in INNER_DOCUMENT_KEYS}

        inner: Dict[str, Any] = {}
        if shape.inner_key is not None and not _is_blank(shape.inner):
            parsed, error = _parse_object(shape.inner)
            if parsed is None:
                failures.append(DecodeFailure("inner", error or "invalid nested document"))
            else:
                inner = parsed
        elif shape.inner_key is None:
            # Flat writers put section objects straight on the outer object.
            for name in layout.sections:
                if isinstance(fields.get(name), Mapping):
                    inner[name] = fields.pop(name)

        sections: Dict[str, Dict[str, Any]] = {}
        for name in layout.sections:
            value = inner.pop(name, None)
            sections[name] = self._section_value(name, value, failures)

        return NormalizedDocument(
            kind=layout.kind,
            fields=fields,
            sections=sections,
            extra=inner,
            shape="A",
            failures=tuple(failures),
        )

    def _from_shape_b(self, shape: ShapeB, layout: DocumentLayout) -> NormalizedDocument:
        failures: List[DecodeFailure] = []
        string_keys = layout.section_string_keys()
        fields = {k: v for k, v in shape.outer.items() if k not in string_keys}
        sections = {
            name: self._section_value(name, shape.section_values.get(name), failures)
            for name in layout.sections
        }
        return NormalizedDocument(
            kind=layout.kind,
            fields=fields,
            sections=sections,
            shape="B",
            failures=tuple(failures),
        )

    @staticmethod
    def _section_value(name: str, value: Any, failures: List[DecodeFailure]) -> Dict[str, Any]:
        if _is_blank(value):
            return {}
        parsed, error = _parse_object(value)
        if parsed is None:
            failures.append(DecodeFailure(name, error or "invalid section"))
            return {}
        return parsed


_DEFAULT_CODEC = DocumentCodec()


def normalize(raw: Any, kind: Union[EntityKind, str]) -> NormalizedDocument:
    return _DEFAULT_CODEC.normalize(raw, kind)


def encode(doc: NormalizedDocument) -> str:
    return _DEFAULT_CODEC.encode(doc)


def build_document(
    kind: Union[EntityKind, str],
    *,
    fields: Optional[Mapping[str, Any]] = None,
    sections: Optional[Mapping[str, Mapping[str, Any]]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> NormalizedDocument:
    """Return a normalised document assembled from plain mappings."""

    doc = empty_document(kind)
    doc.fields = dict(fields or {})
    doc.extra = dict(extra or {})
    for name, value in (sections or {}).items():
        if name in doc.sections:
            doc.sections[name] = dict(value)
        else:
            doc.extra[name] = dict(value)
    return doc


__all__ = [
    "EntityKind",
    "DocumentLayout",
    "LAYOUTS",
    "layout_for",
    "DecodeFailure",
    "ShapeA",
    "ShapeB",
    "Unparseable",
    "DetectedShape",
    "detect",
    "NormalizedDocument",
    "empty_document",
    "DocumentCodec",
    "normalize",
    "encode",
    "build_document",
    "INNER_DOCUMENT_KEY",
]
