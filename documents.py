"""Decoding of input documents into ledger records.

Documents are TOML with one record per document. A document may name its
shape with a ``kind`` key (``expense``, ``income``, ``budget`` or
``checkpoint``); only that shape is then tried. Documents without ``kind``
are matched structurally against the shapes in a fixed order, Expense,
Income, Budget, Checkpoint, and the first shape whose required fields are
all present and valid wins. A document carrying every Expense field is
therefore always an Expense even though it also satisfies Income.
"""

import logging
import tomllib
from typing import Any

from pydantic import ValidationError

from schemas import RECORD_PRIORITY, Budget, Checkpoint, Expense, Income, Record

logger = logging.getLogger(__name__)

SHAPES_BY_KIND: dict[str, type] = {
    "expense": Expense,
    "income": Income,
    "budget": Budget,
    "checkpoint": Checkpoint,
}


class ParseError(ValueError):
    pass


class DocumentDecodeError(ParseError):
    pass


class NoMatchingSchema(ParseError):
    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        detail = "; ".join(f"{name}: {reason}" for name, reason in errors.items())
        super().__init__(f"Document matches no record shape ({detail})")


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<document>"
        parts.append(f"{loc} {err['msg'].lower()}")
    return ", ".join(parts)


def load_document(data: bytes) -> dict[str, Any]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DocumentDecodeError(f"Document is not UTF-8: {exc}") from exc
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise DocumentDecodeError(f"Invalid TOML: {exc}") from exc


def parse_record(raw: dict[str, Any]) -> Record:
    kind = raw.get("kind")
    if isinstance(kind, str):
        shape = SHAPES_BY_KIND.get(kind.strip().lower())
        if shape is None:
            raise NoMatchingSchema({"kind": f"unknown record kind '{kind}'"})
        candidates = (shape,)
        raw = {key: value for key, value in raw.items() if key != "kind"}
    else:
        candidates = RECORD_PRIORITY

    errors: dict[str, str] = {}
    for shape in candidates:
        try:
            record = shape.model_validate(raw)
        except ValidationError as exc:
            errors[shape.__name__] = _summarize(exc)
            continue
        logger.debug(f"document_matched: shape={shape.__name__}")
        return record
    raise NoMatchingSchema(errors)


def parse_document(data: bytes) -> Record:
    return parse_record(load_document(data))
