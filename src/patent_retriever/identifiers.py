from __future__ import annotations

import re

from patent_retriever.errors import ValidationError
from patent_retriever.models import Identifier

SUPPORTED_JURISDICTIONS = frozenset({"US", "EP", "WO", "JP", "CN", "IN"})

# Jurisdiction, 4-12 digit body, 1-3 char kind code starting with a letter.
_PUBLICATION_RE = re.compile(r"^([A-Z]{2})(\d{4,12})([A-Z][A-Z0-9]{0,2})$")
_APPLICATION_SEPARATORS = re.compile(r"[\s/,.\-]+")
APPLICATION_NUMBER_WIDTH = 8


def parse_identifier(raw: str | Identifier) -> Identifier:
    if isinstance(raw, Identifier):
        return raw
    value = (raw or "").strip().upper()
    if not value:
        raise ValidationError("Publication number is empty")
    match = _PUBLICATION_RE.match(value)
    if match is None:
        raise ValidationError(
            f"Invalid publication number format: {value!r} "
            "(expected e.g. US10721857B2, EP1234567A1)"
        )
    jurisdiction, number, kind = match.groups()
    if jurisdiction not in SUPPORTED_JURISDICTIONS:
        raise ValidationError(f"Unsupported jurisdiction: {jurisdiction}")
    return Identifier(jurisdiction=jurisdiction, number=number, kind=kind)


def normalize_identifier(raw: str | Identifier) -> str:
    return str(parse_identifier(raw))


def to_docdb(raw: str | Identifier) -> str:
    """Dotted ``CC.NNNN.KK`` form expected by the OPS inquiry body."""

    return parse_identifier(raw).docdb


def normalize_application_number(raw: str) -> str:
    value = _APPLICATION_SEPARATORS.sub("", (raw or "").strip())
    if not value:
        raise ValidationError("Application number is empty")
    if not value.isdigit():
        raise ValidationError(f"Application number must be numeric: {raw!r}")
    if len(value) > APPLICATION_NUMBER_WIDTH:
        raise ValidationError(
            f"Application number longer than {APPLICATION_NUMBER_WIDTH} digits: {raw!r}"
        )
    return value.zfill(APPLICATION_NUMBER_WIDTH)


__all__ = [
    "APPLICATION_NUMBER_WIDTH",
    "SUPPORTED_JURISDICTIONS",
    "normalize_application_number",
    "normalize_identifier",
    "parse_identifier",
    "to_docdb",
]
