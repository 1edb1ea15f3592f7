"""Schema-driven sanitization of untrusted request payloads.

A schema maps field name -> :class:`FieldSpec`. Sanitizers never raise:
they return a cleaned value or ``None`` when the value fails its
kind-specific check. :func:`validate_payload` runs the sanitizers, the
required check and the length bounds, and reports every failing field.
"""

from __future__ import annotations

import html
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import EmailStr, TypeAdapter, ValidationError


class FieldKind(str, Enum):
    STRING = "string"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    DATE = "date"


@dataclass(frozen=True)
class FieldSpec:
    kind: FieldKind = FieldKind.STRING
    label: str = ""
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    minimum: float | None = None
    maximum: float | None = None
    integer: bool = False
    date_format: bool = False  # require the literal YYYY-MM-DD shape


Schema = Mapping[str, FieldSpec]

EMAIL_ADAPTER = TypeAdapter(EmailStr)
PHONE_STRIP_RE = re.compile(r"[^\d+\-\s()]")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_YEARS_PAST = 150
MAX_YEARS_FUTURE = 10


def sanitize_string(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return html.escape(value.strip(), quote=True)


def sanitize_email(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip().lower()
    # EmailStr also accepts "Name <addr>"; only the bare address is allowed
    if "<" in cleaned:
        return None
    try:
        return EMAIL_ADAPTER.validate_python(cleaned)
    except ValidationError:
        return None


def sanitize_phone(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    return PHONE_STRIP_RE.sub("", value).strip()


def sanitize_number(
    value: Any,
    minimum: float | None = None,
    maximum: float | None = None,
    integer: bool = False,
) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = int(text)
        except ValueError:
            try:
                value = float(text)
            except ValueError:
                return None
    if not isinstance(value, (int, float)) or (isinstance(value, float) and not math.isfinite(value)):
        return None
    if integer:
        if isinstance(value, float):
            if not value.is_integer():
                return None
            value = int(value)
    if minimum is not None and value < minimum:
        return None
    if maximum is not None and value > maximum:
        return None
    return value


def sanitize_date(value: Any, today: date | None = None) -> str | None:
    """Parse ``value`` to a calendar date and return it as ``YYYY-MM-DD``.

    Dates more than 150 years in the past or 10 years in the future are
    rejected.
    """
    if isinstance(value, datetime):
        parsed = value.date()
    elif isinstance(value, date):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = date.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00")).date()
            except ValueError:
                return None
    else:
        return None

    today = today or date.today()
    earliest = date(today.year - MAX_YEARS_PAST, 1, 1)
    latest = date(today.year + MAX_YEARS_FUTURE, 12, 31)
    if parsed < earliest or parsed > latest:
        return None
    return parsed.isoformat()


def sanitize_value(value: Any, spec: FieldSpec) -> Any:
    if spec.kind is FieldKind.EMAIL:
        return sanitize_email(value)
    if spec.kind is FieldKind.PHONE:
        return sanitize_phone(value)
    if spec.kind is FieldKind.NUMBER:
        return sanitize_number(value, spec.minimum, spec.maximum, spec.integer)
    if spec.kind is FieldKind.DATE:
        return sanitize_date(value)
    return sanitize_string(value)


def sanitize_object(payload: Mapping[str, Any], schema: Schema) -> dict[str, Any]:
    """Sanitize every key of ``payload``; keys absent from ``schema`` are treated as strings."""
    return {key: sanitize_value(value, schema.get(key, FieldSpec())) for key, value in payload.items()}


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def validate_required(payload: Mapping[str, Any], required: list[str] | tuple[str, ...]) -> list[str]:
    """Return the names of required fields that are missing or blank."""
    return [name for name in required if is_blank(payload.get(name))]


def validate_payload(payload: Mapping[str, Any], schema: Schema) -> tuple[dict[str, Any], list[dict[str, str]]]:
    """Sanitize the schema's fields of ``payload`` and collect every field error.

    Returns ``(cleaned, errors)``. ``cleaned`` only holds schema fields;
    optional fields that were not supplied come back as ``None``. Each error
    is ``{"field": name, "message": text}``.
    """
    cleaned: dict[str, Any] = {}
    errors: list[dict[str, str]] = []

    for name, spec in schema.items():
        label = spec.label or name
        raw = payload.get(name)

        if is_blank(raw):
            cleaned[name] = None
            if spec.required:
                errors.append({"field": name, "message": f"{label} is required"})
            continue

        if spec.kind in (FieldKind.STRING, FieldKind.PHONE, FieldKind.EMAIL):
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                raw = str(raw)
            elif not isinstance(raw, str):
                errors.append({"field": name, "message": _invalid_message(label, spec)})
                cleaned[name] = None
                continue

        if isinstance(raw, str):
            length = len(raw.strip())
            if spec.min_length is not None and length < spec.min_length:
                errors.append({"field": name, "message": _length_message(label, spec)})
                cleaned[name] = None
                continue
            if spec.max_length is not None and length > spec.max_length:
                errors.append({"field": name, "message": _length_message(label, spec)})
                cleaned[name] = None
                continue

        if spec.date_format and not (isinstance(raw, str) and ISO_DATE_RE.match(raw.strip())):
            errors.append({"field": name, "message": f"{label} must be in YYYY-MM-DD format"})
            cleaned[name] = None
            continue

        value = sanitize_value(raw, spec)
        if value is None or (spec.required and is_blank(value)):
            errors.append({"field": name, "message": _invalid_message(label, spec)})
            cleaned[name] = None
            continue
        cleaned[name] = value

    return cleaned, errors


def _length_message(label: str, spec: FieldSpec) -> str:
    if spec.min_length and spec.max_length:
        return f"{label} must be between {spec.min_length} and {spec.max_length} characters"
    if spec.max_length:
        return f"{label} must be less than {spec.max_length} characters"
    return f"{label} must be at least {spec.min_length} characters"


def _bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def _invalid_message(label: str, spec: FieldSpec) -> str:
    if spec.kind is FieldKind.EMAIL:
        return f"{label} format is invalid"
    if spec.kind is FieldKind.PHONE:
        return f"{label} format is invalid"
    if spec.kind is FieldKind.DATE:
        return f"{label} is not a valid date"
    if spec.kind is FieldKind.NUMBER:
        bounds = ""
        if spec.minimum is not None and spec.maximum is not None:
            bounds = f" between {_bound(spec.minimum)} and {_bound(spec.maximum)}"
        elif spec.minimum is not None:
            bounds = f" of at least {_bound(spec.minimum)}"
        kind = "an integer" if spec.integer else "a number"
        return f"{label} must be {kind}{bounds}"
    return f"{label} is invalid"
