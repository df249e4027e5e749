"""Parsing and normalization of raw OCR collaborator output.

The collaborator answers with a JSON object (sometimes wrapped in a
markdown code fence) keyed by whatever labels it read off the form.
This module turns that into canonical form field names, normalizes the
handwritten date, and decodes the captured image payload.
"""

import base64
import binascii
import json
import re
from datetime import date, datetime
from typing import Any

from src.errors import InvalidImageError, MalformedOutputError
from src.utils.logger import get_logger

logger = get_logger(__name__)

FORM_FIELDS: tuple[str, ...] = (
    "customer_name",
    "email",
    "cell_phone",
    "address",
    "home_phone",
    "vehicle_year",
    "vehicle_make",
    "vehicle_model",
    "vehicle_color",
    "license_plate",
    "mileage",
    "warranty",
    "warranty_provider",
    "known_issues",
    "signature",
    "signature_date",
)
SERVICE_REQUESTS = "service_requests"
DATE_FIELD = "signature_date"

_EXTRA_ALIASES = {
    "name": "customer_name",
    "customer": "customer_name",
    "phone": "cell_phone",
    "cell": "cell_phone",
    "mobile": "cell_phone",
    "mobilephone": "cell_phone",
    "year": "vehicle_year",
    "make": "vehicle_make",
    "model": "vehicle_model",
    "color": "vehicle_color",
    "plate": "license_plate",
    "licenseplatenumber": "license_plate",
    "odometer": "mileage",
    "warrantyyesno": "warranty",
    "issues": "known_issues",
    "date": DATE_FIELD,
    "services": SERVICE_REQUESTS,
    "requests": SERVICE_REQUESTS,
}

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_DATA_URL_RE = re.compile(
    r"^data:(?P<media>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[\w.+-]+=[\w.+-]+)*)"
    r"(?P<b64>;base64)?,(?P<data>.*)$",
    re.DOTALL,
)
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

_YEAR_FIRST_RE = re.compile(r"^(\d{4})([/.\-])(\d{1,2})\2(\d{1,2})$")
_YEAR_LAST_RE = re.compile(r"^(\d{1,2})([/.\-])(\d{1,2})\2(\d{4}|\d{2})$")

_YES = {"yes", "y", "true", "x", "checked"}
_NO = {"no", "n", "false", "unchecked"}


def _squash(label: str) -> str:
    return re.sub(r"[^a-z0-9]", "", label.lower())


_ALIASES: dict[str, str] = {_squash(f): f for f in (*FORM_FIELDS, SERVICE_REQUESTS)}
_ALIASES.update(_EXTRA_ALIASES)


def canonical_field_name(label: str) -> str:
    """Map a label read off the form to a canonical field name.

    Known labels (``"Customer Name"``, ``customerName``, ``customer_name``)
    resolve to the same canonical name; unknown labels become snake_case.
    """
    known = _ALIASES.get(_squash(label))
    if known:
        return known
    snake = _CAMEL_RE.sub("_", label.strip())
    return re.sub(r"[^a-z0-9]+", "_", snake.lower()).strip("_")


def normalize_date(value: str) -> str:
    """Normalize a handwritten date to ``YYYY-MM-DDT12:00:00``.

    Numbers before a four-digit (or two-digit) year are read month first;
    if the first number cannot be a month but the second can, the date is
    read day first. Year-first dates are read year, month, day. The result
    is pinned to midday so redisplay in any timezone keeps the same day.

    Args:
        value: Raw date text.

    Returns:
        Normalized date, or ``value`` unchanged when it cannot be parsed.
    """
    text = value.strip()

    match = _YEAR_FIRST_RE.match(text)
    if match:
        year, month, day = int(match.group(1)), int(match.group(3)), int(match.group(4))
    else:
        match = _YEAR_LAST_RE.match(text)
        if not match:
            return value
        first, second = int(match.group(1)), int(match.group(3))
        year = int(match.group(4))
        if len(match.group(4)) == 2:
            year += 2000
        if first > 12 and second <= 12:
            month, day = second, first
        else:
            month, day = first, second

    try:
        parsed = date(year, month, day)
    except ValueError:
        logger.debug("Leaving impossible date %r unparsed", value)
        return value
    return datetime(parsed.year, parsed.month, parsed.day, 12).isoformat()


def _normalize_warranty(value: str) -> str:
    lowered = value.strip().lower()
    if lowered in _YES:
        return "yes"
    if lowered in _NO:
        return "no"
    return value.strip()


def _normalize_service_requests(value: Any) -> list[dict[str, str]]:
    if isinstance(value, (dict, str)):
        value = [value]
    if not isinstance(value, list):
        return []

    requests: list[dict[str, str]] = []
    for item in value:
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            continue
        lowered = {str(k).lower(): v for k, v in item.items()}
        area = str(lowered.get("area") or "").strip()
        description = str(lowered.get("description") or "").strip()
        if area or description:
            requests.append({"area": area, "description": description})
    return requests


def extract_json_object(raw: str) -> dict[str, Any]:
    """Pull the first JSON object out of raw collaborator output.

    Raises:
        MalformedOutputError: If no JSON object can be decoded.
    """
    fenced = _FENCE_RE.search(raw)
    candidate = fenced.group(1) if fenced else raw

    start, end = candidate.find("{"), candidate.rfind("}")
    if start == -1 or end < start:
        raise MalformedOutputError("OCR output did not contain a JSON object")

    try:
        parsed = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedOutputError(f"OCR output was not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise MalformedOutputError("OCR output JSON was not an object")
    return parsed


def normalize_fields(raw_fields: dict[str, Any]) -> dict[str, Any]:
    """Convert raw labelled values into canonical form fields.

    Empty values are dropped so a merge never blanks out data the user
    already typed.
    """
    fields: dict[str, Any] = {}
    for label, value in raw_fields.items():
        name = canonical_field_name(str(label))
        if not name:
            continue

        if name == SERVICE_REQUESTS:
            requests = _normalize_service_requests(value)
            if requests:
                fields[name] = requests
            continue

        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if not text:
            continue

        if name == DATE_FIELD:
            text = normalize_date(text)
        elif name == "warranty":
            text = _normalize_warranty(text)
        fields[name] = text
    return fields


def parse_extraction_output(raw: str) -> dict[str, Any]:
    """Parse raw collaborator output into canonical form fields."""
    return normalize_fields(extract_json_object(raw))


def decode_data_url(value: str) -> tuple[str, bytes]:
    """Decode a ``data:`` URL image payload.

    Args:
        value: Data URL such as ``data:image/jpeg;base64,...``.

    Returns:
        Tuple of (media type, raw bytes).

    Raises:
        InvalidImageError: If the value is not a base64 data URL or is empty.
    """
    match = _DATA_URL_RE.match(value.strip())
    if not match or not match.group("b64"):
        raise InvalidImageError("Captured image is not a base64 data URL")

    try:
        payload = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError(f"Captured image is not valid base64: {exc}") from exc

    if not payload:
        raise InvalidImageError("Captured image is empty")
    return match.group("media") or "application/octet-stream", payload


def encode_data_url(payload: bytes, media_type: str = "image/jpeg") -> str:
    return f"data:{media_type};base64,{base64.b64encode(payload).decode('ascii')}"
