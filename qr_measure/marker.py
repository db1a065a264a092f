import json
import math
from dataclasses import dataclass
from typing import Iterable, Union

from .geometry import DEFAULT_UNIT, Rect


@dataclass(frozen=True)
class MarkerPayload:
    """Physical size encoded in the reference QR code."""
    width: float
    height: float
    unit: str = DEFAULT_UNIT


@dataclass(frozen=True)
class ReferenceMarker:
    payload: MarkerPayload
    rect: Rect


@dataclass(frozen=True)
class Decoded:
    marker: ReferenceMarker


@dataclass(frozen=True)
class Absent:
    pass


@dataclass(frozen=True)
class Malformed:
    raw: str
    reason: str


MarkerResult = Union[Decoded, Absent, Malformed]


def _number(payload: dict, key: str) -> float:
    value = payload[key]
    # bool is an int subclass; "true" is not a size
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"'{key}' must be a number, got {type(value).__name__}")
    value = float(value)
    if not math.isfinite(value):
        raise TypeError(f"'{key}' must be finite")
    return value


def parse_payload(raw: str | None, rect: Rect) -> MarkerResult:
    """Parse a QR payload such as ``{"width": 5, "height": 5, "units": "cm"}``.

    Missing content is ``Absent``; anything that cannot be read as a size is
    ``Malformed``. Positivity is left to calibration.
    """
    if raw is None or not raw.strip():
        return Absent()

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        return Malformed(raw, f"Invalid JSON: {e.msg}")
    if not isinstance(payload, dict):
        return Malformed(raw, "Payload is not an object")
    if "width" not in payload:
        return Malformed(raw, "Missing 'width'")

    try:
        width = _number(payload, "width")
        height = _number(payload, "height") if "height" in payload else width
    except TypeError as e:
        return Malformed(raw, str(e))

    unit = payload.get("units", payload.get("unit", DEFAULT_UNIT))
    if not isinstance(unit, str) or not unit.strip():
        return Malformed(raw, "Unit must be a non-empty string")

    return Decoded(ReferenceMarker(MarkerPayload(width, height, unit.strip()), rect))


def select_marker(codes: Iterable) -> MarkerResult:
    """Pick the first QR code that decodes to a marker.

    ``codes`` are objects with ``decoded`` and ``bbox`` attributes, as
    produced by the scanner.
    """
    first_malformed = None
    for code in codes:
        if code.bbox is None:
            continue
        result = parse_payload(code.decoded, Rect.from_xyxy(code.bbox))
        if isinstance(result, Decoded):
            return result
        if isinstance(result, Malformed) and first_malformed is None:
            first_malformed = result
    return first_malformed or Absent()


def describe(result: MarkerResult) -> dict:
    """JSON-friendly summary of a marker result."""
    if isinstance(result, Decoded):
        marker = result.marker
        return {
            "status": "decoded",
            "width": marker.payload.width,
            "height": marker.payload.height,
            "unit": marker.payload.unit,
            "bbox": [marker.rect.left, marker.rect.top, marker.rect.right, marker.rect.bottom],
        }
    if isinstance(result, Malformed):
        return {"status": "malformed", "raw": result.raw, "reason": result.reason}
    return {"status": "absent"}
