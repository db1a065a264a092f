from .errors import (
    DegenerateGeometry,
    DegenerateMarker,
    GestureConflict,
    InvalidCalibration,
    MeasurementError,
)
from .geometry import (
    Anchor,
    Box,
    DragGesture,
    GesturePhase,
    Label,
    PhysicalDimensions,
    Rect,
    ScaleFactor,
    apply_drag_delta,
    compute_scale_factor,
    convert_to_physical,
    refresh_label,
)
from .marker import Absent, Decoded, Malformed, MarkerPayload, ReferenceMarker, parse_payload
from .session import DetectionResult, MeasurementSession

__all__ = [
    "Absent",
    "Anchor",
    "Box",
    "Decoded",
    "DegenerateGeometry",
    "DegenerateMarker",
    "DetectionResult",
    "DragGesture",
    "GestureConflict",
    "GesturePhase",
    "InvalidCalibration",
    "Label",
    "Malformed",
    "MarkerPayload",
    "MeasurementError",
    "MeasurementSession",
    "PhysicalDimensions",
    "Rect",
    "ReferenceMarker",
    "ScaleFactor",
    "apply_drag_delta",
    "compute_scale_factor",
    "convert_to_physical",
    "parse_payload",
    "refresh_label",
]
