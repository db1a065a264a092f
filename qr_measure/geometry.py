import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum

from .errors import DegenerateGeometry, DegenerateMarker, GestureConflict, InvalidCalibration

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "cm"


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle given by its edges, in pixels."""
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center(self) -> tuple[float, float]:
        return (self.left + self.right) / 2, (self.top + self.bottom) / 2

    def scaled(self, factor: float) -> "Rect":
        return Rect(
            self.left * factor,
            self.top * factor,
            self.right * factor,
            self.bottom * factor,
        )

    @classmethod
    def from_xyxy(cls, bbox: tuple[float, float, float, float]) -> "Rect":
        x1, y1, x2, y2 = bbox
        return cls(x1, y1, x2, y2)


@dataclass(frozen=True)
class ScaleFactor:
    """Pixels per physical unit, derived once per captured image."""
    value: float
    unit: str = DEFAULT_UNIT

    def __post_init__(self) -> None:
        if not _usable_scale(self.value):
            raise InvalidCalibration(f"Scale factor must be positive, got {self.value}")
        object.__setattr__(self, "value", float(self.value))

    def __float__(self) -> float:
        return float(self.value)


@dataclass(frozen=True)
class PhysicalDimensions:
    width: float
    height: float
    unit: str = DEFAULT_UNIT

    def format(self) -> str:
        return f"{self.width:.2f} x {self.height:.2f} {self.unit}"

    def __str__(self) -> str:
        return self.format()


@dataclass
class Label:
    text: str = ""
    x: float = 0.0
    y: float = 0.0


@dataclass
class Box:
    """On-screen rectangle with the label that shows its measurement."""
    x: float
    y: float
    width: float
    height: float
    caption: str = ""
    id: int = 0
    label: Label = field(default_factory=Label)

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.x + self.width, self.y + self.height)


class Anchor(Enum):
    LEFT_TOP = ("left", "top")
    LEFT_BOTTOM = ("left", "bottom")
    RIGHT_TOP = ("right", "top")
    RIGHT_BOTTOM = ("right", "bottom")

    @property
    def horizontal(self) -> str:
        return self.value[0]

    @property
    def vertical(self) -> str:
        return self.value[1]

    @classmethod
    def from_sides(cls, horizontal: str, vertical: str) -> "Anchor":
        return cls((horizontal, vertical))


class GesturePhase(Enum):
    IDLE = "idle"
    ANCHORED = "anchored"
    DRAGGING = "dragging"


@dataclass(frozen=True)
class DragGesture:
    """Per-gesture state: the anchor fixed at touch-down and the last pointer position."""
    box_id: int
    anchor: Anchor
    last_x: float
    last_y: float
    phase: GesturePhase = GesturePhase.ANCHORED


def _usable_scale(value) -> bool:
    # bool is an int subclass; True is not a scale
    if value is None or isinstance(value, bool):
        return False
    try:
        value = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and value > 0


def _finite_extent(value) -> bool:
    return math.isfinite(value) and value >= 0


def compute_scale_factor(
    marker_rect: Rect,
    marker_physical_width: float,
    unit: str = DEFAULT_UNIT,
) -> ScaleFactor:
    """Derive pixels per unit from a square marker of known physical width.

    Only the marker's pixel width is used; the marker is assumed square, so
    the perimeter ratio reduces to ``pixel_width / physical_width``.
    """
    if not (marker_physical_width > 0) or not math.isfinite(marker_physical_width):
        raise InvalidCalibration(
            f"Marker physical width must be positive, got {marker_physical_width}"
        )
    pixel_width = marker_rect.right - marker_rect.left
    if not (pixel_width > 0):
        raise DegenerateMarker(f"Marker rectangle has non-positive width: {marker_rect}")

    pixel_perimeter = 4 * pixel_width
    physical_perimeter = 4 * marker_physical_width
    scale = ScaleFactor(pixel_perimeter / physical_perimeter, unit or DEFAULT_UNIT)
    logger.debug("Marker width %.2fpx -> scale factor %.4f px/%s", pixel_width, scale.value, scale.unit)
    return scale


def compute_scale_factor_for(marker, view_scale: float = 1.0) -> ScaleFactor:
    """Calibrate from a ReferenceMarker whose rectangle is in image pixels.

    ``view_scale`` maps image pixels onto the view the boxes are drawn in.
    """
    return compute_scale_factor(
        marker.rect.scaled(view_scale),
        marker.payload.width,
        marker.payload.unit,
    )


def convert_to_physical(
    pixel_width: float,
    pixel_height: float,
    scale_factor: "ScaleFactor | float | None",
    unit: str | None = None,
) -> PhysicalDimensions:
    if isinstance(scale_factor, ScaleFactor):
        value = scale_factor.value
        unit = unit or scale_factor.unit
    else:
        value = scale_factor
    if not _usable_scale(value):
        raise InvalidCalibration(f"Cannot convert with scale factor {scale_factor!r}")
    if not (_finite_extent(pixel_width) and _finite_extent(pixel_height)):
        raise DegenerateGeometry(f"Invalid box extent: {pixel_width} x {pixel_height}")

    value = float(value)
    return PhysicalDimensions(pixel_width / value, pixel_height / value, unit or DEFAULT_UNIT)


def refresh_label(box: Box, scale_factor: ScaleFactor | None) -> Label:
    """Move the label onto the box and rewrite its text from the current geometry."""
    if scale_factor is None:
        text = f"{box.width:.0f} x {box.height:.0f} px"
    else:
        text = convert_to_physical(box.width, box.height, scale_factor).format()
    if box.caption:
        text = f"{box.caption} {text}"

    box.label.text = text
    box.label.x = box.x
    box.label.y = box.y
    return box.label


def apply_drag_delta(
    box: Box,
    anchor: Anchor,
    dx: float,
    dy: float,
    scale_factor: ScaleFactor | None = None,
) -> Box:
    """Resize ``box`` by one pointer step.

    Left/top anchors move that edge with the pointer and keep the opposite
    edge fixed; right/bottom anchors only grow or shrink the extent. Extents
    are clamped at zero instead of inverting the rectangle.
    """
    if anchor.horizontal == "left":
        # The right edge is fixed, so the left edge may not pass it.
        dx = min(dx, box.width)
        box.width -= dx
        box.x += dx
    else:
        box.width = max(0, box.width + dx)

    if anchor.vertical == "top":
        dy = min(dy, box.height)
        box.height -= dy
        box.y += dy
    else:
        box.height = max(0, box.height + dy)

    refresh_label(box, scale_factor)
    return box


def anchor_for_touch(box: Box, touch_x: float, touch_y: float) -> Anchor:
    center_x, center_y = box.rect.center
    horizontal = "right" if touch_x > center_x else "left"
    vertical = "bottom" if touch_y > center_y else "top"
    return Anchor.from_sides(horizontal, vertical)


def begin_drag(box: Box, touch_x: float, touch_y: float) -> DragGesture:
    return DragGesture(
        box_id=box.id,
        anchor=anchor_for_touch(box, touch_x, touch_y),
        last_x=touch_x,
        last_y=touch_y,
    )


def drag_to(
    gesture: DragGesture,
    box: Box,
    touch_x: float,
    touch_y: float,
    scale_factor: ScaleFactor | None = None,
) -> DragGesture:
    if gesture.phase is GesturePhase.IDLE:
        raise GestureConflict("Gesture has already ended")
    if gesture.box_id != box.id:
        raise GestureConflict(f"Gesture belongs to box {gesture.box_id}, not {box.id}")

    apply_drag_delta(
        box,
        gesture.anchor,
        touch_x - gesture.last_x,
        touch_y - gesture.last_y,
        scale_factor,
    )
    return replace(gesture, last_x=touch_x, last_y=touch_y, phase=GesturePhase.DRAGGING)


def end_drag(gesture: DragGesture) -> DragGesture:
    return replace(gesture, phase=GesturePhase.IDLE)
