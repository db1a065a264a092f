import itertools
import logging
import math
import threading
from dataclasses import dataclass
from typing import Iterable

from .errors import DegenerateGeometry, GestureConflict, InvalidCalibration
from .geometry import (
    Box,
    DragGesture,
    GesturePhase,
    PhysicalDimensions,
    Rect,
    ScaleFactor,
    begin_drag,
    compute_scale_factor_for,
    convert_to_physical,
    drag_to,
    end_drag,
    refresh_label,
)
from .marker import Decoded, MarkerResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionResult:
    """Object detection output: a rectangle in image pixels and its display text."""
    rect: Rect
    text: str

    @classmethod
    def from_xyxy(cls, bbox, text: str = "") -> "DetectionResult":
        values = [float(v) for v in bbox]
        if len(values) != 4:
            raise DegenerateGeometry(f"Expected x1, y1, x2, y2 but got {len(values)} values")
        if not all(math.isfinite(v) for v in values):
            raise DegenerateGeometry(f"Non-finite detection rectangle: {values}")
        return cls(Rect.from_xyxy(values), text)


class MeasurementSession:
    """Caller-side state for one captured image.

    Holds the active calibration and the boxes drawn on the image. All box
    mutations go through the session so that each box has a single writer.
    """

    def __init__(
        self,
        view_width: float,
        view_height: float,
        default_box_size: float = 300,
    ) -> None:
        self.view_width = view_width
        self.view_height = view_height
        self.default_box_size = default_box_size

        self.view_scale = 1.0
        self.marker_result: MarkerResult | None = None
        self.calibration: ScaleFactor | None = None
        self.calibration_error: InvalidCalibration | None = None
        self.boxes: list[Box] = []

        self._ids = itertools.count(1)
        self._active: dict[int, DragGesture] = {}
        self._lock = threading.Lock()

    def new_image(
        self,
        image_width: int,
        image_height: int,
        marker_result: MarkerResult,
        detections: Iterable[DetectionResult] = (),
        boxes_from_detections: bool = False,
    ) -> ScaleFactor | None:
        """Reset for a newly captured image and calibrate against its marker."""
        if image_width <= 0 or image_height <= 0:
            raise ValueError(f"Invalid image size: {image_width}x{image_height}")

        with self._lock:
            self.boxes.clear()
            self._active.clear()
            self.view_scale = self.view_height / image_height
            self.marker_result = marker_result
            self.calibration = None
            self.calibration_error = None

            if isinstance(marker_result, Decoded):
                try:
                    self.calibration = compute_scale_factor_for(marker_result.marker, self.view_scale)
                except InvalidCalibration as e:
                    logger.warning("Calibration failed: %s", e)
                    self.calibration_error = e
            else:
                logger.warning("No usable marker: %s", marker_result)
                self.calibration_error = InvalidCalibration("No reference marker detected")

        if boxes_from_detections:
            for detection in detections:
                self.add_detection_box(detection)
        return self.calibration

    def _add(self, box: Box) -> Box:
        with self._lock:
            box.id = next(self._ids)
            refresh_label(box, self.calibration)
            self.boxes.append(box)
        return box

    def add_box(
        self,
        width: float | None = None,
        height: float | None = None,
        x: float | None = None,
        y: float | None = None,
    ) -> Box:
        """Add a box, centred in the view unless a position is given."""
        width = self.default_box_size if width is None else width
        height = self.default_box_size if height is None else height
        if width < 0 or height < 0:
            raise DegenerateGeometry(f"Negative box extent: {width} x {height}")
        return self._add(
            Box(
                x=self.view_width / 2 - width / 2 if x is None else x,
                y=self.view_height / 2 - height / 2 if y is None else y,
                width=width,
                height=height,
            )
        )

    def add_detection_box(self, detection: DetectionResult) -> Box:
        rect = detection.rect.scaled(self.view_scale)
        return self._add(
            Box(
                x=rect.left,
                y=rect.top,
                width=max(0, rect.width),
                height=max(0, rect.height),
                caption=detection.text,
            )
        )

    def get_box(self, box_id: int) -> Box:
        for box in self.boxes:
            if box.id == box_id:
                return box
        raise KeyError(box_id)

    def remove_box(self, box: Box) -> None:
        with self._lock:
            self.boxes.remove(box)
            self._active.pop(box.id, None)

    def measure(self, box: Box) -> PhysicalDimensions:
        if self.calibration is None:
            raise self.calibration_error or InvalidCalibration("Session has no calibration")
        return convert_to_physical(box.width, box.height, self.calibration)

    def begin_drag(self, box: Box, touch_x: float, touch_y: float) -> DragGesture:
        with self._lock:
            if box.id in self._active:
                raise GestureConflict(f"Box {box.id} is already being dragged")
            if box not in self.boxes:
                raise KeyError(box.id)
            gesture = begin_drag(box, touch_x, touch_y)
            self._active[box.id] = gesture
        return gesture

    def drag(self, gesture: DragGesture, touch_x: float, touch_y: float) -> DragGesture:
        with self._lock:
            if self._active.get(gesture.box_id) != gesture:
                raise GestureConflict(f"Gesture is not the active one for box {gesture.box_id}")
            box = self.get_box(gesture.box_id)
            gesture = drag_to(gesture, box, touch_x, touch_y, self.calibration)
            self._active[box.id] = gesture
        return gesture

    def end_drag(self, gesture: DragGesture) -> DragGesture:
        with self._lock:
            if self._active.get(gesture.box_id) == gesture:
                del self._active[gesture.box_id]
        return end_drag(gesture)

    def is_dragging(self, box: Box) -> bool:
        gesture = self._active.get(box.id)
        return gesture is not None and gesture.phase is not GesturePhase.IDLE
