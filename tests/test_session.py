import math

import pytest

from qr_measure.errors import DegenerateGeometry, GestureConflict, InvalidCalibration
from qr_measure.geometry import Anchor, GesturePhase, Rect
from qr_measure.marker import Absent, Decoded, MarkerPayload, ReferenceMarker, parse_payload
from qr_measure.session import DetectionResult, MeasurementSession

MARKER = Decoded(ReferenceMarker(MarkerPayload(5, 5), Rect(100, 100, 200, 200)))


@pytest.fixture()
def session():
    s = MeasurementSession(1000, 1000)
    s.new_image(1000, 1000, MARKER)
    return s


def test_new_image_calibrates(session):
    assert session.view_scale == 1.0
    assert session.calibration.value == pytest.approx(20.0)
    assert session.calibration_error is None


def test_calibration_uses_view_scale():
    s = MeasurementSession(540, 960)

    scale = s.new_image(1080, 1920, MARKER)

    assert s.view_scale == pytest.approx(0.5)
    assert scale.value == pytest.approx(10.0)


def test_add_box_centred_with_label():
    s = MeasurementSession(540, 960)
    s.new_image(1080, 1920, MARKER)

    box = s.add_box()

    assert (box.x, box.y, box.width, box.height) == (120, 330, 300, 300)
    assert box.label.text == "30.00 x 30.00 cm"
    assert (box.label.x, box.label.y) == (120, 330)
    assert s.measure(box).format() == "30.00 x 30.00 cm"


def test_add_box_at_position(session):
    box = session.add_box(200, 150, x=5, y=6)

    assert (box.x, box.y) == (5, 6)
    assert box.label.text == "10.00 x 7.50 cm"


def test_box_ids_are_unique(session):
    ids = [session.add_box().id for _ in range(3)]

    assert len(set(ids)) == 3
    assert session.get_box(ids[1]).id == ids[1]


def test_missing_marker_degrades_to_pixels():
    s = MeasurementSession(1000, 1000)

    assert s.new_image(1000, 1000, Absent()) is None
    assert isinstance(s.calibration_error, InvalidCalibration)

    box = s.add_box()
    assert box.label.text == "300 x 300 px"
    with pytest.raises(InvalidCalibration):
        s.measure(box)


def test_invalid_marker_size_is_recorded_not_raised():
    s = MeasurementSession(1000, 1000)
    marker = parse_payload('{"width": 0}', Rect(0, 0, 100, 100))

    assert s.new_image(1000, 1000, marker) is None
    assert isinstance(s.calibration_error, InvalidCalibration)


def test_new_image_clears_boxes(session):
    session.add_box()
    session.add_box()

    session.new_image(1000, 1000, MARKER)

    assert session.boxes == []


def test_new_image_rejects_empty_image():
    with pytest.raises(ValueError):
        MeasurementSession(100, 100).new_image(0, 100, MARKER)


def test_boxes_from_detections():
    s = MeasurementSession(540, 960)
    detections = [DetectionResult(Rect(100, 200, 300, 400), "cabinet, 87%")]

    s.new_image(1080, 1920, MARKER, detections, boxes_from_detections=True)

    (box,) = s.boxes
    assert (box.x, box.y, box.width, box.height) == (50, 100, 100, 100)
    assert box.label.text == "cabinet, 87% 10.00 x 10.00 cm"


def test_detections_are_not_boxed_by_default(session):
    session.new_image(1000, 1000, MARKER, [DetectionResult(Rect(0, 0, 10, 10), "x")])

    assert session.boxes == []


def test_drag_through_session(session):
    box = session.add_box(200, 100)
    assert (box.x, box.y) == (400, 450)

    gesture = session.begin_drag(box, 410, 460)
    assert gesture.anchor is Anchor.LEFT_TOP
    assert session.is_dragging(box)

    gesture = session.drag(gesture, 400, 460)
    assert (box.x, box.width) == (390, 210)
    assert box.label.text == "10.50 x 5.00 cm"
    assert box.label.x == 390

    gesture = session.end_drag(gesture)
    assert gesture.phase is GesturePhase.IDLE
    assert not session.is_dragging(box)


def test_one_gesture_per_box(session):
    box = session.add_box()
    gesture = session.begin_drag(box, box.x + 1, box.y + 1)

    with pytest.raises(GestureConflict):
        session.begin_drag(box, box.x + 2, box.y + 2)

    session.end_drag(gesture)
    session.begin_drag(box, box.x + 2, box.y + 2)


def test_stale_gesture_is_rejected(session):
    box = session.add_box()
    first = session.begin_drag(box, box.x + 1, box.y + 1)
    session.drag(first, box.x + 5, box.y + 5)

    with pytest.raises(GestureConflict):
        session.drag(first, box.x + 9, box.y + 9)


def test_remove_box(session):
    box = session.add_box()
    session.begin_drag(box, box.x + 1, box.y + 1)

    session.remove_box(box)

    assert box not in session.boxes
    assert not session.is_dragging(box)
    with pytest.raises(KeyError):
        session.begin_drag(box, 0, 0)


def test_detection_from_xyxy():
    detection = DetectionResult.from_xyxy(["100", 200.0, 300, 400], "cabinet, 87%")

    assert detection == DetectionResult(Rect(100, 200, 300, 400), "cabinet, 87%")


@pytest.mark.parametrize("bbox", [(1, 2, 3), (1, 2, 3, 4, 5), (0, 0, math.nan, 10), (0, 0, 10, math.inf)])
def test_detection_from_xyxy_rejects_bad_rectangles(bbox):
    with pytest.raises(DegenerateGeometry):
        DetectionResult.from_xyxy(bbox)
