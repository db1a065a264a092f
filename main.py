import argparse
import logging
import math
import sys

import cv2

from qr_measure import Decoded, DetectionResult, Malformed, MeasurementError, MeasurementSession
from qr_measure.scanner import MarkerScanner


def parse_box(value: str) -> tuple[float, float, float, float]:
    try:
        x, y, w, h = (float(v) for v in value.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected X,Y,W,H but got '{value}'")
    if not all(math.isfinite(v) for v in (x, y, w, h)):
        raise argparse.ArgumentTypeError(f"Box values must be finite: '{value}'")
    if w < 0 or h < 0:
        raise argparse.ArgumentTypeError(f"Box size must be non-negative: '{value}'")
    return x, y, w, h


def parse_detection(value: str) -> DetectionResult:
    parts = value.split(",", 4)
    if len(parts) < 4:
        raise argparse.ArgumentTypeError(f"Expected X1,Y1,X2,Y2[,TEXT] but got '{value}'")
    try:
        return DetectionResult.from_xyxy(parts[:4], parts[4].strip() if len(parts) == 5 else "")
    except (ValueError, MeasurementError):
        raise argparse.ArgumentTypeError(f"Invalid detection rectangle: '{value}'")


def annotate(image, session: MeasurementSession, output: str) -> None:
    # Boxes live in view pixels; draw them back onto the source image
    inverse = 1.0 / session.view_scale

    if isinstance(session.marker_result, Decoded):
        rect = session.marker_result.marker.rect
        cv2.rectangle(
            image,
            (int(rect.left), int(rect.top)),
            (int(rect.right), int(rect.bottom)),
            (255, 0, 0),
            2,
        )

    for box in session.boxes:
        x1, y1 = int(box.x * inverse), int(box.y * inverse)
        x2, y2 = int((box.x + box.width) * inverse), int((box.y + box.height) * inverse)
        cv2.rectangle(image, (x1, y1), (x2, y2), (0, 255, 0), 2)

        # Draw label (position it safely within the image)
        label = box.label.text
        lx, ly = int(box.label.x * inverse), int(box.label.y * inverse)
        label_size, _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, 0.7, 2)
        label_y = max(ly, label_size[1] + 10)
        cv2.rectangle(
            image,
            (lx, label_y - label_size[1] - 10),
            (lx + label_size[0], label_y),
            (0, 255, 0),
            cv2.FILLED,
        )
        cv2.putText(image, label, (lx, label_y - 5), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 0), 2)

    if not cv2.imwrite(output, image):
        raise RuntimeError(f"Failed to write {output}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Measure objects against a QR reference marker")
    parser.add_argument("image", help="Path to the captured image")
    parser.add_argument(
        "--box",
        action="append",
        type=parse_box,
        default=[],
        metavar="X,Y,W,H",
        help="Box in view pixels; may be repeated. Defaults to one centred box",
    )
    parser.add_argument(
        "--detection",
        action="append",
        type=parse_detection,
        default=[],
        metavar="X1,Y1,X2,Y2[,TEXT]",
        help="Detected object rectangle in image pixels with optional caption; may be repeated",
    )
    parser.add_argument(
        "--view-height",
        type=int,
        default=None,
        help="Height of the view the boxes are drawn in (defaults to the image height)",
    )
    parser.add_argument("--annotate", metavar="OUT", help="Write an annotated copy of the image")
    parser.add_argument(
        "--model-size",
        default="s",
        choices=["n", "s", "m", "l"],
        help="YOLO model size for QR detection",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    image = cv2.imread(args.image)
    if image is None:
        print(f"Error: could not read image '{args.image}'")
        return 1

    image_height, image_width = image.shape[:2]
    view_height = args.view_height or image_height
    view_width = image_width * view_height / image_height

    scanner = MarkerScanner(model_size=args.model_size)
    marker_result = scanner.locate_marker(image)

    session = MeasurementSession(view_width, view_height)
    calibration = session.new_image(
        image_width, image_height, marker_result, args.detection, boxes_from_detections=True
    )

    if isinstance(marker_result, Decoded):
        payload = marker_result.marker.payload
        print(f"Marker: {payload.width} x {payload.height} {payload.unit} at {marker_result.marker.rect}")
    elif isinstance(marker_result, Malformed):
        print(f"Marker payload unreadable: {marker_result.reason}")
    else:
        print("No marker found")

    if calibration is not None:
        print(f"Scale factor: {calibration.value:.4f} px/{calibration.unit}")
    else:
        print(f"Calibration unavailable ({session.calibration_error}); showing pixel sizes")

    for x, y, w, h in args.box:
        session.add_box(w, h, x=x, y=y)
    if not session.boxes:
        session.add_box()

    for box in session.boxes:
        print(f"  Box {box.id} at ({box.x:.0f}, {box.y:.0f}): {box.label.text}")

    if args.annotate:
        annotate(image, session, args.annotate)
        print(f"Annotated image written to {args.annotate}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
