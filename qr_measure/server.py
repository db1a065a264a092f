import asyncio
import base64
import binascii
import json
import logging
import math
import signal
import time
from typing import Iterable

from websockets.asyncio.server import serve

from .errors import DegenerateGeometry, MeasurementError
from .geometry import DEFAULT_UNIT, Box, ScaleFactor, convert_to_physical, refresh_label
from .marker import describe
from .scanner import MarkerScanner, decode_image
from .session import DetectionResult, MeasurementSession


class MeasurementServer:
    """WebSocket server that calibrates images against their QR marker and measures boxes."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8765,
        model_size: str = "s",
        max_size: int = 16 * 1024 * 1024,
        scanner: MarkerScanner | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.max_size = max_size
        self.scanner = scanner if scanner is not None else MarkerScanner(model_size=model_size)

    def calibrate(
        self,
        image,
        view_height: int | None = None,
        detections: Iterable[DetectionResult] = (),
    ) -> dict:
        image_height, image_width = image.shape[:2]
        view_height = view_height or image_height
        session = MeasurementSession(image_width * view_height / image_height, view_height)

        start = time.perf_counter()
        marker_result = self.scanner.locate_marker(image)
        processing_time = time.perf_counter() - start

        calibration = session.new_image(
            image_width, image_height, marker_result, detections, boxes_from_detections=True
        )
        return {
            "marker": describe(marker_result),
            "calibration": (
                {"scale_factor": calibration.value, "unit": calibration.unit}
                if calibration is not None
                else None
            ),
            "calibration_error": (
                str(session.calibration_error) if session.calibration_error else None
            ),
            "boxes": [
                {
                    "id": box.id,
                    "x": box.x,
                    "y": box.y,
                    "width": box.width,
                    "height": box.height,
                    "text": box.label.text,
                }
                for box in session.boxes
            ],
            "image_size": [image_width, image_height],
            "processing_time": round(processing_time, 4),
        }

    def measure(self, payload: dict) -> dict:
        scale = ScaleFactor(payload.get("scale_factor"), payload.get("unit") or DEFAULT_UNIT)

        measurements = []
        for entry in payload.get("boxes", []):
            box = Box(
                x=float(entry.get("x", 0)),
                y=float(entry.get("y", 0)),
                width=float(entry["width"]),
                height=float(entry["height"]),
                caption=entry.get("caption", ""),
            )
            if not (math.isfinite(box.x) and math.isfinite(box.y)):
                raise DegenerateGeometry(f"Invalid box position: {box.x}, {box.y}")
            dims = convert_to_physical(box.width, box.height, scale)
            label = refresh_label(box, scale)
            measurements.append(
                {
                    "width": round(dims.width, 2),
                    "height": round(dims.height, 2),
                    "unit": dims.unit,
                    "text": label.text,
                    "position": [label.x, label.y],
                }
            )
        return {"measurements": measurements, "count": len(measurements)}

    async def handle(self, websocket) -> None:  # type: ignore
        async for message in websocket:
            try:
                if isinstance(message, bytes):
                    response = self.calibrate(decode_image(message))
                elif isinstance(message, str):
                    payload = json.loads(message)
                    if not isinstance(payload, dict):
                        await websocket.send(json.dumps({"error": "Expected a JSON object"}))
                        continue
                    if payload.get("action") == "measure":
                        response = self.measure(payload)
                    else:
                        image_b64 = payload.get("image")
                        if image_b64 is None:
                            await websocket.send(
                                json.dumps({"error": "Missing 'image' field"})
                            )
                            continue
                        image = decode_image(base64.b64decode(image_b64))
                        detections = [
                            DetectionResult.from_xyxy(d["bbox"], str(d.get("text", "")))
                            for d in payload.get("detections", [])
                        ]
                        response = self.calibrate(image, payload.get("view_height"), detections)
                else:
                    await websocket.send(
                        json.dumps({"error": "Unsupported message type"})
                    )
                    continue

                await websocket.send(json.dumps(response))

            except json.JSONDecodeError:
                await websocket.send(json.dumps({"error": "Invalid JSON"}))
            except binascii.Error:
                await websocket.send(json.dumps({"error": "Invalid base64 image"}))
            except MeasurementError as e:
                await websocket.send(
                    json.dumps({"error": str(e), "kind": type(e).__name__})
                )
            except ValueError as e:
                await websocket.send(json.dumps({"error": str(e)}))
            except (KeyError, TypeError) as e:
                await websocket.send(json.dumps({"error": f"Bad request: {e!r}"}))
            except Exception as e:
                await websocket.send(json.dumps({"error": f"Processing error: {e}"}))

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        stop = loop.create_future()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set_result, None)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        async with serve(self.handle, self.host, self.port, max_size=self.max_size):
            print(f"Measurement server listening on ws://{self.host}:{self.port}")
            await stop

        print("Server stopped.")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="QR-calibrated measurement WebSocket server")
    parser.add_argument("--host", default="localhost")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument(
        "--model-size",
        default="s",
        choices=["n", "s", "m", "l"],
        help="YOLO model size for QR detection",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    server = MeasurementServer(
        host=args.host, port=args.port, model_size=args.model_size
    )
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
