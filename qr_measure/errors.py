class MeasurementError(ValueError):
    """Base class for calibration and geometry failures."""


class InvalidCalibration(MeasurementError):
    """Scale factor undefined or non-positive, or reference size non-positive."""


class DegenerateGeometry(MeasurementError):
    """Rectangle with a non-positive extent where a positive one is required."""


class DegenerateMarker(InvalidCalibration, DegenerateGeometry):
    """Marker rectangle too small to calibrate against."""


class GestureConflict(RuntimeError):
    """A box is already being dragged, or the gesture has ended."""
