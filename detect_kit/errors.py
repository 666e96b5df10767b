from __future__ import annotations

from typing import Optional, Sequence


class DetectionError(Exception):
    """
    Base class for every recoverable pipeline error.

    `code` is stable and is what the application layer maps to a view state.
    """

    code = "detection_error"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInput(DetectionError):
    """Malformed, empty or wrongly typed image. Raised before preprocessing."""

    code = "invalid_input"


class ModelUnavailable(DetectionError):
    """Session creation / warm-up failed, or the session has been closed."""

    code = "model_unavailable"


class InferenceFailure(DetectionError):
    """The runtime call failed or returned a tensor of an unusable shape."""

    code = "inference_failure"


class SessionBusy(DetectionError):
    """Another inference is already in flight on the same session."""

    code = "busy"


class DecodeAnomaly(DetectionError):
    """
    A single output row that could not be turned into a Detection.

    Not raised by the decoder: instances are collected, logged and the row is
    skipped.
    """

    code = "decode_anomaly"

    def __init__(self, message: str, *, row_index: int, row: Sequence[float] = ()):
        super().__init__(message, details={"row_index": row_index, "row": [float(v) for v in row]})
        self.row_index = row_index
        self.row = tuple(float(v) for v in row)
