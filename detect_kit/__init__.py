"""
Single-image detection kit for end-to-end ONNX detectors.

Letterbox preprocessing, an ONNX Runtime session wrapper and a decoder that maps
the model's row records back into image space. Needs NumPy and OpenCV;
onnxruntime only when a real model is loaded.
"""

from .types import Box, Detection, LetterboxTransform
from .errors import (
    DecodeAnomaly,
    DetectionError,
    InferenceFailure,
    InvalidInput,
    ModelUnavailable,
    SessionBusy,
)
from .letterbox import preprocess, pad_to_square
from .postprocess import (
    END2END_NO_BATCH_INDEX,
    END2END_WITH_BATCH_INDEX,
    SCHEMAS,
    DetectionDecoder,
    FieldOffsets,
    OutputSchema,
    filter_by_score,
)
from .classes import (
    DEFAULT_CLASS_ATTRIBUTES,
    ClassAttributes,
    check_against_model,
    load_class_attributes,
    validate_class_table,
)
from .runtime import DetectorSession, create_session, open_session, run_detection, find_project_root, resolve_path
from .image_io import decode_image_bytes, load_image, to_bgr
from .visualize import draw_detections, format_label

__all__ = [
    "Box",
    "Detection",
    "LetterboxTransform",
    "DecodeAnomaly",
    "DetectionError",
    "InferenceFailure",
    "InvalidInput",
    "ModelUnavailable",
    "SessionBusy",
    "preprocess",
    "pad_to_square",
    "END2END_NO_BATCH_INDEX",
    "END2END_WITH_BATCH_INDEX",
    "SCHEMAS",
    "DetectionDecoder",
    "FieldOffsets",
    "OutputSchema",
    "filter_by_score",
    "DEFAULT_CLASS_ATTRIBUTES",
    "ClassAttributes",
    "check_against_model",
    "load_class_attributes",
    "validate_class_table",
    "DetectorSession",
    "create_session",
    "open_session",
    "run_detection",
    "find_project_root",
    "resolve_path",
    "decode_image_bytes",
    "load_image",
    "to_bgr",
    "draw_detections",
    "format_label",
]
