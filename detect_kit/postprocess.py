from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .classes import ClassTable
from .errors import DecodeAnomaly, InferenceFailure
from .types import Box, Detection, LetterboxTransform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldOffsets:
    """
    Position of each field inside one output record.
    """

    x0: int
    y0: int
    x1: int
    y1: int
    class_id: int
    score: int

    def as_tuple(self) -> Tuple[int, int, int, int, int, int]:
        return self.x0, self.y0, self.x1, self.y1, self.class_id, self.score


@dataclass(frozen=True)
class OutputSchema:
    """
    Row layout of an end-to-end detector output: `record_stride` floats per row,
    corners (x0, y0, x1, y1) in model-input pixels plus class id and score.

    The layout is model specific and is never guessed from the data.
    """

    record_stride: int
    offsets: FieldOffsets

    def __post_init__(self) -> None:
        if self.record_stride <= 0:
            raise ValueError("record_stride must be > 0")
        positions = self.offsets.as_tuple()
        if len(set(positions)) != len(positions):
            raise ValueError(f"field offsets must be unique, got {positions}")
        if min(positions) < 0 or max(positions) >= self.record_stride:
            raise ValueError(f"field offsets {positions} do not fit in a record of {self.record_stride}")

    def validate_output_shape(self, shape: Sequence[object]) -> None:
        """
        Check the model's declared output shape once, at session creation.

        The row dimension may be symbolic (str/None); the last dimension must
        equal `record_stride`. A leading batch axis of 1 is accepted.
        """

        dims = list(shape)
        if len(dims) == 3:
            if isinstance(dims[0], int) and dims[0] != 1:
                raise ValueError(f"Batch > 1 outputs are not supported, got {list(shape)}")
            dims = dims[1:]
        if len(dims) != 2:
            raise ValueError(f"Expected a 2-D output [N, {self.record_stride}], got {list(shape)}")
        stride = dims[1]
        if not isinstance(stride, int):
            raise ValueError(f"Output record dimension must be static, got {stride!r}")
        if stride != self.record_stride:
            raise ValueError(f"Model output has {stride} fields per row, schema expects {self.record_stride}")


# YOLOv7 end-to-end ONNX export: [batch_id, x0, y0, x1, y1, class_id, score]
END2END_WITH_BATCH_INDEX = OutputSchema(record_stride=7, offsets=FieldOffsets(1, 2, 3, 4, 5, 6))
# Same export without the leading batch index
END2END_NO_BATCH_INDEX = OutputSchema(record_stride=6, offsets=FieldOffsets(0, 1, 2, 3, 4, 5))

SCHEMAS = {
    "end2end": END2END_WITH_BATCH_INDEX,
    "end2end-no-batch": END2END_NO_BATCH_INDEX,
}


class DetectionDecoder:
    """
    Turns the raw output tensor into Detections in image space.

    Pure mapping: every row becomes a Detection (in row order) unless it is
    anomalous, in which case it is logged and skipped. No score filtering and
    no NMS here.
    """

    def __init__(self, schema: OutputSchema, class_table: ClassTable, *, bounds_tolerance: float = 1.0):
        if bounds_tolerance < 0:
            raise ValueError("bounds_tolerance must be >= 0")
        self.schema = schema
        self.class_table = class_table
        self.bounds_tolerance = float(bounds_tolerance)

    def rows(self, raw: np.ndarray) -> np.ndarray:
        """
        View the raw output as (N, record_stride).
        """

        p = np.asarray(raw, dtype=np.float64)
        stride = self.schema.record_stride
        if p.ndim > 3:
            raise InferenceFailure(f"Unsupported output shape: {p.shape}")
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise InferenceFailure(f"Batch > 1 is not supported (got shape {p.shape}).")
            p = p[0]
        if p.ndim == 2 and p.shape[1] != stride:
            raise InferenceFailure(f"Output rows have {p.shape[1]} fields, expected {stride}.")
        if p.size % stride != 0:
            raise InferenceFailure(f"Output of size {p.size} is not a multiple of the record stride {stride}.")
        return p.reshape(-1, stride)

    def decode(
        self,
        raw: np.ndarray,
        transform: LetterboxTransform,
        display_scale_x: float = 1.0,
        display_scale_y: float = 1.0,
        bounds: Optional[Tuple[float, float]] = None,
    ) -> List[Detection]:
        detections, _ = self.decode_with_anomalies(raw, transform, display_scale_x, display_scale_y, bounds)
        return detections

    def decode_with_anomalies(
        self,
        raw: np.ndarray,
        transform: LetterboxTransform,
        display_scale_x: float = 1.0,
        display_scale_y: float = 1.0,
        bounds: Optional[Tuple[float, float]] = None,
    ) -> Tuple[List[Detection], List[DecodeAnomaly]]:
        """
        Args:
            raw: model output, (N, stride), (1, N, stride) or flat
            transform: letterbox transform from preprocessing (scale_x, scale_y)
            display_scale_x/y: extra factor of the drawing surface, composed
                multiplicatively with the letterbox scale
            bounds: optional (width, height) of the target surface; boxes outside
                it (beyond `bounds_tolerance`) are anomalies
        """

        kx = transform.scale_x * display_scale_x
        ky = transform.scale_y * display_scale_y

        detections: List[Detection] = []
        anomalies: List[DecodeAnomaly] = []
        for idx, row in enumerate(self.rows(raw)):
            det_or_problem = self._decode_row(row, kx, ky, bounds)
            if isinstance(det_or_problem, str):
                anomaly = DecodeAnomaly(f"row {idx}: {det_or_problem}", row_index=idx, row=row)
                logger.warning("Skipping output row %d: %s", idx, det_or_problem)
                anomalies.append(anomaly)
                continue
            detections.append(det_or_problem)

        return detections, anomalies

    def _decode_row(self, row: np.ndarray, kx: float, ky: float, bounds: Optional[Tuple[float, float]]):
        o = self.schema.offsets
        x0, y0, x1, y1 = float(row[o.x0]), float(row[o.y0]), float(row[o.x1]), float(row[o.y1])
        raw_cls, score = float(row[o.class_id]), float(row[o.score])

        if not all(math.isfinite(v) for v in (x0, y0, x1, y1, raw_cls, score)):
            return "non-finite value"
        if not raw_cls.is_integer():
            return f"class id {raw_cls} is not an integer"
        class_id = int(raw_cls)
        if class_id not in self.class_table:
            return f"unknown class id {class_id}"
        if not 0.0 <= score <= 1.0:
            return f"score {score} outside [0, 1]"
        if x1 < x0 or y1 < y0:
            return f"inverted corners ({x0}, {y0}, {x1}, {y1})"

        box = Box(x=x0 * kx, y=y0 * ky, width=(x1 - x0) * kx, height=(y1 - y0) * ky)
        if bounds is not None:
            problem = self._out_of_bounds(box, bounds)
            if problem:
                return problem
        return Detection(class_id=class_id, probability=score, box=box)

    def _out_of_bounds(self, box: Box, bounds: Tuple[float, float]) -> Optional[str]:
        tol = self.bounds_tolerance
        max_w, max_h = bounds
        if box.x < -tol or box.y < -tol:
            return f"box origin ({box.x:.1f}, {box.y:.1f}) is negative"
        if box.x + box.width > max_w + tol or box.y + box.height > max_h + tol:
            return f"box ({box.x:.1f}, {box.y:.1f}, {box.width:.1f}, {box.height:.1f}) exceeds {max_w}x{max_h}"
        return None


def filter_by_score(detections: Iterable[Detection], threshold: float) -> List[Detection]:
    """
    Caller-side confidence threshold; keeps order.
    """

    return [d for d in detections if d.probability >= threshold]
