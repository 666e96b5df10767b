from __future__ import annotations

from typing import Iterable

import numpy as np

from .classes import ClassAttributes, ClassTable
from .types import Detection


def format_label(attrs: ClassAttributes, probability: float) -> str:
    # half-up: 0.125 -> 13%
    return f"{attrs.name} - {int(probability * 100 + 0.5)}%"


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    class_table: ClassTable,
    *,
    box_thickness: int = 5,
    font_scale: float = 0.6,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw box outlines + "<name> - <pct>%" labels on a copy of a BGR image.

    Detections are drawn in order, so later ones end up on top. The label sits
    at the top-left corner of the box. The input array is left untouched.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]

    for det in detections:
        attrs = class_table[det.class_id]
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))

        color = attrs.bgr
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = format_label(attrs, det.probability)
        (_, th), _ = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # baseline at the box corner; pushed down when it would leave the image
        y_text = max(y1i, th)
        cv2.putText(
            out,
            label,
            (x1i, y_text),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            color,
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
