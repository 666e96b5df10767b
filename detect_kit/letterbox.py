from typing import Tuple

import numpy as np

from .errors import InvalidInput
from .types import LetterboxTransform


CHANNEL_ORDERS = ("GRAY", "BGR", "BGRA", "RGB", "RGBA")
MODEL_ORDERS = ("RGB", "BGR")

# (source order, model order) -> OpenCV conversion code name; missing pair means no-op.
_CONVERSIONS = {
    ("GRAY", "RGB"): "COLOR_GRAY2RGB",
    ("GRAY", "BGR"): "COLOR_GRAY2BGR",
    ("BGR", "RGB"): "COLOR_BGR2RGB",
    ("BGRA", "RGB"): "COLOR_BGRA2RGB",
    ("BGRA", "BGR"): "COLOR_BGRA2BGR",
    ("RGB", "BGR"): "COLOR_RGB2BGR",
    ("RGBA", "RGB"): "COLOR_RGBA2RGB",
    ("RGBA", "BGR"): "COLOR_RGBA2BGR",
}

_EXPECTED_CHANNELS = {"GRAY": 1, "BGR": 3, "RGB": 3, "BGRA": 4, "RGBA": 4}


def _cv2():
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for preprocessing. Install with `pip install opencv-python`.") from e
    return cv2


def check_image(image: np.ndarray, source_order: str = "BGR") -> Tuple[int, int]:
    """
    Validate an image array before any OpenCV work and return its (width, height).
    """

    if source_order not in CHANNEL_ORDERS:
        raise ValueError(f"Unsupported source channel order: {source_order!r}")
    if image is None or not hasattr(image, "shape"):
        raise InvalidInput("Image must be a NumPy array.")
    if image.ndim not in (2, 3):
        raise InvalidInput(f"Expected image shape (H, W) or (H, W, C), got {image.shape}")
    h, w = image.shape[:2]
    if h == 0 or w == 0:
        raise InvalidInput(f"Image has zero area ({w}x{h}).")
    if image.dtype != np.uint8:
        raise InvalidInput(f"Expected 8-bit image, got dtype {image.dtype}")

    channels = 1 if image.ndim == 2 else image.shape[2]
    if channels != _EXPECTED_CHANNELS[source_order]:
        raise InvalidInput(f"Image has {channels} channel(s), which does not match source order {source_order}.")
    return int(w), int(h)


def to_model_channels(image: np.ndarray, source_order: str, model_order: str = "RGB") -> np.ndarray:
    """
    Drop alpha and reorder channels into the order the model was trained on.
    """

    if model_order not in MODEL_ORDERS:
        raise ValueError(f"Unsupported model channel order: {model_order!r}")
    code = _CONVERSIONS.get((source_order, model_order))
    if code is None:
        return image
    cv2 = _cv2()
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    return cv2.cvtColor(image, getattr(cv2, code))


def pad_to_square(image: np.ndarray, color: Tuple[int, int, int] = (0, 0, 0)) -> np.ndarray:
    """
    Pad `image` with a constant color so it becomes max(h, w) square.

    Padding goes on the right and bottom edges only, which keeps the top-left
    origin fixed and makes the inverse mapping offset-free.
    """

    cv2 = _cv2()
    h, w = image.shape[:2]
    side = max(h, w)
    if side == h and side == w:
        return image
    return cv2.copyMakeBorder(image, 0, side - h, 0, side - w, cv2.BORDER_CONSTANT, value=color)


def preprocess(
    image: np.ndarray,
    model_input_side: int = 640,
    *,
    source_order: str = "BGR",
    model_order: str = "RGB",
    pad_color: Tuple[int, int, int] = (0, 0, 0),
) -> Tuple[np.ndarray, LetterboxTransform]:
    """
    Letterbox an image into a model tensor.

    Steps: channel conversion -> bottom/right pad to square -> bilinear resize
    (cv2.INTER_LINEAR) to `model_input_side` -> /255 -> HWC to CHW + batch axis.

    Returns:
        tensor: float32, shape (1, 3, side, side), C-contiguous
        transform: scale factors to map model-space boxes back to the source
    """

    if model_input_side <= 0:
        raise ValueError("model_input_side must be > 0")
    width, height = check_image(image, source_order)
    transform = LetterboxTransform.for_size(width, height, model_input_side)

    cv2 = _cv2()
    converted = padded = resized = None
    try:
        converted = to_model_channels(image, source_order, model_order)
        padded = pad_to_square(converted, pad_color)
        if padded.shape[0] != model_input_side:
            resized = cv2.resize(padded, (model_input_side, model_input_side), interpolation=cv2.INTER_LINEAR)
        else:
            resized = padded

        blob = resized.astype(np.float32) / 255.0
        tensor = np.ascontiguousarray(np.transpose(blob, (2, 0, 1))[None, ...])
    finally:
        # intermediates are released on success and on error
        del converted, padded, resized

    return tensor, transform
