from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Sequence, Tuple, Union

import numpy as np

from .errors import InvalidInput

PathLike = Union[str, Path]

DEFAULT_ACCEPTED_TYPES = ("image/jpeg",)


def decode_image_bytes(data: bytes) -> Tuple[np.ndarray, str]:
    """
    Decode encoded image bytes with alpha preserved.

    Returns the array and its channel order (GRAY, BGR or BGRA, as OpenCV
    decodes them).
    """

    if not data:
        raise InvalidInput("Image file is empty.")

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for image decoding. Install with `pip install opencv-python`.") from e

    buf = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
    if image is None:
        raise InvalidInput("Could not decode image.")
    if image.dtype != np.uint8:
        # 16-bit PNG/TIFF -> 8-bit
        image = (image / 257).astype(np.uint8)

    if image.ndim == 2:
        order = "GRAY"
    elif image.shape[2] == 4:
        order = "BGRA"
    elif image.shape[2] == 3:
        order = "BGR"
    else:
        raise InvalidInput(f"Unsupported channel count: {image.shape[2]}")

    if image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidInput("Image has zero area.")
    return image, order


def load_image(path: PathLike, accepted_types: Sequence[str] = DEFAULT_ACCEPTED_TYPES) -> Tuple[np.ndarray, str]:
    """
    Read an image file after checking its type against `accepted_types`.

    The type comes from the file name, like a browser file picker's `type`.
    """

    p = Path(path)
    mime, _ = mimetypes.guess_type(p.name)
    if accepted_types and mime not in accepted_types:
        raise InvalidInput(f"{p.name}: file type {mime or 'unknown'} is not accepted ({', '.join(accepted_types)}).")
    if not p.is_file():
        raise InvalidInput(f"Image not found: {p}")

    try:
        data = p.read_bytes()
    except OSError as exc:
        raise InvalidInput(f"Cannot read {p}: {exc}") from exc
    return decode_image_bytes(data)


def to_bgr(image: np.ndarray, order: str) -> np.ndarray:
    """
    3-channel BGR copy of a decoded image, suitable as a drawing surface.
    """

    import cv2  # type: ignore

    if order == "BGR":
        return image.copy()
    codes = {
        "GRAY": cv2.COLOR_GRAY2BGR,
        "BGRA": cv2.COLOR_BGRA2BGR,
        "RGB": cv2.COLOR_RGB2BGR,
        "RGBA": cv2.COLOR_RGBA2BGR,
    }
    if order not in codes:
        raise ValueError(f"Unsupported channel order: {order!r}")
    return cv2.cvtColor(image, codes[order])
