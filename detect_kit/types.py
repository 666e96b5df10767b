from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class Box:
    """
    Axis-aligned box as top-left corner + size, in pixels of whatever surface
    the decoder was asked to map into (source image by default).
    """

    x: float
    y: float
    width: float
    height: float

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.width, self.y + self.height

    def as_xywh(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.width, self.height


@dataclass(frozen=True)
class Detection:
    """
    Decoded detection: class id from the class-attribute table, model score
    and a box in image space.
    """

    class_id: int
    probability: float
    box: Box

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.box.as_xyxy()


@dataclass(frozen=True)
class LetterboxTransform:
    """
    Mapping from model-input space back to the source image.

    The source is padded on the bottom/right into a `square_side` square and then
    resized to `model_input_side`, so inverting it is purely multiplicative.
    """

    source_width: int
    source_height: int
    square_side: int
    scale_x: float
    scale_y: float
    model_input_side: int

    @classmethod
    def for_size(cls, width: int, height: int, model_input_side: int) -> "LetterboxTransform":
        side = max(width, height)
        return cls(
            source_width=width,
            source_height=height,
            square_side=side,
            scale_x=side / width,
            scale_y=side / height,
            model_input_side=model_input_side,
        )

    @property
    def pad_right(self) -> int:
        return self.square_side - self.source_width

    @property
    def pad_bottom(self) -> int:
        return self.square_side - self.source_height

    @property
    def model_to_source(self) -> float:
        # model pixel -> padded-square pixel
        return self.square_side / self.model_input_side
