from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .errors import ModelUnavailable

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")

# Fallback colors (hex, RGB order) for classes listed without an explicit color.
PALETTE = (
    "#ff3838",
    "#ff9d97",
    "#ff701f",
    "#ffb21d",
    "#cfd231",
    "#48f90a",
    "#92cc17",
    "#3ddb86",
    "#1a9334",
    "#00d4bb",
    "#2c99a8",
    "#00c2ff",
    "#344593",
    "#6473ff",
    "#0018ec",
    "#8438ff",
    "#520085",
    "#cb38ff",
    "#ff95c8",
    "#ff37c7",
)


@dataclass(frozen=True)
class ClassAttributes:
    name: str
    color: str

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("class name must not be empty")
        if not _HEX_COLOR.match(self.color):
            raise ValueError(f"color must look like #rrggbb, got {self.color!r}")

    @property
    def rgb(self) -> Tuple[int, int, int]:
        value = self.color.lstrip("#")
        return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)

    @property
    def bgr(self) -> Tuple[int, int, int]:
        # OpenCV drawing expects BGR
        r, g, b = self.rgb
        return b, g, r


ClassTable = Mapping[int, ClassAttributes]

DEFAULT_CLASS_ATTRIBUTES: Dict[int, ClassAttributes] = {
    0: ClassAttributes(name="zebra", color="#ff355e"),
    1: ClassAttributes(name="zebroid", color="#66ff66"),
    2: ClassAttributes(name="horse", color="#33ddff"),
}


def palette_color(class_id: int) -> str:
    return PALETTE[class_id % len(PALETTE)]


def validate_class_table(table: ClassTable) -> None:
    """
    Class ids must be 0..N-1 without gaps, matching a detector's label order.
    """

    if not table:
        raise ValueError("class table is empty")
    ids = sorted(int(k) for k in table.keys())
    if ids != list(range(len(ids))):
        raise ValueError(f"class ids must be contiguous from 0, got {ids}")
    for cid, attrs in table.items():
        if not isinstance(attrs, ClassAttributes):
            raise ValueError(f"class {cid}: expected ClassAttributes, got {type(attrs).__name__}")


def _strip_value(value: str) -> str:
    return value.strip().strip("'").strip('"')


def load_class_attributes(metadata_path: str) -> Dict[int, ClassAttributes]:
    """
    Load the class table from the project's lightweight `Models/metadata.yaml`.

        names:
          0: zebra
          1: zebroid
        colors:
          0: "#ff355e"

    `colors` is optional per class; missing entries fall back to `PALETTE`.
    Parsed by hand so the project does not need PyYAML.
    """

    sections: Dict[str, Dict[int, str]] = {"names": {}, "colors": {}}
    current: Optional[str] = None

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.endswith(":") and line[:-1] in sections:
                current = line[:-1]
                continue
            if not raw[:1].isspace():
                # any other top-level key ends the current section
                current = None
                continue
            if current is None or ":" not in line:
                continue

            left, right = line.split(":", 1)
            left = left.strip()
            if not left.isdigit():
                continue
            sections[current][int(left)] = _strip_value(right)

    names = sections["names"]
    colors = sections["colors"]
    unknown_colors = sorted(set(colors) - set(names))
    if unknown_colors:
        raise ValueError(f"{metadata_path}: colors given for unknown class ids {unknown_colors}")

    table = {
        cid: ClassAttributes(name=name, color=colors.get(cid, palette_color(cid)))
        for cid, name in sorted(names.items())
    }
    validate_class_table(table)
    return table


def check_against_model(
    table: ClassTable,
    model_names: Optional[Sequence[str]],
    *,
    strict: bool = False,
) -> bool:
    """
    Compare the class table with the label list embedded in the model, if any.

    A mismatch does not crash anything downstream, it silently mislabels boxes,
    so it is reported here. Returns True when consistent (or nothing to compare).
    """

    if not model_names:
        logger.debug("Model carries no class names; skipping class table check")
        return True

    problems = []
    if len(model_names) != len(table):
        problems.append(f"model has {len(model_names)} classes, table has {len(table)}")
    for cid, model_name in enumerate(model_names):
        attrs = table.get(cid)
        if attrs is not None and attrs.name.strip().lower() != str(model_name).strip().lower():
            problems.append(f"class {cid}: model says {model_name!r}, table says {attrs.name!r}")

    if not problems:
        return True

    message = "Class table does not match model labels: " + "; ".join(problems)
    if strict:
        raise ModelUnavailable(message)
    logger.warning(message)
    return False
