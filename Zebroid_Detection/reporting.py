"""
JSON artifacts of a detection run: one report per image plus a run summary.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from detect_kit.classes import ClassTable
from detect_kit.types import Detection


@dataclass
class ImageOutcome:
    image: str
    state: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    detections: List[Detection] = field(default_factory=list)
    overlay_path: Optional[str] = None
    artifact_name: Optional[str] = None


def artifact_names(images: Sequence[Path]) -> List[str]:
    """
    File-name stems for per-image artifacts, unique within one run.

    The first image with a given stem keeps it; later ones get `-2`, `-3`, ...
    Comparison ignores case so the names also stay apart on case-insensitive
    file systems.
    """

    used = set()
    names: List[str] = []
    for image in images:
        stem = Path(image).stem
        name, n = stem, 1
        while name.casefold() in used:
            n += 1
            name = f"{stem}-{n}"
        used.add(name.casefold())
        names.append(name)
    return names


def detection_to_dict(det: Detection, class_table: ClassTable) -> Dict[str, Any]:
    attrs = class_table[det.class_id]
    return {
        "class_id": det.class_id,
        "class_name": attrs.name,
        "probability": round(det.probability, 6),
        "box": {
            "x": round(det.box.x, 3),
            "y": round(det.box.y, 3),
            "width": round(det.box.width, 3),
            "height": round(det.box.height, 3),
        },
    }


def outcome_to_dict(outcome: ImageOutcome, class_table: ClassTable) -> Dict[str, Any]:
    return {
        "image": outcome.image,
        "state": outcome.state,
        "error_code": outcome.error_code,
        "error_message": outcome.error_message,
        "overlay": outcome.overlay_path,
        "detections": [detection_to_dict(d, class_table) for d in outcome.detections],
    }


def write_image_report(*, out_dir: Path, outcome: ImageOutcome, class_table: ClassTable) -> Path:
    report_dir = out_dir / "reports"
    report_dir.mkdir(parents=True, exist_ok=True)
    name = outcome.artifact_name or Path(outcome.image).stem
    path = report_dir / f"{name}.detections.json"
    path.write_text(json.dumps(outcome_to_dict(outcome, class_table), indent=2, sort_keys=True), encoding="utf-8")
    return path


def summarize(outcomes: Sequence[ImageOutcome], class_table: ClassTable) -> Dict[str, Any]:
    states = Counter(o.state for o in outcomes)
    errors = Counter(o.error_code for o in outcomes if o.error_code)
    per_class = Counter(class_table[d.class_id].name for o in outcomes for d in o.detections)
    return {
        "images": len(outcomes),
        "states": dict(sorted(states.items())),
        "errors": dict(sorted(errors.items())),
        "detections_per_class": dict(sorted(per_class.items())),
    }


def write_run_summary(
    *,
    out_dir: Path,
    outcomes: Sequence[ImageOutcome],
    class_table: ClassTable,
    run_config: Dict[str, Any],
) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    payload = {"run_config": run_config, "summary": summarize(outcomes, class_table)}
    path = out_dir / "run_summary.json"
    path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return path
