from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import cv2
from tqdm import tqdm

from detect_kit import (
    DEFAULT_CLASS_ATTRIBUTES,
    SCHEMAS,
    DetectionError,
    DetectorSession,
    InvalidInput,
    ModelUnavailable,
    create_session,
    draw_detections,
    filter_by_score,
    load_class_attributes,
    load_image,
    resolve_path,
    run_detection,
    to_bgr,
)
from detect_kit.classes import ClassTable

from .logging_setup import setup_logging
from .reporting import ImageOutcome, artifact_names, write_image_report, write_run_summary
from .run_config import apply_run_config, collect_cli_dests, load_run_config
from .view_state import ViewEvent, ViewState, ViewStateMachine

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "Models/best_300.onnx"
DEFAULT_METADATA = "Models/metadata.yaml"

EXIT_OK = 0
EXIT_MODEL_UNAVAILABLE = 1
EXIT_IMAGE_ERRORS = 2
EXIT_OUTPUT_FAILURE = 3

# error code for overlays and reports that could not be written
OUTPUT_FAILURE = "output_failure"


def _csv(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Detect zebras, zebroids and horses in images and draw the boxes.")
    parser.add_argument("images", nargs="*", default=[], help="Image files or directories.")
    parser.add_argument("--config", default=None, help="JSON run config; explicit CLI flags take precedence.")
    parser.add_argument("--model", default=DEFAULT_MODEL, help="Path to the end-to-end ONNX detector.")
    parser.add_argument("--metadata", default=DEFAULT_METADATA, help="Class table (names/colors) metadata file.")
    parser.add_argument(
        "--schema",
        default="end2end",
        choices=sorted(SCHEMAS),
        help="Row layout of the model output.",
    )
    parser.add_argument("--imgsz", type=int, default=None, help="Model input side (default: from the model).")
    parser.add_argument("--conf", type=float, default=0.0, help="Drop detections below this probability.")
    parser.add_argument(
        "--accept",
        type=_csv,
        default=["image/jpeg"],
        help='Comma-separated accepted MIME types, e.g. "image/jpeg,image/png".',
    )
    parser.add_argument(
        "--onnx-providers",
        type=_csv,
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--strict-classes", action="store_true", help="Fail if the class table disagrees with the model.")
    parser.add_argument("--out-dir", default="out", help="Where overlays and JSON reports are written.")
    parser.add_argument("--no-overlay", action="store_true", help="Only write JSON reports.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    return parser


def collect_images(paths: Sequence[str]) -> List[Path]:
    """
    Expand directories (non-recursive, sorted); files are kept even if their type
    is wrong so the rejection shows up in the report.
    """

    images: List[Path] = []
    for raw in paths:
        p = Path(raw)
        if p.is_dir():
            images.extend(sorted(c for c in p.iterdir() if c.is_file()))
        else:
            images.append(p)
    return images


def process_image(
    path: Path,
    *,
    session: DetectorSession,
    machine: ViewStateMachine,
    class_table: ClassTable,
    accepted_types: Sequence[str],
    conf: float = 0.0,
    out_dir: Optional[Path] = None,
    overlay: bool = True,
    artifact_name: Optional[str] = None,
) -> ImageOutcome:
    name = artifact_name or path.stem
    outcome = ImageOutcome(image=str(path), state=machine.state.value, artifact_name=name)

    def _fail(event: ViewEvent, code: str, message: str) -> ImageOutcome:
        machine.dispatch(event, error_code=code)
        outcome.state, outcome.error_code, outcome.error_message = machine.state.value, code, message
        return outcome

    try:
        image, order = load_image(path, accepted_types)
    except InvalidInput as exc:
        logger.error("Cannot process %s: %s", path, exc.message)
        return _fail(ViewEvent.FILE_REJECTED, exc.code, exc.message)

    machine.dispatch(ViewEvent.FILE_SELECTED)
    machine.dispatch(ViewEvent.STARTED)
    try:
        detections = run_detection(image, session, source_order=order)
    except DetectionError as exc:
        logger.error("Detection failed for %s (%s): %s", path, exc.code, exc.message)
        return _fail(ViewEvent.FAILED, exc.code, exc.message)

    outcome.detections = filter_by_score(detections, conf)
    if overlay and out_dir is not None:
        try:
            outcome.overlay_path = str(_write_overlay(out_dir, name, to_bgr(image, order), outcome.detections, class_table))
        except (OSError, RuntimeError, cv2.error) as exc:
            logger.error("Cannot write overlay for %s: %s", path, exc)
            return _fail(ViewEvent.FAILED, OUTPUT_FAILURE, str(exc))

    machine.dispatch(ViewEvent.SUCCEEDED)
    outcome.state = machine.state.value
    logger.info("%s: %d detection(s)", path.name, len(outcome.detections))
    return outcome


def _write_overlay(out_dir: Path, name: str, image_bgr, detections, class_table: ClassTable) -> Path:
    canvas = draw_detections(image_bgr, detections, class_table)
    overlay_dir = out_dir / "overlays"
    overlay_dir.mkdir(parents=True, exist_ok=True)
    overlay_path = overlay_dir / f"{name}.jpg"
    if not cv2.imwrite(str(overlay_path), canvas):
        raise RuntimeError(f"Failed to write overlay image: {overlay_path}")
    return overlay_path


def _load_class_table(metadata: Optional[str]) -> ClassTable:
    if not metadata:
        return DEFAULT_CLASS_ATTRIBUTES
    path = resolve_path(metadata)
    if not path.exists():
        logger.warning("Metadata %s not found, using the built-in class table", path)
        return DEFAULT_CLASS_ATTRIBUTES
    return load_class_attributes(str(path))


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.config:
        payload = load_run_config(Path(args.config))
        apply_run_config(args=args, payload=payload, cli_dests=collect_cli_dests(parser, argv), parser=parser)

    setup_logging(args.log_level)
    if not args.images:
        parser.error("no images given (positional or via run config 'images')")
    if args.imgsz is not None and args.imgsz < 32:
        parser.error("--imgsz must be >= 32")
    if args.schema not in SCHEMAS:
        parser.error(f"unknown schema {args.schema!r}, expected one of {sorted(SCHEMAS)}")

    class_table = _load_class_table(args.metadata)
    machine = ViewStateMachine(
        listener=lambda prev, event, cur: logger.debug("view %s --%s--> %s", prev.value, event.value, cur.value)
    )

    try:
        session = asyncio.run(
            create_session(
                args.model,
                schema=SCHEMAS[args.schema],
                class_table=class_table,
                model_input_side=args.imgsz,
                onnx_providers=args.onnx_providers,
                strict_classes=args.strict_classes,
            )
        )
    except ModelUnavailable as exc:
        logger.error("Model unavailable: %s", exc.message)
        return EXIT_MODEL_UNAVAILABLE
    machine.dispatch(ViewEvent.READY)

    out_dir = Path(args.out_dir)
    images = collect_images(args.images)
    outcomes: List[ImageOutcome] = []
    try:
        for path, name in tqdm(zip(images, artifact_names(images)), total=len(images), desc="detect", unit="img"):
            outcome = process_image(
                path,
                session=session,
                machine=machine,
                class_table=class_table,
                accepted_types=args.accept,
                conf=args.conf,
                out_dir=out_dir,
                overlay=not args.no_overlay,
                artifact_name=name,
            )
            try:
                write_image_report(out_dir=out_dir, outcome=outcome, class_table=class_table)
            except OSError as exc:
                logger.error("Cannot write report for %s: %s", path, exc)
                if outcome.error_code is None:
                    outcome.state = ViewState.ERROR.value
                    outcome.error_code, outcome.error_message = OUTPUT_FAILURE, str(exc)
            outcomes.append(outcome)
    finally:
        session.close()

    run_config: Dict[str, object] = {k: v for k, v in vars(args).items() if k != "config"}
    try:
        summary_path = write_run_summary(out_dir=out_dir, outcomes=outcomes, class_table=class_table, run_config=run_config)
    except OSError as exc:
        logger.error("Cannot write run summary to %s: %s", out_dir, exc)
        return EXIT_OUTPUT_FAILURE
    logger.info("Wrote %s", summary_path)

    if any(o.state == ViewState.ERROR.value for o in outcomes):
        return EXIT_IMAGE_ERRORS
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
