import argparse

import cv2

from detect_kit import (
    SCHEMAS,
    DetectionError,
    draw_detections,
    filter_by_score,
    load_class_attributes,
    load_image,
    open_session,
    run_detection,
    to_bgr,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Run detection on one image and visualize boxes + labels.")
    parser.add_argument("--image", default="Media/zebra.jpg", help="Path to an input image.")
    parser.add_argument("--model", default="Models/best_300.onnx", help="Path to the end-to-end ONNX model.")
    parser.add_argument("--metadata", default="Models/metadata.yaml", help="Path to class metadata (names/colors).")
    parser.add_argument("--schema", default="end2end", choices=sorted(SCHEMAS), help="Row layout of the model output.")
    parser.add_argument("--conf", type=float, default=0.0, help="Confidence threshold.")
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--out", default=None, help="Optional output path to save the visualization.")
    args = parser.parse_args()

    class_table = load_class_attributes(args.metadata)
    session = open_session(args.model, schema=SCHEMAS[args.schema], class_table=class_table)

    img, order = load_image(args.image, accepted_types=())
    try:
        detections = filter_by_score(run_detection(img, session, source_order=order), args.conf)
    except DetectionError as exc:
        print(f"{exc.code}: {exc.message}")
        return 1

    vis = draw_detections(to_bgr(img, order), detections, class_table)
    if args.out:
        ok = cv2.imwrite(args.out, vis)
        if not ok:
            raise RuntimeError(f"Failed to write output image: {args.out}")

    if args.show:
        cv2.imshow("detections", vis)
        cv2.waitKey(0)
        cv2.destroyAllWindows()

    for det in detections:
        print(class_table[det.class_id].name, det.probability, det.box.as_xywh())

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
