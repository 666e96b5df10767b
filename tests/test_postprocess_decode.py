import unittest

import numpy as np

from detect_kit.classes import DEFAULT_CLASS_ATTRIBUTES
from detect_kit.errors import DecodeAnomaly, InferenceFailure
from detect_kit.postprocess import (
    END2END_NO_BATCH_INDEX,
    END2END_WITH_BATCH_INDEX,
    DetectionDecoder,
    FieldOffsets,
    OutputSchema,
    filter_by_score,
)
from detect_kit.types import Box, Detection, LetterboxTransform


def _transform(scale_x: float = 1.0, scale_y: float = 1.0) -> LetterboxTransform:
    return LetterboxTransform(
        source_width=640,
        source_height=640,
        square_side=640,
        scale_x=scale_x,
        scale_y=scale_y,
        model_input_side=640,
    )


class TestOutputSchema(unittest.TestCase):
    def test_offsets_must_fit_in_record(self) -> None:
        with self.assertRaises(ValueError):
            OutputSchema(record_stride=6, offsets=FieldOffsets(1, 2, 3, 4, 5, 6))

    def test_offsets_must_be_unique(self) -> None:
        with self.assertRaises(ValueError):
            OutputSchema(record_stride=7, offsets=FieldOffsets(1, 1, 3, 4, 5, 6))

    def test_validate_output_shape(self) -> None:
        END2END_WITH_BATCH_INDEX.validate_output_shape(["num_dets", 7])
        END2END_WITH_BATCH_INDEX.validate_output_shape([100, 7])
        END2END_WITH_BATCH_INDEX.validate_output_shape([1, "num_dets", 7])
        for bad in (["num_dets", 6], ["num_dets", "stride"], [7], [2, 100, 7]):
            with self.assertRaises(ValueError):
                END2END_WITH_BATCH_INDEX.validate_output_shape(bad)


class TestDetectionDecoder(unittest.TestCase):
    def setUp(self) -> None:
        self.decoder = DetectionDecoder(END2END_WITH_BATCH_INDEX, DEFAULT_CLASS_ATTRIBUTES)

    def test_corner_rows_rescaled(self) -> None:
        raw = np.array([[0, 0, 0, 100, 50, 1, 0.9]], dtype=np.float32)
        dets = self.decoder.decode(raw, _transform(scale_x=2.0, scale_y=1.0))
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].box, Box(x=0.0, y=0.0, width=200.0, height=50.0))
        self.assertEqual(dets[0].class_id, 1)
        self.assertAlmostEqual(dets[0].probability, 0.9, places=6)

    def test_display_scale_composes_with_letterbox_scale(self) -> None:
        raw = np.array([[0, 10, 20, 110, 70, 0, 0.5]], dtype=np.float32)
        dets = self.decoder.decode(raw, _transform(scale_x=2.0, scale_y=1.5), 0.5, 2.0)
        self.assertEqual(dets[0].box, Box(x=10.0, y=60.0, width=100.0, height=150.0))

    def test_same_input_decodes_identically(self) -> None:
        raw = np.array(
            [
                [0, 5, 6, 50, 60, 0, 0.7],
                [0, 1, 2, 3, 4, 2, 0.2],
            ],
            dtype=np.float32,
        )
        t = _transform(1.5, 1.0)
        first = self.decoder.decode(raw, t)
        second = self.decoder.decode(raw, t)
        self.assertEqual(first, second)
        self.assertEqual(len(first), 2)

    def test_row_order_preserved(self) -> None:
        raw = np.array(
            [
                [0, 0, 0, 10, 10, 2, 0.1],
                [0, 0, 0, 10, 10, 0, 0.9],
                [0, 0, 0, 10, 10, 1, 0.5],
            ],
            dtype=np.float32,
        )
        dets = self.decoder.decode(raw, _transform())
        self.assertEqual([d.class_id for d in dets], [2, 0, 1])

    def test_unknown_class_skipped_other_rows_kept(self) -> None:
        raw = np.array(
            [
                [0, 0, 0, 10, 10, 0, 0.9],
                [0, 0, 0, 10, 10, 999, 0.9],
                [0, 0, 0, 10, 10, 2, 0.8],
            ],
            dtype=np.float32,
        )
        with self.assertLogs("detect_kit.postprocess", level="WARNING") as logs:
            dets, anomalies = self.decoder.decode_with_anomalies(raw, _transform())
        self.assertEqual([d.class_id for d in dets], [0, 2])
        self.assertEqual(len(anomalies), 1)
        self.assertIsInstance(anomalies[0], DecodeAnomaly)
        self.assertEqual(anomalies[0].row_index, 1)
        self.assertEqual(anomalies[0].code, "decode_anomaly")
        self.assertIn("999", logs.output[0])

    def test_malformed_rows_are_anomalies(self) -> None:
        raw = np.array(
            [
                [0, 0, 0, 10, 10, 1.5, 0.9],  # non-integral class
                [0, 0, 0, 10, 10, 0, 1.5],  # score > 1
                [0, 20, 0, 10, 10, 0, 0.9],  # x1 < x0
                [0, np.nan, 0, 10, 10, 0, 0.9],
                [0, 0, 0, 10, 10, 0, 0.9],
            ],
            dtype=np.float32,
        )
        with self.assertLogs("detect_kit.postprocess", level="WARNING"):
            dets, anomalies = self.decoder.decode_with_anomalies(raw, _transform())
        self.assertEqual(len(dets), 1)
        self.assertEqual([a.row_index for a in anomalies], [0, 1, 2, 3])

    def test_bounds_check(self) -> None:
        raw = np.array(
            [
                [0, 0, 0, 100, 100, 0, 0.9],
                [0, 0, 0, 300, 100, 0, 0.9],  # beyond width
                [0, -5, 0, 100, 100, 0, 0.9],  # negative origin
                [0, 0, 0, 200.5, 100, 0, 0.9],  # within tolerance
            ],
            dtype=np.float32,
        )
        with self.assertLogs("detect_kit.postprocess", level="WARNING"):
            dets, anomalies = self.decoder.decode_with_anomalies(raw, _transform(), bounds=(200, 150))
        self.assertEqual(len(dets), 2)
        self.assertEqual([a.row_index for a in anomalies], [1, 2])

    def test_no_score_filtering(self) -> None:
        raw = np.array([[0, 0, 0, 10, 10, 0, 0.0], [0, 0, 0, 10, 10, 0, 0.01]], dtype=np.float32)
        self.assertEqual(len(self.decoder.decode(raw, _transform())), 2)

    def test_accepts_batched_and_flat_outputs(self) -> None:
        rows = np.array([[0, 1, 2, 3, 4, 0, 0.5], [0, 5, 6, 7, 8, 1, 0.6]], dtype=np.float32)
        expected = self.decoder.decode(rows, _transform())
        self.assertEqual(self.decoder.decode(rows[None, ...], _transform()), expected)
        self.assertEqual(self.decoder.decode(rows.reshape(-1), _transform()), expected)

    def test_empty_output(self) -> None:
        self.assertEqual(self.decoder.decode(np.zeros((0, 7), dtype=np.float32), _transform()), [])

    def test_bad_shapes_raise(self) -> None:
        with self.assertRaises(InferenceFailure):
            self.decoder.decode(np.zeros((3, 6), dtype=np.float32), _transform())
        with self.assertRaises(InferenceFailure):
            self.decoder.decode(np.zeros(10, dtype=np.float32), _transform())
        with self.assertRaises(InferenceFailure):
            self.decoder.decode(np.zeros((2, 3, 7), dtype=np.float32), _transform())

    def test_schema_without_batch_index(self) -> None:
        decoder = DetectionDecoder(END2END_NO_BATCH_INDEX, DEFAULT_CLASS_ATTRIBUTES)
        raw = np.array([[10, 20, 30, 60, 2, 0.75]], dtype=np.float32)
        dets = decoder.decode(raw, _transform())
        self.assertEqual(dets[0].class_id, 2)
        self.assertEqual(dets[0].box, Box(x=10.0, y=20.0, width=20.0, height=40.0))

    def test_custom_offsets(self) -> None:
        # [score, class_id, x0, y0, x1, y1]
        schema = OutputSchema(record_stride=6, offsets=FieldOffsets(x0=2, y0=3, x1=4, y1=5, class_id=1, score=0))
        decoder = DetectionDecoder(schema, DEFAULT_CLASS_ATTRIBUTES)
        dets = decoder.decode(np.array([[0.5, 1, 0, 0, 4, 8]], dtype=np.float32), _transform())
        self.assertEqual(dets[0].class_id, 1)
        self.assertEqual(dets[0].box.as_xyxy(), (0.0, 0.0, 4.0, 8.0))


class TestFilterByScore(unittest.TestCase):
    def test_threshold_keeps_order(self) -> None:
        box = Box(0, 0, 1, 1)
        dets = [Detection(0, 0.2, box), Detection(1, 0.8, box), Detection(2, 0.5, box)]
        kept = filter_by_score(dets, 0.5)
        self.assertEqual([d.class_id for d in kept], [1, 2])


if __name__ == "__main__":
    unittest.main()
