import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np

from detect_kit.errors import InvalidInput
from detect_kit.image_io import decode_image_bytes, load_image, to_bgr


class TestLoadImage(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.dir = Path(tmpdir.name)

    def test_jpeg_loads_as_bgr(self) -> None:
        path = self.dir / "photo.jpg"
        self.assertTrue(cv2.imwrite(str(path), np.full((48, 64, 3), 200, dtype=np.uint8)))
        image, order = load_image(path)
        self.assertEqual(order, "BGR")
        self.assertEqual(image.shape, (48, 64, 3))

    def test_png_rejected_by_default(self) -> None:
        path = self.dir / "photo.png"
        cv2.imwrite(str(path), np.zeros((8, 8, 3), dtype=np.uint8))
        with self.assertRaises(InvalidInput):
            load_image(path)

    def test_png_with_alpha_when_accepted(self) -> None:
        path = self.dir / "photo.png"
        cv2.imwrite(str(path), np.full((8, 10, 4), 255, dtype=np.uint8))
        image, order = load_image(path, accepted_types=("image/png",))
        self.assertEqual(order, "BGRA")
        self.assertEqual(image.shape, (8, 10, 4))

    def test_empty_file(self) -> None:
        path = self.dir / "empty.jpg"
        path.write_bytes(b"")
        with self.assertRaises(InvalidInput) as ctx:
            load_image(path)
        self.assertEqual(ctx.exception.code, "invalid_input")

    def test_missing_file(self) -> None:
        with self.assertRaises(InvalidInput):
            load_image(self.dir / "nope.jpg")

    def test_garbage_bytes(self) -> None:
        with self.assertRaises(InvalidInput):
            decode_image_bytes(b"definitely not a jpeg")


class TestToBgr(unittest.TestCase):
    def test_bgra_drops_alpha(self) -> None:
        img = np.zeros((4, 4, 4), dtype=np.uint8)
        img[:, :, 2] = 255
        out = to_bgr(img, "BGRA")
        self.assertEqual(out.shape, (4, 4, 3))
        self.assertTrue(np.all(out[:, :, 2] == 255))

    def test_gray(self) -> None:
        out = to_bgr(np.full((3, 5), 9, dtype=np.uint8), "GRAY")
        self.assertEqual(out.shape, (3, 5, 3))

    def test_bgr_is_a_copy(self) -> None:
        img = np.zeros((2, 2, 3), dtype=np.uint8)
        out = to_bgr(img, "BGR")
        out[:] = 1
        self.assertFalse(img.any())


if __name__ == "__main__":
    unittest.main()
