import json
import tempfile
import unittest
from pathlib import Path

from Zebroid_Detection.run_config import apply_run_config, collect_cli_dests, load_run_config
from Zebroid_Detection.runner import build_parser


class TestRunConfig(unittest.TestCase):
    def _write(self, payload) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "run.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def _apply(self, argv, payload):
        parser = build_parser()
        args = parser.parse_args(argv)
        apply_run_config(args=args, payload=payload, cli_dests=collect_cli_dests(parser, argv), parser=parser)
        return args

    def test_config_fills_defaults(self) -> None:
        args = self._apply(
            [],
            {
                "images": ["a.jpg", "b.jpg"],
                "conf": 0.4,
                "imgsz": 640,
                "accept": "image/png",
                "onnx_providers": ["CPUExecutionProvider"],
                "strict_classes": True,
            },
        )
        self.assertEqual(args.images, ["a.jpg", "b.jpg"])
        self.assertEqual(args.conf, 0.4)
        self.assertEqual(args.imgsz, 640)
        self.assertEqual(args.accept, ["image/png"])
        self.assertEqual(args.onnx_providers, ["CPUExecutionProvider"])
        self.assertTrue(args.strict_classes)

    def test_cli_wins(self) -> None:
        args = self._apply(["x.jpg", "--conf", "0.7", "--model=cli.onnx"], {"images": ["a.jpg"], "conf": 0.1, "model": "cfg.onnx"})
        self.assertEqual(args.images, ["x.jpg"])
        self.assertEqual(args.conf, 0.7)
        self.assertEqual(args.model, "cli.onnx")

    def test_unknown_key_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self._apply([], {"video": "a.mp4"})

    def test_config_key_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self._apply([], {"config": "other.json"})

    def test_wrong_types_rejected(self) -> None:
        for payload in ({"imgsz": 640.5}, {"imgsz": True}, {"conf": "high"}, {"no_overlay": 1}, {"model": ""}):
            with self.assertRaises(ValueError):
                self._apply([], payload)

    def test_load_run_config(self) -> None:
        path = self._write({"conf": 0.2})
        self.assertEqual(load_run_config(path), {"conf": 0.2})

    def test_load_rejects_non_object(self) -> None:
        with self.assertRaises(ValueError):
            load_run_config(self._write([1, 2]))
        with self.assertRaises(FileNotFoundError):
            load_run_config(Path(tempfile.gettempdir()) / "does-not-exist-run.json")


if __name__ == "__main__":
    unittest.main()
