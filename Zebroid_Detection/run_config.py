from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, List, Sequence


STR_KEYS = {"model", "metadata", "schema", "out_dir", "log_level"}
INT_KEYS = {"imgsz"}
FLOAT_KEYS = {"conf"}
BOOL_KEYS = {"strict_classes", "no_overlay"}
LIST_KEYS = {"images", "accept", "onnx_providers"}


def load_run_config(path: Path) -> Dict[str, object]:
    if not path.exists():
        raise FileNotFoundError(f"Run config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid run config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Run config must be a JSON object")
    return payload


def collect_cli_dests(parser: argparse.ArgumentParser, argv: Sequence[str]) -> set[str]:
    """
    Dests of the options that were given explicitly on the command line.
    """

    dests: set[str] = set()
    for opt, action in parser._option_string_actions.items():
        for arg in argv:
            if arg == opt or arg.startswith(f"{opt}="):
                dests.add(action.dest)
                break
    return dests


def _coerce_str_list(value: object, key: str) -> List[str]:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError(f"{key} must not be an empty string")
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        cleaned = [item.strip() for item in value]
        if not cleaned or any(not item for item in cleaned):
            raise ValueError(f"{key} must not contain empty strings")
        return cleaned
    raise ValueError(f"{key} must be a string or list of strings")


def apply_run_config(
    *,
    args: argparse.Namespace,
    payload: Dict[str, object],
    cli_dests: set[str],
    parser: argparse.ArgumentParser,
) -> None:
    """
    Overlay JSON run-config values onto parsed args. Values given explicitly on
    the command line win; positional `images` from the CLI win when non-empty.
    """

    allowed = {action.dest for action in parser._actions if action.dest != "help"}
    if "config" in payload:
        raise ValueError("run config must not include the 'config' key")
    unknown = sorted(k for k in payload.keys() if k not in allowed)
    if unknown:
        raise ValueError(f"Unknown run config keys: {unknown}")

    for key, value in payload.items():
        if key in cli_dests or value is None:
            continue
        if key == "images" and getattr(args, "images", None):
            continue
        if key in LIST_KEYS:
            setattr(args, key, _coerce_str_list(value, key))
            continue
        if key in STR_KEYS:
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{key} must be a non-empty string")
            setattr(args, key, value)
            continue
        if key in BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"{key} must be a boolean")
            setattr(args, key, value)
            continue
        if key in INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be an integer")
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"{key} must be an integer")
            setattr(args, key, int(value))
            continue
        if key in FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{key} must be a number")
            setattr(args, key, float(value))
            continue
        raise ValueError(f"Unsupported run config key: {key}")
