"""
Application layer on top of `detect_kit`.

The detection pipeline itself lives in `detect_kit`; this package holds what a
front end needs around it:
- view state machine (initial / preview / processing / result / error)
- JSON run config overlay for the CLI
- per-image and per-run JSON reports
- the `zebroid-detect` runner
"""

from __future__ import annotations

from .reporting import ImageOutcome, artifact_names, summarize, write_image_report, write_run_summary
from .run_config import apply_run_config, collect_cli_dests, load_run_config
from .view_state import InvalidTransition, ViewEvent, ViewState, ViewStateMachine

__all__ = [
    "ImageOutcome",
    "artifact_names",
    "summarize",
    "write_image_report",
    "write_run_summary",
    "apply_run_config",
    "collect_cli_dests",
    "load_run_config",
    "InvalidTransition",
    "ViewEvent",
    "ViewState",
    "ViewStateMachine",
]
