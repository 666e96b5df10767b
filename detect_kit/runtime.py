from __future__ import annotations

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .classes import DEFAULT_CLASS_ATTRIBUTES, ClassTable, check_against_model, validate_class_table
from .errors import DetectionError, InferenceFailure, InvalidInput, ModelUnavailable, SessionBusy
from .letterbox import preprocess
from .postprocess import END2END_WITH_BATCH_INDEX, DetectionDecoder, OutputSchema
from .types import Detection


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_MODEL_INPUT_SIDE = 640


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", "setup.py", ".git", "requirements.txt"),
) -> Path:
    """
    Best-effort project root discovery, so `Models/...` paths work from any cwd.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, the project root otherwise.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def _input_side_from_shape(shape: Sequence[object], requested: Optional[int]) -> int:
    dims = list(shape)
    if len(dims) != 4:
        raise ValueError(f"Expected a 4-D model input [1, 3, H, W], got {dims}")
    batch, channels, h, w = dims
    if isinstance(batch, int) and batch != 1:
        raise ValueError(f"Model input batch must be 1, got {dims}")
    if isinstance(channels, int) and channels != 3:
        raise ValueError(f"Model input must have 3 channels, got {dims}")

    static = [d for d in (h, w) if isinstance(d, int)]
    if len(static) == 2 and h != w:
        raise ValueError(f"Model input must be square, got {dims}")
    if static:
        side = static[0]
        if requested is not None and requested != side:
            raise ValueError(f"Model input side is {side}, but {requested} was requested")
        return side
    return requested or DEFAULT_MODEL_INPUT_SIDE


class DetectorSession:
    """
    A ready-to-use detector: preprocess (letterbox) -> inference -> decode.

    The backend only needs `input_shape`, `output_shape` and `infer(blob)`.
    At most one inference runs per session; a request that arrives while
    another is in flight is rejected with `SessionBusy`.
    """

    def __init__(
        self,
        backend: Any,
        *,
        schema: OutputSchema = END2END_WITH_BATCH_INDEX,
        class_table: ClassTable = DEFAULT_CLASS_ATTRIBUTES,
        model_input_side: Optional[int] = None,
        source_order: str = "BGR",
        model_order: str = "RGB",
        bounds_tolerance: float = 1.0,
    ):
        try:
            validate_class_table(class_table)
            schema.validate_output_shape(backend.output_shape)
            self.model_input_side = _input_side_from_shape(backend.input_shape, model_input_side)
        except ValueError as exc:
            raise ModelUnavailable(str(exc)) from exc

        self.backend = backend
        self.schema = schema
        self.class_table = class_table
        self.source_order = source_order
        self.model_order = model_order
        self.decoder = DetectionDecoder(schema, class_table, bounds_tolerance=bounds_tolerance)
        self._lock = threading.Lock()
        self._closed = False

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def warm_up(self) -> None:
        """
        One inference on a zero tensor. Failures make the session unusable.
        """

        shape = (1, 3, self.model_input_side, self.model_input_side)
        logger.info("Warming up model with a %s zero tensor", list(shape))
        try:
            self.backend.infer(np.zeros(shape, dtype=np.float32))
        except Exception as exc:
            self._closed = True
            raise ModelUnavailable(f"Warm-up inference failed: {exc}") from exc

    def detect(
        self,
        image: np.ndarray,
        display_size: Optional[Tuple[float, float]] = None,
        *,
        source_order: Optional[str] = None,
    ) -> List[Detection]:
        """
        Run the full pipeline on one image.

        Args:
            image: uint8 array, channel order given by `source_order`
                (defaults to the session's, BGR for OpenCV-decoded images)
            display_size: (width, height) of the surface the boxes are meant for.
                Defaults to the image size, so boxes come back in source pixels.
        """

        if self._closed:
            raise ModelUnavailable("Detector session is not available.")
        if display_size is not None and (display_size[0] <= 0 or display_size[1] <= 0):
            raise InvalidInput(f"display_size must be positive, got {display_size}")
        if not self._lock.acquire(blocking=False):
            raise SessionBusy("An inference is already running on this session.")
        try:
            try:
                tensor, transform = preprocess(
                    image,
                    self.model_input_side,
                    source_order=source_order or self.source_order,
                    model_order=self.model_order,
                )
            except DetectionError:
                raise
            except Exception as exc:
                raise InvalidInput(f"Could not prepare image for the model: {exc}") from exc

            try:
                raw = self.backend.infer(tensor)
            except DetectionError:
                raise
            except Exception as exc:
                raise InferenceFailure(f"Inference failed: {exc}") from exc

            if display_size is None:
                display_size = (transform.source_width, transform.source_height)
            display_w, display_h = display_size
            return self.decoder.decode(
                raw,
                transform,
                display_scale_x=display_w / self.model_input_side,
                display_scale_y=display_h / self.model_input_side,
                bounds=(display_w, display_h),
            )
        finally:
            self._lock.release()

    async def detect_async(
        self,
        image: np.ndarray,
        display_size: Optional[Tuple[float, float]] = None,
        *,
        source_order: Optional[str] = None,
    ) -> List[Detection]:
        """
        `detect` on a worker thread so an event loop stays responsive.
        """

        if self.busy:
            raise SessionBusy("An inference is already running on this session.")
        return await asyncio.to_thread(self.detect, image, display_size, source_order=source_order)


def open_session(
    model_path: PathLike,
    *,
    root: Optional[PathLike] = "auto",
    schema: OutputSchema = END2END_WITH_BATCH_INDEX,
    class_table: ClassTable = DEFAULT_CLASS_ATTRIBUTES,
    model_input_side: Optional[int] = None,
    source_order: str = "BGR",
    model_order: str = "RGB",
    onnx_providers: Optional[Sequence[str]] = None,
    strict_classes: bool = False,
    backend_factory: Optional[Callable[[Path], Any]] = None,
) -> DetectorSession:
    """
    Load a model, validate it against the output schema, warm it up once and
    return a ready session. Any failure is reported as `ModelUnavailable`.

    Args:
        model_path: relative paths resolve against the project root by default
        backend_factory: builds the backend from the resolved path; ONNX Runtime
            when omitted
    """

    resolved = resolve_path(model_path, root=root)
    if backend_factory is None:
        from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

        def backend_factory(path: Path) -> Any:
            return OnnxRuntimeBackend(path, OnnxRuntimeBackendConfig(providers=onnx_providers))

    try:
        backend = backend_factory(resolved)
    except DetectionError:
        raise
    except Exception as exc:
        raise ModelUnavailable(f"Could not load model {resolved}: {exc}") from exc

    session = DetectorSession(
        backend,
        schema=schema,
        class_table=class_table,
        model_input_side=model_input_side,
        source_order=source_order,
        model_order=model_order,
    )
    session.warm_up()

    names_fn = getattr(backend, "model_class_names", None)
    if names_fn is not None:
        check_against_model(class_table, names_fn(), strict=strict_classes)

    logger.info("Detector session ready (input side %d)", session.model_input_side)
    return session


async def create_session(model_path: PathLike, **kwargs: Any) -> DetectorSession:
    """
    Async counterpart of `open_session`: loading and warm-up run on a worker
    thread and the awaited result is a ready session.
    """

    return await asyncio.to_thread(open_session, model_path, **kwargs)


def run_detection(
    image: np.ndarray,
    session: Optional[DetectorSession],
    display_size: Optional[Tuple[float, float]] = None,
    *,
    source_order: Optional[str] = None,
) -> List[Detection]:
    """
    Single entry point for callers: decoded image + session in, detections out.
    """

    if session is None:
        raise ModelUnavailable("Model is not loaded yet.")
    return session.detect(image, display_size, source_order=source_order)
