"""
View state of a single-image detection screen.

INITIAL -> PREVIEW -> PROCESSING -> RESULT, with ERROR reachable on a rejected
file or a failed request. Uploads and starts are refused until the model
reports READY.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Optional, Tuple


class ViewState(str, Enum):
    INITIAL = "initial"
    PREVIEW = "preview"
    PROCESSING = "processing"
    RESULT = "result"
    ERROR = "error"


class ViewEvent(str, Enum):
    READY = "ready"
    FILE_SELECTED = "file_selected"
    FILE_REJECTED = "file_rejected"
    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class InvalidTransition(RuntimeError):
    pass


_IDLE = (ViewState.INITIAL, ViewState.PREVIEW, ViewState.RESULT, ViewState.ERROR)

TRANSITIONS: Dict[Tuple[ViewState, ViewEvent], ViewState] = {}
for _state in _IDLE:
    TRANSITIONS[(_state, ViewEvent.FILE_SELECTED)] = ViewState.PREVIEW
    TRANSITIONS[(_state, ViewEvent.FILE_REJECTED)] = ViewState.ERROR
TRANSITIONS[(ViewState.PREVIEW, ViewEvent.STARTED)] = ViewState.PROCESSING
# re-running the same file from the result screen
TRANSITIONS[(ViewState.RESULT, ViewEvent.STARTED)] = ViewState.PROCESSING
TRANSITIONS[(ViewState.PROCESSING, ViewEvent.SUCCEEDED)] = ViewState.RESULT
TRANSITIONS[(ViewState.PROCESSING, ViewEvent.FAILED)] = ViewState.ERROR

_NEEDS_MODEL = (ViewEvent.FILE_SELECTED, ViewEvent.STARTED)

Listener = Callable[[ViewState, ViewEvent, ViewState], None]


class ViewStateMachine:
    def __init__(self, listener: Optional[Listener] = None) -> None:
        self.state = ViewState.INITIAL
        self.model_ready = False
        self.error_code: Optional[str] = None
        self._listener = listener

    def dispatch(self, event: ViewEvent, *, error_code: Optional[str] = None) -> ViewState:
        if event is ViewEvent.READY:
            # model readiness is orthogonal to what is on screen
            self.model_ready = True
            self._notify(self.state, event, self.state)
            return self.state

        if event in _NEEDS_MODEL and not self.model_ready:
            raise InvalidTransition(f"{event.value} before the model is ready")

        target = TRANSITIONS.get((self.state, event))
        if target is None:
            raise InvalidTransition(f"{event.value} is not allowed in state {self.state.value}")

        previous = self.state
        self.state = target
        self.error_code = error_code if target is ViewState.ERROR else None
        self._notify(previous, event, target)
        return target

    def can(self, event: ViewEvent) -> bool:
        if event is ViewEvent.READY:
            return True
        if event in _NEEDS_MODEL and not self.model_ready:
            return False
        return (self.state, event) in TRANSITIONS

    @property
    def upload_allowed(self) -> bool:
        return self.can(ViewEvent.FILE_SELECTED)

    @property
    def submit_allowed(self) -> bool:
        return self.can(ViewEvent.STARTED)

    def _notify(self, previous: ViewState, event: ViewEvent, current: ViewState) -> None:
        if self._listener is not None:
            self._listener(previous, event, current)
