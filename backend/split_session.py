"""Application state for one party's split session.

The session is an immutable value; transition() is the only way to get the
next one. SplitController owns a single session and drives it from user
actions, the capture pipeline and opened share links.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import config
import gemini_client
from allocation import allocate, claimed_subtotal, toggle_selection, update_split
from receipt_integrity import validate_receipt
from receipt_models import SUPPORTED_LANGUAGES, Allocation, ErrorKind, Receipt, Selection
from share_codec import build_share_url, decode_receipt, encode_receipt, extract_token

logger = logging.getLogger("tabsplit")


class AppState(str, Enum):
    HOME = "HOME"
    CAPTURING = "CAPTURING"
    PROCESSING = "PROCESSING"
    CONFIRM_INFO = "CONFIRM_INFO"
    SELECT_ITEMS = "SELECT_ITEMS"
    SUMMARY = "SUMMARY"


class InvalidTransition(Exception):
    pass


@dataclass(frozen=True)
class SessionState:
    state: AppState = AppState.HOME
    receipt: Optional[Receipt] = None
    selections: Dict[str, Selection] = field(default_factory=dict)
    target_language: str = "en"
    error: Optional[str] = None


@dataclass(frozen=True)
class StartCapture:
    pass


@dataclass(frozen=True)
class CancelCapture:
    pass


@dataclass(frozen=True)
class BeginProcessing:
    pass


@dataclass(frozen=True)
class AnalysisSucceeded:
    raw: Any


@dataclass(frozen=True)
class AnalysisFailed:
    pass


@dataclass(frozen=True)
class LinkOpened:
    link: str


@dataclass(frozen=True)
class StartSelecting:
    pass


@dataclass(frozen=True)
class ToggleItem:
    item_id: str


@dataclass(frozen=True)
class UpdateSplit:
    item_id: str
    count: int


@dataclass(frozen=True)
class ShowSummary:
    pass


@dataclass(frozen=True)
class BackToSelection:
    pass


@dataclass(frozen=True)
class StartOver:
    pass


@dataclass(frozen=True)
class SetLanguage:
    code: str


Event = Union[
    StartCapture,
    CancelCapture,
    BeginProcessing,
    AnalysisSucceeded,
    AnalysisFailed,
    LinkOpened,
    StartSelecting,
    ToggleItem,
    UpdateSplit,
    ShowSummary,
    BackToSelection,
    StartOver,
    SetLanguage,
]


def _reset(session: SessionState, error: Optional[ErrorKind] = None) -> SessionState:
    return SessionState(
        target_language=session.target_language,
        error=error.message if error is not None else None,
    )


def _loaded(session: SessionState, receipt: Receipt) -> SessionState:
    return SessionState(
        state=AppState.CONFIRM_INFO,
        receipt=receipt,
        target_language=session.target_language,
    )


def _require(session: SessionState, event: Event, *states: AppState) -> None:
    if session.state not in states:
        raise InvalidTransition(f"{type(event).__name__} not allowed in {session.state.value}")


def transition(session: SessionState, event: Event, secret: Optional[str] = None) -> SessionState:
    if isinstance(event, StartOver):
        return _reset(session)

    if isinstance(event, LinkOpened):
        token = extract_token(event.link)
        if token is None:
            return session
        receipt = decode_receipt(token, secret=secret)
        if receipt is None:
            return _reset(session, ErrorKind.LINK_INVALID)
        return _loaded(session, receipt)

    if isinstance(event, SetLanguage):
        _require(session, event, AppState.HOME)
        if event.code not in SUPPORTED_LANGUAGES:
            raise InvalidTransition(f"unsupported language {event.code!r}")
        return replace(session, target_language=event.code)

    if isinstance(event, StartCapture):
        _require(session, event, AppState.HOME)
        return replace(session, state=AppState.CAPTURING, error=None)

    if isinstance(event, CancelCapture):
        _require(session, event, AppState.CAPTURING)
        return replace(session, state=AppState.HOME)

    if isinstance(event, BeginProcessing):
        _require(session, event, AppState.HOME, AppState.CAPTURING)
        return replace(session, state=AppState.PROCESSING, error=None)

    if isinstance(event, AnalysisSucceeded):
        _require(session, event, AppState.PROCESSING)
        receipt = validate_receipt(event.raw)
        if receipt is None:
            return _reset(session, ErrorKind.STRUCTURALLY_INVALID)
        return _loaded(session, receipt)

    if isinstance(event, AnalysisFailed):
        _require(session, event, AppState.PROCESSING)
        return _reset(session, ErrorKind.UPSTREAM_ANALYSIS_FAILURE)

    if isinstance(event, StartSelecting):
        _require(session, event, AppState.CONFIRM_INFO)
        return replace(session, state=AppState.SELECT_ITEMS)

    if isinstance(event, ToggleItem):
        _require(session, event, AppState.SELECT_ITEMS)
        return replace(session, selections=toggle_selection(session.selections, event.item_id))

    if isinstance(event, UpdateSplit):
        _require(session, event, AppState.SELECT_ITEMS)
        return replace(session, selections=update_split(session.selections, event.item_id, event.count))

    if isinstance(event, ShowSummary):
        _require(session, event, AppState.SELECT_ITEMS)
        if claimed_subtotal(session.receipt, session.selections) <= 0:
            raise InvalidTransition("nothing claimed yet")
        return replace(session, state=AppState.SUMMARY)

    if isinstance(event, BackToSelection):
        _require(session, event, AppState.SUMMARY)
        return replace(session, state=AppState.SELECT_ITEMS)

    raise InvalidTransition(f"unknown event {event!r}")


class SplitController:
    def __init__(
        self,
        secret: Optional[str] = None,
        base_url: Optional[str] = None,
        analyzer: Optional[Callable[[bytes, str], Optional[Dict[str, Any]]]] = None,
    ):
        self.secret = secret if secret is not None else (config.SHARE_LINK_SECRET or None)
        self.base_url = base_url or config.SHARE_BASE_URL
        self.analyzer = analyzer or gemini_client.analyze_receipt
        self.session = SessionState()

    def dispatch(self, event: Event) -> SessionState:
        previous = self.session.state
        self.session = transition(self.session, event, secret=self.secret)
        if self.session.state != previous:
            logger.debug("Session %s -> %s via %s", previous.value, self.session.state.value, type(event).__name__)
        return self.session

    @property
    def state(self) -> AppState:
        return self.session.state

    def capture(self, image: str) -> SessionState:
        """Run the capture pipeline on a data-URI image and land in CONFIRM_INFO or HOME."""
        self.dispatch(BeginProcessing())
        image_data = gemini_client.decode_image_payload(image)
        prepared = gemini_client.prepare_image(image_data) if image_data else None
        raw = self.analyzer(prepared, self.session.target_language) if prepared else None
        if raw is None:
            return self.dispatch(AnalysisFailed())
        return self.dispatch(AnalysisSucceeded(raw))

    def open_link(self, link: str) -> SessionState:
        return self.dispatch(LinkOpened(link))

    def allocation(self) -> Allocation:
        if self.session.receipt is None:
            return Allocation()
        return allocate(self.session.receipt, self.session.selections)

    def share_url(self) -> Optional[str]:
        if self.session.receipt is None:
            return None
        return build_share_url(self.base_url, encode_receipt(self.session.receipt, secret=self.secret))
