import unittest

from receipt_fixtures import png_data_uri, sample_receipt_data
from receipt_integrity import validate_receipt
from receipt_models import ErrorKind
from share_codec import encode_receipt
from split_session import (
    AppState,
    BackToSelection,
    CancelCapture,
    InvalidTransition,
    SessionState,
    SetLanguage,
    ShowSummary,
    SplitController,
    StartCapture,
    StartOver,
    StartSelecting,
    ToggleItem,
    UpdateSplit,
    transition,
)


class FakeAnalyzer:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def __call__(self, image_data, target_language):
        self.calls.append((image_data, target_language))
        return self.result


class TransitionTests(unittest.TestCase):
    def test_capture_and_cancel(self) -> None:
        session = transition(SessionState(), StartCapture())
        self.assertEqual(session.state, AppState.CAPTURING)
        session = transition(session, CancelCapture())
        self.assertEqual(session.state, AppState.HOME)

    def test_illegal_events_raise(self) -> None:
        with self.assertRaises(InvalidTransition):
            transition(SessionState(), CancelCapture())
        with self.assertRaises(InvalidTransition):
            transition(SessionState(), StartSelecting())
        with self.assertRaises(InvalidTransition):
            transition(SessionState(), ToggleItem("a"))

    def test_language_selection(self) -> None:
        session = transition(SessionState(), SetLanguage("ja"))
        self.assertEqual(session.target_language, "ja")
        with self.assertRaises(InvalidTransition):
            transition(session, SetLanguage("xx"))

    def test_sessions_are_immutable_values(self) -> None:
        first = SessionState()
        second = transition(first, StartCapture())
        self.assertEqual(first.state, AppState.HOME)
        self.assertIsNot(first, second)


class SplitControllerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.receipt = validate_receipt(sample_receipt_data())
        self.link = "https://split.test/#" + encode_receipt(self.receipt)

    def make_controller(self, result=None) -> SplitController:
        self.analyzer = FakeAnalyzer(result)
        return SplitController(secret="", base_url="https://split.test/", analyzer=self.analyzer)

    def test_capture_success(self) -> None:
        controller = self.make_controller(sample_receipt_data())
        controller.dispatch(SetLanguage("fr"))
        controller.dispatch(StartCapture())
        controller.capture(png_data_uri())
        self.assertEqual(controller.state, AppState.CONFIRM_INFO)
        self.assertEqual(controller.session.receipt, self.receipt)
        self.assertEqual(self.analyzer.calls[0][1], "fr")
        self.assertTrue(self.analyzer.calls[0][0].startswith(b"\xff\xd8"))

    def test_upstream_failure_returns_home(self) -> None:
        controller = self.make_controller(None)
        controller.capture(png_data_uri())
        self.assertEqual(controller.state, AppState.HOME)
        self.assertEqual(controller.session.error, ErrorKind.UPSTREAM_ANALYSIS_FAILURE.message)

    def test_unreadable_image_skips_analysis(self) -> None:
        controller = self.make_controller(sample_receipt_data())
        controller.capture("data:image/jpeg;base64,bm90IGFuIGltYWdl")
        self.assertEqual(controller.state, AppState.HOME)
        self.assertEqual(self.analyzer.calls, [])
        self.assertEqual(controller.session.error, ErrorKind.UPSTREAM_ANALYSIS_FAILURE.message)

    def test_malformed_analysis_is_rejected(self) -> None:
        controller = self.make_controller({"items": [{"description": "Pizza"}]})
        controller.capture(png_data_uri())
        self.assertEqual(controller.state, AppState.HOME)
        self.assertIsNone(controller.session.receipt)
        self.assertEqual(controller.session.error, ErrorKind.STRUCTURALLY_INVALID.message)

    def test_full_split_flow(self) -> None:
        controller = self.make_controller()
        controller.open_link(self.link)
        self.assertEqual(controller.state, AppState.CONFIRM_INFO)
        controller.dispatch(StartSelecting())
        with self.assertRaises(InvalidTransition):
            controller.dispatch(ShowSummary())
        controller.dispatch(ToggleItem("a"))
        controller.dispatch(UpdateSplit("a", 2))
        controller.dispatch(ShowSummary())
        self.assertEqual(controller.state, AppState.SUMMARY)
        allocation = controller.allocation()
        self.assertAlmostEqual(allocation.total, 13.0)
        controller.dispatch(BackToSelection())
        self.assertEqual(controller.state, AppState.SELECT_ITEMS)
        controller.dispatch(StartOver())
        self.assertEqual(controller.state, AppState.HOME)
        self.assertIsNone(controller.session.receipt)
        self.assertEqual(controller.session.selections, {})
        self.assertEqual(controller.allocation().total, 0.0)

    def test_invalid_link_resets_without_partial_state(self) -> None:
        controller = self.make_controller()
        controller.open_link(self.link)
        controller.dispatch(StartSelecting())
        controller.dispatch(ToggleItem("a"))
        controller.open_link("https://split.test/#this-is-not-a-valid-token")
        self.assertEqual(controller.state, AppState.HOME)
        self.assertIsNone(controller.session.receipt)
        self.assertEqual(controller.session.selections, {})
        self.assertEqual(controller.session.error, ErrorKind.LINK_INVALID.message)

    def test_short_fragment_is_ignored(self) -> None:
        controller = self.make_controller()
        controller.open_link("https://split.test/#abc")
        self.assertEqual(controller.session, SessionState())

    def test_new_link_replaces_selections(self) -> None:
        controller = self.make_controller()
        controller.open_link(self.link)
        controller.dispatch(StartSelecting())
        controller.dispatch(ToggleItem("a"))
        controller.open_link(self.link)
        self.assertEqual(controller.state, AppState.CONFIRM_INFO)
        self.assertEqual(controller.session.selections, {})

    def test_share_url_opens_same_receipt(self) -> None:
        controller = self.make_controller()
        self.assertIsNone(controller.share_url())
        controller.open_link(self.link)
        other = self.make_controller()
        other.open_link(controller.share_url())
        self.assertEqual(other.session.receipt, self.receipt)

    def test_signing_controller_rejects_unsigned_link(self) -> None:
        sender = SplitController(secret="s3cret", base_url="https://split.test/", analyzer=FakeAnalyzer(None))
        sender.open_link(self.link)
        self.assertEqual(sender.state, AppState.HOME)
        self.assertEqual(sender.session.error, ErrorKind.LINK_INVALID.message)


if __name__ == "__main__":
    unittest.main()
