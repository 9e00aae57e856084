from io import BytesIO
from pathlib import Path
from typing import Any, List, Optional

import pytest
from PIL import Image

from ace_editor import EDITOR_PRESENCE_CSS
from conftest import FakeDom, FakeElement
from errors import EditorUnavailable
from page_dom import SELECTORS
from page_state import PageState
from quest_navigator import (
    EXECUTION_RESULT_HEADER,
    HINT_SETTLE,
    LONG_PAUSE,
    SHORT_PAUSE,
    SUBMIT_RETRIES,
    SUBMIT_RETRY_DELAY,
    QuestNavigator,
)
from settings_store import RunController, SettingsStore

CLEAR_CSS = "#movie-button-clear a, .p-movie-button-clear a"
ADVANCE_CSS = "a.for-next"
SUBMIT_CSS = "button.select-submit-btn"
EXECUTE_CSS = "button.qfc-a-qfc-button.outline"


class StubAnswerer:
    def __init__(self, answer: Any = 0, hinted: Any = 0, code: str = ""):
        self.answer = answer
        self.hinted = hinted
        self.code = code
        self.questions: List[str] = []
        self.hints: List[str] = []
        self.images: List[Any] = []

    def answer_question(self, text, choices, qtype, images=None):
        self.questions.append(text)
        self.images.append(images)
        if isinstance(self.answer, Exception):
            raise self.answer
        return self.answer

    def answer_question_with_hint(self, text, choices, qtype, hint_text, images=None):
        self.hints.append(hint_text)
        return self.hinted

    def complete_code(self, prompt: str) -> str:
        return self.code


class StubEditor:
    def __init__(self, code: Optional[str]):
        self.code = code
        self.written: List[str] = []
        self.invalidated = 0

    def read(self) -> str:
        if self.code is None:
            raise EditorUnavailable("no editor")
        return self.code

    def write(self, code: str) -> None:
        self.written.append(code)
        self.code = code

    def invalidate(self) -> None:
        self.invalidated += 1


@pytest.fixture
def controller(tmp_path: Path) -> RunController:
    return RunController(SettingsStore(tmp_path / "state.json"))


def make_navigator(dom, controller, answerer=None, editor=None, sleep=None) -> QuestNavigator:
    return QuestNavigator(
        dom,
        controller,
        answerer or StubAnswerer(),
        editor=editor or StubEditor(None),
        sleep=sleep if sleep is not None else (lambda seconds: None),
    )


def test_clear_pending_clicks_clear(dom: FakeDom, controller, sleeps) -> None:
    clear = dom.add(CLEAR_CSS, FakeElement("クリア"))
    navigator = make_navigator(dom, controller, sleep=sleeps.append)
    assert navigator.process_page() == PageState.CLEAR_PENDING
    assert dom.clicks == [clear]
    assert sleeps == [SHORT_PAUSE]


def test_unanswered_question_is_answered_and_submitted(dom: FakeDom, controller, sleeps) -> None:
    inputs = dom.add_question("1+1は？", ["1", "2", "3"])
    submit = dom.add(SUBMIT_CSS, FakeElement("採点する"))
    answerer = StubAnswerer(answer=1)

    navigator = make_navigator(dom, controller, answerer, sleep=sleeps.append)
    assert navigator.process_page() == PageState.UNANSWERED_QUESTION

    assert answerer.questions == ["1+1は？"]
    assert [i.checked for i in inputs] == [False, True, False]
    assert dom.clicks == [inputs[1], submit]
    assert sleeps[-1] == LONG_PAUSE


def test_submit_gives_up_after_bounded_retries(dom: FakeDom, controller, sleeps) -> None:
    dom.add_question("問題", ["a", "b"])
    navigator = make_navigator(dom, controller, sleep=sleeps.append)
    navigator.process_page()
    assert sleeps.count(SUBMIT_RETRY_DELAY) == SUBMIT_RETRIES
    assert LONG_PAUSE not in sleeps


def test_incorrect_feedback_reanswers_with_hint(dom: FakeDom, controller) -> None:
    inputs = dom.add_question("問題", ["a", "b"])
    inputs[0].checked = True
    dom.body = "不正解"
    advance = dom.add(ADVANCE_CSS, FakeElement("次へ"))
    dom.add(SELECTORS["hint_checkbox"], FakeElement(input_type="checkbox"))
    dom.add(SELECTORS["hint_content"], FakeElement("型を確認しましょう"))
    submit = dom.add(SUBMIT_CSS, FakeElement("採点する"))
    answerer = StubAnswerer(hinted=1)

    navigator = make_navigator(dom, controller, answerer)
    assert navigator.process_page() == PageState.POST_SUBMIT_FEEDBACK

    assert answerer.hints == ["型を確認しましょう"]
    assert [i.checked for i in inputs] == [False, True]
    assert submit in dom.clicks
    assert advance not in dom.clicks


def test_incorrect_feedback_without_hint_advances(dom: FakeDom, controller) -> None:
    inputs = dom.add_question("問題", ["a", "b"])
    inputs[0].checked = True
    dom.body = "不正解"
    advance = dom.add(ADVANCE_CSS, FakeElement("次へ"))
    answerer = StubAnswerer()

    make_navigator(dom, controller, answerer).process_page()

    assert answerer.hints == []
    assert dom.clicks == [advance]


def test_correct_feedback_advances(dom: FakeDom, controller, sleeps) -> None:
    dom.body = "正解"
    advance = dom.add(ADVANCE_CSS, FakeElement("次へ"))
    make_navigator(dom, controller, sleep=sleeps.append).process_page()
    assert dom.clicks == [advance]
    assert sleeps == [LONG_PAUSE]


def test_submit_pending_submits_then_waits_for_advance(dom: FakeDom, controller) -> None:
    inputs = dom.add_question("問題", ["a", "b"])
    inputs[0].checked = True
    submit = dom.add(SUBMIT_CSS, FakeElement("採点する"))
    advance = FakeElement("次へ")

    def graded() -> None:
        dom.body = "正解"
        dom.add(ADVANCE_CSS, advance)

    submit.on_click = graded
    navigator = make_navigator(dom, controller)
    assert navigator.process_page() == PageState.SUBMIT_PENDING
    assert dom.clicks == [submit, advance]


def test_coding_question_full_flow(dom: FakeDom, controller) -> None:
    dom.add(EDITOR_PRESENCE_CSS, FakeElement())
    execute = dom.add(EXECUTE_CSS, FakeElement("試す"))
    execute.on_click = lambda: dom.add(".output", FakeElement("5"))
    submit = dom.add(SUBMIT_CSS, FakeElement("採点する"))
    submit.on_click = lambda: setattr(dom, "body", "正解")
    editor = StubEditor("x = ____\nprint(x)")
    answerer = StubAnswerer(code="x = 5\nprint(x)")

    navigator = make_navigator(dom, controller, answerer, editor)
    assert navigator.process_page() == PageState.UNSUBMITTED_CODING_QUESTION

    assert editor.written == ["x = 5\nprint(x)"]
    assert dom.clicks == [execute, submit]
    assert controller.activity == "代码题已提交"


def test_coding_question_answers_choices_with_output(dom: FakeDom, controller) -> None:
    dom.add(EDITOR_PRESENCE_CSS, FakeElement())
    inputs = dom.add_question("出力は？", ["4", "5"])
    execute = dom.add(EXECUTE_CSS, FakeElement("試す"))
    execute.on_click = lambda: dom.add(".output", FakeElement("5"))
    dom.add(SUBMIT_CSS, FakeElement("採点する"))
    answerer = StubAnswerer(answer=1, code="x = 5\nprint(x)")

    make_navigator(dom, controller, answerer, StubEditor("x = ____\nprint(x)")).process_page()

    assert answerer.questions == [f"出力は？\n\n{EXECUTION_RESULT_HEADER}\n5"]
    assert inputs[1].checked


def test_coding_question_sends_question_images(dom: FakeDom, controller) -> None:
    buf = BytesIO()
    Image.new("RGB", (8, 8)).save(buf, format="PNG")
    dom.add(EDITOR_PRESENCE_CSS, FakeElement())
    dom.add_question("図の出力は？", ["4", "5"])
    dom.add(SELECTORS["question_images"], FakeElement(attrs={"src": "https://example.test/fig.png"}, png=buf.getvalue()))
    dom.add(SUBMIT_CSS, FakeElement("採点する"))
    answerer = StubAnswerer(answer=1, code="x = 5\nprint(x)")

    make_navigator(dom, controller, answerer, StubEditor("x = ____\nprint(x)")).process_page()

    assert len(answerer.images) == 1
    assert [image.mime_type for image in answerer.images[0]] == ["image/png"]


class RecordingResolver:
    def __init__(self, code: str):
        self.code = code
        self.hints: List[Optional[str]] = []
        self.last_requirements: List[str] = []

    def resolve(self, template, question_text, description=None, hint_text=None):
        self.hints.append(hint_text)
        return self.code


def test_coding_question_opens_hint_before_reading_it(dom: FakeDom, controller, sleeps) -> None:
    dom.add(EDITOR_PRESENCE_CSS, FakeElement())
    hint = dom.add(SELECTORS["hint_content"], FakeElement("`print(x)` を呼び出していますか", visible=False))
    checkbox = dom.add(SELECTORS["hint_checkbox"], FakeElement(input_type="checkbox"))
    checkbox.on_click = lambda: setattr(hint, "visible", True)
    submit = dom.add(SUBMIT_CSS, FakeElement("採点する"))
    submit.on_click = lambda: setattr(dom, "body", "正解")
    resolver = RecordingResolver("x = 5\nprint(x)")

    navigator = QuestNavigator(
        dom, controller, StubAnswerer(), resolver=resolver, editor=StubEditor("x = ____"), sleep=sleeps.append
    )
    assert navigator.process_page() == PageState.UNSUBMITTED_CODING_QUESTION

    assert dom.clicks[0] is checkbox
    assert sleeps[0] == HINT_SETTLE
    assert resolver.hints == ["`print(x)` を呼び出していますか"]


def test_coding_question_without_blanks_falls_through(dom: FakeDom, controller) -> None:
    dom.add(EDITOR_PRESENCE_CSS, FakeElement())
    advance = dom.add(ADVANCE_CSS, FakeElement("次へ"))
    editor = StubEditor("print(1)")

    navigator = make_navigator(dom, controller, editor=editor)
    assert navigator.process_page() == PageState.NAVIGABLE_PENDING
    assert editor.written == []
    assert dom.clicks == [advance]


def test_unreadable_editor_falls_through(dom: FakeDom, controller) -> None:
    dom.add(EDITOR_PRESENCE_CSS, FakeElement())
    dom.add_question("問題", ["a", "b"])
    navigator = make_navigator(dom, controller, editor=StubEditor(None))
    assert navigator.process_page() == PageState.UNANSWERED_QUESTION


def test_page_load_refreshes_run_state(dom: FakeDom, controller, tmp_path: Path) -> None:
    editor = StubEditor(None)
    navigator = make_navigator(dom, controller, editor=editor)
    assert navigator.sync_page_lifecycle()
    assert not navigator.sync_page_lifecycle()

    SettingsStore(tmp_path / "state.json").update(isRunning=True)
    dom.token = "page-2"
    assert navigator.sync_page_lifecycle()
    assert controller.is_running
    assert editor.invalidated == 2


def test_run_loop_survives_handler_errors(dom: FakeDom, controller) -> None:
    dom.add_question("問題", ["a", "b"])
    answerer = StubAnswerer(answer=RuntimeError("boom"))
    ticks: List[float] = []

    def sleep(seconds: float) -> None:
        ticks.append(seconds)
        if len(ticks) == 2:
            controller.stop()

    controller.start()
    make_navigator(dom, controller, answerer, sleep=sleep).run()

    assert len(answerer.questions) == 2
    assert ticks == [controller.delay_seconds] * 2
    assert controller.activity == "待机中"
