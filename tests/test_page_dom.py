from io import BytesIO
from typing import List
from unittest import mock

from PIL import Image
from selenium.common.exceptions import ElementNotInteractableException
from selenium.webdriver.common.by import By

from answer_formatter import QuestionType
from conftest import FakeDom, FakeElement
from page_dom import (
    MAX_IMAGE_SIDE,
    SELECTORS,
    PageDom,
    clean_whitespace,
    clear_selections,
    extract_hint,
    extract_question,
    extract_question_images,
    get_execution_result,
    normalize_image,
    select_answer,
)


def png_bytes(size=(10, 10), mode="RGB") -> bytes:
    buf = BytesIO()
    Image.new(mode, size).save(buf, format="PNG")
    return buf.getvalue()


# ---------- PageDom ----------

def test_page_dom_queries_by_css() -> None:
    driver = mock.Mock()
    driver.find_elements.return_value = ["el"]
    assert PageDom(driver).query(".x") == "el"
    driver.find_elements.assert_called_once_with(By.CSS_SELECTOR, ".x")


def test_page_dom_click_falls_back_to_script() -> None:
    driver = mock.Mock()
    el = mock.Mock()
    el.click.side_effect = ElementNotInteractableException("hidden")
    PageDom(driver).click(el)
    driver.execute_script.assert_called_once_with("arguments[0].click();", el)


def test_clean_whitespace() -> None:
    assert clean_whitespace("  a\n\t b  ") == "a b"
    assert clean_whitespace(None) == ""


# ---------- 题目与选项 ----------

def test_choice_accepted_when_only_label_visible(dom: FakeDom) -> None:
    dom.add(SELECTORS["question_text"], FakeElement("問題文"))
    first = dom.add_choice("  選択肢\n A ")
    first.visible = False
    hidden = dom.add_choice("見えない")
    hidden.visible = False
    hidden.parent.visible = False

    question = extract_question(dom)
    assert question.qtype == QuestionType.SINGLE
    assert question.text == "問題文"
    assert [(c.text, c.index) for c in question.choices] == [("選択肢 A", 0)]


def test_label_found_by_for_attribute(dom: FakeDom) -> None:
    dom.add(SELECTORS["checkbox_inputs"], FakeElement(input_type="checkbox", attrs={"id": "c1"}))
    dom.add("label[for='c1']", FakeElement("ラベル"))
    question = extract_question(dom)
    assert question.qtype == QuestionType.MULTIPLE
    assert question.choices[0].text == "ラベル"


def test_no_choices(dom: FakeDom) -> None:
    assert extract_question(dom) is None


def test_select_answer_multiple(dom: FakeDom) -> None:
    inputs = [dom.add_choice(t, "checkbox") for t in ("a", "b", "c")]
    inputs[2].checked = True
    question = extract_question(dom)
    waits: List[float] = []

    select_answer(dom, question, [2, 0, 7], sleep=waits.append)

    assert [i.checked for i in inputs] == [True, False, True]
    assert dom.clicks == [inputs[0]]
    assert waits == [0.2]


def test_clear_selections(dom: FakeDom) -> None:
    inputs = [dom.add_choice(t, "checkbox") for t in ("a", "b")]
    inputs[1].checked = True
    question = extract_question(dom)
    waits: List[float] = []

    clear_selections(dom, question, sleep=waits.append)

    assert not inputs[1].checked
    assert waits == [0.1]


# ---------- 提示与执行结果 ----------

def test_extract_hint_dedups_in_order(dom: FakeDom) -> None:
    css = SELECTORS["hint_content"]
    dom.add(css, FakeElement("型を確認"))
    dom.add(css, FakeElement("隠れた", visible=False))
    dom.add(css, FakeElement("型を確認"))
    dom.add(css, FakeElement("shapeを出力"))
    assert extract_hint(dom) == "型を確認\nshapeを出力"


def test_extract_hint_keyword_fallback(dom: FakeDom) -> None:
    css = SELECTORS["hint_fallback_candidates"]
    dom.add(css, FakeElement("関係ない文"))
    dom.add(css, FakeElement("print を使用していますか"))
    assert extract_hint(dom) == "print を使用していますか"


def test_extract_hint_missing(dom: FakeDom) -> None:
    assert extract_hint(dom) is None


def test_execution_result_sources(dom: FakeDom) -> None:
    assert get_execution_result(dom) is None

    dom.add(SELECTORS["console_pre"], FakeElement("pre output"))
    assert get_execution_result(dom) == "pre output"

    dom.add(SELECTORS["console_zone"], FakeElement("console"))
    assert get_execution_result(dom) == "console"

    dom.add(".output", FakeElement("(3, 4)"))
    assert get_execution_result(dom) == "(3, 4)"


# ---------- 图片 ----------

def test_normalize_image_downscales_to_rgb_png() -> None:
    result = Image.open(BytesIO(normalize_image(png_bytes((2048, 512), "RGBA"))))
    assert result.format == "PNG"
    assert result.mode == "RGB"
    assert max(result.size) == MAX_IMAGE_SIDE


def test_extract_question_images_skips_inline_sources(dom: FakeDom) -> None:
    css = SELECTORS["question_images"]
    dom.add(css, FakeElement(attrs={"src": "https://example.test/a.png"}, png=png_bytes()))
    dom.add(css, FakeElement(attrs={"src": "data:image/png;base64,AAAA"}, png=png_bytes()))
    images = extract_question_images(dom)
    assert len(images) == 1
    assert images[0].mime_type == "image/png"
