# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import re
import time
from io import BytesIO
from typing import Any, Callable, List, Optional

from PIL import Image
from selenium import webdriver
from selenium.common.exceptions import (
    ElementClickInterceptedException,
    ElementNotInteractableException,
    NoSuchElementException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement

from answer_client import ImagePart
from answer_formatter import Choice, Question, QuestionType

# =============================
# 页面选择器集中管理
# =============================

SELECTORS = {
    # 题面
    "question_area": ".p-block-instructions-inner, .instruction-sentence-list",
    "question_text": ".instruction-sentence, .markdown-body",
    "question_images": (
        ".p-block-instructions-inner img, .instruction-sentence-list img, .markdown-body img"
    ),

    # 选项
    "radio_inputs": "input[type='radio']",
    "checkbox_inputs": "input[type='checkbox']:not(.p-hint-button):not([id*='hint'])",

    # 提示
    "hint_checkbox": "#hint-check, input.p-hint-button, input[id*='hint']",
    "hint_label": ".p-hint-label, label[for='hint-check']",
    "hint_content": (
        ".p-hint-content, .hint-content, .tab-content-wrapper, [class*='hint'], "
        "[class*='operation-check'], [class*='check-message'], .quiz-guidance"
    ),
    "hint_fallback_candidates": "div, p, li, span",

    # 代码题
    "coding_description": (
        "#description-area, .p-tab-content-description, .p-block-description-inner, "
        ".qfc-m-operation-description-area, .markdown-body"
    ),
    "execution_result": (
        ".execution-result, .output, .result, [class*='result'], [class*='output']"
    ),
    "console_zone": "#code-console-zone",
    "console_pre": "#code-area pre, #code-console-zone pre, pre",
}

HINT_FALLBACK_KEYWORDS = ("出力をしていますか", "想定の出力結果", "使用していますか", "呼び出していますか", "確認しましょう")

MAX_IMAGE_SIDE = 1024

_VISIBLE_JS = """
var el = arguments[0];
if (!el) { return false; }
var s = window.getComputedStyle(el);
return s.display !== 'none' && s.visibility !== 'hidden' && s.opacity !== '0'
    && el.offsetWidth > 0 && el.offsetHeight > 0;
"""

_VISIBLE_TEXTS_JS = """
var nodes = document.querySelectorAll(arguments[0]);
var out = [];
for (var i = 0; i < nodes.length; i++) {
    var el = nodes[i];
    var s = window.getComputedStyle(el);
    if (s.display === 'none' || s.visibility === 'hidden' || s.opacity === '0') { continue; }
    if (el.offsetWidth <= 0 || el.offsetHeight <= 0) { continue; }
    var t = (el.textContent || '').trim();
    if (t) { out.push(t); }
}
return out;
"""

_POINTER_JS = """
var el = arguments[0];
return window.getComputedStyle(el).cursor === 'pointer' || typeof el.onclick === 'function';
"""

_PAGE_TOKEN_JS = """
if (!window.__questNavigatorToken) {
    window.__questNavigatorToken = Date.now() + '-' + Math.random().toString(36).slice(2);
}
return window.__questNavigatorToken;
"""


def clean_whitespace(s: str) -> str:
    """压缩任意空白字符为单空格，并去除首尾空白。"""
    return re.sub(r"\s+", " ", s or "").strip()


class PageDom:
    """selenium WebDriver 之上的最小 DOM 访问层。

    控件发现、状态判定与各处理器只通过这里读写页面，测试时可换成内存里的假 DOM。
    """

    def __init__(self, driver: webdriver.Chrome):
        self.driver = driver

    # ---------- 查询 ----------
    def query_all(self, css: str) -> List[WebElement]:
        return self.driver.find_elements(By.CSS_SELECTOR, css)

    def query(self, css: str) -> Optional[WebElement]:
        found = self.query_all(css)
        return found[0] if found else None

    def text_of(self, el: WebElement) -> str:
        return (el.get_attribute("textContent") or "").strip()

    def inner_text(self, el: WebElement) -> str:
        return (el.get_attribute("innerText") or "").strip()

    def attr(self, el: WebElement, name: str) -> str:
        return el.get_attribute(name) or ""

    def has_class(self, el: WebElement, name: str) -> bool:
        return name in self.attr(el, "class").split()

    def closest(self, el: WebElement, css: str) -> Optional[WebElement]:
        return self.driver.execute_script("return arguments[0].closest(arguments[1]);", el, css)

    def body_text(self) -> str:
        try:
            body = self.driver.find_element(By.TAG_NAME, "body")
        except NoSuchElementException:
            return ""
        return body.get_attribute("textContent") or ""

    def visible_texts(self, css: str) -> List[str]:
        """一次脚本调用拿到所有可见匹配元素的文本。"""
        return list(self.driver.execute_script(_VISIBLE_TEXTS_JS, css) or [])

    # ---------- 状态 ----------
    def is_visible(self, el: Optional[WebElement]) -> bool:
        if el is None:
            return False
        return bool(self.driver.execute_script(_VISIBLE_JS, el))

    def is_checked(self, el: WebElement) -> bool:
        return el.is_selected()

    def is_enabled(self, el: WebElement) -> bool:
        return el.is_enabled()

    def is_pointer(self, el: WebElement) -> bool:
        return bool(self.driver.execute_script(_POINTER_JS, el))

    def page_token(self) -> str:
        """每次文档加载都会换新的标识；用于识别页面跳转。"""
        return str(self.driver.execute_script(_PAGE_TOKEN_JS))

    # ---------- 变更 ----------
    def click(self, el: WebElement) -> None:
        """优先原生点击；控件被样式隐藏或遮挡时改用脚本点击。"""
        try:
            el.click()
        except (ElementNotInteractableException, ElementClickInterceptedException):
            self.driver.execute_script("arguments[0].click();", el)

    def run_script(self, script: str, *args: Any) -> Any:
        return self.driver.execute_script(script, *args)

    def screenshot_png(self, el: WebElement) -> bytes:
        return el.screenshot_as_png


# =============================
# 页面内容提取
# =============================

def has_question_area(dom: PageDom) -> bool:
    return dom.query(SELECTORS["question_area"]) is not None


def extract_question_text(dom: PageDom) -> str:
    parts = [dom.text_of(el) for el in dom.query_all(SELECTORS["question_text"])]
    return "\n".join(p for p in parts if p).strip()


def _choice_label(dom: PageDom, input_el: Any) -> Optional[Any]:
    label = dom.closest(input_el, "label")
    if label is None:
        input_id = dom.attr(input_el, "id")
        if input_id:
            label = dom.query(f"label[for='{input_id}']")
    return label


def extract_question(dom: PageDom) -> Optional[Question]:
    """收集当前页面的选项；单选优先，其次多选。

    自定义样式的 input 往往本身不可见，所以 input 与其 label 任一可见即可。
    """
    for css, qtype in (
        (SELECTORS["radio_inputs"], QuestionType.SINGLE),
        (SELECTORS["checkbox_inputs"], QuestionType.MULTIPLE),
    ):
        inputs = dom.query_all(css)
        if not inputs:
            continue
        choices: List[Choice] = []
        for input_el in inputs:
            label = _choice_label(dom, input_el)
            if not (dom.is_visible(input_el) or dom.is_visible(label)):
                continue
            text = clean_whitespace(dom.text_of(label)) if label is not None else ""
            choices.append(Choice(text=text, index=len(choices), handle=input_el))
        if choices:
            return Question(text=extract_question_text(dom), choices=choices, qtype=qtype)
    return None


def is_answered(dom: PageDom, question: Question) -> bool:
    return any(dom.is_checked(c.handle) for c in question.choices)


def extract_coding_description(dom: PageDom) -> str:
    texts = [dom.text_of(el) for el in dom.query_all(SELECTORS["coding_description"])]
    return "\n".join(t for t in texts if t)


def extract_hint(dom: PageDom) -> Optional[str]:
    """收集可见的提示文本（去重保序）；找不到提示容器时按关键词扫短文本。"""
    collected: List[str] = []
    for text in dom.visible_texts(SELECTORS["hint_content"]):
        if text not in collected:
            collected.append(text)

    if not collected:
        for text in dom.visible_texts(SELECTORS["hint_fallback_candidates"]):
            if 4 <= len(text) <= 400 and any(k in text for k in HINT_FALLBACK_KEYWORDS):
                if text not in collected:
                    collected.append(text)

    return "\n".join(collected) if collected else None


def get_execution_result(dom: PageDom) -> Optional[str]:
    for css in (s.strip() for s in SELECTORS["execution_result"].split(",")):
        texts = dom.visible_texts(css)
        if texts:
            return texts[0]

    zone = dom.query(SELECTORS["console_zone"])
    if zone is not None:
        text = dom.inner_text(zone)
        if text:
            return text

    texts = dom.visible_texts(SELECTORS["console_pre"])
    return texts[0] if texts else None


def normalize_image(png_bytes: bytes) -> bytes:
    """统一转成 RGB PNG，并把长边压到 MAX_IMAGE_SIDE 以内。"""
    img = Image.open(BytesIO(png_bytes)).convert("RGB")
    img.thumbnail((MAX_IMAGE_SIDE, MAX_IMAGE_SIDE))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def extract_question_images(dom: PageDom) -> List[ImagePart]:
    images: List[ImagePart] = []
    for idx, img_el in enumerate(dom.query_all(SELECTORS["question_images"]), 1):
        src = dom.attr(img_el, "src")
        if not src.startswith("http"):
            continue
        try:
            png = dom.screenshot_png(img_el)
            if png:
                images.append(ImagePart(normalize_image(png)))
        except (WebDriverException, OSError) as e:
            logging.warning("截取第 %d 张题目图片失败：%s", idx, e)
    logging.info("共提取 %d 张题目图片", len(images))
    return images


def select_answer(
    dom: PageDom, question: Question, answer: Any, sleep: Callable[[float], None] = time.sleep
) -> None:
    """按答案下标勾选选项；已勾选的不再点击。"""
    indices = answer if isinstance(answer, list) else [answer]
    for idx in indices:
        if not 0 <= idx < len(question.choices):
            continue
        choice = question.choices[idx]
        if not dom.is_checked(choice.handle):
            dom.click(choice.handle)
            logging.info("已选择第 %d 项：%s", idx + 1, choice.text)
            if question.qtype == QuestionType.MULTIPLE:
                sleep(0.2)


def clear_selections(dom: PageDom, question: Question, sleep: Callable[[float], None] = time.sleep) -> None:
    for choice in question.choices:
        if dom.is_checked(choice.handle):
            dom.click(choice.handle)
            sleep(0.1)
