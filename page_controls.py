# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from errors import ControlNotFound
from page_dom import SELECTORS, PageDom

NEXT_KEYWORDS = ("次へ進む", "次へ")
NEXT_EXACT = ("進む",)


class ControlRole(str, Enum):
    CLEAR = "clear"
    ADVANCE = "advance"
    SUBMIT = "submit"
    EXECUTE = "execute"


def _text_matches(text: str, keywords: Sequence[str], exact: Sequence[str]) -> bool:
    if not keywords and not exact:
        return True
    return any(k in text for k in keywords) or text in exact


# =============================
# 发现策略
# =============================

class ControlStrategy:
    """“找到一个可见的某类控件”这一能力；找不到返回 None。"""

    def find(self, dom: PageDom) -> Optional[Any]:
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__


@dataclass
class SelectorStrategy(ControlStrategy):
    css: str
    keywords: Sequence[str] = ()
    exact: Sequence[str] = ()
    require_enabled: bool = False

    def find(self, dom: PageDom) -> Optional[Any]:
        for el in dom.query_all(self.css):
            if not _text_matches(dom.text_of(el), self.keywords, self.exact):
                continue
            if self.require_enabled and not dom.is_enabled(el):
                continue
            if dom.is_visible(el):
                return el
        return None

    def describe(self) -> str:
        return f"selector {self.css}"


@dataclass
class IconStrategy(ControlStrategy):
    """按图标（svg.fa-*）定位，再向上找到可点击的容器。"""

    icon_css: str
    container_css: str
    keywords: Sequence[str] = ()

    def find(self, dom: PageDom) -> Optional[Any]:
        for icon in dom.query_all(self.icon_css):
            container = dom.closest(icon, self.container_css)
            if container is None or not dom.is_visible(container):
                continue
            if _text_matches(dom.text_of(container), self.keywords, ()):
                return container
        return None

    def describe(self) -> str:
        return f"icon {self.icon_css}"


@dataclass
class ClickableDivStrategy(ControlStrategy):
    """文字匹配的 div，且看起来可点击（cursor:pointer / onclick / c-next-button）。"""

    keywords: Sequence[str] = ()
    exact: Sequence[str] = ()
    css: str = "div"

    def find(self, dom: PageDom) -> Optional[Any]:
        for el in dom.query_all(self.css):
            if not _text_matches(dom.text_of(el), self.keywords, self.exact):
                continue
            if not dom.is_visible(el):
                continue
            if dom.has_class(el, "c-next-button") or dom.is_pointer(el):
                return el
        return None

    def describe(self) -> str:
        return f"clickable {self.css}"


class ControlFinder:
    """按固定优先级依次尝试各策略，第一个命中的即为结果。"""

    def __init__(self, role: ControlRole, strategies: Sequence[ControlStrategy]):
        self.role = role
        self.strategies = list(strategies)

    def find(self, dom: PageDom) -> Optional[Any]:
        for strategy in self.strategies:
            el = strategy.find(dom)
            if el is not None:
                logging.debug("找到 %s 控件（%s）", self.role.value, strategy.describe())
                return el
        return None

    def require(self, dom: PageDom) -> Any:
        el = self.find(dom)
        if el is None:
            raise ControlNotFound(f"页面上没有可见的 {self.role.value} 控件")
        return el

    def is_present(self, dom: PageDom) -> bool:
        return self.find(dom) is not None

    def click(self, dom: PageDom) -> bool:
        el = self.find(dom)
        if el is None:
            return False
        logging.info("点击 %s 控件：%s", self.role.value, dom.text_of(el)[:40])
        dom.click(el)
        return True


_ADVANCE_SELECTORS = (
    "a.for-next",
    "a.tips-modal-btn-next",
    "a.tips-modal-btn",
    ".tips-modal-btn-next",
    "button.next-button",
    "a[class*='next']",
)

_SUBMIT_SELECTORS = (
    "button.select-submit-btn",
    "button.qfc-a-qfc-button.select-submit-btn",
    ".choice-button-area button",
    "button[type='button']",
    "button",
)

CONTROL_STRATEGIES: Dict[ControlRole, List[ControlStrategy]] = {
    ControlRole.CLEAR: [
        SelectorStrategy("#movie-button-clear a, .p-movie-button-clear a"),
        IconStrategy("a svg.fa-right-left", "a", keywords=("クリア",)),
        SelectorStrategy("a", keywords=("クリア済み",)),
    ],
    ControlRole.ADVANCE: [
        *(SelectorStrategy(css) for css in _ADVANCE_SELECTORS),
        SelectorStrategy("a", keywords=NEXT_KEYWORDS, exact=NEXT_EXACT),
        SelectorStrategy("button", keywords=NEXT_KEYWORDS, exact=NEXT_EXACT),
        IconStrategy("a svg.fa-arrow-right", "a"),
        IconStrategy("div.c-next-button svg.fa-arrow-right", "div.c-next-button"),
        ClickableDivStrategy(keywords=NEXT_KEYWORDS, exact=NEXT_EXACT),
    ],
    ControlRole.SUBMIT: [
        SelectorStrategy(css, keywords=("採点する",), require_enabled=True) for css in _SUBMIT_SELECTORS
    ],
    ControlRole.EXECUTE: [
        IconStrategy("button svg.fa-laptop-code", "button"),
        SelectorStrategy("button.qfc-a-qfc-button.outline"),
        SelectorStrategy("button, a, input[type='button']", keywords=("試す", "実行", "Run", "Execute")),
    ],
}


def build_finders() -> Dict[ControlRole, ControlFinder]:
    return {role: ControlFinder(role, strategies) for role, strategies in CONTROL_STRATEGIES.items()}


# =============================
# 提示面板
# =============================

def open_hint(dom: PageDom) -> bool:
    """打开提示标签页；已经展开的视为成功。"""
    checkbox = dom.query(SELECTORS["hint_checkbox"])
    if checkbox is not None:
        if dom.is_checked(checkbox):
            return True
        if dom.is_visible(checkbox):
            logging.info("打开提示标签页")
            dom.click(checkbox)
            return True

    for label in dom.query_all(SELECTORS["hint_label"]):
        if dom.is_visible(label):
            logging.info("点击提示标签")
            dom.click(label)
            return True
    return False
