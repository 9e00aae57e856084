from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import pytest

from page_dom import SELECTORS


class FakeElement:
    def __init__(
        self,
        text: str = "",
        *,
        input_type: str = "",
        visible: bool = True,
        checked: bool = False,
        enabled: bool = True,
        pointer: bool = False,
        classes: str = "",
        attrs: Optional[Dict[str, str]] = None,
        parent: Optional["FakeElement"] = None,
        png: bytes = b"",
    ):
        self.text = text
        self.input_type = input_type
        self.visible = visible
        self.checked = checked
        self.enabled = enabled
        self.pointer = pointer
        self.attrs = dict(attrs or {})
        self.attrs.setdefault("class", classes)
        self.parent = parent
        self.png = png
        self.matches: set = set()
        self.on_click: Optional[Callable[[], None]] = None


class FakeDom:
    """与 PageDom 接口相同的内存 DOM：选择器字符串 → 元素列表。"""

    def __init__(self) -> None:
        self.registry: Dict[str, List[FakeElement]] = {}
        self.body = ""
        self.token = "page-1"
        self.clicks: List[FakeElement] = []
        self.scripts: List[tuple] = []
        self.script_handler: Optional[Callable[..., Any]] = None

    def add(self, css: str, el: FakeElement) -> FakeElement:
        self.registry.setdefault(css, []).append(el)
        el.matches.add(css)
        return el

    def add_choice(self, text: str, input_type: str = "radio", checked: bool = False) -> FakeElement:
        label = FakeElement(text)
        label.matches.add("label")
        css = SELECTORS["radio_inputs"] if input_type == "radio" else SELECTORS["checkbox_inputs"]
        return self.add(css, FakeElement("", input_type=input_type, checked=checked, parent=label))

    def add_question(self, text: str, choices: List[str], input_type: str = "radio") -> List[FakeElement]:
        self.add(SELECTORS["question_area"], FakeElement(text))
        self.add(SELECTORS["question_text"], FakeElement(text))
        return [self.add_choice(c, input_type) for c in choices]

    # ---------- PageDom 接口 ----------
    def query_all(self, css: str) -> List[FakeElement]:
        return list(self.registry.get(css, []))

    def query(self, css: str) -> Optional[FakeElement]:
        found = self.query_all(css)
        return found[0] if found else None

    def text_of(self, el: FakeElement) -> str:
        return el.text.strip()

    def inner_text(self, el: FakeElement) -> str:
        return el.text.strip()

    def attr(self, el: FakeElement, name: str) -> str:
        return el.attrs.get(name, "")

    def has_class(self, el: FakeElement, name: str) -> bool:
        return name in el.attrs.get("class", "").split()

    def closest(self, el: FakeElement, css: str) -> Optional[FakeElement]:
        node: Optional[FakeElement] = el
        while node is not None:
            if css in node.matches:
                return node
            node = node.parent
        return None

    def body_text(self) -> str:
        return self.body

    def visible_texts(self, css: str) -> List[str]:
        return [el.text.strip() for el in self.query_all(css) if el.visible and el.text.strip()]

    def is_visible(self, el: Optional[FakeElement]) -> bool:
        return el is not None and el.visible

    def is_checked(self, el: FakeElement) -> bool:
        return el.checked

    def is_enabled(self, el: FakeElement) -> bool:
        return el.enabled

    def is_pointer(self, el: FakeElement) -> bool:
        return el.pointer

    def page_token(self) -> str:
        return self.token

    def click(self, el: FakeElement) -> None:
        self.clicks.append(el)
        if el.on_click is not None:
            el.on_click()
        elif el.input_type == "checkbox":
            el.checked = not el.checked
        elif el.input_type == "radio":
            # 同组单选互斥
            for other in self.query_all(SELECTORS["radio_inputs"]):
                other.checked = False
            el.checked = True

    def run_script(self, script: str, *args: Any) -> Any:
        self.scripts.append((script, args))
        if self.script_handler is None:
            return None
        return self.script_handler(script, *args)

    def screenshot_png(self, el: FakeElement) -> bytes:
        return el.png


@pytest.fixture
def dom() -> FakeDom:
    return FakeDom()


@pytest.fixture
def sleeps() -> List[float]:
    """记录所有等待时长而不真正等待。"""
    return []
