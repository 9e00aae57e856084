# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from ace_editor import EDITOR_PRESENCE_CSS
from answer_formatter import Question
from page_controls import ControlFinder, ControlRole, build_finders
from page_dom import PageDom, extract_question, has_question_area, is_answered

# “不正解”里也包含“正解”，所以必须先判断不正解
INCORRECT_MESSAGES = ("不正解", "選択されていません")
CORRECT_MESSAGES = ("正解",)


class PageState(str, Enum):
    CLEAR_PENDING = "clear_pending"
    UNSUBMITTED_CODING_QUESTION = "unsubmitted_coding_question"
    UNANSWERED_QUESTION = "unanswered_question"
    POST_SUBMIT_FEEDBACK = "post_submit_feedback"
    SUBMIT_PENDING = "submit_pending"
    NAVIGABLE_PENDING = "navigable_pending"
    IDLE = "idle"


class Feedback(str, Enum):
    INCORRECT = "incorrect"
    CORRECT = "correct"
    NONE = "none"


@dataclass(frozen=True)
class Observation:
    state: PageState
    feedback: Feedback = Feedback.NONE
    question: Optional[Question] = field(default=None, compare=False)


def detect_feedback(dom: PageDom) -> Feedback:
    text = dom.body_text()
    if any(msg in text for msg in INCORRECT_MESSAGES):
        return Feedback.INCORRECT
    if any(msg in text for msg in CORRECT_MESSAGES):
        return Feedback.CORRECT
    return Feedback.NONE


def is_incorrect(dom: PageDom) -> bool:
    """提交后是否判为不正确。

    既没有“不正解”也没有“正解”字样时（可能还在判分）按“不是不正确”处理。
    可能掩盖真实的错误；这是既定策略，不要在这里改判。
    """
    feedback = detect_feedback(dom)
    if feedback == Feedback.NONE:
        logging.info("未找到明确的正误提示，按“不是不正确”处理")
    return feedback == Feedback.INCORRECT


class PageStateClassifier:
    """根据当前 DOM 快照判定页面状态。

    判定只依赖 DOM 本身（没有内部计数器），页面不变时重复调用结果相同。
    原始 DOM 上多个状态可能同时成立，所以判定顺序就是优先级：
    清除按钮 > 代码编辑器 > 未作答题目 > 不正确反馈 > 正确反馈（且可前进）
    > 待提交 > 可前进 > 空闲。所有控件都要先经过可见性过滤。
    """

    def __init__(self, dom: PageDom, finders: Optional[Dict[ControlRole, ControlFinder]] = None):
        self.dom = dom
        self.finders = finders or build_finders()

    def has_editor(self) -> bool:
        return self.dom.query(EDITOR_PRESENCE_CSS) is not None

    def classify(self, skip_coding: bool = False) -> Observation:
        dom = self.dom
        if self.finders[ControlRole.CLEAR].is_present(dom):
            return Observation(PageState.CLEAR_PENDING)

        if not skip_coding and self.has_editor():
            return Observation(PageState.UNSUBMITTED_CODING_QUESTION)

        question = extract_question(dom) if has_question_area(dom) else None
        if question is not None and not is_answered(dom, question):
            return Observation(PageState.UNANSWERED_QUESTION, question=question)

        feedback = detect_feedback(dom)
        if feedback == Feedback.INCORRECT:
            return Observation(PageState.POST_SUBMIT_FEEDBACK, Feedback.INCORRECT, question)

        can_advance = self.finders[ControlRole.ADVANCE].is_present(dom)
        if feedback == Feedback.CORRECT and can_advance:
            return Observation(PageState.POST_SUBMIT_FEEDBACK, Feedback.CORRECT, question)

        if self.finders[ControlRole.SUBMIT].is_present(dom):
            return Observation(PageState.SUBMIT_PENDING, question=question)

        if can_advance:
            return Observation(PageState.NAVIGABLE_PENDING)

        return Observation(PageState.IDLE)
