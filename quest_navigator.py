# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

from selenium.common.exceptions import WebDriverException

from ace_editor import AceEditorBridge
from answer_formatter import Question
from code_completion import BLANK_MARKER, CodeCompletionResolver, validate_execution
from errors import EditorUnavailable, Unfillable
from page_controls import ControlFinder, ControlRole, build_finders, open_hint
from page_dom import (
    PageDom,
    clear_selections,
    extract_coding_description,
    extract_hint,
    extract_question,
    extract_question_images,
    extract_question_text,
    get_execution_result,
    has_question_area,
    select_answer,
)
from page_state import Feedback, Observation, PageState, PageStateClassifier, is_incorrect
from quiz_answerer import QuizAnswerer
from settings_store import RunController

# =============================
# 等待与重试参数（秒）
# =============================
SHORT_PAUSE = 1.0
LONG_PAUSE = 2.0
SELECT_SETTLE = 0.3
HINT_SETTLE = 0.3
SUBMIT_RETRIES = 3
SUBMIT_RETRY_DELAY = 0.5
ADVANCE_RETRIES = 5
ADVANCE_RETRY_DELAY = 0.8
RESULT_POLLS = 10
RESULT_POLL_DELAY = 1.0
GRADING_WAIT = 1.5
RESUME_GRACE = 1.0
IDLE_WAKE_TIMEOUT = 1.0

EXECUTION_RESULT_HEADER = "【実行結果】"


class QuestNavigator:
    """判定页面状态 → 执行对应处理 → 等待，循环往复。

    单轮处理中的任何异常只记录日志，下一轮重新判定页面，循环本身不会因此退出。
    运行标志只在每轮开头检查一次，stop 要等当前处理结束后才生效。
    """

    def __init__(
        self,
        dom: PageDom,
        controller: RunController,
        answerer: QuizAnswerer,
        resolver: Optional[CodeCompletionResolver] = None,
        finders: Optional[Dict[ControlRole, ControlFinder]] = None,
        editor: Optional[AceEditorBridge] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.dom = dom
        self.controller = controller
        self.answerer = answerer
        self.resolver = resolver or CodeCompletionResolver(answerer)
        self.finders = finders or build_finders()
        self.editor = editor or AceEditorBridge(dom)
        self.classifier = PageStateClassifier(dom, self.finders)
        self.sleep = sleep
        self._page_token: Optional[str] = None

        self._handlers: Dict[PageState, Callable[[Observation], None]] = {
            PageState.CLEAR_PENDING: self.handle_clear,
            PageState.UNANSWERED_QUESTION: self.handle_unanswered,
            PageState.POST_SUBMIT_FEEDBACK: self.handle_feedback,
            PageState.SUBMIT_PENDING: self.handle_submit_pending,
            PageState.NAVIGABLE_PENDING: self.handle_navigable,
            PageState.IDLE: self.handle_idle,
        }

    # =============================
    # 主循环
    # =============================
    def serve(self) -> None:
        """进程级循环：停止时等待 start，运行时执行 run()，直到 quit。"""
        if self.controller.is_running:
            logging.info("检测到上次未停止的运行，%.0f 秒后继续", RESUME_GRACE)
            self.sleep(RESUME_GRACE)
        while not self.controller.quit_requested:
            if self.controller.is_running or self.controller.wait_for_start(IDLE_WAKE_TIMEOUT):
                self.run()

    def run(self) -> None:
        self.controller.set_activity("运行中")
        while self.controller.is_running and not self.controller.quit_requested:
            try:
                self.sync_page_lifecycle()
                self.process_page()
            except Exception as e:
                logging.exception("本轮处理出错，下一轮重新判定页面：%s", e)
            self.sleep(self.controller.delay_seconds)
        self.controller.set_activity("待机中")

    def sync_page_lifecycle(self) -> bool:
        """页面重新加载后读回运行状态并丢弃编辑器缓存；返回是否发生了跳转。"""
        token = self.dom.page_token()
        if token == self._page_token:
            return False
        if self._page_token is not None:
            logging.info("检测到页面跳转，重新读取运行状态")
        self._page_token = token
        self.controller.refresh()
        self.editor.invalidate()
        return True

    def process_page(self) -> PageState:
        observation = self.classifier.classify()
        logging.debug("页面状态：%s", observation.state.value)
        if observation.state == PageState.UNSUBMITTED_CODING_QUESTION:
            if self.handle_coding_question():
                return observation.state
            observation = self.classifier.classify(skip_coding=True)
            logging.debug("代码题未处理，按普通页面判定：%s", observation.state.value)
        self._handlers[observation.state](observation)
        return observation.state

    # =============================
    # 通用动作
    # =============================
    def submit_with_retries(self) -> bool:
        submit = self.finders[ControlRole.SUBMIT]
        for attempt in range(1, SUBMIT_RETRIES + 1):
            if submit.click(self.dom):
                return True
            logging.info("採点按钮尚不可用（第 %d 次）", attempt)
            self.sleep(SUBMIT_RETRY_DELAY)
        logging.warning("多次尝试后仍未能提交")
        return False

    def advance_with_retries(self) -> bool:
        advance = self.finders[ControlRole.ADVANCE]
        for attempt in range(1, ADVANCE_RETRIES + 1):
            if advance.click(self.dom):
                self.sleep(LONG_PAUSE)
                return True
            self.sleep(ADVANCE_RETRY_DELAY)
        logging.info("未出现前进按钮")
        return False

    def advance_once(self) -> bool:
        if self.finders[ControlRole.ADVANCE].click(self.dom):
            self.sleep(LONG_PAUSE)
            return True
        return False

    def run_code(self) -> Optional[str]:
        """点击执行按钮并轮询执行结果；没有执行按钮时只读一次现有输出。"""
        if not self.finders[ControlRole.EXECUTE].click(self.dom):
            logging.info("未找到执行按钮")
            return get_execution_result(self.dom)
        self.controller.set_activity("等待代码执行结果")
        for _ in range(RESULT_POLLS):
            self.sleep(RESULT_POLL_DELAY)
            output = get_execution_result(self.dom)
            if output:
                logging.info("执行结果：%s", output[:200])
                return output
        logging.warning("轮询结束仍未获取到执行结果")
        return None

    # =============================
    # 各状态的处理
    # =============================
    def handle_clear(self, observation: Observation) -> None:
        self.controller.set_activity("点击清除按钮")
        self.dom.click(self.finders[ControlRole.CLEAR].require(self.dom))
        self.sleep(SHORT_PAUSE)

    def handle_unanswered(self, observation: Observation) -> None:
        question = observation.question
        if question is None:
            return
        self.controller.set_activity(f"作答选择题（{len(question.choices)} 个选项）")
        images = extract_question_images(self.dom)
        answer = self.answerer.answer_question(question.text, question.choices, question.qtype, images)
        select_answer(self.dom, question, answer, sleep=self.sleep)
        self.sleep(SELECT_SETTLE)
        if self.submit_with_retries():
            self.sleep(LONG_PAUSE)

    def handle_coding_question(self) -> bool:
        """完整的代码题流程；返回 False 表示本轮未处理，调用方按普通页面继续。"""
        try:
            template = self.editor.read()
        except EditorUnavailable as e:
            logging.warning("无法读取编辑器：%s", e)
            return False
        if BLANK_MARKER not in template:
            logging.debug("编辑器中没有空位")
            return False

        self.controller.set_activity("补全代码题")
        question_text = extract_question_text(self.dom)
        description = extract_coding_description(self.dom)
        try:
            if open_hint(self.dom):
                self.sleep(HINT_SETTLE)
        except WebDriverException as e:
            logging.warning("打开提示失败，不带提示继续：%s", e)
        hint = extract_hint(self.dom)
        try:
            code = self.resolver.resolve(template, question_text, description, hint)
        except Unfillable as e:
            logging.warning("代码无法补全，保持编辑器原样：%s", e)
            return False

        try:
            self.editor.write(code)
        except EditorUnavailable as e:
            logging.warning("无法写入编辑器：%s", e)
            return False
        self.sleep(SHORT_PAUSE)

        output = self.run_code()
        issues = validate_execution(output, self.resolver.last_requirements)
        if issues:
            self.controller.set_activity("执行结果检查：" + "；".join(issues))

        question = extract_question(self.dom) if has_question_area(self.dom) else None
        if question is not None:
            text = question.text
            if output:
                text = f"{text}\n\n{EXECUTION_RESULT_HEADER}\n{output}"
            images = extract_question_images(self.dom)
            answer = self.answerer.answer_question(text, question.choices, question.qtype, images)
            select_answer(self.dom, question, answer, sleep=self.sleep)
            self.sleep(SELECT_SETTLE)

        if not self.submit_with_retries():
            return False
        self.sleep(GRADING_WAIT)
        if is_incorrect(self.dom):
            self.controller.set_activity("代码题判定为不正确")
            return False
        self.controller.set_activity("代码题已提交")
        return True

    def handle_submit_pending(self, observation: Observation) -> None:
        self.controller.set_activity("提交已作答的题目")
        if not self.finders[ControlRole.SUBMIT].click(self.dom):
            return
        self.sleep(GRADING_WAIT)
        if is_incorrect(self.dom):
            self.handle_incorrect(observation.question)
        else:
            self.advance_with_retries()

    def handle_feedback(self, observation: Observation) -> None:
        if observation.feedback == Feedback.INCORRECT:
            self.handle_incorrect(observation.question)
            return
        self.controller.set_activity("回答正确，前往下一题")
        self.advance_once()

    def handle_incorrect(self, question: Optional[Question]) -> None:
        """打开提示，带着提示重新作答并提交；只尝试一次，失败就交给下一轮。"""
        self.controller.set_activity("回答不正确，参考提示重新作答")
        if question is None and has_question_area(self.dom):
            question = extract_question(self.dom)
        if question is None or not open_hint(self.dom):
            logging.info("无法通过提示重新作答，尝试直接前进")
            self.advance_once()
            return

        self.sleep(SHORT_PAUSE)
        hint = extract_hint(self.dom)
        if not hint:
            logging.info("未读取到提示内容，尝试直接前进")
            self.advance_once()
            return

        answer = self.answerer.answer_question_with_hint(question.text, question.choices, question.qtype, hint)
        clear_selections(self.dom, question, sleep=self.sleep)
        select_answer(self.dom, question, answer, sleep=self.sleep)
        self.sleep(SELECT_SETTLE)
        if self.finders[ControlRole.SUBMIT].click(self.dom):
            self.sleep(LONG_PAUSE)

    def handle_navigable(self, observation: Observation) -> None:
        self.controller.set_activity("前往下一页")
        self.advance_once()

    def handle_idle(self, observation: Observation) -> None:
        logging.debug("没有可执行的操作")
