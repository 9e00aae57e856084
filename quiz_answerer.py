# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from answer_client import (
    CODING_MAX_TOKENS,
    DEFAULT_BASE_URL,
    DEFAULT_CODING_MODEL,
    DEFAULT_MODEL,
    AiStatus,
    AnswerClient,
    ImagePart,
)
from answer_formatter import AnswerResult, Choice, QuestionType, build_prompt, parse_answer
from errors import AnswerServiceError, ApiFailure, UnparseableAnswer
from fallback_answerer import choose_fallback
from settings_store import SettingsStore

NO_KEY_MESSAGE = "API Key 未设置"


class QuizAnswerer:
    """选择题作答的总入口：远程模型优先，任何失败都退回兜底策略。"""

    def __init__(
        self,
        store: SettingsStore,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        coding_model: str = DEFAULT_CODING_MODEL,
        client_factory: Callable[..., AnswerClient] = AnswerClient,
        probe_on_load: bool = True,
    ):
        self._store = store
        self._base_url = base_url
        self._model = model
        self._coding_model = coding_model
        self._client_factory = client_factory

        self.api_key: Optional[str] = None
        self.client: Optional[AnswerClient] = None
        self._status = AiStatus(False, NO_KEY_MESSAGE, False)
        self.load_api_key(probe=probe_on_load)

    # ---------- 凭据 ----------
    def load_api_key(self, probe: bool = True) -> None:
        """从设置存储读回 API Key（启动时与每次保存后调用）。"""
        self._apply_key(self._store.load().api_key, probe)

    def save_api_key(self, api_key: Optional[str]) -> AiStatus:
        self._store.update(apiKey=api_key or None)
        self.load_api_key(probe=True)
        return self.status()

    def _apply_key(self, api_key: Optional[str], probe: bool) -> None:
        self.api_key = api_key or None
        if not self.api_key:
            self.client = None
            self._status = AiStatus(False, NO_KEY_MESSAGE, False)
            return
        self.client = self._client_factory(
            self.api_key,
            base_url=self._base_url,
            model=self._model,
            coding_model=self._coding_model,
        )
        self._status = AiStatus(False, "未检查", True)
        if probe:
            self.check_status()

    # ---------- 状态 ----------
    def status(self) -> AiStatus:
        return self._status

    def check_status(self) -> AiStatus:
        client = self.client
        if client is None:
            self._status = AiStatus(False, NO_KEY_MESSAGE, False)
        else:
            self._status = client.check_status()
        return self._status

    # ---------- 作答 ----------
    def answer_question(
        self,
        question_text: str,
        choices: Sequence[Choice],
        qtype: QuestionType,
        images: Optional[Sequence[ImagePart]] = None,
    ) -> AnswerResult:
        return self._answer(question_text, choices, qtype, None, images)

    def answer_question_with_hint(
        self,
        question_text: str,
        choices: Sequence[Choice],
        qtype: QuestionType,
        hint_text: str,
        images: Optional[Sequence[ImagePart]] = None,
    ) -> AnswerResult:
        return self._answer(question_text, choices, qtype, hint_text, images)

    def _answer(self, question_text, choices, qtype, hint_text, images) -> AnswerResult:
        # 保存 API Key 的线程可能随时替换 self.client
        client = self.client
        if client is None:
            logging.info("未配置 API Key，使用兜底策略作答。")
            return choose_fallback(question_text, choices, qtype)

        prompt = build_prompt(question_text, choices, qtype, hint=hint_text)
        try:
            raw = client.query(prompt, images=images)
        except AnswerServiceError as e:
            logging.warning("AI 请求失败，回退兜底策略：%s", e)
            return choose_fallback(question_text, choices, qtype)

        logging.info("LLM 返回(选择题): %s", raw)
        try:
            return parse_answer(raw, len(choices), qtype)
        except UnparseableAnswer as e:
            # 解析失败时不再参考题干，直接取第一个选项
            logging.warning("无法解析模型输出，回退兜底策略：%s", e)
            return choose_fallback(None, choices, qtype)

    def complete_code(self, prompt: str) -> str:
        """代码补全请求；失败直接抛出，由 CodeCompletionResolver 决定如何兜底。"""
        client = self.client
        if client is None:
            raise ApiFailure(None, NO_KEY_MESSAGE)
        return client.query(
            prompt,
            model=client.coding_model,
            max_output_tokens=CODING_MAX_TOKENS,
        )
