# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Optional, Sequence

from answer_formatter import AnswerResult, Choice, QuestionType

# 含这些措辞的选项优先（「最も〜」「正しい」之类）
FALLBACK_KEYWORDS = ("正しい", "適切", "最も")


def choose_fallback(
    question_text: Optional[str],
    choices: Sequence[Choice],
    qtype: QuestionType,
) -> AnswerResult:
    """不调用远程模型的兜底选择。

    这个策略故意很粗糙，只为让流程继续往下走，不追求正确率：
    有题干时按顺序找第一个包含关键词的选项，否则（或没命中）选第一个。
    纯函数，无副作用。
    """
    if question_text:
        for i, choice in enumerate(choices):
            text = (choice.text or "").lower()
            if any(keyword in text for keyword in FALLBACK_KEYWORDS):
                return i if qtype == QuestionType.SINGLE else [i]

    return 0 if qtype == QuestionType.SINGLE else [0]
