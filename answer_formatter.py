# -*- coding: utf-8 -*-
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence, Union

from errors import UnparseableAnswer

# =============================
# 数据结构
# =============================


class QuestionType(str, Enum):
    SINGLE = "radio"
    MULTIPLE = "checkbox"


@dataclass
class Choice:
    text: str  # 选项显示文本
    index: int  # 0 起始的序号，在一道题的生命周期内保持不变
    handle: Any = field(default=None, repr=False, compare=False)  # 页面控件引用


@dataclass
class Question:
    text: str
    choices: List[Choice]
    qtype: QuestionType


# 单选为 int，多选为有序的 int 列表
AnswerResult = Union[int, List[int]]

INTEGER_RE = re.compile(r"\d+")

# =============================
# 提示词
# =============================

_HEADER = {
    QuestionType.SINGLE: "以下の問題に回答してください。正解の選択肢の番号（1から始まる）を1つだけ返してください。",
    QuestionType.MULTIPLE: "以下の問題に回答してください。正解の選択肢の番号（1から始まる）をすべて返してください。",
}

_FOOTER = {
    QuestionType.SINGLE: "正解の番号を1つだけ返してください（例: 3）。番号以外は返さないでください。",
    QuestionType.MULTIPLE: (
        "正解の番号をカンマ区切りで返してください（例: 1,3,4）。"
        "単一の場合は1つだけ返してください（例: 2）。番号以外は返さないでください。"
    ),
}


def _choice_block(choices: Sequence[Choice]) -> List[str]:
    # 面向模型展示时使用 1 起始编号
    return [f"{pos}. {choice.text}" for pos, choice in enumerate(choices, 1)]


def build_prompt(
    question_text: str,
    choices: Sequence[Choice],
    qtype: QuestionType,
    hint: Optional[str] = None,
) -> str:
    """把题干、（可选）提示和选项拼成提示词。

    带 hint 时提示文本插在题干与选项之间，结尾要求参考提示作答。
    """
    lines = [_HEADER[qtype], "", "問題文:", question_text or "", ""]
    if hint:
        lines += ["ヒント:", hint, ""]
    lines.append("選択肢:")
    lines += _choice_block(choices)
    lines.append("")
    footer = _FOOTER[qtype]
    lines.append(f"ヒントを参考に、{footer}" if hint else footer)
    return "\n".join(lines)


# =============================
# 解析
# =============================

def last_nonempty_line(text: str) -> str:
    for line in reversed((text or "").splitlines()):
        if line.strip():
            return line.strip()
    return ""


def parse_answer(raw_text: str, choice_count: int, qtype: QuestionType) -> AnswerResult:
    """从模型输出中解析选项下标（0 起始）。

    只看最后一个非空行，避免误取推理过程里的数字。单选取第一个整数，
    多选取全部整数（去重、保持出现顺序）；越界的编号直接丢弃。
    没有剩余有效编号时抛出 UnparseableAnswer，而不是瞎猜。
    """
    line = last_nonempty_line(raw_text)
    indices = [int(n) - 1 for n in INTEGER_RE.findall(line)]

    if qtype == QuestionType.SINGLE:
        if indices and 0 <= indices[0] < choice_count:
            return indices[0]
        raise UnparseableAnswer(f"无法从 {line!r} 中解析出有效选项")

    result: List[int] = []
    for idx in indices:
        if 0 <= idx < choice_count and idx not in result:
            result.append(idx)
    if not result:
        raise UnparseableAnswer(f"无法从 {line!r} 中解析出有效选项")
    return result
