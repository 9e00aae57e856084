# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Optional


# =============================
# 远程答题服务
# =============================

class AnswerServiceError(Exception):
    """远程模型不可用的统一基类；调用方一律视为“结果不可用”。"""


class NetworkFailure(AnswerServiceError):
    """无法连上远程服务（DNS / 超时 / 连接被拒等）。"""


class ApiFailure(AnswerServiceError):
    """服务可达但返回了错误状态码，或内容被拦截。"""

    def __init__(self, status_code: Optional[int], message: str):
        self.status_code = status_code
        self.message = message or "Unknown error"
        if status_code is None:
            super().__init__(self.message)
        else:
            super().__init__(f"{status_code} - {self.message}")


class EmptyResponse(AnswerServiceError):
    """响应里抽不出任何文本（包括被判定为 blocked 的情况）。"""


# =============================
# 解析 / 页面 / 代码题
# =============================

class UnparseableAnswer(ValueError):
    """模型输出的最后一行里没有任何有效的选项编号。"""


class ControlNotFound(LookupError):
    """期望的可交互控件不存在或不可见。"""


class EditorUnavailable(RuntimeError):
    """所有编辑器访问策略都无法读取/写入代码。"""


class Unfillable(RuntimeError):
    """无法得到不含空位标记的完整代码。"""
