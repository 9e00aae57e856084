# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import OpenAI

from errors import ApiFailure, EmptyResponse, NetworkFailure

# =============================
# 常量
# =============================

# Gemini 的 OpenAI 兼容入口；也可以在 config.json 里换成任意兼容服务
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_CODING_MODEL = "gemini-2.5-pro"

TEMPERATURE = 0.1
ANSWER_MAX_TOKENS = 100
CODING_MAX_TOKENS = 4096
PROBE_MAX_TOKENS = 10

BLOCKED_FINISH_REASONS = {"content_filter", "SAFETY", "BLOCKED", "PROHIBITED_CONTENT", "BLOCKLIST"}


@dataclass
class ImagePart:
    data: bytes
    mime_type: str = "image/png"

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass
class AiStatus:
    is_available: bool
    message: str
    has_api_key: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isAvailable": self.is_available,
            "message": self.message,
            "hasApiKey": self.has_api_key,
        }


# =============================
# 响应解析
# =============================

def _fragments(value: Any) -> List[str]:
    """把 content / parts / text 等字段里的文本片段摊平成列表。"""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        out = _fragments(value.get("text"))
        out += _fragments(value.get("parts"))
        return out
    if isinstance(value, (list, tuple)):
        out: List[str] = []
        for item in value:
            out += _fragments(item)
        return out
    return []


def _blocked_reason(payload: Dict[str, Any]) -> Optional[str]:
    feedback = payload.get("promptFeedback") or payload.get("prompt_feedback") or {}
    if isinstance(feedback, dict) and feedback.get("blockReason"):
        return str(feedback["blockReason"])

    for choice in payload.get("choices") or []:
        message = choice.get("message") or {}
        if message.get("refusal"):
            return str(message["refusal"])
        if choice.get("finish_reason") in BLOCKED_FINISH_REASONS:
            return str(choice["finish_reason"])

    for cand in payload.get("candidates") or []:
        if cand.get("finishReason") in BLOCKED_FINISH_REASONS:
            return str(cand["finishReason"])
    return None


def extract_text(payload: Any) -> str:
    """从多种形态的响应里取文本。

    支持 chat.completions 对象/字典（content 为字符串或分段列表）、
    Gemini 原生格式（candidates[].content.parts[].text）以及扁平的
    text / output_text 字段。非空片段去首尾空白后以换行拼接。
    """
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump()
    if isinstance(payload, str):
        payload = {"text": payload}
    if not isinstance(payload, dict):
        raise EmptyResponse(f"无法识别的响应类型：{type(payload).__name__}")

    fragments: List[str] = []
    for choice in payload.get("choices") or []:
        message = choice.get("message") or {}
        fragments += _fragments(message.get("content"))
    for cand in payload.get("candidates") or []:
        fragments += _fragments(cand.get("content"))
    for key in ("output_text", "text"):
        fragments += _fragments(payload.get(key))

    texts = [f.strip() for f in fragments if f and f.strip()]
    if texts:
        return "\n".join(texts)

    reason = _blocked_reason(payload)
    if reason:
        raise EmptyResponse(f"blocked: {reason}")
    raise EmptyResponse("响应中没有可用文本")


def _error_message(err: "openai.APIStatusError") -> str:
    body = getattr(err, "body", None)
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        inner = body.get("error", body)
        if isinstance(inner, dict) and inner.get("message"):
            return str(inner["message"])
    return getattr(err, "message", "") or str(err)


# =============================
# 客户端
# =============================

class AnswerClient:
    """OpenAI 兼容接口的轻量封装：提示词（+图片）进，纯文本出。

    本类不做任何重试；失败统一抛出 AnswerServiceError 的子类，由调用方兜底。
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        coding_model: str = DEFAULT_CODING_MODEL,
        client: Optional[OpenAI] = None,
    ):
        # 不在 SDK 内重试
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.model = model
        self.coding_model = coding_model

    def query(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_output_tokens: int = ANSWER_MAX_TOKENS,
        images: Optional[Sequence[ImagePart]] = None,
    ) -> str:
        """发送提示词并返回模型文本。"""
        content: Any = prompt
        if images:
            content = [{"type": "text", "text": prompt}]
            for img in images:
                content.append({"type": "image_url", "image_url": {"url": img.to_data_url()}})

        try:
            resp = self._client.chat.completions.create(
                model=model or self.model,
                messages=[{"role": "user", "content": content}],
                temperature=TEMPERATURE,
                max_tokens=max_output_tokens,
                stream=False,
            )
        except openai.APIConnectionError as e:
            raise NetworkFailure(str(e)) from e
        except openai.APIStatusError as e:
            raise ApiFailure(e.status_code, _error_message(e)) from e
        except openai.OpenAIError as e:
            raise ApiFailure(None, str(e)) from e

        text = extract_text(resp)
        logging.debug("模型返回 %d 字符", len(text))
        return text

    def check_status(self) -> AiStatus:
        """用一个极短的请求探测服务是否可用。"""
        try:
            self.query("test", max_output_tokens=PROBE_MAX_TOKENS)
        except NetworkFailure as e:
            logging.error("AI 服务连接失败：%s", e)
            return AiStatus(False, f"连接错误：{e}", True)
        except ApiFailure as e:
            logging.error("AI 服务检查失败：%s", e)
            return AiStatus(False, f"错误：{e}", True)
        except EmptyResponse:
            # 2xx 但没有文本也算可用
            pass
        logging.info("AI 服务可用")
        return AiStatus(True, "可用", True)
