# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

from quiz_answerer import QuizAnswerer
from settings_store import RunController

CONSOLE_HELP = "可用命令：start / stop / status / ai / check / key <API Key> / delay <毫秒> / quit"


class CommandDispatcher:
    """对外暴露的命令接口：{"action": ...} -> dict。"""

    def __init__(self, controller: RunController, answerer: QuizAnswerer):
        self.controller = controller
        self.answerer = answerer
        self._actions: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "start": self._start,
            "stop": self._stop,
            "getStatus": self._get_status,
            "getAiStatus": self._get_ai_status,
            "checkAiStatus": self._check_ai_status,
            "saveApiKey": self._save_api_key,
            "setDelay": self._set_delay,
        }

    def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        action = request.get("action")
        handler = self._actions.get(action)  # type: ignore[arg-type]
        if handler is None:
            return {"error": f"未知命令：{action}"}
        return handler(request)

    def _start(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.controller.start()
        return {"success": True, "isRunning": self.controller.is_running}

    def _stop(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self.controller.stop()
        return {"success": True, "isRunning": self.controller.is_running}

    def _get_status(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {"isRunning": self.controller.is_running, "activity": self.controller.activity}

    def _get_ai_status(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return self.answerer.status().to_dict()

    def _check_ai_status(self, request: Dict[str, Any]) -> Dict[str, Any]:
        status = self.answerer.check_status()
        return {"success": True, **status.to_dict()}

    def _save_api_key(self, request: Dict[str, Any]) -> Dict[str, Any]:
        status = self.answerer.save_api_key(request.get("apiKey"))
        return {"success": True, **status.to_dict()}

    def _set_delay(self, request: Dict[str, Any]) -> Dict[str, Any]:
        try:
            self.controller.set_delay(int(request.get("delayMs")))  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            return {"success": False, "error": str(e)}
        return {"success": True, "delayMs": self.controller.delay_ms}


def send_command(dispatcher: CommandDispatcher, request: Dict[str, Any]) -> Dict[str, Any]:
    """调用方视角的命令发送：通道断开（或处理中途出错）一律视为“已断开”，不是确定的停止。"""
    try:
        return dispatcher.handle(request)
    except Exception as e:
        logging.warning("命令 %s 未得到响应：%s", request.get("action"), e)
        return {"disconnected": True, "error": str(e)}


def parse_console_command(line: str) -> Optional[Dict[str, Any]]:
    """把控制台输入翻译成命令请求；quit 与无法识别的输入返回 None。"""
    parts = line.strip().split(maxsplit=1)
    if not parts:
        return None
    name = parts[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""
    simple = {
        "start": "start",
        "stop": "stop",
        "status": "getStatus",
        "ai": "getAiStatus",
        "check": "checkAiStatus",
    }
    if name in simple:
        return {"action": simple[name]}
    if name == "key":
        return {"action": "saveApiKey", "apiKey": arg}
    if name == "delay":
        return {"action": "setDelay", "delayMs": arg}
    return None


class ConsoleController(threading.Thread):
    """在后台线程里读取控制台命令，转交给 CommandDispatcher。"""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        read_line: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ):
        super().__init__(name="console-controller", daemon=True)
        self.dispatcher = dispatcher
        self.read_line = read_line
        self.write = write

    def handle_line(self, line: str) -> bool:
        """处理一行输入；返回 False 表示应当退出。"""
        if line.strip().lower() in ("quit", "exit"):
            self.dispatcher.controller.request_quit()
            return False
        request = parse_console_command(line)
        if request is None:
            if line.strip():
                self.write(CONSOLE_HELP)
            return True
        self.write(str(send_command(self.dispatcher, request)))
        return True

    def run(self) -> None:
        self.write(CONSOLE_HELP)
        while True:
            try:
                line = self.read_line("> ")
            except EOFError:
                self.dispatcher.controller.request_quit()
                return
            if not self.handle_line(line):
                return
