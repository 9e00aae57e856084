# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_DELAY_MS = 300
DEFAULT_STATE_PATH = Path("quest_state.json")


@dataclass
class Settings:
    api_key: Optional[str] = None
    delay_ms: int = DEFAULT_DELAY_MS
    is_running: bool = False


class SettingsStore:
    """简单的键值持久化（JSON 文件）：apiKey / delayMs / isRunning。"""

    def __init__(self, path: Path = DEFAULT_STATE_PATH):
        self.path = Path(path)

    def _read_raw(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as e:
            logging.warning("状态文件 %s 无法解析，按空状态处理：%s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Settings:
        raw = self._read_raw()
        delay = raw.get("delayMs")
        return Settings(
            api_key=raw.get("apiKey") or None,
            delay_ms=int(delay) if isinstance(delay, (int, float)) and delay > 0 else DEFAULT_DELAY_MS,
            is_running=bool(raw.get("isRunning", False)),
        )

    def update(self, **values: Any) -> Settings:
        """合并写入若干键，先写临时文件再替换，避免写一半的文件。"""
        raw = self._read_raw()
        raw.update(values)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(raw, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)
        return self.load()


class RunController:
    """运行标志的唯一持有者，同时把状态镜像到 SettingsStore。

    需要查询或切换运行状态的组件都拿这个对象的引用，而不是读全局变量。
    停止只在外层循环下一轮开头生效，不会打断正在执行的处理。
    """

    def __init__(self, store: SettingsStore):
        self._store = store
        self._wake = threading.Event()
        # 控制台线程与导航循环都会切换运行标志
        self._lock = threading.Lock()
        self.is_running = False
        self.delay_ms = DEFAULT_DELAY_MS
        self.activity = "待机中"
        self.quit_requested = False
        self.refresh()

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0

    def refresh(self) -> None:
        """页面重新加载后从存储读回运行状态。"""
        with self._lock:
            settings = self._store.load()
            self.is_running = settings.is_running
            self.delay_ms = settings.delay_ms
        if settings.is_running:
            self._wake.set()

    def start(self) -> bool:
        with self._lock:
            if self.is_running:
                logging.info("已经在运行中")
                return False
            self.is_running = True
            self._store.update(isRunning=True)
        logging.info("开始自动导航")
        self._wake.set()
        return True

    def stop(self) -> None:
        with self._lock:
            self.is_running = False
            self._store.update(isRunning=False)
        logging.info("停止自动导航")

    def set_delay(self, delay_ms: int) -> None:
        if delay_ms <= 0:
            raise ValueError("delayMs 必须为正整数")
        with self._lock:
            self.delay_ms = delay_ms
            self._store.update(delayMs=delay_ms)

    def set_activity(self, activity: str) -> None:
        self.activity = activity
        logging.info("[状态] %s", activity)

    def request_quit(self) -> None:
        self.quit_requested = True
        self._wake.set()

    def wait_for_start(self, timeout: Optional[float] = None) -> bool:
        """阻塞到 start / quit 或超时；返回当前是否处于运行状态。"""
        self._wake.wait(timeout)
        self._wake.clear()
        return self.is_running and not self.quit_requested
