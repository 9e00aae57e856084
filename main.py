# -*- coding: utf-8 -*-
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.chrome.service import Service

from answer_client import DEFAULT_BASE_URL, DEFAULT_CODING_MODEL, DEFAULT_MODEL
from code_completion import CodeCompletionResolver
from commands import CommandDispatcher, ConsoleController
from page_dom import PageDom
from quest_navigator import QuestNavigator
from quiz_answerer import QuizAnswerer
from settings_store import DEFAULT_DELAY_MS, DEFAULT_STATE_PATH, RunController, SettingsStore


# =============================
# 启动与参数读取
# =============================

def load_config(cfg_path: Path = Path("config.json")) -> dict:
    """读取配置文件；文件不存在时全部使用默认值。"""
    if not cfg_path.exists():
        logging.warning("未找到 %s，使用默认配置", cfg_path)
        return {}
    return json.loads(cfg_path.read_text(encoding="utf-8"))


def build_driver(chromedriver_path: str) -> webdriver.Chrome:
    """创建并返回 Chrome WebDriver；支持通过 HEADLESS=1 环境变量启用无头模式。"""
    options = webdriver.ChromeOptions()
    if os.getenv("HEADLESS") == "1":
        options.add_argument("--headless=new")
    options.add_argument("--start-maximized")
    try:
        if chromedriver_path:
            service = Service(executable_path=chromedriver_path)
            return webdriver.Chrome(service=service, options=options)
        return webdriver.Chrome(options=options)
    except WebDriverException as e:
        raise RuntimeError(f"启动 Chrome 失败：{e}")


def open_store(cfg: dict) -> SettingsStore:
    """打开状态文件；首次运行时用 config.json 中的 api_key / delay_ms 初始化。"""
    store = SettingsStore(Path(cfg.get("state_path") or DEFAULT_STATE_PATH))
    if not store.path.exists():
        store.update(
            apiKey=cfg.get("api_key") or None,
            delayMs=int(cfg.get("delay_ms") or DEFAULT_DELAY_MS),
            isRunning=False,
        )
    return store


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(message)s",
    )

    cfg = load_config()
    store = open_store(cfg)

    start_url = cfg.get("start_url") or input("请输入课程页面链接：").strip()
    if not start_url:
        raise SystemExit("未输入课程页面链接，已退出。")

    answerer = QuizAnswerer(
        store,
        base_url=cfg.get("base_url") or DEFAULT_BASE_URL,
        model=cfg.get("model") or DEFAULT_MODEL,
        coding_model=cfg.get("coding_model") or DEFAULT_CODING_MODEL,
    )
    logging.info("AI 状态：%s", answerer.status().message)

    driver = build_driver(cfg.get("chromedriver_path", ""))
    try:
        driver.get(start_url)
        input("请在浏览器中完成登录并打开题目页面，然后按回车继续……")

        dom = PageDom(driver)
        controller = RunController(store)
        navigator = QuestNavigator(dom, controller, answerer, resolver=CodeCompletionResolver(answerer))

        console = ConsoleController(CommandDispatcher(controller, answerer))
        console.start()
        navigator.serve()
    finally:
        if os.name == "nt":
            os.system("pause")
        try:
            driver.quit()
        except WebDriverException:
            pass


if __name__ == "__main__":
    main()
