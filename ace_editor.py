# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from selenium.common.exceptions import WebDriverException

from errors import EditorUnavailable
from page_dom import PageDom

# 页面上只要出现其一就视为代码题
EDITOR_PRESENCE_CSS = ".ace_editor, #operation-editor, .p-editor-operation"

_APPLY_VALUE_JS = r"""
function applyValue(ed, value) {
    if (!ed || typeof ed.setValue !== 'function') { return false; }
    ed.setValue(value, -1);
    if (ed.session && ed.session.selection && ed.session.selection.clearSelection) {
        ed.session.selection.clearSelection();
    }
    try { if (ed.resize) { ed.resize(true); } } catch (e) {}
    try { if (ed.renderer && ed.renderer.updateFull) { ed.renderer.updateFull(true); } } catch (e) {}
    return true;
}
"""

# ---- 全局注册表：ace.edit(id / element) ----
_REGISTRY_EDITOR_JS = r"""
function registryEditor() {
    if (!window.ace || typeof ace.edit !== 'function') { return null; }
    var targets = [];
    if (document.getElementById('operation-editor')) { targets.push('operation-editor'); }
    var el = document.querySelector('.ace_editor');
    if (el) { targets.push(el); }
    for (var i = 0; i < targets.length; i++) {
        try {
            var ed = ace.edit(targets[i]);
            if (ed && typeof ed.getValue === 'function') { return ed; }
        } catch (e) {}
    }
    return null;
}
"""

# ---- 挂在 DOM 节点上的实例：el.env.editor ----
_DOM_EDITOR_JS = r"""
function domEditor() {
    var nodes = [];
    var op = document.querySelector('#operation-editor');
    if (op) { nodes.push(op); }
    var els = document.querySelectorAll('.ace_editor');
    for (var i = 0; i < els.length; i++) { nodes.push(els[i]); }
    for (var j = 0; j < nodes.length; j++) {
        var ed = nodes[j].env && nodes[j].env.editor;
        if (ed && typeof ed.getValue === 'function') { return ed; }
    }
    return null;
}
"""

_TEXT_LAYER_READ_JS = r"""
var layer = document.querySelector('.ace_text-layer');
if (!layer) { return null; }
var lines = layer.querySelectorAll('.ace_line');
if (lines.length) {
    return Array.prototype.map.call(lines, function (l) {
        return l.textContent.replace(/\u00a0/g, ' ');
    }).join('\n');
}
return layer.textContent.replace(/\u00a0/g, ' ');
"""


@dataclass(frozen=True)
class EditorStrategy:
    name: str
    read_js: str
    write_js: Optional[str] = None  # None 表示只读（例如仅能拿到渲染后的文本）

    @property
    def writable(self) -> bool:
        return self.write_js is not None


def _editor_strategy(name: str, finder_js: str, finder_call: str) -> EditorStrategy:
    read_js = finder_js + f"\nvar ed = {finder_call};\nreturn ed ? ed.getValue() : null;"
    write_js = finder_js + _APPLY_VALUE_JS + f"\nreturn applyValue({finder_call}, arguments[0]);"
    return EditorStrategy(name, read_js, write_js)


EDITOR_STRATEGIES: List[EditorStrategy] = [
    _editor_strategy("ace-registry", _REGISTRY_EDITOR_JS, "registryEditor()"),
    _editor_strategy("dom-instance", _DOM_EDITOR_JS, "domEditor()"),
    EditorStrategy("text-layer", _TEXT_LAYER_READ_JS),
]


class AceEditorBridge:
    """按固定优先级尝试多种方式读写 Ace 编辑器。

    成功过的可写策略会缓存到当前页面生命周期内；通过它写入失败时立即作废。
    """

    def __init__(self, dom: PageDom, strategies: Sequence[EditorStrategy] = EDITOR_STRATEGIES):
        self.dom = dom
        self.strategies = list(strategies)
        self.cached: Optional[EditorStrategy] = None

    def invalidate(self) -> None:
        self.cached = None

    def is_present(self) -> bool:
        return self.dom.query(EDITOR_PRESENCE_CSS) is not None

    def _ordered(self, writable_only: bool = False) -> List[EditorStrategy]:
        order = [self.cached] if self.cached else []
        order += [s for s in self.strategies if s is not self.cached]
        return [s for s in order if s.writable or not writable_only]

    def read(self) -> str:
        for strategy in self._ordered():
            try:
                value = self.dom.run_script(strategy.read_js)
            except WebDriverException as e:
                logging.debug("编辑器读取失败（%s）：%s", strategy.name, e)
                continue
            if isinstance(value, str):
                if strategy.writable:
                    self.cached = strategy
                logging.info("通过 %s 读取到编辑器内容（%d 字符）", strategy.name, len(value))
                return value
        raise EditorUnavailable("无法读取编辑器内容")

    def write(self, code: str) -> None:
        for strategy in self._ordered(writable_only=True):
            try:
                ok = self.dom.run_script(strategy.write_js, code)
            except WebDriverException as e:
                logging.warning("编辑器写入失败（%s）：%s", strategy.name, e)
                ok = False
            if ok:
                self.cached = strategy
                logging.info("通过 %s 写入编辑器", strategy.name)
                return
            if strategy is self.cached:
                self.cached = None
        raise EditorUnavailable("所有方式都无法写入编辑器")
