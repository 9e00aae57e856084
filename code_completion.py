# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from re import Match, Pattern

from errors import AnswerServiceError, Unfillable

# =============================
# 常量
# =============================

BLANK_MARKER = "____"
MAX_REQUIREMENT_LENGTH = 160
DEFAULT_MAX_ATTEMPTS = 2

CODE_FENCE_RE = re.compile(r"```[ \t]*[\w+-]*[ \t]*\n(.*?)```", re.S)
FUNC_CALL_RE = re.compile(r"^([A-Za-z_][\w.]*)\s*\((.*)\)$")
ASSIGNMENT_RE = re.compile(r"^([A-Za-z_][\w.\[\]]*)\s*=(?!=)\s*(.+)$")

# 常见库名；描述文本里出现时作为 from/import 空位的候选
COMMON_LIBRARIES = ("skimage", "numpy", "pandas", "matplotlib", "sklearn", "tensorflow", "torch")
COMMON_MODULES = ("io", "transform", "filters", "color", "data", "stats")

# 题面措辞 → 方法调用（按优先级排列，"ユニーク数" 必须在 "unique" 之前）
METHOD_HINTS = [
    (re.compile(r"ユニーク数|unique count|件数|種類", re.I), "nunique()"),
    (re.compile(r"ユニークな要素|unique|一覧", re.I), "unique()"),
    (re.compile(r"合計|sum", re.I), "sum()"),
    (re.compile(r"平均|mean", re.I), "mean()"),
    (re.compile(r"中央値|median", re.I), "median()"),
    (re.compile(r"最小|min", re.I), "min()"),
    (re.compile(r"最大|max", re.I), "max()"),
    (re.compile(r"標準偏差|std", re.I), "std()"),
]


# =============================
# 数据结构
# =============================

@dataclass
class BlankPosition:
    line_index: int
    column: int
    line: str
    comment: str  # 空位之前最近的一行注释（去掉 #）

    @property
    def before(self) -> str:
        return self.line[: self.column]

    @property
    def after(self) -> str:
        return self.line[self.column + len(BLANK_MARKER):]


@dataclass
class MethodCandidate:
    keyword: str
    method: str
    used: bool = False


@dataclass(frozen=True)
class RequirementRule:
    """一条“文本模式 → 期望语句”规则。

    build 接收匹配对象、完整原文以及已收集到的需求，返回要追加的语句。
    first_only 为 True 时只取第一次匹配。
    """

    name: str
    pattern: Pattern[str]
    build: Callable[[Match[str], str, List[str]], List[str]]
    first_only: bool = False


# =============================
# 需求提取
# =============================

def _balanced_call(text: str, start: int) -> Optional[str]:
    """从 start（函数名开头）起截取括号配平的调用，遇到换行放弃。"""
    depth = 0
    for pos in range(text.index("(", start), len(text)):
        ch = text[pos]
        if ch == "\n":
            return None
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return text[start: pos + 1]
    return None


def _numpy_array_statements(m: Match[str], text: str, found: List[str]) -> List[str]:
    if any("np.array" in req for req in found):
        return []
    return ["train_imgs_np = np.array(train_imgs)", "print(type(train_imgs_np), train_imgs_np.shape)"]


def _print_call(m: Match[str], text: str, found: List[str]) -> List[str]:
    call = _balanced_call(text, m.start())
    return [call] if call else []


REQUIREMENT_RULES: List[RequirementRule] = [
    RequirementRule("quoted", re.compile(r"`([^`]+)`"), lambda m, t, f: [m.group(1)]),
    RequirementRule("print-call", re.compile(r"\bprint\s*\("), _print_call),
    RequirementRule(
        "array-assign",
        re.compile(r"[A-Za-z_]\w*\s*=\s*np\.array\([^)\n]+\)"),
        lambda m, t, f: [m.group(0)],
    ),
    RequirementRule("numpy-convert", re.compile(r"NumPy配列"), _numpy_array_statements, first_only=True),
    RequirementRule(
        "subplot-grid",
        re.compile(r"(\d+)\s*行\s*(\d+)\s*列"),
        lambda m, t, f: [f"plt.subplot({int(m.group(1))}, {int(m.group(2))}, i + 1)"],
        first_only=True,
    ),
    RequirementRule(
        "imshow-train",
        re.compile(r"imshow"),
        lambda m, t, f: ["plt.imshow(train_imgs[i])"] if "train_imgs" in t else [],
        first_only=True,
    ),
    RequirementRule(
        "show-figure",
        re.compile(r"plt\.show|可視化|表示"),
        lambda m, t, f: ["plt.show()"],
        first_only=True,
    ),
]


def derive_requirements(
    question_text: Optional[str],
    hint_text: Optional[str],
    rules: Sequence[RequirementRule] = REQUIREMENT_RULES,
) -> List[str]:
    """从题面与提示中提取“代码里必须出现”的语句，保持发现顺序、去重。

    这是宁多勿少的近似提取：多出来的需求只会导致补一行，不会删代码。
    """
    text = f"{question_text or ''}\n{hint_text or ''}"
    if not text.strip():
        return []

    found: List[str] = []
    for rule in rules:
        matches: Iterable[Match[str]]
        if rule.first_only:
            m = rule.pattern.search(text)
            matches = [m] if m else []
        else:
            matches = rule.pattern.finditer(text)
        for m in matches:
            for snippet in rule.build(m, text, found):
                snippet = (snippet or "").strip()
                if (
                    snippet
                    and len(snippet) <= MAX_REQUIREMENT_LENGTH
                    and BLANK_MARKER not in snippet
                    and snippet not in found
                ):
                    found.append(snippet)
    return found


# =============================
# 需求校验与补齐
# =============================

def normalize_code(text: Optional[str]) -> str:
    """去掉 # 注释与全部空白，用于包含关系比较。"""
    if not text:
        return ""
    return re.sub(r"\s+", "", re.sub(r"#.*$", "", text, flags=re.M))


def find_missing_requirements(code: str, requirements: Sequence[str]) -> List[str]:
    normalized = normalize_code(code)
    missing = []
    for req in requirements or []:
        norm = normalize_code(req)
        if norm and norm not in normalized:
            missing.append(req)
    return missing


def build_requirement_instruction(missing: Sequence[str]) -> str:
    return "\n".join(
        f"- コード内に「{req}」を含め、指示どおりの出力が得られるようにしてください" for req in missing
    )


def _replace_similar_call(code: str, statement: str, protected: Sequence[str]) -> Optional[str]:
    """用 statement 替换同名的已有调用（优先替换含空位的那一处）。

    调用按括号配平整体截取；包含其它需求的调用不动。
    """
    head = statement.split("(")[0].strip()
    if "(" not in statement or not head:
        return None
    pattern = re.compile(rf"^(\s*){re.escape(head)}\s*\(", re.M)
    candidates = []
    for m in pattern.finditer(code):
        call = _balanced_call(code, m.end(1))
        if call is None:
            continue
        norm = normalize_code(call)
        if any(req in norm for req in protected):
            continue
        candidates.append((BLANK_MARKER not in call, m.end(1), m.end(1) + len(call)))
    if not candidates:
        return None
    _, start, end = min(candidates)
    return code[:start] + statement + code[end:]


def enforce_requirements(code: str, requirements: Sequence[str]) -> str:
    """保证每条需求都出现在代码里：能替换就原地替换，否则追加到末尾。

    对已经满足全部需求的代码是幂等的。
    """
    adjusted = code
    protected = [normalize_code(r) for r in requirements or [] if normalize_code(r)]
    for statement in requirements or []:
        norm = normalize_code(statement)
        if not norm or norm in normalize_code(adjusted):
            continue
        others = [req for req in protected if req != norm]
        replaced = _replace_similar_call(adjusted, statement, others)
        if replaced is not None:
            adjusted = replaced
            continue
        adjusted = f"{adjusted.rstrip()}\n{statement}\n"
    for statement in find_missing_requirements(adjusted, requirements):
        logging.warning("替换后仍缺少需求，追加到末尾：%s", statement)
        adjusted = f"{adjusted.rstrip()}\n{statement}\n"
    return adjusted


def validate_execution(output: Optional[str], requirements: Sequence[str]) -> List[str]:
    """检查执行输出是否符合需求；只返回诊断信息，不阻止提交。"""
    issues: List[str] = []
    text = (output or "").strip()
    if not text:
        return ["未获取到执行结果"]

    reqs = list(requirements or [])
    if re.search(r"Traceback|Error|Exception", text, re.I):
        issues.append("执行过程中出现错误")
    if any("print(type(" in r for r in reqs) and "<class" not in text:
        issues.append("未看到 type() 的输出")
    if any(".shape" in r for r in reqs) and not re.search(r"\(\s*\d+(?:\s*,\s*\d+)+\s*\)", text):
        issues.append("未看到 shape 的输出")
    if any("np.array" in r for r in reqs) and not re.search(r"ndarray|numpy", text, re.I):
        issues.append("未看到 NumPy 数组化的结果")
    for req in reqs:
        m = re.match(r"plt\.subplot\(\s*(\d+)\s*,\s*(\d+)", req)
        if m and not re.search(rf"plt\.subplot\(\s*{m.group(1)}\s*,\s*{m.group(2)}", text, re.I):
            issues.append(f"未看到 subplot 的行列指定 ({m.group(1)},{m.group(2)})")
    if any("plt.imshow" in r for r in reqs) and not re.search(r"plt\.imshow", text, re.I):
        issues.append("未看到 imshow 的图像显示")
    return issues


# =============================
# 启发式填空
# =============================

def find_blanks(code: str) -> List[BlankPosition]:
    blanks: List[BlankPosition] = []
    last_comment = ""
    for line_index, line in enumerate(code.split("\n")):
        stripped = line.strip()
        if stripped.startswith("#"):
            last_comment = re.sub(r"^#\s*", "", stripped)
        pos = line.find(BLANK_MARKER)
        while pos != -1:
            blanks.append(BlankPosition(line_index, pos, line, last_comment))
            pos = line.find(BLANK_MARKER, pos + len(BLANK_MARKER))
    return blanks


def extract_method_mapping(description: Optional[str]) -> List[MethodCandidate]:
    """从“・关键词：df.xxx()”形式的说明里提取 关键词→方法 的对应。"""
    mapping: List[MethodCandidate] = []
    for line in (description or "").split("\n"):
        line = line.strip()
        if not line:
            continue
        bullet = re.match(r"^・\s*([^：:]+)[：:](.*)$", line)
        if bullet:
            method = re.search(r"\.\s*([A-Za-z_]\w*)\s*\(\)", bullet.group(2))
            if method:
                mapping.append(MethodCandidate(bullet.group(1).strip(), f"{method.group(1)}()"))
                continue
        only = re.search(r"([A-Za-z_]\w*)\s*\(\)", line)
        if only:
            mapping.append(MethodCandidate("", f"{only.group(1)}()"))
    return mapping


def extract_library_alias(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = re.search(r"([A-Za-z0-9._-]+)\s*(?:は|を)\s*([A-Za-z0-9._-]+)\s*と記述", text)
    if m:
        return m.group(2)
    m = re.search(r"ライブラリ(?:の|は)?\s*([A-Za-z0-9._-]+)", text)
    if m:
        return m.group(1)
    for lib in COMMON_LIBRARIES:
        if lib in text:
            return lib
    return None


def extract_module_keywords(text: Optional[str]) -> List[str]:
    if not text:
        return []
    modules: List[str] = []
    for m in re.finditer(r"([A-Za-z0-9_]+)\s*[:：]", text):
        if m.group(1) not in modules:
            modules.append(m.group(1))
    for keyword in COMMON_MODULES:
        if keyword in text and keyword not in modules:
            modules.append(keyword)
    return modules


def _split_arguments(text: str) -> List[str]:
    return [part.strip() for part in text.split(",") if part.strip()]


def _argument_index(before: str, func_name: str) -> Optional[int]:
    """空位位于 func_name( ... 的第几个参数；不在该调用内时返回 None。"""
    start = before.rfind(f"{func_name}(")
    if start == -1:
        return None
    depth = 0
    index = 0
    for ch in before[start + len(func_name) + 1:]:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            if depth == 0:
                return None
            depth -= 1
        elif ch == "," and depth == 0:
            index += 1
    return index


def requirement_value_for_blank(
    blank: BlankPosition, requirements: Sequence[str], position: int
) -> Optional[str]:
    """从需求语句里直接找空位的值。

    - 调用型需求 f(a, b)：空位在同名调用里时取对应位置的实参
    - 赋值型需求 x = v：空位恰好是 "x = ____" 的右值时取 v
    """
    for req in requirements or []:
        call = FUNC_CALL_RE.match(req)
        if call and call.group(1) in blank.line:
            args = _split_arguments(call.group(2))
            index = _argument_index(blank.before, call.group(1))
            if index is None:
                index = position
            if index < len(args):
                return args[index]
            continue

        assign = ASSIGNMENT_RE.match(req)
        if assign and not blank.after.strip():
            lhs = re.sub(r"\s+", "", blank.before)
            target = re.sub(r"\s+", "", assign.group(1))
            if lhs == target + "=":
                return assign.group(2).strip()
    return None


def guess_fill_value_from_context(
    blank: BlankPosition,
    library_alias: Optional[str],
    module_keywords: Sequence[str],
    reference_text: str,
) -> Optional[str]:
    comment = blank.comment or ""
    before = blank.before.strip()

    if before.endswith("from"):
        if library_alias:
            return library_alias
        m = re.search(r"([A-Za-z0-9._-]+)\s*(?:ライブラリ|library)", comment, re.I)
        if m:
            return m.group(1)

    if "import" in before:
        for keyword in module_keywords:
            if keyword in comment or f"{keyword}モジュール" in reference_text:
                return keyword
        m = re.search(r"[A-Za-z0-9_]+", comment)
        if m:
            return m.group(0)

    # 注释里出现的第一个英数字记号
    m = re.search(r"[A-Za-z0-9_]+", comment)
    return m.group(0) if m else None


def guess_method_from_text(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    for pattern, method in METHOD_HINTS:
        if pattern.search(text):
            return method
    return None


def heuristic_fill_values(
    code: str,
    question_text: Optional[str],
    description: Optional[str] = None,
    hint_text: Optional[str] = None,
    requirements: Sequence[str] = (),
) -> List[Optional[str]]:
    """按从左到右的顺序为每个空位推测一个值；推不出的位置为 None。"""
    blanks = find_blanks(code)
    methods = extract_method_mapping(description)
    reference = f"{question_text or ''}\n{description or ''}\n{hint_text or ''}"
    alias = extract_library_alias(reference)
    modules = extract_module_keywords(reference)
    logging.debug("方法候选：%s / 库：%s / 模块：%s", methods, alias, modules)

    def take(pred: Callable[[MethodCandidate], bool]) -> Optional[str]:
        for cand in methods:
            if not cand.used and pred(cand):
                cand.used = True
                return cand.method
        return None

    values: List[Optional[str]] = []
    line_usage: Dict[int, int] = {}
    for blank in blanks:
        position = line_usage.get(blank.line_index, 0)
        selected = requirement_value_for_blank(blank, requirements, position)
        if not selected:
            selected = guess_fill_value_from_context(blank, alias, modules, reference)
        if not selected and blank.comment:
            selected = take(lambda c: bool(c.keyword) and c.keyword in blank.comment)
        if not selected and question_text:
            selected = take(lambda c: bool(c.keyword) and c.keyword in question_text)
        if not selected:
            selected = take(lambda c: True)
        if not selected:
            selected = guess_method_from_text(blank.comment or question_text or hint_text or "")
        values.append(selected)
        line_usage[blank.line_index] = position + 1
    return values


def fill_blanks(code: str, values: Sequence[str]) -> str:
    parts = code.split(BLANK_MARKER)
    out = [parts[0]]
    for i, rest in enumerate(parts[1:]):
        out.append(values[i] if i < len(values) and values[i] else BLANK_MARKER)
        out.append(rest)
    return "".join(out)


# =============================
# 远程补全
# =============================

def strip_code_fences(text: Optional[str]) -> str:
    """去掉 Markdown 代码块标记；有完整代码块时只取第一个块的内容。"""
    if not text:
        return ""
    m = CODE_FENCE_RE.search(text)
    if m:
        return m.group(1).strip("\n")
    return "\n".join(line for line in text.split("\n") if not line.strip().startswith("```")).strip("\n")


def build_coding_prompt(
    question_text: str,
    template: str,
    description: Optional[str] = None,
    hint_text: Optional[str] = None,
    extra_instructions: str = "",
) -> str:
    lines = [
        "以下のPythonコードには「____」で示された穴埋め箇所があります。",
        "問題文・説明・ヒントに従ってすべての「____」を正しいコードに置き換え、完成したコード全体だけを返してください。",
        "- 説明文やMarkdownのコードブロック記号は不要です",
        "- 穴埋め箇所以外の行はできるだけ変更しないでください",
        "- 「____」を残さないでください",
        "",
        "問題文:",
        question_text or "",
    ]
    if description:
        lines += ["", "説明:", description]
    if hint_text:
        lines += ["", "ヒント:", hint_text]
    lines += ["", "テンプレートコード:", template]
    if extra_instructions:
        lines += ["", "追加の指示:", extra_instructions]
    return "\n".join(lines)


@dataclass
class CodeCompletionResolver:
    """把带空位的代码模板补全成可运行的完整代码。

    先请求远程模型（缺少需求语句时带着缺失清单重试），全部失败后
    退回启发式填空；最后无论走哪条路径都强制补齐需求语句。
    得不到无空位代码时抛出 Unfillable，调用方应保持编辑器原样。
    """

    answerer: object  # 需要提供 complete_code(prompt) -> str
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    last_requirements: List[str] = field(default_factory=list)

    def resolve(
        self,
        template: str,
        question_text: str,
        description: Optional[str] = None,
        hint_text: Optional[str] = None,
        requirements: Optional[Sequence[str]] = None,
    ) -> str:
        blank_count = template.count(BLANK_MARKER)
        if blank_count == 0:
            raise Unfillable("代码中没有空位")

        reqs = list(requirements) if requirements is not None else derive_requirements(question_text, hint_text)
        self.last_requirements = reqs
        logging.info("代码题需求：%s", reqs)

        completed = self._complete_remotely(template, question_text, description, hint_text, reqs)

        if completed is None:
            values = heuristic_fill_values(template, question_text, description, hint_text, reqs)
            logging.info("启发式填空候选：%s", values)
            if len(values) != blank_count or not all(values):
                raise Unfillable("无法为所有空位推测出填充值")
            completed = fill_blanks(template, values)  # type: ignore[arg-type]
            if BLANK_MARKER in completed:
                raise Unfillable("填充后仍有空位")

        final = enforce_requirements(completed, reqs)
        if BLANK_MARKER in final:
            raise Unfillable("最终代码仍含空位")
        return final

    def _complete_remotely(
        self,
        template: str,
        question_text: str,
        description: Optional[str],
        hint_text: Optional[str],
        reqs: Sequence[str],
    ) -> Optional[str]:
        completed: Optional[str] = None
        extra = ""
        for attempt in range(1, self.max_attempts + 1):
            prompt = build_coding_prompt(question_text, template, description, hint_text, extra)
            try:
                raw = self.answerer.complete_code(prompt)  # type: ignore[attr-defined]
            except AnswerServiceError as e:
                logging.warning("远程代码补全失败（第 %d 次）：%s", attempt, e)
                break

            candidate = strip_code_fences(raw).strip()
            if not candidate or candidate == template.strip() or BLANK_MARKER in candidate:
                logging.warning("远程代码补全结果不可用（第 %d 次）", attempt)
                break
            completed = candidate

            missing = find_missing_requirements(completed, reqs)
            if not missing:
                break
            extra = build_requirement_instruction(missing)
            logging.info("补全结果缺少需求语句，带着附加指示重试：%s", missing)
        return completed
