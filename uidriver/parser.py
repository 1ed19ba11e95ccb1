"""协议解析模块：把模型输出拆成有序的片段，并提取 perform_action 指令"""

import html
import json
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .log import setup_logger
from .models import (
    ActionDirective,
    ActionResult,
    ClickableElement,
    CompleteTask,
    ExploreOutput,
    FollowupQuestion,
    OmniParserResult,
    TextPart,
)

logger = setup_logger("uidriver.parser")


def _tag(name: str) -> "re.Pattern":
    return re.compile(rf"<{name}>([\s\S]*?)</{name}>")


# perform_action 的子字段：字段名 -> 标签名
ACTION_FIELDS = {
    "action": "action",
    "url": "url",
    "coordinate": "coordinate",
    "text": "text",
    "key": "key",
    "direction": "direction",
    "selector": "selector",
    "about_this_action": "about_this_action",
    "marker_number": "marker_number",
}
_ACTION_PATTERNS = {name: _tag(tag) for name, tag in ACTION_FIELDS.items()}

_STATUS = re.compile(r"<action_status>\s*(success|error)\s*</action_status>")
_MESSAGE = _tag("action_message")
_SCREENSHOT = _tag("screenshot")
_OMNI = _tag("omni_parser")
_QUESTION = _tag("question")
_RESULT = _tag("result")
_COMMAND = _tag("command")
_CLICKABLE = re.compile(
    r"<clickable_element>[\s\S]*?<text>([\s\S]*?)</text>[\s\S]*?"
    r"<coordinates>([\s\S]*?)</coordinates>[\s\S]*?"
    r"<about_this_element>([\s\S]*?)</about_this_element>[\s\S]*?</clickable_element>"
)


def _field(pattern: "re.Pattern", body: str) -> Optional[str]:
    """匹配单个子字段，去掉首尾空白但保留内部字符（坐标中的逗号等）"""
    m = pattern.search(body)
    if not m:
        return None
    value = m.group(1).strip()
    return value or None


def extract_perform_action(body: str) -> Optional[ActionDirective]:
    values = {name: _field(pattern, body) for name, pattern in _ACTION_PATTERNS.items()}
    if not values["action"]:
        return None
    return ActionDirective(**values)


def extract_action_result(body: str) -> Optional[ActionResult]:
    status = _STATUS.search(body)
    message = _MESSAGE.search(body)
    if not status or not message:
        return None

    omni = None
    omni_raw = _OMNI.search(body)
    if omni_raw and omni_raw.group(1).strip():
        try:
            omni = OmniParserResult.from_dict(json.loads(html.unescape(omni_raw.group(1))))
        except (ValueError, TypeError, AttributeError) as e:
            logger.debug("omni_parser 内容无法解析: %s", e)

    screenshot = _SCREENSHOT.search(body)
    return ActionResult(
        status=status.group(1),
        message=html.unescape(message.group(1)),
        screenshot=screenshot.group(1) if screenshot and screenshot.group(1) else None,
        omni_parser_result=omni,
    )


def extract_followup_question(body: str) -> Optional[FollowupQuestion]:
    question = _field(_QUESTION, body)
    return FollowupQuestion(question=question) if question else None


def extract_complete_task(body: str) -> Optional[CompleteTask]:
    m = _RESULT.search(body)
    if not m or not m.group(1).strip():
        return None
    return CompleteTask(result=m.group(1).strip(), command=_field(_COMMAND, body))


def extract_explore_output(body: str) -> ExploreOutput:
    elements = [
        ClickableElement(text=t.strip(), coordinates=c.strip(), about_this_element=a.strip())
        for t, c, a in _CLICKABLE.findall(body)
    ]
    return ExploreOutput(clickable_elements=elements)


@dataclass(frozen=True)
class TagPair:
    """一对开闭标签以及对应的字段提取函数"""
    name: str
    extractor: Callable[[str], object]

    @property
    def open(self) -> str:
        return f"<{self.name}>"

    @property
    def close(self) -> str:
        return f"</{self.name}>"


TAG_TABLE: Tuple[TagPair, ...] = (
    TagPair("ask_followup_question", extract_followup_question),
    TagPair("complete_task", extract_complete_task),
    TagPair("perform_action", extract_perform_action),
    TagPair("perform_action_result", extract_action_result),
    TagPair("explore_output", extract_explore_output),
)


class ProtocolParser:
    """
    单遍扫描器：游标 + 标签表。

    - 在剩余文本中找最早出现的开标签，之前的文本作为 TextPart；
    - 不支持嵌套，第一个闭标签生效；
    - 没有闭标签时把开标签当作普通文本，并从它之后继续扫描。
    """

    def __init__(self, tags: Tuple[TagPair, ...] = TAG_TABLE):
        self.tags = tags

    def _earliest(self, text: str, cursor: int) -> Optional[Tuple[int, TagPair]]:
        best = None
        for pair in self.tags:
            idx = text.find(pair.open, cursor)
            if idx != -1 and (best is None or idx < best[0]):
                best = (idx, pair)
        return best

    def scan(self, text: str):
        """逐个产出 (TagPair 或 None, 片段文本)；None 表示普通文本"""
        cursor = 0
        length = len(text)
        while cursor < length:
            found = self._earliest(text, cursor)
            if found is None:
                yield None, text[cursor:]
                return

            start, pair = found
            if start > cursor:
                yield None, text[cursor:start]

            body_start = start + len(pair.open)
            close = text.find(pair.close, body_start)
            if close == -1:
                yield None, pair.open
                cursor = body_start
                continue

            end = close + len(pair.close)
            yield pair, text[start:end]
            cursor = end

    def parse_message(self, text: str) -> List[object]:
        parts: List[object] = []
        for pair, chunk in self.scan(text or ""):
            if pair is None:
                content = chunk.strip()
                if content:
                    parts.append(TextPart(content=content))
                continue

            part = pair.extractor(chunk)
            if part is not None:
                parts.append(part)
        return parts

    def extract_action(self, text: str) -> Optional[ActionDirective]:
        """只返回第一个带 action 的 perform_action，后续的全部忽略"""
        for pair, chunk in self.scan(text or ""):
            if pair is None or pair.name != "perform_action":
                continue
            directive = extract_perform_action(chunk)
            if directive is not None:
                return directive
        return None


_default_parser = ProtocolParser()


def parse_message(text: str) -> List[object]:
    return _default_parser.parse_message(text)


def extract_action(text: str) -> Optional[ActionDirective]:
    return _default_parser.extract_action(text)
