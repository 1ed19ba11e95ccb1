"""消息处理：从模型输出中取出指令并执行，返回结果标记"""

import re
from dataclasses import dataclass
from typing import Callable, List, Optional

from .errors import DirectiveError
from .log import setup_logger
from .markup import render_action_result, render_error_result
from .models import BROWSER, ActionDirective, ClickableElement, OmniParserResult
from .parser import extract_action, extract_explore_output
from .router import ActionRouter, resolve_source

logger = setup_logger("uidriver.processor")

_TLDS = r"(?:com|org|net|io|dev|edu|gov|co|app)"
_HAS_DOMAIN = re.compile(rf"\b[a-z0-9-]+\.{_TLDS}\b", re.IGNORECASE)
_ABSOLUTE_URL = re.compile(r"(https?://[^\s'\"<>]+)", re.IGNORECASE)
# 排除邮箱中的域名
_BARE_DOMAIN = re.compile(rf"(?<!@)\b([a-z0-9-]+\.{_TLDS}[^\s'\"<>]*)\b", re.IGNORECASE)
_EMAIL_HINT = re.compile(r"email|mail|e-mail", re.IGNORECASE)
_ACTION_MESSAGE = re.compile(
    r"<perform_action_result>[\s\S]*?<action_message>(.*?)</action_message>[\s\S]*?</perform_action_result>"
)


@dataclass
class ProcessedMessage:
    text: str
    action_result: Optional[str] = None  # perform_action_result 标记
    omni_parser_result: Optional[OmniParserResult] = None


def parse_action_result(text: str) -> str:
    """取出结果标记中的 action_message，没有则原样返回"""
    m = _ACTION_MESSAGE.search(text)
    return m.group(1) if m else text


def detect_launch_url(chunk: str, directive: ActionDirective) -> Optional[str]:
    """
    判断是否需要在执行指令前自动 launch，返回目标 URL。

    文本中出现绝对 URL 或裸域名（不跟在 @ 后）时触发；
    往邮箱输入框里 type 时不触发。
    """
    if directive.action == "launch":
        return None
    if "http://" not in chunk and "https://" not in chunk and not _HAS_DOMAIN.search(chunk):
        return None
    if directive.action == "type" and ("@" in (directive.text or "") or _EMAIL_HINT.search(chunk)):
        return None

    m = _ABSOLUTE_URL.search(chunk)
    if m:
        return m.group(1)
    m = _BARE_DOMAIN.search(chunk)
    if m:
        return f"https://{m.group(1)}"
    return None


class MessageProcessor:
    """每段完整的模型输出最多执行一条指令"""

    def __init__(self, router: ActionRouter, on_active: Optional[Callable[[bool], None]] = None):
        self.router = router
        self.on_active = on_active

    def _set_active(self, value: bool):
        if self.on_active is not None:
            self.on_active(value)

    async def _auto_launch(self, chunk: str, directive: ActionDirective):
        url = detect_launch_url(chunk, directive)
        if url is None:
            return
        logger.info("检测到 URL，自动启动浏览器: %s", url)
        self._set_active(True)
        response = await self.router.execute(
            ActionDirective(action="launch", source=directive.source, url=url)
        )
        if not response.ok:
            # 自动 launch 失败不影响原指令
            logger.warning("自动启动浏览器失败: %s", response.message)

    async def process_message(self, chunk: str, source: str) -> ProcessedMessage:
        directive = extract_action(chunk)
        if directive is None:
            return ProcessedMessage(text=chunk)

        directive.source = source
        try:
            if resolve_source(source) == BROWSER and not self.router.browser_launched:
                await self._auto_launch(chunk, directive)

            self._set_active(True)
            response = await self.router.execute(directive)
        except DirectiveError as e:
            logger.error("执行指令失败: %s", e.message)
            return ProcessedMessage(text=chunk, action_result=render_error_result(e.message))
        finally:
            self._set_active(False)

        return ProcessedMessage(
            text=chunk,
            action_result=render_action_result(response),
            omni_parser_result=response.omni_parser_result,
        )

    def process_explore_message(self, chunk: str) -> List[ClickableElement]:
        return extract_explore_output(chunk).clickable_elements
