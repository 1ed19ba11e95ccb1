"""响应标记：把 ActionResponse 序列化为 perform_action_result"""

import html
import json
import re
from typing import Optional, Tuple

from .models import ActionResponse


def render_action_result(response: ActionResponse) -> str:
    """生成回传给模型的 perform_action_result 标记；消息和 omni_parser 内容做转义"""
    status = "success" if response.ok else "error"
    message = response.message
    if message is None:
        message = response.error or "Action completed"
    lines = [
        "<perform_action_result>",
        f"<action_status>{status}</action_status>",
        f"<action_message>{html.escape(message, quote=False)}</action_message>",
    ]
    if response.screenshot:
        lines.append(f"<screenshot>{response.screenshot}</screenshot>")
    if response.omni_parser_result is not None:
        payload = json.dumps(response.omni_parser_result.to_dict(), ensure_ascii=False)
        lines.append(f"<omni_parser>{html.escape(payload, quote=False)}</omni_parser>")
    lines.append("</perform_action_result>")
    return "\n".join(lines)


def render_error_result(message: str) -> str:
    return render_action_result(ActionResponse.failure(message))


_SCREENSHOT = re.compile(r"\n?<screenshot>([\s\S]*?)</screenshot>")


def split_screenshot(markup: str) -> Tuple[str, Optional[str]]:
    """把截图从结果标记中拆出来，单独作为图片发送给模型"""
    m = _SCREENSHOT.search(markup)
    if not m:
        return markup, None
    return markup[:m.start()] + markup[m.end():], m.group(1) or None
