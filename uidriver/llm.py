"""模型模块：以流式方式调用 LLM，拼出完整的一轮输出"""

from typing import Callable, Dict, List, Optional

from openai import AsyncOpenAI

from .config import Settings
from .log import setup_logger
from .models import BROWSER

logger = setup_logger("uidriver.llm")

_BROWSER_ACTIONS = "launch, click, type, keyPress, scroll_up, scroll_down, scroll, back, hover, getUrl, detectLoading, submitForm"
_DESKTOP_ACTIONS = "click, doubleClick, type, keyPress, scroll_up, scroll_down, scroll, getUrl"


def build_system_prompt(source: str) -> str:
    actions = _BROWSER_ACTIONS if source == BROWSER else _DESKTOP_ACTIONS
    return (
        "你是一个 UI 自动化智能体，通过截图观察界面，通过 XML 标签发出指令。\n"
        f"当前后端：{source}\n"
        "【极其重要的规则】：\n"
        "1. 每次回复最多包含一个工具标签，发出指令后等待 <perform_action_result>。\n"
        "2. 只能操作截图中清晰可见的元素，坐标写成 x,y，不要猜测。\n"
        "3. 不要重复执行同一个失败的操作。\n"
        "4. 任务完成后使用 <complete_task>，需要用户补充信息时使用 <ask_followup_question>。\n"
        "指令格式：\n"
        "<perform_action>\n"
        "<action>click</action>\n"
        "<coordinate>450,300</coordinate>\n"
        "<about_this_action>点击登录按钮</about_this_action>\n"
        "</perform_action>\n"
        "可用子标签：action, url, coordinate, text, key, direction(up|down), selector。\n"
        f"可用动作：{actions}\n"
        "完成：<complete_task><result>结果说明</result></complete_task>\n"
        "提问：<ask_followup_question><question>问题</question></ask_followup_question>"
    )


class ModelClient:
    """对 AsyncOpenAI 的薄封装：流式接收，回调每个增量片段"""

    def __init__(self, client: AsyncOpenAI, model: str, temperature: float = 0):
        self.client = client
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelClient":
        client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        return cls(client, settings.openai_model)

    async def complete(
        self,
        messages: List[Dict],
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> str:
        """返回完整的一轮输出；指令只在整轮结束后解析"""
        stream = await self.client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            messages=messages,
            stream=True,
        )

        chunks: List[str] = []
        async for event in stream:
            if not event.choices:
                continue
            delta = event.choices[0].delta.content
            if not delta:
                continue
            chunks.append(delta)
            if on_delta is not None:
                on_delta(delta)

        text = "".join(chunks)
        logger.debug("模型输出 %d 字符", len(text))
        return text
