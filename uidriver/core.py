"""指令驱动智能体：模型输出 -> 指令执行 -> 结果回传 的主循环"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

from rich.console import Console
from rich.markup import escape

from .history import ActionHistory
from .llm import ModelClient, build_system_prompt
from .log import setup_logger
from .markup import render_action_result, split_screenshot
from .models import ActionDirective, ActionResponse, CompleteTask, FollowupQuestion
from .notifications import URL_CHANGE, Notification
from .parser import extract_action, extract_action_result, parse_message
from .processor import MessageProcessor
from .router import ActionRouter, resolve_source

logger = setup_logger("uidriver.core")

CONTINUE_PROMPT = "上一轮没有可执行的指令。请发出一条 <perform_action>，或使用 <complete_task> 结束任务。"
REPEAT_WARNING = "⚠ 检测到连续重复的相同操作，请换一种方式或确认任务是否已完成。"


@dataclass
class AgentResult:
    completed: bool
    result: Optional[str]
    steps: int


class DirectiveAgent:
    """
    驱动模型一步一步地完成任务。

    每轮：流式拿到完整输出 -> 结束 / 提问 / 执行指令 -> 把结果标记和截图追加到对话。
    """

    def __init__(
        self,
        model: ModelClient,
        router: ActionRouter,
        console: Optional[Console] = None,
        ask_user: Optional[Callable[[str], Awaitable[str]]] = None,
    ):
        self.model = model
        self.router = router
        self.processor = MessageProcessor(router)
        self.history = ActionHistory()
        self.console = console or Console()
        self.ask_user = ask_user

    def _on_notification(self, note: Notification):
        if note.event == URL_CHANGE and isinstance(note.payload, str):
            self.history.record_url(note.payload)

    def _result_message(self, markup: str, warning: Optional[str]) -> Dict:
        text, shot = split_screenshot(markup)
        if warning:
            text = f"{text}\n{warning}"
        content: List[Dict] = [{"type": "text", "text": text}]
        if shot:
            content.append({"type": "image_url", "image_url": {"url": f"data:image/png;base64,{shot}"}})
        return {"role": "user", "content": content}

    async def _launch(self, source: str, start_url: str) -> ActionResponse:
        directive = ActionDirective(action="launch", source=source, url=start_url)
        response = await self.router.execute(directive)
        self.history.record(directive, response.status, response.message)
        self.console.print(f"[bold]launch[/bold] {start_url} → {response.status}: {escape(response.message)}")
        return response

    async def run(
        self,
        task: str,
        source: str,
        start_url: Optional[str] = None,
        max_steps: int = 20,
        system_prompt: Optional[str] = None,
    ) -> AgentResult:
        """执行任务的主循环"""
        source = resolve_source(source)
        await self.router.start()
        self.router.broadcaster.add_listener(self._on_notification)

        messages: List[Dict] = [
            {"role": "system", "content": system_prompt or build_system_prompt(source)},
            {"role": "user", "content": f"任务：{task}"},
        ]

        try:
            if start_url:
                response = await self._launch(source, start_url)
                messages.append(self._result_message(render_action_result(response), None))

            for step in range(max_steps):
                self.console.rule(f"Step {step + 1}/{max_steps}")
                text = await self.model.complete(messages)
                messages.append({"role": "assistant", "content": text})

                parts = parse_message(text)
                done = next((p for p in parts if isinstance(p, CompleteTask)), None)
                if done is not None:
                    self.console.print(f"[bold green]✓ 任务完成[/bold green] {escape(done.result)}")
                    return AgentResult(completed=True, result=done.result, steps=step + 1)

                question = next((p for p in parts if isinstance(p, FollowupQuestion)), None)
                if question is not None:
                    if self.ask_user is None:
                        return AgentResult(completed=False, result=question.question, steps=step + 1)
                    answer = await self.ask_user(question.question)
                    messages.append({"role": "user", "content": answer})
                    continue

                processed = await self.processor.process_message(text, source)
                if processed.action_result is None:
                    messages.append({"role": "user", "content": CONTINUE_PROMPT})
                    continue

                directive = extract_action(text)
                outcome = extract_action_result(processed.action_result)
                warning = None
                if directive is not None and outcome is not None:
                    self.console.print(
                        f"[bold]{directive.action}[/bold] → {outcome.status}: {escape(outcome.message)}"
                    )
                    self.history.record(directive, outcome.status, outcome.message)
                    if self.history.is_repeated_action(directive):
                        logger.warning("检测到重复操作: %s", directive.action)
                        warning = REPEAT_WARNING
                messages.append(self._result_message(processed.action_result, warning))

            logger.warning("达到最大步数 %d，任务未完成", max_steps)
            return AgentResult(completed=False, result=None, steps=max_steps)
        finally:
            await self.router.close()
            self.router.broadcaster.remove_listener(self._on_notification)
            self.console.print(f"✓ Agent 执行结束（共 {self.history.step_counter} 步）")
