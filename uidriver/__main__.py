"""命令行入口：python -m uidriver "任务" --source browser --url https://example.com"""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.prompt import Prompt

from .config import Settings
from .core import DirectiveAgent
from .errors import DirectiveError
from .llm import ModelClient
from .models import SOURCE_ALIASES
from .notifications import Broadcaster
from .router import ActionRouter

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="uidriver", description="用模型指令驱动浏览器或桌面")
    parser.add_argument("task", help="任务描述")
    parser.add_argument("--source", default="browser", choices=sorted(SOURCE_ALIASES), help="执行后端")
    parser.add_argument("--url", default=None, help="起始地址（仅浏览器后端）")
    parser.add_argument("--max-steps", type=int, default=20)
    parser.add_argument("--system-prompt", type=Path, default=None, help="自定义系统提示词文件")
    parser.add_argument("--no-dotenv", action="store_true", help="不读取 .env")
    return parser


async def _ask(question: str) -> str:
    return await asyncio.to_thread(Prompt.ask, f"[bold cyan]?[/bold cyan] {question}")


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env(dotenv=not args.no_dotenv)
    system_prompt = args.system_prompt.read_text(encoding="utf-8") if args.system_prompt else None

    router = ActionRouter(settings, Broadcaster())
    agent = DirectiveAgent(ModelClient.from_settings(settings), router, console=console, ask_user=_ask)
    try:
        result = await agent.run(
            args.task,
            args.source,
            start_url=args.url,
            max_steps=args.max_steps,
            system_prompt=system_prompt,
        )
    except DirectiveError as e:
        console.print(f"[bold red]✗ {e.kind}[/bold red]: {e.message}")
        return 1

    if not result.completed:
        console.print(f"[yellow]任务未完成[/yellow]（{result.steps} 步）")
        return 1
    return 0


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
