"""UI Driver 包

包含各个模块：
- parser: 协议解析（模型输出 -> 片段 / 指令）
- router: 动作路由与能力矩阵
- browser: 浏览器后端（Playwright）
- desktop: 桌面后端（容器内 xdotool）
- stability: 稳定性等待与轮询定时器
- notifications: 旁路事件广播
- processor: 消息处理（自动 launch + 结果标记）
- core: 指令驱动的 Agent 主循环
"""

from .config import Settings
from .core import AgentResult, DirectiveAgent
from .errors import DirectiveError
from .models import ActionDirective, ActionResponse, Coordinate
from .notifications import Broadcaster
from .parser import ProtocolParser, extract_action, parse_message
from .processor import MessageProcessor
from .router import ActionRouter

__all__ = [
    "Settings",
    "AgentResult",
    "DirectiveAgent",
    "DirectiveError",
    "ActionDirective",
    "ActionResponse",
    "Coordinate",
    "Broadcaster",
    "ProtocolParser",
    "extract_action",
    "parse_message",
    "MessageProcessor",
    "ActionRouter",
]
