"""会话上下文：每个后端独占的可变状态，显式传入每个操作"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

from .models import BROWSER, DESKTOP, Coordinate, UrlCacheEntry
from .stability import PollTimer


@dataclass
class BrowserSession:
    """浏览器会话：页面句柄 + 最近一次的 URL / 焦点 / 悬停位置"""
    backend: str = BROWSER
    playwright: Any = None
    browser: Any = None
    page: Any = None
    last_url: Optional[str] = None
    focused_input: Optional[Coordinate] = None
    last_hover: Optional[Coordinate] = None
    loading_timer: PollTimer = field(default_factory=lambda: PollTimer("loading"))

    @property
    def launched(self) -> bool:
        return self.page is not None


@dataclass
class DesktopSession:
    """桌面会话：容器标识 + URL 缓存 + 命令串行锁"""
    container: str
    backend: str = DESKTOP
    initialized: bool = False
    url_cache: Optional[UrlCacheEntry] = None
    # xdotool 有状态（焦点、剪贴板），同一容器内命令必须串行
    command_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
