"""通知模块：向所有监听者广播旁路事件"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .log import setup_logger

logger = setup_logger("uidriver.notifications")

ACTION_PERFORMED = "action_performed"
URL_CHANGE = "url-change"
INPUT_FOCUSED = "input-focused"
LOADING_STATE_UPDATE = "loading-state-update"
PAGE_READY = "page-ready"
BROWSER_ACTION_ERROR = "browser-action-error"


@dataclass
class Notification:
    event: str
    payload: Any = None
    backend: Optional[str] = None


class Subscription:
    """基于队列的订阅；同一订阅者按发出顺序收到事件"""

    def __init__(self, broadcaster: "Broadcaster"):
        self._broadcaster = broadcaster
        self.queue: "asyncio.Queue[Notification]" = asyncio.Queue()

    async def get(self) -> Notification:
        return await self.queue.get()

    def drain(self) -> List[Notification]:
        """取出当前已排队的全部事件（不等待）"""
        items = []
        while not self.queue.empty():
            items.append(self.queue.get_nowait())
        return items

    def close(self):
        self._broadcaster.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> Notification:
        return await self.queue.get()


class Broadcaster:
    """进程内的发布/订阅通道"""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._listeners: List[Callable[[Notification], None]] = []

    def subscribe(self) -> Subscription:
        sub = Subscription(self)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def add_listener(self, callback: Callable[[Notification], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[Notification], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def emit(self, event: str, payload: Any = None, backend: Optional[str] = None):
        note = Notification(event=event, payload=payload, backend=backend)
        logger.debug("[emit] %s %s", event, payload if payload is not None else "")
        for callback in list(self._listeners):
            try:
                callback(note)
            except Exception as e:
                # 单个监听者出错不影响其他监听者
                logger.warning("监听者处理 %s 失败: %s", event, e)
        for sub in list(self._subscriptions):
            sub.queue.put_nowait(note)
