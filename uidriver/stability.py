"""稳定性模块：动作之后等待界面停止变化

所有等待都有硬超时；超时视为“可能已稳定”，只记日志，不算失败。

- RaceStrategy：结构就绪信号（domcontentloaded）与短延迟赛跑，浏览器默认使用；
- ConvergenceStrategy：按固定间隔采样内容尺寸，连续 N 次不变即认为稳定；
- FixedSettle：桌面后端没有任何事件信号，只能固定等待。
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from .errors import StabilityTimeout
from .log import setup_logger

logger = setup_logger("uidriver.stability")

# 渲染表面的“尺寸类”信号
CONTENT_SIZE_JS = """
() => {
    const body = document.body;
    if (!body) return null;
    return [body.scrollHeight, body.scrollWidth, document.getElementsByTagName('*').length];
}
"""


class RaceStrategy:
    """等待 domcontentloaded 或回退延迟，先到者为准；跳过动画 / 网络的深度等待"""

    name = "race"

    def __init__(self, timeout_ms: int = 2000, load_state_cap_ms: int = 1500, fallback_cap_ms: int = 1000):
        self.timeout_ms = timeout_ms
        self.load_state_cap_ms = load_state_cap_ms
        self.fallback_cap_ms = fallback_cap_ms

    async def _load_state(self, page):
        try:
            await page.wait_for_load_state(
                "domcontentloaded", timeout=min(self.timeout_ms, self.load_state_cap_ms)
            )
        except Exception as e:
            logger.debug("domcontentloaded 等待结束: %s", e)

    async def wait(self, page) -> bool:
        tasks = [
            asyncio.ensure_future(self._load_state(page)),
            asyncio.ensure_future(asyncio.sleep(min(self.timeout_ms, self.fallback_cap_ms) / 1000)),
        ]
        try:
            done, _ = await asyncio.wait(
                tasks, timeout=self.timeout_ms / 1000, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
        if not done:
            logger.warning("%s", StabilityTimeout("Stability wait timed out, continuing"))
            return False
        logger.debug("基础稳定性检查完成")
        return True


class ConvergenceStrategy:
    """连续 required_samples 次采样结果不变即稳定"""

    name = "convergence"

    def __init__(self, timeout_ms: int = 2000, interval_ms: int = 200, required_samples: int = 3):
        self.timeout_ms = timeout_ms
        self.interval_ms = interval_ms
        self.required_samples = max(2, required_samples)

    async def converge(self, sample: Callable[[], Awaitable[Any]]) -> bool:
        async def _loop():
            last = object()
            streak = 0
            while True:
                current = await sample()
                streak = streak + 1 if current == last else 1
                last = current
                if streak >= self.required_samples:
                    return
                await asyncio.sleep(self.interval_ms / 1000)

        try:
            await asyncio.wait_for(_loop(), timeout=self.timeout_ms / 1000)
            return True
        except asyncio.TimeoutError:
            logger.warning("%s", StabilityTimeout(f"Content did not converge within {self.timeout_ms}ms"))
            return False

    async def wait(self, page) -> bool:
        async def sample():
            try:
                return await page.evaluate(CONTENT_SIZE_JS)
            except Exception as e:
                logger.debug("尺寸采样失败: %s", e)
                return None

        return await self.converge(sample)


class FixedSettle:
    """固定等待；只是近似，没有任何完成信号"""

    name = "fixed"

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def settle(self, delay_ms: int):
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)


def build_browser_strategy(settings):
    """按配置为浏览器后端选择策略"""
    if settings.stability_strategy == "convergence":
        return ConvergenceStrategy(
            timeout_ms=settings.stability_timeout_ms,
            interval_ms=settings.convergence_interval_ms,
            required_samples=settings.convergence_samples,
        )
    return RaceStrategy(timeout_ms=settings.stability_timeout_ms)


class PollTimer:
    """
    适配器实例范围内的可取消定时任务。

    同一时间最多一个任务：arm 之前先取消旧任务；会话销毁时 cancel。
    """

    def __init__(self, name: str):
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self.generation = 0

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, factory: Callable[[], Awaitable[None]]) -> asyncio.Task:
        self.cancel()
        self.generation += 1
        self._task = asyncio.ensure_future(factory())
        logger.debug("[timer] %s armed (#%d)", self.name, self.generation)
        return self._task

    def cancel(self):
        if self.active:
            self._task.cancel()
            logger.debug("[timer] %s cancelled (#%d)", self.name, self.generation)
        self._task = None

    async def wait(self):
        """等待当前任务结束（测试与关闭时使用）"""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
