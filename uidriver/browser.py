"""浏览器后端：在 Playwright 页面上执行指令"""

import asyncio
import base64
from typing import Dict, List, Optional

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from . import perception
from .backend import Backend, Handler
from .config import BrowserSettings
from .errors import DirectiveError, InteractionError, NotReadyError
from .log import setup_logger
from .models import BROWSER, ActionParams, ActionResponse, Coordinate
from .notifications import (
    ACTION_PERFORMED,
    BROWSER_ACTION_ERROR,
    INPUT_FOCUSED,
    LOADING_STATE_UPDATE,
    PAGE_READY,
    URL_CHANGE,
    Broadcaster,
)
from .omniparser import OmniParserClient
from .session import BrowserSession
from .stability import build_browser_strategy

logger = setup_logger("uidriver.browser")

# 通用修饰键名 -> Playwright 键名；control 映射到平台加速键
KEY_ALIASES = {
    "control": "ControlOrMeta",
    "ctrl": "ControlOrMeta",
    "cmd": "Meta",
    "command": "Meta",
    "meta": "Meta",
    "super": "Meta",
    "alt": "Alt",
    "option": "Alt",
    "shift": "Shift",
    "enter": "Enter",
    "return": "Enter",
    "esc": "Escape",
    "escape": "Escape",
    "del": "Delete",
    "delete": "Delete",
    "backspace": "Backspace",
    "tab": "Tab",
    "space": "Space",
}


def normalize_key(key: str) -> str:
    """把 "control+a" 之类的组合键转换为 Playwright 可识别的形式"""
    parts = [p.strip() for p in key.split("+")]
    return "+".join(KEY_ALIASES.get(p.lower(), p) for p in parts if p)


class BrowserBackend(Backend):
    """浏览器后端：坐标驱动的点击、输入、按键、滚动、悬停、加载检测"""

    name = BROWSER

    def __init__(
        self,
        settings: BrowserSettings,
        broadcaster: Broadcaster,
        omni_parser: Optional[OmniParserClient] = None,
    ):
        super().__init__(broadcaster, omni_parser)
        self.settings = settings
        self.stability = build_browser_strategy(settings)

    def handlers(self) -> Dict[str, Handler]:
        return {
            "launch": self.launch,
            "click": self.click,
            "type": self.type,
            "keyPress": self.key_press,
            "scroll_up": self.scroll_up,
            "scroll_down": self.scroll_down,
            "scroll": self.scroll,
            "back": self.back,
            "hover": self.hover,
            "getUrl": self.get_url,
            "detectLoading": self.detect_loading,
            "submitForm": self.submit_form,
        }

    async def execute_action(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        handler = self.handlers().get(params.action)
        if handler is None:
            return ActionResponse.failure(f"Unsupported action: {params.action}")
        if params.action != "launch" and not session.launched:
            error = NotReadyError("Browser not launched")
            self._emit_error(session, params, error.message)
            return ActionResponse.from_error(error)

        try:
            response = await handler(session, params)
        except DirectiveError as e:
            logger.error("[%s] %s: %s", params.action, e.kind, e.message)
            self._emit_error(session, params, e.message)
            return ActionResponse.from_error(e)
        except Exception as e:
            message = f"{params.action} action failed: {e}"
            logger.error("[%s] 执行失败: %s", params.action, e)
            self._emit_error(session, params, message)
            return ActionResponse.failure(message, error=str(e))

        logger.info("✓ %s -> %s", params.action, response.message)
        return await self.confirm(session, response)

    async def screenshot(self, session: BrowserSession) -> Optional[str]:
        if not session.launched:
            return None
        data = await session.page.screenshot(type="png")
        return base64.b64encode(data).decode("ascii")

    async def close(self, session: BrowserSession):
        session.loading_timer.cancel()
        if session.browser is not None:
            await session.browser.close()
        if session.playwright is not None:
            await session.playwright.stop()
        session.page = session.browser = session.playwright = None

    # ──────────────────────────────────────────────
    # 内部工具
    # ──────────────────────────────────────────────

    def _emit_error(self, session: BrowserSession, params: ActionParams, message: str):
        url = params.url or session.last_url
        self.emit(BROWSER_ACTION_ERROR, {"message": message, "action": params.action, "url": url})

    async def _sleep_ms(self, ms: int):
        if ms > 0:
            await asyncio.sleep(ms / 1000)

    async def _wait_stable(self, session: BrowserSession):
        await self.stability.wait(session.page)

    def _track_url(self, session: BrowserSession, before: Optional[str]) -> str:
        current = session.page.url
        if current != before:
            self.emit(URL_CHANGE, current)
        session.last_url = current
        return current

    async def _with_navigation(self, page, action) -> bool:
        """在有界的导航等待窗口内执行 action；返回是否发生了导航"""
        try:
            async with page.expect_navigation(
                wait_until="domcontentloaded", timeout=self.settings.navigation_timeout_ms
            ):
                await action()
            return True
        except PlaywrightTimeoutError:
            return False

    async def _click_point(self, page, coordinate: Coordinate):
        await page.mouse.click(coordinate.x, coordinate.y)
        await self._sleep_ms(self.settings.focus_settle_ms)

    # ──────────────────────────────────────────────
    # 动作
    # ──────────────────────────────────────────────

    async def launch(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        """首次调用时启动浏览器，之后的 launch 只做跳转"""
        if not session.launched:
            session.playwright = await async_playwright().start()
            session.browser = await session.playwright.chromium.launch(headless=self.settings.headless)
            session.page = await session.browser.new_page(
                viewport={"width": self.settings.viewport_width, "height": self.settings.viewport_height}
            )
            logger.info("✓ 浏览器已启动 (headless=%s)", self.settings.headless)

        before = session.last_url
        await session.page.goto(params.url, wait_until="domcontentloaded")
        self._track_url(session, before)
        self.emit(ACTION_PERFORMED)
        await self._wait_stable(session)
        return ActionResponse.success(f"Browser launched at {session.page.url}")

    async def click(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        page = session.page
        coordinate = params.coordinate
        before = page.url

        info = await perception.element_at(page, coordinate, scroll=True)
        if not info:
            raise InteractionError("No element found at specified coordinates")
        logger.debug("click 命中 <%s id=%s>", info.get("tagName"), info.get("id"))

        if info.get("isOffScreen"):
            await self._sleep_ms(self.settings.scroll_into_view_delay_ms)

        # 原生指针点击，坐标语义优先于元素覆盖关系
        navigated = await self._with_navigation(
            page, lambda: page.mouse.click(coordinate.x, coordinate.y)
        )

        if info.get("isInput"):
            session.focused_input = coordinate
            self.emit(INPUT_FOCUSED, coordinate.as_dict())
        self.emit(ACTION_PERFORMED)

        # 发生导航时文档已就绪，不再额外等待
        if not navigated:
            await self._wait_stable(session)
        self._track_url(session, before)

        if navigated:
            return ActionResponse.success("Click performed with navigation")
        return ActionResponse.success("Click action performed successfully")

    async def type(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        page = session.page
        if params.coordinate is not None:
            focused = await perception.focus_at(page, params.coordinate)
            if focused is None:
                raise InteractionError("No element found at specified coordinates")
            if not focused:
                await self._click_point(page, params.coordinate)
        elif session.focused_input is not None and not await perception.has_focus(page):
            # 没有坐标时回到最近一次聚焦的输入框
            await self._click_point(page, session.focused_input)

        await page.keyboard.type(params.text, delay=self.settings.type_delay_ms)
        self.emit(ACTION_PERFORMED)
        return ActionResponse.success("Type action performed successfully")

    async def key_press(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        page = session.page
        before = page.url
        if params.coordinate is not None and not await perception.has_focus(page):
            await self._click_point(page, params.coordinate)

        key = normalize_key(params.key)
        await page.keyboard.press(key, delay=self.settings.key_delay_ms)
        self.emit(ACTION_PERFORMED)
        await self._wait_stable(session)
        # Enter 等按键可能触发导航
        self._track_url(session, before)
        return ActionResponse.success("Keypress action performed successfully")

    async def _wheel(self, session: BrowserSession, delta: int):
        await session.page.mouse.wheel(0, delta)
        self.emit(ACTION_PERFORMED)
        await self._sleep_ms(self.settings.scroll_settle_ms)

    async def scroll_up(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        await self._wheel(session, -self.settings.scroll_delta)
        return ActionResponse.success("Scroll up action performed successfully")

    async def scroll_down(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        await self._wheel(session, self.settings.scroll_delta)
        return ActionResponse.success("Scroll down action performed successfully")

    async def scroll(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        if params.direction == "up":
            return await self.scroll_up(session, params)
        return await self.scroll_down(session, params)

    async def back(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        page = session.page
        await page.go_back(wait_until="domcontentloaded")
        current = page.url
        session.last_url = current
        self.emit(URL_CHANGE, current)
        self.emit(ACTION_PERFORMED)
        await self._wait_stable(session)
        return ActionResponse.success("Navigated back successfully")

    async def hover(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        page = session.page
        coordinate = params.coordinate
        info = await perception.element_at(page, coordinate)
        if not info:
            raise InteractionError("No element found at hover coordinates")

        await page.mouse.move(coordinate.x, coordinate.y)
        session.last_hover = coordinate
        self.emit(ACTION_PERFORMED)
        tag = info.get("tagName") or "element"
        return ActionResponse.success(f"Hover performed at ({coordinate.x},{coordinate.y}) over {tag}")

    async def get_url(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        url = session.page.url
        session.last_url = url
        return ActionResponse.success(f"Retrieved URL: {url}")

    # ──────────────────────────────────────────────
    # 加载检测
    # ──────────────────────────────────────────────

    async def _poll_loading(self, session: BrowserSession, selectors: List[str]):
        """周期性重新评估加载状态，直到指示器消失；出错时也发出 page-ready"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.loading_max_wait_ms / 1000
        try:
            while True:
                await self._sleep_ms(self.settings.loading_poll_interval_ms)
                state = await perception.loading_state(session.page, selectors)
                self.emit(LOADING_STATE_UPDATE, state.to_payload())
                if not state.is_loading:
                    break
                if loop.time() >= deadline:
                    logger.warning("加载指示器 %dms 内未消失，按就绪处理", self.settings.loading_max_wait_ms)
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("加载轮询出错，按就绪处理: %s", e)
        self.emit(PAGE_READY, {"url": session.last_url})

    async def _detect(self, session: BrowserSession, selectors: List[str]) -> str:
        session.loading_timer.cancel()
        selectors = selectors or self.settings.loading_selectors
        try:
            state = await perception.loading_state(session.page, selectors)
        except Exception as e:
            logger.warning("加载检测失败，按就绪处理: %s", e)
            self.emit(PAGE_READY, {"url": session.last_url})
            return "Loading detection failed; page treated as ready"

        if not state.is_loading:
            self.emit(PAGE_READY, {"url": session.last_url})
            return "No loading indicators detected"

        self.emit(LOADING_STATE_UPDATE, state.to_payload())
        session.loading_timer.arm(lambda: self._poll_loading(session, selectors))
        if state.progress_percent is not None:
            return f"Loading indicators detected ({state.progress_percent:.0f}%)"
        return "Loading indicators detected"

    async def detect_loading(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        return ActionResponse.success(await self._detect(session, params.selectors))

    async def submit_form(self, session: BrowserSession, params: ActionParams) -> ActionResponse:
        page = session.page
        before = page.url
        selector = params.selectors[0] if params.selectors else "form"
        outcome = {}

        async def _submit():
            outcome.update(await perception.submit_form(page, selector))
            if not outcome.get("submitted"):
                raise InteractionError(
                    f"Could not submit form '{selector}': {outcome.get('reason', 'unknown')}"
                )

        navigated = await self._with_navigation(page, _submit)
        self.emit(ACTION_PERFORMED)
        self._track_url(session, before)

        # AJAX 提交不会触发导航，总是再做一次加载检测
        loading = await self._detect(session, [])
        suffix = " with navigation" if navigated else ""
        return ActionResponse.success(f"Form submitted via {outcome.get('method')}{suffix}. {loading}")
