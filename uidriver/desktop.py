"""桌面后端：通过容器内的 xdotool 执行指令

没有 DOM 可以探测，动作完成与否只能靠固定的 settle 延迟近似（见 DesktopSettings）。
"""

import asyncio
import re
import time
from typing import Dict, Optional

from .backend import Backend, Handler
from .config import DesktopSettings
from .errors import DirectiveError, NotReadyError, TransportError
from .log import setup_logger
from .models import DESKTOP, NO_URL, ActionParams, ActionResponse, UrlCacheEntry
from .notifications import ACTION_PERFORMED, BROWSER_ACTION_ERROR, Broadcaster
from .omniparser import OmniParserClient
from .session import DesktopSession
from .shell import DockerShell
from .stability import FixedSettle

logger = setup_logger("uidriver.desktop")

# 应用层键名 -> xdotool 键名
KEY_MAP = {
    "backspace": "BackSpace",
    "enter": "Return",
    "return": "Return",
    "tab": "Tab",
    "delete": "Delete",
    "arrowleft": "Left",
    "arrowright": "Right",
    "arrowup": "Up",
    "arrowdown": "Down",
    "escape": "Escape",
    "esc": "Escape",
    "home": "Home",
    "end": "End",
    "pageup": "Page_Up",
    "pagedown": "Page_Down",
    "control": "Control_L",
    "ctrl": "Control_L",
    "alt": "Alt_L",
    "shift": "Shift_L",
    "meta": "Super_L",
    "capslock": "Caps_Lock",
    "space": "space",
}

SCROLL_BUTTONS = {"up": "4", "down": "5"}

URL_SCRIPT_PATH = "/tmp/uidriver_get_url.sh"
_ABSOLUTE_URL = re.compile(r"https?://[^\s\"'()\[\]{}<>]+")


def translate_key(key: str) -> str:
    """逐段翻译组合键，例如 "Control+a" -> "Control_L+a" """
    parts = [p.strip() for p in key.split("+") if p.strip()]
    return "+".join(KEY_MAP.get(p.lower(), p) for p in parts)


def url_script(app_class: str) -> str:
    """
    生成在容器内读取地址栏 URL 的脚本：
    保存焦点和剪贴板 -> 聚焦地址栏 -> 全选复制 -> 读剪贴板 -> 恢复剪贴板和焦点。
    """
    return f"""#!/bin/bash
WINDOW_ID=$(xdotool search --class {app_class} | head -1)
if [ -z "$WINDOW_ID" ]; then
  echo "{NO_URL}"
  exit 0
fi

CURRENT_FOCUS=$(xdotool getactivewindow 2>/dev/null || echo "")
CURRENT_SELECTION=$(xclip -o -selection clipboard 2>/dev/null || echo "")

xdotool windowactivate --sync $WINDOW_ID 2>/dev/null
sleep 0.3
xdotool key --delay 100 --clearmodifiers alt+d
sleep 0.3
xdotool key --delay 100 --clearmodifiers ctrl+a
sleep 0.3
xdotool key --delay 100 --clearmodifiers ctrl+c
sleep 0.3
xdotool key --delay 100 --clearmodifiers Escape
sleep 0.2

FULL_URL=$(xclip -o -selection clipboard 2>/dev/null)
if [[ "$FULL_URL" != http* ]]; then
  xdotool key --delay 100 --clearmodifiers ctrl+l
  sleep 0.2
  xdotool key --delay 100 --clearmodifiers ctrl+c
  sleep 0.2
  xdotool key --delay 100 --clearmodifiers Escape
  FULL_URL=$(xclip -o -selection clipboard 2>/dev/null)
  if [[ "$FULL_URL" != http* ]]; then
    FULL_URL="{NO_URL}"
  fi
fi

echo "$CURRENT_SELECTION" | xclip -selection clipboard 2>/dev/null

if [ -n "$CURRENT_FOCUS" ] && [ "$CURRENT_FOCUS" != "$WINDOW_ID" ]; then
  xdotool windowactivate $CURRENT_FOCUS 2>/dev/null
fi

echo "$FULL_URL"
"""


def _looks_absolute(url: Optional[str]) -> bool:
    return bool(url) and (url.startswith("http://") or url.startswith("https://"))


class DesktopBackend(Backend):
    """桌面后端：鼠标 / 键盘原语 + URL 三级恢复"""

    name = DESKTOP

    def __init__(
        self,
        settings: DesktopSettings,
        broadcaster: Broadcaster,
        shell: Optional[DockerShell] = None,
        omni_parser: Optional[OmniParserClient] = None,
        sleep=asyncio.sleep,
        clock=None,
    ):
        super().__init__(broadcaster, omni_parser)
        self.settings = settings
        self.shell = shell or DockerShell(display=settings.display, timeout_s=settings.command_timeout_s)
        self._sleep = sleep
        self.settle = FixedSettle(sleep)
        self._clock = clock or (lambda: time.monotonic() * 1000)

    def handlers(self) -> Dict[str, Handler]:
        return {
            "click": self.click,
            "doubleClick": self.double_click,
            "type": self.type,
            "keyPress": self.key_press,
            "scroll": self.scroll,
            "scroll_up": self.scroll,
            "scroll_down": self.scroll,
            "getUrl": self.get_url,
        }

    async def initialize(self, session: DesktopSession):
        """确认容器在运行；不需要 URL"""
        try:
            running = await self.shell.is_running(session.container)
        except TransportError as e:
            raise NotReadyError(f"Desktop container '{session.container}' is not available", detail=e.detail) from e
        if not running:
            raise NotReadyError(f"Desktop container '{session.container}' is not running")
        session.initialized = True
        logger.info("✓ 桌面容器 %s 已就绪", session.container)

    async def screenshot(self, session: DesktopSession) -> Optional[str]:
        return await self.shell.screenshot(session)

    async def _confirmed(self, session: DesktopSession, message: str, settle_ms: int) -> ActionResponse:
        """固定 settle 延迟后截图确认"""
        await self.settle.settle(settle_ms)
        shot = await self._safe_screenshot(session)
        return ActionResponse.success(message, screenshot=shot)

    # ──────────────────────────────────────────────
    # 就绪检查与分发
    # ──────────────────────────────────────────────

    async def _ensure_app_running(self, session: DesktopSession):
        proc = self.settings.app_process
        try:
            out = await self.shell.bash(session, f"pgrep -i {proc} || true")
        except TransportError as e:
            # 容器 / docker 本身不可用，与应用进程崩溃区分开
            raise TransportError(
                f"Desktop container '{session.container}' unreachable", detail=e.detail
            ) from e
        if not out.strip():
            raise NotReadyError(f"{proc.capitalize()} not running - cannot perform action")

    def _emit_error(self, params: ActionParams, message: str):
        self.emit(BROWSER_ACTION_ERROR, {"message": message, "action": params.action, "url": params.url})

    async def execute_action(self, session: DesktopSession, params: ActionParams) -> ActionResponse:
        try:
            if params.action != "launch":
                await self._ensure_app_running(session)

            handler = self.handlers().get(params.action)
            if handler is None:
                return ActionResponse.failure(f"Unknown action: {params.action}")

            response = await handler(session, params)
        except DirectiveError as e:
            logger.error("[%s] %s: %s", params.action, e.kind, e.message)
            self._emit_error(params, e.message)
            return ActionResponse.from_error(e)
        except Exception as e:
            message = f"Action {params.action} failed"
            logger.error("[%s] 执行失败: %s", params.action, e)
            self._emit_error(params, message)
            return ActionResponse.failure(message, error=str(e))

        self.emit(ACTION_PERFORMED)
        logger.info("✓ %s -> %s", params.action, response.message)
        return await self.confirm(session, response)

    # ──────────────────────────────────────────────
    # 原语
    # ──────────────────────────────────────────────

    async def click(self, session: DesktopSession, params: ActionParams) -> ActionResponse:
        x, y = params.coordinate.x, params.coordinate.y
        await self.shell.exec(session, ["xdotool", "mousemove", str(x), str(y), "click", "1"])
        return await self._confirmed(session, f"Clicked at {x},{y}", self.settings.click_settle_ms)

    async def double_click(self, session: DesktopSession, params: ActionParams) -> ActionResponse:
        x, y = params.coordinate.x, params.coordinate.y
        await self.shell.exec(
            session, ["xdotool", "mousemove", str(x), str(y), "click", "--repeat", "2", "1"]
        )
        return await self._confirmed(session, f"Double clicked at {x},{y}", self.settings.click_settle_ms)

    async def type(self, session: DesktopSession, params: ActionParams) -> ActionResponse:
        await self.shell.exec(session, ["xdotool", "type", "--", params.text])
        return await self._confirmed(session, f"Typed text: {params.text}", self.settings.input_settle_ms)

    async def key_press(self, session: DesktopSession, params: ActionParams) -> ActionResponse:
        await self.shell.exec(session, ["xdotool", "key", translate_key(params.key)])
        return await self._confirmed(session, f"Pressed key: {params.key}", self.settings.input_settle_ms)

    async def scroll(self, session: DesktopSession, params: ActionParams) -> ActionResponse:
        direction = params.direction
        if params.action == "scroll_up":
            direction = "up"
        elif params.action == "scroll_down":
            direction = "down"
        button = SCROLL_BUTTONS[direction]

        clicks = self.settings.scroll_clicks
        for i in range(clicks):
            await self.shell.exec(session, ["xdotool", "click", button])
            if i < clicks - 1:
                await self._sleep(self.settings.scroll_click_delay_ms / 1000)

        # 等待懒加载内容和动画
        return await self._confirmed(session, f"Scrolled {direction}", self.settings.scroll_load_delay_ms)

    async def get_url(self, session: DesktopSession, params: ActionParams) -> ActionResponse:
        url = await self.current_url(session)
        return ActionResponse.success(f"Retrieved URL: {url}")

    # ──────────────────────────────────────────────
    # URL 恢复
    # ──────────────────────────────────────────────

    async def current_url(self, session: DesktopSession) -> str:
        """
        三级恢复，按容器缓存（只按时间失效，调用方需容忍短暂过期）：
          1. 容器内脚本从地址栏复制 URL；
          2. 从应用窗口标题中匹配绝对 URL；
          3. 返回占位值 about:blank。
        """
        now = self._clock()
        entry = session.url_cache
        if entry is not None and entry.is_fresh(now, self.settings.url_cache_ttl_ms):
            logger.debug("URL 命中缓存: %s", entry.url)
            return entry.url

        try:
            url = await self._url_from_address_bar(session)
            if not _looks_absolute(url):
                url = await self._url_from_window_titles(session)
        finally:
            await self._cleanup_url_artifacts(session)

        if not _looks_absolute(url):
            logger.warning("所有 URL 获取方式均失败，返回 %s", NO_URL)
            url = NO_URL

        session.url_cache = UrlCacheEntry(url=url, timestamp_ms=now)
        return url

    async def _url_from_address_bar(self, session: DesktopSession) -> Optional[str]:
        script = url_script(self.settings.app_class)
        try:
            await self.shell.bash(
                session,
                f"cat > {URL_SCRIPT_PATH} << 'EOF'\n{script}EOF\nchmod +x {URL_SCRIPT_PATH}",
            )
            out = (await self.shell.exec(session, [URL_SCRIPT_PATH])).strip()
        except TransportError as e:
            logger.debug("地址栏提取失败: %s", e.detail or e.message)
            return None
        logger.debug("地址栏提取结果: %s", out)
        return out if _looks_absolute(out) else None

    async def _url_from_window_titles(self, session: DesktopSession) -> Optional[str]:
        try:
            ids = await self.shell.bash(
                session, f"xdotool search --class {self.settings.app_class} || echo ''"
            )
        except TransportError as e:
            logger.debug("窗口枚举失败: %s", e.detail or e.message)
            return None

        for window_id in [w.strip() for w in ids.splitlines() if w.strip()]:
            try:
                title = await self.shell.exec(session, ["xprop", "-id", window_id, "WM_NAME"])
            except TransportError:
                continue
            m = _ABSOLUTE_URL.search(title)
            if m:
                logger.debug("从窗口 %s 标题得到 URL: %s", window_id, m.group(0))
                return m.group(0)
        return None

    async def _cleanup_url_artifacts(self, session: DesktopSession):
        try:
            await self.shell.exec(session, ["rm", "-f", URL_SCRIPT_PATH])
        except TransportError as e:
            logger.debug("清理临时脚本失败: %s", e.detail or e.message)

    async def close(self, session: DesktopSession):
        session.url_cache = None
