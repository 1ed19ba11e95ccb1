"""动作路由：按后端标识分发指令，并执行能力矩阵与参数校验"""

import asyncio
from typing import Dict, FrozenSet, Optional

from .backend import Backend
from .browser import BrowserBackend
from .config import Settings
from .desktop import DesktopBackend
from .errors import (
    BackendNotInitializedError,
    CapabilityError,
    DirectiveError,
    NotReadyError,
    UnknownSourceError,
)
from .log import setup_logger
from .models import (
    ACTIONS,
    BROWSER,
    DESKTOP,
    SOURCE_ALIASES,
    ActionDirective,
    ActionParams,
    ActionResponse,
)
from .notifications import BROWSER_ACTION_ERROR, Broadcaster
from .omniparser import OmniParserClient
from .session import BrowserSession, DesktopSession
from .validation import parse_coordinate, parse_direction, parse_selectors, require

logger = setup_logger("uidriver.router")

BOTH: FrozenSet[str] = frozenset({BROWSER, DESKTOP})

# 能力矩阵：动作 -> 允许的后端
CAPABILITIES: Dict[str, FrozenSet[str]] = {action: BOTH for action in ACTIONS}
CAPABILITIES.update({
    "launch": frozenset({BROWSER}),
    "back": frozenset({BROWSER}),
    "hover": frozenset({BROWSER}),
    "detectLoading": frozenset({BROWSER}),
    "submitForm": frozenset({BROWSER}),
    "doubleClick": frozenset({DESKTOP}),
})

# 必须带坐标的动作；type / keyPress 的坐标可选
COORDINATE_REQUIRED = {"click", "doubleClick", "hover"}
COORDINATE_OPTIONAL = {"type", "keyPress"}


def resolve_source(source: Optional[str]) -> str:
    resolved = SOURCE_ALIASES.get((source or "").strip().lower())
    if resolved is None:
        raise UnknownSourceError(f"Unknown source: {source}")
    return resolved


def check_capability(action: str, source: str):
    allowed = CAPABILITIES.get(action)
    if allowed is None:
        raise CapabilityError(f"Unknown action: {action}")
    if source not in allowed:
        only = next(iter(allowed))
        raise CapabilityError(f"Action '{action}' is only supported for the {only} backend")


class ActionRouter:
    """
    把指令路由到对应的后端适配器。

    - 桌面后端启动时即初始化（不需要 URL），动作到达时若仍未就绪则重试一次；
    - 浏览器后端延迟初始化，只有 launch 能触发；
    - 坐标在这里解析校验，适配器只会收到合法的 Coordinate；
    - 同一后端同一时间只执行一条指令。
    """

    def __init__(
        self,
        settings: Settings,
        broadcaster: Optional[Broadcaster] = None,
        browser: Optional[Backend] = None,
        desktop: Optional[Backend] = None,
    ):
        self.settings = settings
        self.broadcaster = broadcaster or Broadcaster()
        omni = OmniParserClient(settings.omni_parser_url) if settings.omni_parser_enabled else None
        self.backends: Dict[str, Backend] = {
            BROWSER: browser or BrowserBackend(settings.browser, self.broadcaster, omni),
            DESKTOP: desktop or DesktopBackend(settings.desktop, self.broadcaster, omni_parser=omni),
        }
        self.sessions = {
            BROWSER: BrowserSession(),
            DESKTOP: DesktopSession(container=settings.desktop.container),
        }
        self._locks = {BROWSER: asyncio.Lock(), DESKTOP: asyncio.Lock()}
        self._desktop_init: Optional[asyncio.Task] = None

    @property
    def browser_launched(self) -> bool:
        return self.sessions[BROWSER].launched

    def _viewport(self, source: str):
        if source == BROWSER:
            return self.settings.browser.viewport_width, self.settings.browser.viewport_height
        return self.settings.desktop.screen_width, self.settings.desktop.screen_height

    # ──────────────────────────────────────────────
    # 生命周期
    # ──────────────────────────────────────────────

    async def _init_desktop(self) -> bool:
        try:
            await self.backends[DESKTOP].initialize(self.sessions[DESKTOP])
            return True
        except DirectiveError as e:
            logger.warning("桌面后端初始化失败: %s", e.message)
            return False

    async def start(self):
        """启动时立即初始化桌面后端（后台进行）"""
        self._desktop_init = asyncio.ensure_future(self._init_desktop())

    async def _ensure_desktop(self):
        session = self.sessions[DESKTOP]
        if self._desktop_init is not None and not self._desktop_init.done():
            await self._desktop_init
        if session.initialized:
            return
        if not await self._init_desktop():
            raise NotReadyError(f"Desktop container '{session.container}' is not ready")

    async def close(self):
        if self._desktop_init is not None and not self._desktop_init.done():
            self._desktop_init.cancel()
        for source, backend in self.backends.items():
            try:
                await backend.close(self.sessions[source])
            except Exception as e:
                logger.warning("关闭 %s 后端失败: %s", source, e)

    # ──────────────────────────────────────────────
    # 参数
    # ──────────────────────────────────────────────

    def build_params(self, directive: ActionDirective, source: str) -> ActionParams:
        action = directive.action
        params = ActionParams(action=action, url=directive.url, text=directive.text, key=directive.key)

        if action == "launch":
            require(directive.url, "URL is required for launch action")
        elif action == "type":
            require(directive.text, "Text is required for type action")
        elif action == "keyPress":
            require(directive.key, "Key is required for keypress action")
        elif action == "scroll":
            params.direction = parse_direction(directive.direction)
        elif action in ("detectLoading", "submitForm"):
            params.selectors = parse_selectors(directive.selector)

        width, height = self._viewport(source)
        if action in COORDINATE_REQUIRED or (action in COORDINATE_OPTIONAL and directive.coordinate):
            params.coordinate = parse_coordinate(directive.coordinate, width, height)
        return params

    # ──────────────────────────────────────────────
    # 执行
    # ──────────────────────────────────────────────

    async def execute(self, directive: ActionDirective) -> ActionResponse:
        """
        执行一条指令并返回响应。

        未知后端、以及浏览器未 launch 就收到其他动作，这两种情况直接抛出；
        其余失败都以 error 响应返回。
        """
        source = resolve_source(directive.source)
        logger.info("[route] %s -> %s", directive.action, source)

        try:
            check_capability(directive.action, source)
            params = self.build_params(directive, source)
        except DirectiveError as e:
            logger.error("[route] %s 被拒绝: %s", directive.action, e.message)
            return ActionResponse.from_error(e)

        session = self.sessions[source]
        async with self._locks[source]:
            if source == DESKTOP:
                try:
                    await self._ensure_desktop()
                except NotReadyError as e:
                    self.broadcaster.emit(
                        BROWSER_ACTION_ERROR,
                        {"message": e.message, "action": params.action, "url": params.url},
                        backend=DESKTOP,
                    )
                    return ActionResponse.from_error(e)
            elif params.action != "launch" and not session.launched:
                raise BackendNotInitializedError("Browser not launched. Use the 'launch' action first")

            return await self.backends[source].execute_action(session, params)
