"""后端公共接口：execute_action / capture_state"""

from typing import Awaitable, Callable, Dict, Optional, Tuple

from .errors import DirectiveError
from .log import setup_logger
from .models import ActionParams, ActionResponse, OmniParserResult
from .notifications import Broadcaster
from .omniparser import OmniParserClient

logger = setup_logger("uidriver.backend")

Handler = Callable[[object, ActionParams], Awaitable[ActionResponse]]


class Backend:
    """两个后端共用的能力接口，按后端标识选择"""

    name: str = ""

    def __init__(self, broadcaster: Broadcaster, omni_parser: Optional[OmniParserClient] = None):
        self.broadcaster = broadcaster
        self.omni_parser = omni_parser

    def handlers(self) -> Dict[str, Handler]:
        """动作名 -> 处理函数"""
        raise NotImplementedError

    async def screenshot(self, session) -> Optional[str]:
        raise NotImplementedError

    async def execute_action(self, session, params: ActionParams) -> ActionResponse:
        raise NotImplementedError

    async def close(self, session):
        """销毁会话，取消所有定时任务"""

    def emit(self, event: str, payload=None):
        self.broadcaster.emit(event, payload, backend=self.name)

    async def _safe_screenshot(self, session) -> Optional[str]:
        try:
            return await self.screenshot(session)
        except DirectiveError as e:
            logger.warning("[%s] 截图失败: %s", self.name, e.message)
        except Exception as e:
            logger.warning("[%s] 截图失败: %s", self.name, e)
        return None

    async def _omni(self, shot: Optional[str]) -> Optional[OmniParserResult]:
        if not shot or self.omni_parser is None:
            return None
        return await self.omni_parser.parse(shot)

    async def capture_state(self, session) -> Tuple[Optional[str], Optional[OmniParserResult]]:
        """截图，并在启用时附带元素检测结果；失败只记日志"""
        shot = await self._safe_screenshot(session)
        return shot, await self._omni(shot)

    async def confirm(self, session, response: ActionResponse) -> ActionResponse:
        """成功的响应补上确认截图（已有截图时直接复用）"""
        if not response.ok:
            return response
        if response.screenshot:
            omni = await self._omni(response.screenshot)
        else:
            response.screenshot, omni = await self.capture_state(session)
        if omni is not None:
            response.omni_parser_result = omni
        return response
