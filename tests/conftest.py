import base64
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from uidriver.config import BrowserSettings, DesktopSettings
from uidriver.models import ActionResponse
from uidriver.notifications import Broadcaster
from uidriver.perception import HAS_FOCUS_JS

PNG = b"\x89PNG fake"
PNG_B64 = base64.b64encode(PNG).decode("ascii")


class FakeMouse:
    def __init__(self, timeline: List):
        self.timeline = timeline
        self.clicks: List = []
        self.moves: List = []
        self.wheels: List = []

    async def click(self, x, y):
        self.clicks.append((x, y))
        self.timeline.append(("mouse.click", x, y))

    async def move(self, x, y):
        self.moves.append((x, y))

    async def wheel(self, dx, dy):
        self.wheels.append((dx, dy))


class FakeKeyboard:
    def __init__(self, timeline: List):
        self.timeline = timeline
        self.typed: List = []
        self.pressed: List = []

    async def type(self, text, delay=0):
        self.typed.append((text, delay))
        self.timeline.append(("keyboard.type", text))

    async def press(self, key, delay=0):
        self.pressed.append((key, delay))
        self.timeline.append(("keyboard.press", key))


class _Navigation:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            return False
        if self.page.navigate_to is None:
            raise PlaywrightTimeoutError("Timeout waiting for navigation")
        self.page.history.append(self.page.url)
        self.page.url = self.page.navigate_to
        self.page.navigate_to = None
        return False


class FakePage:
    """按脚本常量应答 evaluate 的假页面"""

    def __init__(self, url: str = "https://start.example/"):
        self.url = url
        self.history: List[str] = []
        self.navigate_to: Optional[str] = None
        self.timeline: List = []
        self.mouse = FakeMouse(self.timeline)
        self.keyboard = FakeKeyboard(self.timeline)
        self.scripts: Dict[str, Any] = {HAS_FOCUS_JS: False}
        self.evaluations: List = []

    def on(self, script: str, value: Any):
        """value 可以是固定值，也可以是接收参数的函数"""
        self.scripts[script] = value

    async def evaluate(self, script, arg=None):
        self.evaluations.append((script, arg))
        value = self.scripts.get(script)
        if callable(value):
            return value(arg)
        return value

    def expect_navigation(self, **kwargs):
        return _Navigation(self)

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

    async def screenshot(self, type="png"):
        return PNG

    async def go_back(self, wait_until=None):
        if self.history:
            self.url = self.history.pop()

    async def goto(self, url, wait_until=None):
        self.history.append(self.url)
        self.url = url


class FakeShell:
    """记录容器命令的假 shell；bash 脚本按关键字应答"""

    def __init__(self, timeline: Optional[List] = None):
        self.timeline = timeline if timeline is not None else []
        self.app_running = True
        self.running: List[bool] = [True]
        self.address_bar = "https://desk.example/"
        self.window_ids = ""
        self.titles: Dict[str, str] = {}
        self.inspections = 0

    async def exec(self, session, command: List[str]) -> str:
        self.timeline.append(("exec", list(command)))
        if command and command[0].endswith(".sh"):
            return self.address_bar + "\n"
        if command[:1] == ["xprop"]:
            return self.titles.get(command[2], "")
        return ""

    async def exec_bytes(self, session, command: List[str]) -> bytes:
        self.timeline.append(("exec_bytes", list(command)))
        return PNG

    async def bash(self, session, script: str) -> str:
        self.timeline.append(("bash", script))
        if script.startswith("pgrep"):
            return "4242\n" if self.app_running else ""
        if script.startswith("xdotool search"):
            return self.window_ids
        return ""

    async def screenshot(self, session) -> Optional[str]:
        self.timeline.append(("screenshot",))
        return PNG_B64

    async def is_running(self, container: str) -> bool:
        self.inspections += 1
        if len(self.running) > 1:
            return self.running.pop(0)
        return self.running[0]

    def commands(self) -> List[List[str]]:
        return [entry[1] for entry in self.timeline if entry[0] == "exec"]


class SleepRecorder:
    def __init__(self, timeline: List):
        self.timeline = timeline

    async def __call__(self, seconds: float):
        self.timeline.append(("sleep", seconds))


class FakeClock:
    def __init__(self, now_ms: float = 0.0):
        self.now_ms = now_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float):
        self.now_ms += ms


class FakeRouter:
    """只记录指令的路由替身"""

    def __init__(self, responses: Optional[Callable] = None, launched: bool = False):
        self.executed: List = []
        self.broadcaster = Broadcaster()
        self.browser_launched = launched
        self.responses = responses or (lambda d: ActionResponse.success(f"{d.action} ok"))
        self.started = False
        self.closed = False

    async def start(self):
        self.started = True

    async def close(self):
        self.closed = True

    async def execute(self, directive):
        self.executed.append(directive)
        if directive.action == "launch":
            self.browser_launched = True
        return self.responses(directive)


@pytest.fixture
def broadcaster():
    return Broadcaster()


@pytest.fixture
def browser_settings():
    return BrowserSettings(
        scroll_into_view_delay_ms=0,
        focus_settle_ms=0,
        scroll_settle_ms=0,
        stability_timeout_ms=50,
        loading_poll_interval_ms=0,
        loading_max_wait_ms=1000,
    )


@pytest.fixture
def desktop_settings():
    return DesktopSettings(container="desk-test")


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def timeline():
    return []


@pytest.fixture
def shell(timeline):
    return FakeShell(timeline)


@pytest.fixture
def sleep(timeline):
    return SleepRecorder(timeline)


@pytest.fixture
def clock():
    return FakeClock(10_000)


@pytest.fixture
async def aiohttp_server_factory():
    """在随机端口上启动只有 /parse/ 路由的测试服务，返回服务地址"""
    servers = []

    async def factory(handler):
        app = web.Application()
        app.router.add_post("/parse/", handler)
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return str(server.make_url("")).rstrip("/")

    yield factory
    for server in servers:
        await server.close()
