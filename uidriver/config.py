"""配置模块：从环境变量 / .env 读取运行参数"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_LOADING_SELECTORS = [
    "progress",
    "[role='progressbar']",
    ".loading",
    ".loader",
    ".spinner",
    ".progress",
    "[aria-busy='true']",
]


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip()


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: List[str]) -> List[str]:
    v = os.getenv(name)
    if not v:
        return list(default)
    return [item.strip() for item in v.split(",") if item.strip()]


@dataclass
class BrowserSettings:
    """浏览器后端参数（时间单位均为毫秒）"""
    headless: bool = True
    viewport_width: int = 900
    viewport_height: int = 600
    scroll_into_view_delay_ms: int = 300
    navigation_timeout_ms: int = 5000
    type_delay_ms: int = 10  # 逐键输入间隔，兼容按键级 JS 监听
    key_delay_ms: int = 20
    focus_settle_ms: int = 100
    scroll_delta: int = 200
    scroll_settle_ms: int = 100
    stability_strategy: str = "race"  # race|convergence
    stability_timeout_ms: int = 2000
    convergence_interval_ms: int = 200
    convergence_samples: int = 3
    loading_poll_interval_ms: int = 500
    loading_max_wait_ms: int = 30000
    loading_selectors: List[str] = field(default_factory=lambda: list(DEFAULT_LOADING_SELECTORS))


@dataclass
class DesktopSettings:
    """桌面（容器）后端参数；settle 延迟只是近似值，不是完成信号"""
    container: str = "uidriver-desktop"
    display: str = ":1"
    app_process: str = "firefox"
    app_class: str = "firefox"
    screen_width: int = 1280
    screen_height: int = 720
    click_settle_ms: int = 2000
    input_settle_ms: int = 500
    scroll_clicks: int = 2
    scroll_click_delay_ms: int = 50
    scroll_load_delay_ms: int = 2000
    url_cache_ttl_ms: int = 2000
    command_timeout_s: float = 30.0


@dataclass
class Settings:
    """全局配置"""
    browser: BrowserSettings = field(default_factory=BrowserSettings)
    desktop: DesktopSettings = field(default_factory=DesktopSettings)
    omni_parser_enabled: bool = False
    omni_parser_url: str = "http://localhost:7862"
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """读取 .env 与环境变量，缺失或格式错误时回落到默认值"""
        if dotenv:
            load_dotenv()

        b = BrowserSettings()
        browser = BrowserSettings(
            headless=_env_bool("BROWSER_HEADLESS", b.headless),
            viewport_width=_env_int("BROWSER_VIEWPORT_WIDTH", b.viewport_width),
            viewport_height=_env_int("BROWSER_VIEWPORT_HEIGHT", b.viewport_height),
            scroll_into_view_delay_ms=_env_int("BROWSER_SCROLL_INTO_VIEW_DELAY_MS", b.scroll_into_view_delay_ms),
            navigation_timeout_ms=_env_int("BROWSER_NAVIGATION_TIMEOUT_MS", b.navigation_timeout_ms),
            type_delay_ms=_env_int("BROWSER_TYPE_DELAY_MS", b.type_delay_ms),
            key_delay_ms=_env_int("BROWSER_KEY_DELAY_MS", b.key_delay_ms),
            focus_settle_ms=_env_int("BROWSER_FOCUS_SETTLE_MS", b.focus_settle_ms),
            scroll_delta=_env_int("BROWSER_SCROLL_DELTA", b.scroll_delta),
            scroll_settle_ms=_env_int("BROWSER_SCROLL_SETTLE_MS", b.scroll_settle_ms),
            stability_strategy=_env_str("BROWSER_STABILITY_STRATEGY", b.stability_strategy).lower(),
            stability_timeout_ms=_env_int("BROWSER_STABILITY_TIMEOUT_MS", b.stability_timeout_ms),
            convergence_interval_ms=_env_int("BROWSER_CONVERGENCE_INTERVAL_MS", b.convergence_interval_ms),
            convergence_samples=_env_int("BROWSER_CONVERGENCE_SAMPLES", b.convergence_samples),
            loading_poll_interval_ms=_env_int("LOADING_POLL_INTERVAL_MS", b.loading_poll_interval_ms),
            loading_max_wait_ms=_env_int("LOADING_MAX_WAIT_MS", b.loading_max_wait_ms),
            loading_selectors=_env_list("LOADING_SELECTORS", b.loading_selectors),
        )

        d = DesktopSettings()
        desktop = DesktopSettings(
            container=_env_str("DESKTOP_CONTAINER", d.container),
            display=_env_str("DESKTOP_DISPLAY", d.display),
            app_process=_env_str("DESKTOP_APP_PROCESS", d.app_process),
            app_class=_env_str("DESKTOP_APP_CLASS", d.app_class),
            screen_width=_env_int("DESKTOP_SCREEN_WIDTH", d.screen_width),
            screen_height=_env_int("DESKTOP_SCREEN_HEIGHT", d.screen_height),
            click_settle_ms=_env_int("DESKTOP_CLICK_SETTLE_MS", d.click_settle_ms),
            input_settle_ms=_env_int("DESKTOP_INPUT_SETTLE_MS", d.input_settle_ms),
            scroll_clicks=_env_int("DESKTOP_SCROLL_CLICKS", d.scroll_clicks),
            scroll_click_delay_ms=_env_int("DESKTOP_SCROLL_CLICK_DELAY_MS", d.scroll_click_delay_ms),
            scroll_load_delay_ms=_env_int("DESKTOP_SCROLL_LOAD_DELAY_MS", d.scroll_load_delay_ms),
            url_cache_ttl_ms=_env_int("DESKTOP_URL_CACHE_TTL_MS", d.url_cache_ttl_ms),
            command_timeout_s=_env_float("DESKTOP_COMMAND_TIMEOUT_S", d.command_timeout_s),
        )

        return cls(
            browser=browser,
            desktop=desktop,
            omni_parser_enabled=_env_bool("ENABLE_OMNI_PARSER", False),
            omni_parser_url=_env_str("OMNI_PARSER_URL", "http://localhost:7862"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            openai_model=_env_str("OPENAI_MODEL", "gpt-4o"),
        )
