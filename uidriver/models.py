"""数据模型定义"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional

from .errors import DirectiveError

BROWSER = "browser"
DESKTOP = "desktop"

# 兼容旧版的后端名称
SOURCE_ALIASES = {
    "browser": BROWSER,
    "chrome-puppeteer": BROWSER,
    "desktop": DESKTOP,
    "ubuntu-docker-vnc": DESKTOP,
}

ACTIONS = (
    "launch",
    "back",
    "click",
    "doubleClick",
    "type",
    "keyPress",
    "scroll_up",
    "scroll_down",
    "scroll",
    "getUrl",
    "hover",
    "detectLoading",
    "submitForm",
)

NO_URL = "about:blank"


@dataclass(frozen=True)
class Coordinate:
    """视口内的整数坐标"""
    x: int
    y: int

    def __str__(self) -> str:
        return f"{self.x},{self.y}"

    def as_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y}


@dataclass
class TextPart:
    """普通文本片段"""
    part_type: ClassVar[str] = "text"
    content: str


@dataclass
class ActionDirective:
    """模型输出中的 perform_action 指令"""
    part_type: ClassVar[str] = "perform_action"
    action: str
    source: Optional[str] = None  # browser|desktop，由调用方填写
    url: Optional[str] = None
    coordinate: Optional[str] = None  # 原始 "x,y" 字符串
    text: Optional[str] = None
    key: Optional[str] = None
    direction: Optional[str] = None  # up|down
    selector: Optional[str] = None
    about_this_action: Optional[str] = None
    marker_number: Optional[str] = None


@dataclass
class ActionParams:
    """经过校验、交给适配器的动作参数"""
    action: str
    coordinate: Optional[Coordinate] = None
    url: Optional[str] = None
    text: Optional[str] = None
    key: Optional[str] = None
    direction: Optional[str] = None
    selectors: List[str] = field(default_factory=list)


@dataclass
class OmniParserResult:
    """元素检测服务的结果；坐标为归一化的 [x, y, width, height]"""
    parsed_content: List[str]  # ["ID 0: Username", ...]
    label_coordinates: Dict[str, List[float]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parsed_content": list(self.parsed_content),
            "label_coordinates": {k: list(v) for k, v in self.label_coordinates.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OmniParserResult":
        return cls(
            parsed_content=list(data.get("parsed_content") or []),
            label_coordinates={
                str(k): [float(n) for n in v]
                for k, v in (data.get("label_coordinates") or {}).items()
            },
        )

    def center(self, element_id, width: int, height: int) -> Optional[Coordinate]:
        """把某个元素的归一化框换算成视口像素下的中心点"""
        box = self.label_coordinates.get(str(element_id))
        if not box or len(box) < 4:
            return None
        x, y, w, h = box[:4]
        return Coordinate(int(x * width + (w * width) / 2), int(y * height + (h * height) / 2))


@dataclass
class ActionResponse:
    """单次动作的结果，永远以返回值形式跨越后端边界"""
    status: str  # success|error
    message: Optional[str]  # None 时渲染为 error 文本
    screenshot: Optional[str] = None  # base64 PNG
    omni_parser_result: Optional[OmniParserResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, message: str, screenshot: Optional[str] = None) -> "ActionResponse":
        return cls(status="success", message=message, screenshot=screenshot)

    @classmethod
    def failure(cls, message: str, error: Optional[str] = None) -> "ActionResponse":
        return cls(status="error", message=message, error=error)

    @classmethod
    def from_error(cls, exc: DirectiveError) -> "ActionResponse":
        return cls(status="error", message=exc.message, error=exc.detail)


@dataclass
class ActionResult:
    """perform_action_result 片段解析结果"""
    part_type: ClassVar[str] = "action_result"
    status: str
    message: str
    screenshot: Optional[str] = None
    omni_parser_result: Optional[OmniParserResult] = None


@dataclass
class FollowupQuestion:
    part_type: ClassVar[str] = "followup_question"
    question: str


@dataclass
class CompleteTask:
    part_type: ClassVar[str] = "complete_task"
    result: str
    command: Optional[str] = None


@dataclass
class ClickableElement:
    """explore_output 中的单个可点击元素"""
    text: str
    coordinates: str
    about_this_element: str


@dataclass
class ExploreOutput:
    part_type: ClassVar[str] = "explore_output"
    clickable_elements: List[ClickableElement]


@dataclass
class HistoryRecord:
    """单条历史记录"""
    step_num: int
    action: str
    target: Optional[str]  # 坐标 / URL / 按键，用于判断重复
    result: str  # success|error
    message: str = ""


@dataclass
class UrlCacheEntry:
    """按容器缓存的 URL，只按时间失效"""
    url: str
    timestamp_ms: float

    def is_fresh(self, now_ms: float, ttl_ms: float) -> bool:
        return (now_ms - self.timestamp_ms) < ttl_ms


@dataclass
class LoadingState:
    """加载指示器的瞬时状态，每次轮询重新计算"""
    is_loading: bool
    progress_percent: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"isLoading": self.is_loading}
        if self.progress_percent is not None:
            payload["progress"] = self.progress_percent
        return payload
