"""参数校验：坐标与枚举参数在分发前检查"""

import re
from typing import List, Optional

from .errors import ParameterError
from .models import Coordinate

_COORDINATE = re.compile(r"^\s*(-?\d+)\s*,\s*(-?\d+)\s*$")

DIRECTIONS = ("up", "down")


def parse_coordinate(raw: Optional[str], width: int, height: int) -> Coordinate:
    """
    解析 "x,y" 字符串。

    格式错误或超出视口都视为校验失败，不做裁剪。
    """
    if raw is None or not str(raw).strip():
        raise ParameterError("Coordinates are required for this action")
    m = _COORDINATE.match(str(raw))
    if not m:
        raise ParameterError(f"Invalid coordinate format: '{raw}' (expected 'x,y')")
    x, y = int(m.group(1)), int(m.group(2))
    if not (0 <= x < width and 0 <= y < height):
        raise ParameterError(f"Coordinate {x},{y} is outside the viewport ({width}x{height})")
    return Coordinate(x, y)


def parse_direction(raw: Optional[str]) -> str:
    value = (raw or "").strip().lower()
    if value not in DIRECTIONS:
        raise ParameterError(f"Scroll direction must be 'up' or 'down', got '{raw}'")
    return value


def parse_selectors(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


def require(value: Optional[str], message: str) -> str:
    if value is None or not str(value).strip():
        raise ParameterError(message)
    return value
