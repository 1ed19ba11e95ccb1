"""元素检测服务（OmniParser）客户端"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from .log import setup_logger
from .models import OmniParserResult

logger = setup_logger("uidriver.omniparser")


def normalize_response(data: Dict[str, Any]) -> Optional[OmniParserResult]:
    """
    兼容两种返回格式：
    - {"parsed_content": [...], "label_coordinates": {...}}
    - {"parsed_content_list": [{"content": ..., "bbox": [x1, y1, x2, y2]}, ...]}
    """
    if "label_coordinates" in data:
        return OmniParserResult.from_dict(data)

    items = data.get("parsed_content_list")
    if items is None:
        return None

    labels = []
    coords = {}
    for i, item in enumerate(items):
        content = str(item.get("content") or item.get("type") or "").strip()
        labels.append(f"ID {i}: {content}")
        bbox = item.get("bbox") or []
        if len(bbox) >= 4:
            x1, y1, x2, y2 = (float(v) for v in bbox[:4])
            coords[str(i)] = [x1, y1, x2 - x1, y2 - y1]
    return OmniParserResult(parsed_content=labels, label_coordinates=coords)


class OmniParserClient:
    """调用外部检测服务；失败时返回 None，不影响动作结果"""

    def __init__(self, server_url: str, timeout_s: float = 20.0):
        self.server_url = server_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    async def parse(self, screenshot_b64: str) -> Optional[OmniParserResult]:
        if not screenshot_b64:
            return None
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    f"{self.server_url}/parse/", json={"base64_image": screenshot_b64}
                ) as resp:
                    if resp.status != 200:
                        logger.warning("OmniParser 返回状态码 %s", resp.status)
                        return None
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("OmniParser 调用失败: %s", e)
            return None
        return normalize_response(data)
