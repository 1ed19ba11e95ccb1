"""错误类型：指令执行过程中的失败分类"""

from typing import Optional


class DirectiveError(Exception):
    """所有指令错误的基类；在适配器边界转换为 error 响应"""

    kind = "directive_error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ParameterError(DirectiveError):
    """缺少必填字段或字段格式错误"""

    kind = "parameter_error"


class CapabilityError(DirectiveError):
    """所选后端不支持该动作"""

    kind = "capability_error"


class NotReadyError(DirectiveError):
    """目标进程 / 浏览器不存在"""

    kind = "not_ready"


class InteractionError(DirectiveError):
    """坐标处无元素、元素无法聚焦等"""

    kind = "interaction_error"


class StabilityTimeout(DirectiveError):
    """稳定等待超时；只记录日志，不向上报告"""

    kind = "stability_timeout"


class TransportError(DirectiveError):
    """底层 shell / 自动化命令失败"""

    kind = "transport_error"


class UnknownSourceError(DirectiveError):
    """未知后端，属于致命路由错误"""

    kind = "unknown_source"


class BackendNotInitializedError(DirectiveError):
    """浏览器尚未 launch 就收到了其他动作"""

    kind = "backend_not_initialized"
