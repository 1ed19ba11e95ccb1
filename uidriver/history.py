"""历史模块：记录执行过的指令，识别重复操作"""

from typing import List, Optional

from .models import NO_URL, ActionDirective, HistoryRecord

URL_PREFIX = "Retrieved URL: "


def directive_target(directive: ActionDirective) -> Optional[str]:
    """指令作用的对象，相同 action + 相同对象视为同一操作"""
    for value in (directive.coordinate, directive.url, directive.key, directive.text,
                  directive.direction, directive.selector):
        if value:
            return value
    return None


class ActionHistory:
    """保存历史步骤和访问过的 URL"""

    def __init__(self):
        self.history: List[HistoryRecord] = []
        self.visited_urls: List[str] = []
        self.step_counter = 0

    def record(self, directive: ActionDirective, status: str, message: str = "") -> HistoryRecord:
        """记录单步操作"""
        self.step_counter += 1
        record = HistoryRecord(
            step_num=self.step_counter,
            action=directive.action,
            target=directive_target(directive),
            result=status,
            message=message,
        )
        self.history.append(record)
        if directive.action == "launch" and directive.url:
            self.record_url(directive.url)
        elif directive.action == "getUrl" and status == "success" and message.startswith(URL_PREFIX):
            self.record_url(message[len(URL_PREFIX):].strip())
        return record

    def record_url(self, url: str):
        if url and url != NO_URL and url not in self.visited_urls:
            self.visited_urls.append(url)

    def is_repeated_action(self, directive: ActionDirective, threshold: int = 3) -> bool:
        """最近 threshold 步是否都是同一个操作"""
        recent = self.history[-threshold:]
        if len(recent) < threshold:
            return False
        target = directive_target(directive)
        return all(r.action == directive.action and r.target == target for r in recent)

    def format_history(self, last_n: int = 5) -> str:
        if not self.history:
            return "(无历史)"

        lines = []
        for rec in self.history[-last_n:]:
            target = f" ({rec.target})" if rec.target else ""
            lines.append(f"Step {rec.step_num}: {rec.action}{target} → {rec.result}: {rec.message}")
        return "\n".join(lines)
