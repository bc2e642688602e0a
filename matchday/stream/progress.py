"""FFmpeg 日志解析：把输出行换算成完成比例"""

import re
from typing import Optional

_DURATION_RE = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_TIME_RE = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")


def parse_timestamp(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class FFmpegLogAdapter:
    """根据日志行跟踪单个转码的进度

    总时长取自传入的 ``total_duration``（通常来自 ffprobe 元数据），
    没有时累加输入的 ``Duration:`` 行；当前位置取自 ``-stats`` 输出的 ``time=`` 行。
    """

    def __init__(self, total_duration: Optional[float] = None):
        self.total_duration = total_duration if total_duration and total_duration > 0 else 0.0
        self._known_total = self.total_duration > 0
        self.position = 0.0

    def update(self, line: str) -> float:
        """处理一行输出，返回当前完成比例"""
        if not line:
            return self.completion_ratio

        match = _DURATION_RE.search(line)
        if match and not self._known_total:
            # concat 的每个输入各输出一行 Duration
            self.total_duration += parse_timestamp(*match.groups())

        match = _TIME_RE.search(line)
        if match:
            self.position = max(self.position, parse_timestamp(*match.groups()))

        return self.completion_ratio

    @property
    def completion_ratio(self) -> float:
        if self.total_duration <= 0:
            return 0.0
        return min(1.0, max(0.0, self.position / self.total_duration))
