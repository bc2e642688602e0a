"""
流媒体错误类型

准入和链接解析错误同步抛给调用方；
转码进程的失败只通过任务回调和流定位器状态上报。
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "StreamingError",
    "AlreadyStreamingError",
    "ZombieTaskDetected",
    "StreamCapacityError",
    "ResolutionFailure",
    "TranscodeSpawnError",
    "TranscodeProcessFailure",
    "MetadataProbeFailure",
    "InvalidStateTransition",
    "LocatorNotFound",
]


class StreamingError(RuntimeError):
    """流编排错误基类"""


class AlreadyStreamingError(StreamingError):
    """已有存活的转码进程在写同一个输出路径"""

    def __init__(self, path: Any):
        super().__init__(f"FFmpeg has already started streaming to path: {path}")
        self.path = path


class ZombieTaskDetected(StreamingError):
    """进程已退出但仍留在注册表里的任务"""

    def __init__(self, path: Any, task: Any = None):
        super().__init__(f"Zombie streaming task found at: {path}")
        self.path = path
        self.task = task


class StreamCapacityError(StreamingError):
    """同时进行的流数量已达上限"""


class ResolutionFailure(StreamingError):
    """文件服务器插件无法解析下载链接"""

    def __init__(self, message: str, video_file: Any = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.video_file = video_file
        self.cause = cause


class TranscodeSpawnError(StreamingError):
    """转码进程无法启动"""


class TranscodeProcessFailure(StreamingError):
    """转码进程以非零退出码结束、崩溃或被中断

    由 supervisor 的工作线程构造，通过 ``on_error`` 回调交给调用方，不会抛到请求线程。
    """

    def __init__(self, exit_code: Optional[int], message: str = ""):
        super().__init__(message or f"FFmpeg exited with code {exit_code}")
        self.exit_code = exit_code


class MetadataProbeFailure(StreamingError):
    """ffprobe 读取媒体元数据失败"""


class InvalidStateTransition(StreamingError, ValueError):
    """非法的流定位器状态变更"""


class LocatorNotFound(StreamingError, LookupError):
    """找不到指定 ID 的流定位器"""
