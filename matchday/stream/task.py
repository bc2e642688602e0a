"""
转码任务数据模型

定义转码请求、supervisor 跟踪的任务，以及任务所依赖的进程句柄抽象。
"""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from ..errors import TranscodeProcessFailure

logger = logging.getLogger(__name__)


def _noop(*args, **kwargs):
    pass


class ProcessHandle(Protocol):
    """正在运行的转码进程"""

    pid: Optional[int]

    def is_alive(self) -> bool: ...

    def kill(self) -> None: ...

    def wait_for_exit(self, timeout: Optional[float] = None) -> Optional[int]: ...

    def lines(self) -> Iterator[str]: ...


class PopenProcessHandle:
    """基于 subprocess.Popen 的进程句柄

    stdout 和 stderr 合并为一个文本管道，由 ``lines()`` 逐行读取。
    """

    def __init__(self, process: subprocess.Popen, kill_timeout: float = 5):
        self.process = process
        self.pid = process.pid
        self.kill_timeout = kill_timeout

    @classmethod
    def spawn(cls, command: List[str], cwd: Optional[str] = None, kill_timeout: float = 5) -> 'PopenProcessHandle':
        process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            cwd=cwd,
            text=True,
            errors="replace",
            bufsize=1,
        )
        return cls(process, kill_timeout=kill_timeout)

    def is_alive(self) -> bool:
        return self.process.poll() is None

    def kill(self) -> None:
        """强制结束进程（SIGKILL），然后回收

        ``kill_timeout`` 只限制回收的等待时间。
        """
        if not self.is_alive():
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            # poll() 之后、kill() 之前已经退出
            pass
        try:
            self.process.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"FFmpeg process {self.pid} not reaped {self.kill_timeout}s after SIGKILL")

    def wait_for_exit(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def lines(self) -> Iterator[str]:
        if self.process.stdout is None:
            return
        with self.process.stdout:
            for line in self.process.stdout:
                yield line.rstrip("\r\n")


@dataclass
class TranscodeRequest:
    """转码请求：输入、输出以及生命周期回调

    回调在 supervisor 的工作线程上执行。
    """

    inputs: List[str]
    output: Path
    on_progress: Callable[[str], None] = _noop
    on_error: Callable[[TranscodeProcessFailure], None] = _noop
    on_complete: Callable[[Optional[int]], None] = _noop
    log_file: Optional[Path] = None

    def __post_init__(self):
        self.output = Path(self.output)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)


class TaskStatus(Enum):
    """任务状态"""
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    KILLED = "killed"


@dataclass
class TranscodeTask:
    """按输出路径注册的转码进程"""

    path: Path
    request: TranscodeRequest
    process: Any
    command: List[str] = field(default_factory=list)

    status: TaskStatus = TaskStatus.RUNNING
    exit_code: Optional[int] = None
    error: Optional[str] = None
    failure: Optional[TranscodeProcessFailure] = None

    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    def is_alive(self) -> bool:
        return self.process.is_alive()

    def mark_completed(self, exit_code: int):
        self.status = TaskStatus.COMPLETED
        self.exit_code = exit_code
        self.completed_at = time.time()

    def mark_error(self, failure: TranscodeProcessFailure):
        """标记为失败

        Args:
            failure: 进程失败信息（含退出码）
        """
        self.status = TaskStatus.ERROR
        self.failure = failure
        self.error = str(failure)
        self.exit_code = failure.exit_code
        self.completed_at = time.time()

    def mark_killed(self):
        self.status = TaskStatus.KILLED
        self.completed_at = time.time()

    def is_killed(self) -> bool:
        return self.status == TaskStatus.KILLED

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "path": str(self.path),
            "pid": self.pid,
            "status": self.status.value,
            "inputs": len(self.request.inputs),
            "created_at": self.created_at,
        }
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.completed_at:
            result["completed_at"] = self.completed_at
        if self.error:
            result["error"] = self.error
        return result
