"""
转码任务监管器

负责所有正在运行的 FFmpeg 进程：
- 每个输出播放列表最多一个存活进程
- 回收已退出却未注销的僵尸任务
- 有界工作线程池跟踪每个进程直到退出
- 强制中断单个或全部任务
"""

import logging
import os
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..errors import (
    AlreadyStreamingError,
    StreamCapacityError,
    StreamingError,
    TranscodeProcessFailure,
    ZombieTaskDetected,
)
from .config import StreamConfig
from .ffmpeg import FFmpegRunner
from .ffprobe import FFprobeRunner, Metadata
from .task import TranscodeRequest, TranscodeTask

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Streaming task was interrupted"
ERROR_TAIL_LINES = 20


def canonical_path(path: Union[str, Path]) -> Path:
    return Path(os.path.abspath(os.path.expanduser(str(path))))


class TranscodeSupervisor:
    """转码任务监管器

    任务以输出播放列表的绝对路径为键。``submit`` 的查重和注册在同一把锁内完成，
    同一路径的多个并发 submit 只会有一个真正启动进程。
    """

    def __init__(
        self,
        config: StreamConfig,
        ffmpeg_runner: Optional[FFmpegRunner] = None,
        ffprobe_runner: Optional[FFprobeRunner] = None,
    ):
        """初始化监管器

        Args:
            config: 流媒体配置
            ffmpeg_runner: 构建命令并启动进程
            ffprobe_runner: 读取媒体元数据
        """
        self.config = config
        self.ffmpeg_runner = ffmpeg_runner or FFmpegRunner(config)
        self.ffprobe_runner = ffprobe_runner or FFprobeRunner(config.ffprobe_path)
        self.tasks: Dict[Path, TranscodeTask] = {}
        self.lock = threading.RLock()
        self._executor = ThreadPoolExecutor(
            max_workers=config.max_concurrent_streams,
            thread_name_prefix="TranscodeWorker",
        )
        self._closed = False

    def submit(self, request: TranscodeRequest) -> TranscodeTask:
        """启动转码，进程运行后立即返回

        Raises:
            AlreadyStreamingError: 已有存活任务在写该输出
            StreamCapacityError: 运行中的任务已达 max_concurrent_streams
            TranscodeSpawnError: FFmpeg 无法启动
        """
        path = canonical_path(request.output)
        request.output = path
        if request.log_file is None:
            request.log_file = path.parent / self.config.log_name

        with self.lock:
            if self._closed:
                raise StreamingError("Transcode supervisor is shut down")

            try:
                self._check_task_already_executing(path)
            except ZombieTaskDetected as e:
                self._remove_zombie(e)
                self._check_task_already_executing(path)

            if len(self.tasks) >= self.config.max_concurrent_streams:
                raise StreamCapacityError(
                    f"Maximum number of simultaneous streams reached ({self.config.max_concurrent_streams})"
                )

            command = self.ffmpeg_runner.build_command(request)
            logger.info(f"Starting FFmpeg for {path}: {self.ffmpeg_runner.get_command_line_string(command)}")
            process = self.ffmpeg_runner.start_process(command, path.parent)

            task = TranscodeTask(path=path, request=request, process=process, command=command)
            self.tasks[path] = task
            self._executor.submit(self._run_task, task)

        return task

    def _check_task_already_executing(self, path: Path) -> None:
        task = self.tasks.get(path)
        if task is None:
            return
        if task.is_alive():
            raise AlreadyStreamingError(path)
        raise ZombieTaskDetected(path, task)

    def _remove_zombie(self, zombie: ZombieTaskDetected) -> None:
        task = zombie.task
        if task is not None:
            exit_code = task.process.wait_for_exit(0)
            if exit_code is None:
                logger.warning(f"Zombie streaming task found at {zombie.path}; killing and removing it")
                task.mark_killed()
                self._kill_process(task)
            else:
                # 进程已正常退出，只是工作线程还没注销；结果由工作线程照常上报
                logger.info(
                    f"Streaming task at {zombie.path} exited with code {exit_code} "
                    f"before its worker deregistered it; replacing it"
                )
        if self.tasks.get(zombie.path) is task:
            del self.tasks[zombie.path]

    def _run_task(self, task: TranscodeTask) -> None:
        """跟踪一个进程直到退出

        输出写入任务日志并逐行交给 ``on_progress``；进程退出后先注销任务
        （除非已被替换），失败时调用 ``on_error``，最后总是调用 ``on_complete``。
        """
        request = task.request
        tail = deque(maxlen=ERROR_TAIL_LINES)
        exit_code = None
        error = None

        try:
            log_cm = open(request.log_file, "a", encoding="utf-8") if request.log_file else nullcontext()
            with log_cm as log:
                for line in task.process.lines():
                    tail.append(line)
                    if log is not None:
                        log.write(line + "\n")
                        log.flush()
                    self._invoke(request.on_progress, line)
            exit_code = task.process.wait_for_exit()
        except Exception as e:
            logger.error(f"Error supervising FFmpeg for {task.path}: {e}")
            error = f"Error supervising FFmpeg: {e}"
            self._kill_process(task)
            exit_code = task.process.wait_for_exit(timeout=self.config.kill_timeout)

        failure = None
        if task.is_killed():
            failure = TranscodeProcessFailure(exit_code, INTERRUPTED_MESSAGE)
            task.failure = failure
        elif error is not None:
            failure = TranscodeProcessFailure(exit_code, error)
        elif exit_code != 0:
            message = f"FFmpeg exited with code {exit_code}"
            if tail:
                message += ": " + " | ".join(list(tail)[-3:])
            failure = TranscodeProcessFailure(exit_code, message)

        if failure is None:
            task.mark_completed(exit_code)
            logger.info(f"Streaming task for {task.path} completed successfully")
        else:
            if not task.is_killed():
                task.mark_error(failure)
            logger.error(f"Streaming task for {task.path} ended with error: {failure}")

        with self.lock:
            if self.tasks.get(task.path) is task:
                del self.tasks[task.path]

        if failure is not None:
            self._invoke(request.on_error, failure)
        self._invoke(request.on_complete, exit_code)

    @staticmethod
    def _invoke(callback, *args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Streaming task callback {getattr(callback, '__name__', callback)} failed: {e}")

    def _kill_process(self, task: TranscodeTask) -> None:
        try:
            task.process.kill()
            logger.info(f"Killed FFmpeg process {task.pid} for {task.path}")
        except Exception as e:
            logger.warning(f"Error killing FFmpeg process {task.pid} for {task.path}: {e}")

    def interrupt(self, path: Union[str, Path]) -> bool:
        """强制结束并移除写 ``path`` 的任务

        Returns:
            是否找到了任务
        """
        path = canonical_path(path)
        with self.lock:
            task = self.tasks.pop(path, None)
            if task is None:
                return False
            task.mark_killed()
        self._kill_process(task)
        logger.info(f"Interrupted streaming task for {path}")
        return True

    def interrupt_all(self) -> int:
        """强制结束所有任务并清空注册表

        Returns:
            移除的任务数
        """
        with self.lock:
            tasks = list(self.tasks.values())
            self.tasks.clear()
            for task in tasks:
                task.mark_killed()
        for task in tasks:
            self._kill_process(task)
        logger.info(f"Interrupted {len(tasks)} streaming tasks")
        return len(tasks)

    def count(self) -> int:
        with self.lock:
            return len(self.tasks)

    def is_streaming(self, path: Union[str, Path]) -> bool:
        task = self.get_task(path)
        return task is not None and task.is_alive()

    def get_task(self, path: Union[str, Path]) -> Optional[TranscodeTask]:
        with self.lock:
            return self.tasks.get(canonical_path(path))

    def get_all_tasks(self) -> List[TranscodeTask]:
        with self.lock:
            return list(self.tasks.values())

    def read_metadata(self, uri: str) -> Metadata:
        """用 ffprobe 读取元数据，不影响任务注册表

        Raises:
            MetadataProbeFailure
        """
        return self.ffprobe_runner.get_metadata(uri, timeout=self.config.probe_timeout)

    def shutdown(self, wait: bool = True) -> None:
        """中断所有任务并关闭线程池"""
        with self.lock:
            self._closed = True
        self.interrupt_all()
        self._executor.shutdown(wait=wait)
