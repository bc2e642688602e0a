"""
视频流服务

处理流请求的入口：
1. 来源链接过期时刷新（同时读取元数据，用于计算进度）
2. 按分段顺序整理文件包的输入列表
3. 创建或复用来源的流定位器
4. 把转码交给 supervisor，并在定位器上跟踪其状态
"""

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..errors import (
    AlreadyStreamingError,
    LocatorNotFound,
    ResolutionFailure,
    TranscodeProcessFailure,
    TranscodeSpawnError,
)
from ..fileserver import FileServerPluginService
from ..models import VideoFile, VideoFilePack, VideoFileSource
from .config import StreamConfig
from .freshness import FreshnessCoordinator
from .locator import StreamState, VideoStreamLocator, VideoStreamLocatorService, can_transition
from .ordering import build_input_list
from .progress import FFmpegLogAdapter
from .supervisor import TranscodeSupervisor
from .task import TranscodeRequest

logger = logging.getLogger(__name__)

SEGMENT_NAME_RE = re.compile(r"^segment\d+\.ts$")


class _StreamJob:
    """一次提交的转码回调，绑定到对应的定位器"""

    def __init__(self, service: "VideoStreamingService", locator: VideoStreamLocator, files: List[VideoFile]):
        self.service = service
        self.locator = locator
        durations = [f.duration for f in files]
        total = sum(durations) if all(d > 0 for d in durations) else None
        self.progress = FFmpegLogAdapter(total_duration=total)
        self.failure: Optional[TranscodeProcessFailure] = None
        self.request: Optional[TranscodeRequest] = None

    def on_progress(self, line: str) -> None:
        before = self.progress.completion_ratio
        ratio = self.progress.update(line)
        if ratio != before:
            self.service._job_progress(self, ratio)

    def on_error(self, failure: TranscodeProcessFailure) -> None:
        self.failure = failure

    def on_complete(self, exit_code: Optional[int]) -> None:
        self.service._job_complete(self, exit_code)


class VideoStreamingService:
    """把 VideoFileSource 转成本地 HLS 播放列表"""

    def __init__(
        self,
        config: StreamConfig,
        plugin_service: FileServerPluginService,
        supervisor: TranscodeSupervisor,
        locator_service: VideoStreamLocatorService,
        freshness: FreshnessCoordinator,
    ):
        self.config = config
        self.plugin_service = plugin_service
        self.supervisor = supervisor
        self.locator_service = locator_service
        self.freshness = freshness
        self.lock = threading.RLock()
        self._jobs: Dict[int, _StreamJob] = {}
        self._origins: Dict[int, Tuple[VideoFileSource, VideoFilePack]] = {}

    def stream_source(self, source: VideoFileSource, pack: Optional[VideoFilePack] = None) -> VideoStreamLocator:
        """开始（或加入）来源的流

        每个来源只有一个定位器和一个播放列表路径。正在转码、已就绪或已失败的
        定位器原样返回；失败的流只能通过 ``restream`` 重新开始。

        Args:
            source: 要播放的来源
            pack: 要播放的文件包，默认取第一个可播放的文件包

        Returns:
            流定位器

        Raises:
            ResolutionFailure: 文件包中没有任何文件有下载链接
            StreamCapacityError: 同时进行的流过多
            TranscodeSpawnError: FFmpeg 无法启动
        """
        if pack is None:
            pack = self._select_pack(source)
        lead = pack.first_part() if pack is not None else None
        if lead is None:
            raise ResolutionFailure(f"Source {source.file_src_id} has no video files")

        self.freshness.ensure_fresh(source, fetch_metadata=True)
        files, uris = self._build_inputs(source, pack)

        storage_dir = self.config.get_storage_dir(source.file_src_id)
        locator = self.locator_service.create_stream_locator(storage_dir, lead)

        with self.lock:
            self._origins[locator.locator_id] = (source, pack)
            if locator.state != StreamState.CREATED:
                logger.info(
                    f"Stream locator {locator.locator_id} for source {source.file_src_id} "
                    f"already {locator.state.value}"
                )
                return locator
            return self._start(locator, files, uris)

    def restream(self, locator_id: int) -> VideoStreamLocator:
        """为已结束（就绪或失败）的流重新转码"""
        locator = self._require_locator(locator_id)
        with self.lock:
            origin = self._origins.get(locator_id)
        if origin is None:
            raise LocatorNotFound(f"No source recorded for stream locator {locator_id}")
        source, pack = origin

        self.freshness.ensure_fresh(source, fetch_metadata=True)
        files, uris = self._build_inputs(source, pack)

        with self.lock:
            if locator.state == StreamState.STREAMING:
                return locator
            self._clear_stream_dir(locator)
            return self._start(locator, files, uris)

    def _select_pack(self, source: VideoFileSource) -> Optional[VideoFilePack]:
        pack = source.first_playable_pack()
        if pack is None and source.video_file_packs:
            pack = source.video_file_packs[0]
            logger.warning(f"Source {source.file_src_id} has no playable pack; streaming {pack}")
        return pack

    def _build_inputs(self, source: VideoFileSource, pack: VideoFilePack) -> Tuple[List[VideoFile], List[str]]:
        files, uris = build_input_list(pack)
        if not files:
            raise ResolutionFailure(
                f"No video file of source {source.file_src_id} has a download URL",
                video_file=pack.first_part(),
            )
        return files, uris

    def _start(self, locator: VideoStreamLocator, files: List[VideoFile], uris: List[str]) -> VideoStreamLocator:
        # 调用方持有 self.lock，任务回调会等到状态切换完成
        job = _StreamJob(self, locator, files)
        request = TranscodeRequest(
            inputs=uris,
            output=locator.playlist_path,
            on_progress=job.on_progress,
            on_error=job.on_error,
            on_complete=job.on_complete,
            log_file=locator.storage_dir / self.config.log_name,
        )
        job.request = request

        try:
            self.supervisor.submit(request)
        except AlreadyStreamingError:
            logger.info(f"Already streaming to {locator.playlist_path}; returning locator {locator.locator_id}")
            return locator
        except TranscodeSpawnError as e:
            state = StreamState.FAILED if can_transition(locator.state, StreamState.FAILED) else locator.state
            self.locator_service.update_state(locator, state, error=str(e))
            raise

        self._jobs[locator.locator_id] = job
        self.locator_service.update_state(locator, StreamState.STREAMING)
        logger.info(f"Streaming {len(uris)} files to locator {locator.locator_id}")
        return locator

    def _job_progress(self, job: _StreamJob, ratio: float) -> None:
        with self.lock:
            if self._jobs.get(job.locator.locator_id) is not job:
                return
            self.locator_service.update_state(job.locator, StreamState.STREAMING, completion_ratio=ratio)

    def _job_complete(self, job: _StreamJob, exit_code: Optional[int]) -> None:
        locator = job.locator
        with self.lock:
            if self._jobs.get(locator.locator_id) is not job:
                return
            del self._jobs[locator.locator_id]

            if exit_code == 0 and job.failure is None and self._playlist_written(locator):
                self.locator_service.update_state(locator, StreamState.READY, completion_ratio=1.0)
                logger.info(f"Stream locator {locator.locator_id} is ready")
                return

            error = str(job.failure) if job.failure is not None else "FFmpeg finished without writing a playlist"
            self.locator_service.update_state(locator, StreamState.FAILED, error=error)
            logger.error(f"Stream locator {locator.locator_id} failed: {error}")

    @staticmethod
    def _playlist_written(locator: VideoStreamLocator) -> bool:
        path = locator.playlist_path
        return path.is_file() and path.stat().st_size > 0

    def _clear_stream_dir(self, locator: VideoStreamLocator) -> None:
        storage_dir = locator.storage_dir
        if not storage_dir.is_dir():
            return
        for child in storage_dir.iterdir():
            if child.is_file():
                try:
                    child.unlink()
                except OSError as e:
                    logger.warning(f"Failed to delete {child}: {e}")

    def _require_locator(self, locator_id: int) -> VideoStreamLocator:
        locator = self.locator_service.get_stream_locator(locator_id)
        if locator is None:
            raise LocatorNotFound(f"No stream locator with ID: {locator_id}")
        return locator

    # 查询

    def get_stream_locator(self, locator_id: int) -> Optional[VideoStreamLocator]:
        return self.locator_service.get_stream_locator(locator_id)

    def get_all_stream_locators(self) -> List[VideoStreamLocator]:
        return self.locator_service.get_all_stream_locators()

    def get_active_stream_count(self) -> int:
        return self.supervisor.count()

    def read_playlist(self, locator_id: int) -> Optional[str]:
        """播放列表内容，FFmpeg 还没写出时返回 None"""
        locator = self._require_locator(locator_id)
        if not locator.playlist_path.is_file():
            return None
        return locator.playlist_path.read_text(encoding="utf-8")

    def get_segment_path(self, locator_id: int, segment_name: str) -> Optional[Path]:
        locator = self._require_locator(locator_id)
        if not SEGMENT_NAME_RE.match(segment_name):
            return None
        segment_path = locator.storage_dir / segment_name
        if segment_path.is_file():
            return segment_path
        return None

    # 控制

    def kill_stream(self, locator_id: int) -> bool:
        locator = self._require_locator(locator_id)
        return self.supervisor.interrupt(locator.playlist_path)

    def kill_all_streams(self) -> int:
        return self.supervisor.interrupt_all()

    def delete_stream_locator(self, locator_id: int) -> bool:
        locator = self._require_locator(locator_id)
        with self.lock:
            self._jobs.pop(locator_id, None)
            self._origins.pop(locator_id, None)
        return self.locator_service.delete_stream_locator(locator)

    def delete_expired_streams(self, older_than: datetime) -> int:
        """删除最后更新早于 ``older_than`` 的已结束流

        Returns:
            删除的流数量
        """
        deleted = 0
        for locator in self.locator_service.get_expired_locators(older_than):
            if self.delete_stream_locator(locator.locator_id):
                deleted += 1
        if deleted:
            logger.info(f"Deleted {deleted} expired streams")
        return deleted

    def shutdown(self) -> None:
        self.supervisor.shutdown()
