"""
流定位器

VideoStreamLocator 记录一个流的 HLS 播放列表位置及其转码进度。
每个来源只有一个播放列表路径：``<存储目录>/<playlist_name>``，与链接解析结果无关。
"""

import itertools
import logging
import shutil
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import InvalidStateTransition
from ..models import VideoFile, utcnow
from .supervisor import TranscodeSupervisor, canonical_path

logger = logging.getLogger(__name__)


class StreamState(Enum):
    """流定位器状态"""
    CREATED = "CREATED"
    STREAMING = "STREAMING"
    READY = "READY"
    FAILED = "FAILED"


_TRANSITIONS = {
    StreamState.CREATED: {StreamState.STREAMING, StreamState.FAILED},
    StreamState.STREAMING: {StreamState.READY, StreamState.FAILED},
    StreamState.READY: {StreamState.STREAMING},
    StreamState.FAILED: {StreamState.STREAMING},
}


def can_transition(current: StreamState, target: StreamState) -> bool:
    return target in _TRANSITIONS[current]


@dataclass(eq=False)
class VideoStreamLocator:
    """流的播放列表位置和就绪状态"""

    locator_id: int
    playlist_path: Path
    video_file: VideoFile
    state: StreamState = StreamState.CREATED
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completion_ratio: float = 0.0
    error: Optional[str] = None

    @property
    def storage_dir(self) -> Path:
        return self.playlist_path.parent

    def is_finished(self) -> bool:
        return self.state in (StreamState.READY, StreamState.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "locatorId": self.locator_id,
            "playlistPath": str(self.playlist_path),
            "videoFileRef": self.video_file.file_id,
            "state": self.state.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "completionRatio": round(self.completion_ratio, 4),
        }
        if self.error:
            result["error"] = self.error
        return result


class VideoStreamLocatorService:
    """内存中的流定位器仓库"""

    def __init__(self, supervisor: TranscodeSupervisor, playlist_name: str = "playlist.m3u8"):
        self.supervisor = supervisor
        self.playlist_name = playlist_name
        self.locators: Dict[int, VideoStreamLocator] = {}
        self.lock = threading.RLock()
        self._ids = itertools.count(1)

    def get_playlist_path(self, storage_dir: Path) -> Path:
        return canonical_path(Path(storage_dir) / self.playlist_name)

    def create_stream_locator(self, storage_dir: Path, video_file: VideoFile) -> VideoStreamLocator:
        """在 ``storage_dir`` 下为视频文件创建定位器

        播放列表路径只由 ``storage_dir`` 决定；已有定位器指向同一路径时直接返回它。

        Args:
            storage_dir: 来源的存储目录
            video_file: 定位器引用的视频文件（文件包的第一个分段）
        """
        playlist_path = self.get_playlist_path(storage_dir)
        with self.lock:
            for locator in self.locators.values():
                if locator.playlist_path == playlist_path:
                    return locator
            locator = VideoStreamLocator(
                locator_id=next(self._ids),
                playlist_path=playlist_path,
                video_file=video_file,
            )
            self.locators[locator.locator_id] = locator
        logger.info(f"Created stream locator {locator.locator_id} for {video_file} at {playlist_path}")
        return locator

    def get_stream_locator(self, locator_id: int) -> Optional[VideoStreamLocator]:
        with self.lock:
            return self.locators.get(locator_id)

    def get_stream_locator_for(self, file_id: str) -> Optional[VideoStreamLocator]:
        """视频文件最近创建的定位器"""
        with self.lock:
            matches = [loc for loc in self.locators.values() if loc.video_file.file_id == file_id]
        if not matches:
            return None
        return max(matches, key=lambda loc: (loc.created_at, loc.locator_id))

    def get_all_stream_locators(self) -> List[VideoStreamLocator]:
        with self.lock:
            return sorted(self.locators.values(), key=lambda loc: loc.locator_id)

    def update_state(
        self,
        locator: VideoStreamLocator,
        state: StreamState,
        completion_ratio: Optional[float] = None,
        error: Optional[str] = None,
    ) -> VideoStreamLocator:
        """变更定位器状态

        Raises:
            InvalidStateTransition: 当前状态不允许该变更
        """
        with self.lock:
            if state != locator.state:
                if not can_transition(locator.state, state):
                    raise InvalidStateTransition(
                        f"Stream locator {locator.locator_id} cannot go from {locator.state.value} to {state.value}"
                    )
                logger.info(f"Stream locator {locator.locator_id}: {locator.state.value} -> {state.value}")
                locator.state = state
                if state == StreamState.STREAMING:
                    locator.error = None
                    locator.completion_ratio = 0.0
            if completion_ratio is not None:
                locator.completion_ratio = min(1.0, max(0.0, completion_ratio))
            if error is not None:
                locator.error = error
            locator.updated_at = utcnow()
        return locator

    def delete_stream_locator(self, locator: VideoStreamLocator) -> bool:
        """删除定位器，停止其流并删除文件"""
        with self.lock:
            removed = self.locators.pop(locator.locator_id, None)
        if removed is None:
            return False

        self.supervisor.interrupt(locator.playlist_path)
        self._remove_stream_files(locator)
        logger.info(f"Deleted stream locator {locator.locator_id}")
        return True

    def _remove_stream_files(self, locator: VideoStreamLocator) -> None:
        storage_dir = locator.storage_dir
        if not storage_dir.exists():
            return
        try:
            shutil.rmtree(storage_dir)
        except OSError as e:
            logger.warning(f"Failed to remove stream data at {storage_dir}: {e}")

    def get_expired_locators(self, older_than: datetime) -> List[VideoStreamLocator]:
        """最后更新早于 ``older_than`` 的已结束定位器"""
        with self.lock:
            return [
                loc for loc in self.locators.values()
                if loc.is_finished() and loc.updated_at < older_than
            ]
