"""
下载链接时效管理

文件服务器给出的直链会过期。来源的链接超过所在服务器的刷新周期即视为过期，
刷新时重新解析所有文件包中的每个链接。
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from ..errors import MetadataProbeFailure, ResolutionFailure
from ..fileserver import DownloadUrlNotFound, FileServerPluginService
from ..models import VideoFile, VideoFileSource, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    """一次 VideoFileSource 刷新的结果"""

    source_id: str
    refreshed_at: datetime
    refreshed: List[VideoFile] = field(default_factory=list)
    failures: List[ResolutionFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return len(self.refreshed) > 0

    def to_dict(self):
        return {
            "fileSrcId": self.source_id,
            "refreshedAt": self.refreshed_at.isoformat(),
            "refreshed": [f.file_id for f in self.refreshed],
            "failures": [
                {"fileId": getattr(f.video_file, "file_id", None), "error": str(f)}
                for f in self.failures
            ],
        }


class FreshnessCoordinator:
    """判断来源链接是否过期并重新解析

    同一来源的并发刷新不做串行化：对同样的上游状态解析两次得到相同的链接，后写者生效。
    """

    def __init__(
        self,
        plugin_service: FileServerPluginService,
        metadata_reader: Optional[Callable] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            plugin_service: 负责解析下载链接
            metadata_reader: callable(uri) -> Metadata，请求元数据时使用
            clock: 返回当前带时区的 datetime
        """
        self.plugin_service = plugin_service
        self.metadata_reader = metadata_reader
        self.clock = clock

    def get_refresh_rate(self, source: VideoFileSource):
        first = next(source.all_video_files(), None)
        if first is None:
            return self.plugin_service.default_refresh_rate
        return self.plugin_service.get_refresh_rate(first.external_url)

    def is_stale(self, source: VideoFileSource) -> bool:
        return (self.clock() - source.last_refreshed) > self.get_refresh_rate(source)

    def refresh(self, source: VideoFileSource, fetch_metadata: bool = False) -> RefreshReport:
        """重新解析来源中每个文件的下载链接

        解析失败的文件保留之前的链接，插件抛出的任何异常都记为该文件的
        ResolutionFailure。至少一个文件成功时来源才算刷新过。

        Args:
            source: 要刷新的来源
            fetch_metadata: 同时探测还没有元数据的文件

        Returns:
            RefreshReport
        """
        now = self.clock()
        report = RefreshReport(source_id=source.file_src_id, refreshed_at=now)
        logger.info(f"Refreshing download links of source {source.file_src_id}")

        for video_file in source.all_video_files():
            try:
                download_url = self.plugin_service.get_download_url(video_file.external_url)
                if download_url is None:
                    raise DownloadUrlNotFound(f"No download URL found for {video_file.external_url}")
            except Exception as e:
                failure = ResolutionFailure(
                    f"Could not refresh {video_file}: {e}", video_file=video_file, cause=e
                )
                report.failures.append(failure)
                if video_file.internal_url:
                    logger.warning(f"{failure}; keeping last known URL")
                else:
                    logger.warning(f"{failure}; file has no usable URL")
                continue

            video_file.internal_url = download_url
            video_file.last_refreshed = now
            report.refreshed.append(video_file)

            if fetch_metadata and video_file.metadata is None:
                self._read_metadata(video_file)

        if report.succeeded:
            source.last_refreshed = now
        logger.info(
            f"Refreshed {len(report.refreshed)} files of source {source.file_src_id}, "
            f"{len(report.failures)} failures"
        )
        return report

    def ensure_fresh(self, source: VideoFileSource, fetch_metadata: bool = False) -> Optional[RefreshReport]:
        """仅在过期时刷新来源"""
        if not self.is_stale(source):
            logger.debug(f"Source {source.file_src_id} is fresh")
            return None
        return self.refresh(source, fetch_metadata=fetch_metadata)

    def _read_metadata(self, video_file: VideoFile) -> None:
        if self.metadata_reader is None:
            return
        try:
            video_file.metadata = self.metadata_reader(video_file.internal_url)
        except MetadataProbeFailure as e:
            logger.warning(f"Could not read metadata of {video_file}: {e}")
