"""
流媒体配置

定义流媒体参数及其默认值。
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

STORAGE_ROOT_ENV = "MATCHDAY_STORAGE_ROOT"


@dataclass
class StreamConfig:
    """流媒体配置

    从应用配置的 ``streaming`` 段读取，所有字段都有默认值。
    """

    # 存储
    storage_root: str = "data/videos"
    playlist_name: str = "playlist.m3u8"
    log_name: str = "transcode.log"

    # 并发
    max_concurrent_streams: int = 4

    # 可执行文件
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # FFmpeg 日志级别，进度行由 -stats 单独输出
    loglevel: str = "error"

    # HLS
    segment_duration: int = 6

    # 编码器，"copy" 表示直接复制流
    video_codec: str = "copy"
    audio_codec: str = "copy"
    extra_args: List[str] = field(default_factory=list)

    # 超时（秒）
    probe_timeout: int = 30
    kill_timeout: int = 5

    default_refresh_hours: float = 4

    @classmethod
    def from_app_config(cls, app_config: dict) -> 'StreamConfig':
        """从应用配置创建 StreamConfig

        Args:
            app_config: 全局配置字典

        Returns:
            StreamConfig 实例
        """
        stream_config = app_config.get("streaming", {}) or {}

        config = cls()

        if "storage_root" in stream_config:
            config.storage_root = stream_config["storage_root"]
        if "playlist_name" in stream_config:
            config.playlist_name = stream_config["playlist_name"] or "playlist.m3u8"
        if "log_name" in stream_config:
            config.log_name = stream_config["log_name"] or "transcode.log"

        if "max_concurrent_streams" in stream_config:
            config.max_concurrent_streams = int(stream_config["max_concurrent_streams"] or 4)

        if "ffmpeg_path" in stream_config:
            config.ffmpeg_path = stream_config["ffmpeg_path"] or "ffmpeg"
        if "ffprobe_path" in stream_config:
            config.ffprobe_path = stream_config["ffprobe_path"] or "ffprobe"
        if "loglevel" in stream_config:
            config.loglevel = stream_config["loglevel"]

        if "segment_duration" in stream_config:
            config.segment_duration = int(stream_config["segment_duration"] or 6)
        if "video_codec" in stream_config:
            config.video_codec = stream_config["video_codec"]
        if "audio_codec" in stream_config:
            config.audio_codec = stream_config["audio_codec"]
        if "extra_args" in stream_config:
            extra_args = stream_config["extra_args"] or []
            if isinstance(extra_args, str):
                extra_args = shlex.split(extra_args)
            config.extra_args = [str(arg) for arg in extra_args]

        if "probe_timeout" in stream_config:
            config.probe_timeout = int(stream_config["probe_timeout"] or 30)
        if "kill_timeout" in stream_config:
            config.kill_timeout = int(stream_config["kill_timeout"] or 5)
        if "default_refresh_hours" in stream_config:
            config.default_refresh_hours = float(stream_config["default_refresh_hours"] or 4)

        # 环境变量优先于配置文件
        env_root = os.environ.get(STORAGE_ROOT_ENV)
        if env_root:
            config.storage_root = env_root

        if config.max_concurrent_streams < 1:
            raise ValueError(f"max_concurrent_streams must be at least 1, got {config.max_concurrent_streams}")

        return config

    def get_storage_dir(self, file_src_id: str) -> Path:
        """单个 VideoFileSource 的存储目录，同一来源的流都写在这里"""
        return Path(self.storage_root).absolute() / file_src_id
