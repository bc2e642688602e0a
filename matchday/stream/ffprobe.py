"""
FFprobe 媒体元数据

用 ffprobe 读取视频的时长、容器和流信息。
"""

import json
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..errors import MetadataProbeFailure

logger = logging.getLogger(__name__)


@dataclass
class Metadata:
    """单个视频文件的媒体元数据"""

    duration: float = 0.0
    format_name: str = ""
    size: int = 0
    bit_rate: int = 0
    video_codec: str = ""
    audio_codec: str = ""
    width: int = 0
    height: int = 0
    streams: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "format": self.format_name,
            "size": self.size,
            "bitRate": self.bit_rate,
            "videoCodec": self.video_codec,
            "audioCodec": self.audio_codec,
            "width": self.width,
            "height": self.height,
        }


def _to_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _preview(uri: str) -> str:
    return uri[:80] + "..." if len(uri) > 80 else uri


class FFprobeRunner:
    """FFprobe 运行器"""

    def __init__(self, ffprobe_path: str = "ffprobe"):
        self.ffprobe_path = ffprobe_path

    def get_metadata(self, uri: str, timeout: int = 30) -> Metadata:
        """探测视频元数据

        Args:
            uri: 视频 URI（文件路径或 URL）
            timeout: 超时时间（秒）

        Returns:
            解析后的 Metadata

        Raises:
            MetadataProbeFailure: ffprobe 执行失败、超时或输出无法解析
        """
        cmd = [
            self.ffprobe_path,
            "-hide_banner",
            "-loglevel", "error",
            "-show_format",
            "-show_streams",
            "-print_format", "json",
            uri,
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            logger.error(f"ffprobe timeout after {timeout}s for {_preview(uri)}")
            raise MetadataProbeFailure(f"ffprobe timeout ({timeout}s)") from e
        except FileNotFoundError as e:
            logger.error("ffprobe executable not found")
            raise MetadataProbeFailure("ffprobe not found") from e

        if result.returncode != 0:
            error_msg = (result.stderr or "").strip() or "Unknown ffprobe error"
            logger.warning(f"ffprobe error (code {result.returncode}) for {_preview(uri)}: {error_msg}")
            raise MetadataProbeFailure(f"ffprobe failed: {error_msg}")

        try:
            raw_info = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse ffprobe output: {e}, stdout: {result.stdout[:200]}")
            raise MetadataProbeFailure(f"Failed to parse ffprobe output: {e}") from e

        metadata = self._parse_metadata(raw_info)
        if metadata.duration > 0:
            logger.info(f"ffprobe got duration: {metadata.duration}s for {_preview(uri)}")
        else:
            logger.warning(f"ffprobe got duration=0 for {_preview(uri)}")
        return metadata

    def _parse_metadata(self, raw_info: Dict[str, Any]) -> Metadata:
        format_info = raw_info.get("format", {}) or {}
        metadata = Metadata(
            duration=_to_float(format_info.get("duration")),
            format_name=format_info.get("format_name", ""),
            size=_to_int(format_info.get("size")),
            bit_rate=_to_int(format_info.get("bit_rate")),
        )

        for stream in raw_info.get("streams", []) or []:
            codec_type = stream.get("codec_type", "")
            metadata.streams.append({
                "codec_type": codec_type,
                "codec_name": stream.get("codec_name", ""),
                "index": stream.get("index", -1),
            })
            if codec_type == "video" and not metadata.video_codec:
                metadata.video_codec = stream.get("codec_name", "")
                metadata.width = _to_int(stream.get("width"))
                metadata.height = _to_int(stream.get("height"))
            elif codec_type == "audio" and not metadata.audio_codec:
                metadata.audio_codec = stream.get("codec_name", "")

        return metadata
