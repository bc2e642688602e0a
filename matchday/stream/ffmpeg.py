"""
FFmpeg 进程管理

构建并启动把远程视频文件转成本地 HLS 流的 FFmpeg 命令。
"""

import logging
import os
import re
from pathlib import Path
from typing import List

from ..errors import TranscodeSpawnError
from .config import StreamConfig
from .task import PopenProcessHandle, TranscodeRequest

logger = logging.getLogger(__name__)

CONCAT_FILE_NAME = "concat.txt"
SEGMENT_PATTERN = "segment%05d.ts"
PROTOCOL_WHITELIST = "file,http,https,tcp,tls,crypto"

_QUERY_RE = re.compile(r"(https?://[^\s?]+)\?\S*")


class FFmpegRunner:
    """FFmpeg 运行器

    负责构建 FFmpeg 命令和启动转码进程。
    """

    def __init__(self, config: StreamConfig):
        self.config = config

    def build_command(self, request: TranscodeRequest) -> List[str]:
        """构建转码请求对应的 FFmpeg 命令

        单个输入直接读取；多个输入通过写在播放列表旁的 ``concat.txt``
        交给 concat demuxer 拼接。``-stats`` 保证在任何日志级别下都输出
        ``time=`` 进度行。

        Args:
            request: 转码请求

        Returns:
            FFmpeg 命令列表
        """
        if not request.inputs:
            raise ValueError("Transcode request has no inputs")

        output = Path(request.output)
        cmd = [
            self.config.ffmpeg_path,
            "-hide_banner",
            "-loglevel", self.config.loglevel,
            "-stats",
            "-y",
        ]

        if len(request.inputs) == 1:
            cmd.extend(["-i", request.inputs[0]])
        else:
            concat_file = self.write_concat_file(request.inputs, output.parent)
            cmd.extend([
                "-f", "concat",
                "-safe", "0",
                "-protocol_whitelist", PROTOCOL_WHITELIST,
                "-i", str(concat_file),
            ])

        cmd.extend(self._get_codec_params())
        cmd.extend(self._get_hls_params(output.parent))
        cmd.append(str(output))
        return cmd

    def write_concat_file(self, inputs: List[str], output_dir: Path) -> Path:
        """写入 concat demuxer 列表

        Args:
            inputs: 按顺序排列的输入 URI
            output_dir: 播放列表所在目录

        Returns:
            列表文件路径
        """
        os.makedirs(output_dir, exist_ok=True)
        concat_file = Path(output_dir) / CONCAT_FILE_NAME
        lines = [f"file '{self.escape_concat_uri(uri)}'" for uri in inputs]
        concat_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return concat_file

    @staticmethod
    def escape_concat_uri(uri: str) -> str:
        # 结束引号，输出转义的单引号，再重新开始引号
        return uri.replace("'", "'\\''")

    def _get_codec_params(self) -> List[str]:
        params = [
            "-c:v", self.config.video_codec,
            "-c:a", self.config.audio_codec,
        ]
        params.extend(self.config.extra_args)
        return params

    def _get_hls_params(self, output_dir: Path) -> List[str]:
        return [
            "-f", "hls",
            "-hls_time", str(self.config.segment_duration),
            "-hls_playlist_type", "vod",
            "-hls_list_size", "0",
            "-hls_segment_filename", str(Path(output_dir) / SEGMENT_PATTERN),
        ]

    def start_process(self, command: List[str], output_dir: Path) -> PopenProcessHandle:
        """启动 FFmpeg 进程

        Args:
            command: FFmpeg 命令
            output_dir: 输出目录，不存在时创建

        Returns:
            进程句柄

        Raises:
            TranscodeSpawnError: 进程无法启动
        """
        try:
            os.makedirs(output_dir, exist_ok=True)
            process = PopenProcessHandle.spawn(
                command, cwd=str(output_dir), kill_timeout=self.config.kill_timeout
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start FFmpeg: {e}")
            raise TranscodeSpawnError(f"Failed to start FFmpeg: {e}") from e

        logger.info(f"Started FFmpeg process with PID {process.pid}")
        return process

    def get_command_line_string(self, command: List[str]) -> str:
        """获取命令行字符串（用于日志记录），URL 查询串会被隐藏

        Args:
            command: FFmpeg 命令列表

        Returns:
            命令行字符串
        """
        return " ".join(_QUERY_RE.sub(r"\1?<redacted>", arg) for arg in command)
