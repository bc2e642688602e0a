"""
流编排模块

把托管在文件服务器上的多段比赛录像转成本地 HLS 流：
- 下载链接超过文件服务器的刷新周期后重新解析
- 每个来源一个输出播放列表，同一时间最多一个 FFmpeg 进程，并回收僵尸任务
- 各分段按比赛顺序拼接
- 每个流的就绪状态记录在流定位器上
"""

from .config import StreamConfig
from .ordering import order_video_files, build_input_list
from .task import ProcessHandle, PopenProcessHandle, TranscodeRequest, TranscodeTask, TaskStatus
from .ffmpeg import FFmpegRunner
from .ffprobe import FFprobeRunner, Metadata
from .progress import FFmpegLogAdapter
from .supervisor import TranscodeSupervisor
from .locator import StreamState, VideoStreamLocator, VideoStreamLocatorService
from .freshness import FreshnessCoordinator, RefreshReport
from .streaming import VideoStreamingService

__all__ = [
    'StreamConfig',
    'order_video_files',
    'build_input_list',
    'ProcessHandle',
    'PopenProcessHandle',
    'TranscodeRequest',
    'TranscodeTask',
    'TaskStatus',
    'FFmpegRunner',
    'FFprobeRunner',
    'Metadata',
    'FFmpegLogAdapter',
    'TranscodeSupervisor',
    'StreamState',
    'VideoStreamLocator',
    'VideoStreamLocatorService',
    'FreshnessCoordinator',
    'RefreshReport',
    'VideoStreamingService',
]
