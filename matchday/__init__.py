"""Matchday：比赛录像的按需 HLS 流媒体服务"""

__version__ = "0.1.0"

from .models import PartIdentifier, VideoFile, VideoFilePack, VideoFileSource

__all__ = [
    'PartIdentifier',
    'VideoFile',
    'VideoFilePack',
    'VideoFileSource',
]
