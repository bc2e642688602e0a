"""多段录像的分段排序"""

import logging
from typing import Iterable, List, Tuple

from ..models import VideoFile, VideoFilePack

logger = logging.getLogger(__name__)


def _precedence(video_file: VideoFile):
    return video_file.created_at, video_file.file_id


def order_video_files(files: Iterable[VideoFile]) -> List[VideoFile]:
    """按播放顺序排列文件，每个分段保留一个文件

    同一分段有多个文件时保留最早创建的（创建时间相同则按文件 ID），其余的
    记录警告后丢弃。结果与 ``files`` 的顺序无关。
    """
    chosen = {}
    for video_file in files:
        current = chosen.get(video_file.title)
        if current is None:
            chosen[video_file.title] = video_file
            continue
        keep, drop = sorted((current, video_file), key=_precedence)
        chosen[video_file.title] = keep
        if drop is not keep:
            logger.warning(
                f"Duplicate {drop.title.name} part: dropping {drop.file_id}, keeping {keep.file_id}"
            )
    return [chosen[title] for title in sorted(chosen)]


def build_input_list(pack: VideoFilePack) -> Tuple[List[VideoFile], List[str]]:
    """文件包按顺序排列的转码输入

    没有解析出下载链接的文件会被跳过。

    Returns:
        (排好序的文件, 对应的下载链接)
    """
    files = []
    for video_file in order_video_files(pack):
        if not video_file.internal_url:
            logger.warning(f"No download URL for {video_file}; leaving it out of the stream")
            continue
        files.append(video_file)
    return files, [video_file.internal_url for video_file in files]
