"""
视频目录数据模型

描述赛事录像的远程来源：一个 VideoFileSource 包含一个或多个 VideoFilePack，
每个文件包中每个分段最多一个 VideoFile。
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import total_ordering
from typing import Any, Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


@total_ordering
class PartIdentifier(Enum):
    """录像分段，声明顺序即播放顺序"""

    PRE_MATCH = "Pre-Match"
    FIRST_HALF = "1st Half"
    SECOND_HALF = "2nd Half"
    EXTRA_TIME = "Extra-Time/Penalties"
    TROPHY_CEREMONY = "Trophy Ceremony"
    POST_MATCH = "Post-Match"
    DEFAULT = ""

    @property
    def rank(self) -> int:
        return _PART_RANKS[self]

    def __lt__(self, other):
        if not isinstance(other, PartIdentifier):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def from_string(cls, text: Optional[str]) -> "PartIdentifier":
        """按成员名或常见写法（"1st half"、"pre-match" 等）匹配分段

        无法识别的文本对应 DEFAULT。
        """
        if not text:
            return cls.DEFAULT
        key = re.sub(r"[^a-z0-9]", "", text.lower())
        if key in _PART_ALIASES:
            return _PART_ALIASES[key]
        for member in cls:
            if key == member.name.lower().replace("_", ""):
                return member
        return cls.DEFAULT


_PART_RANKS = {part: rank for rank, part in enumerate(PartIdentifier)}

_PART_ALIASES = {
    "prematch": PartIdentifier.PRE_MATCH,
    "pregame": PartIdentifier.PRE_MATCH,
    "1sthalf": PartIdentifier.FIRST_HALF,
    "firsthalf": PartIdentifier.FIRST_HALF,
    "1half": PartIdentifier.FIRST_HALF,
    "2ndhalf": PartIdentifier.SECOND_HALF,
    "secondhalf": PartIdentifier.SECOND_HALF,
    "2half": PartIdentifier.SECOND_HALF,
    "extratime": PartIdentifier.EXTRA_TIME,
    "extratimepenalties": PartIdentifier.EXTRA_TIME,
    "penalties": PartIdentifier.EXTRA_TIME,
    "trophyceremony": PartIdentifier.TROPHY_CEREMONY,
    "ceremony": PartIdentifier.TROPHY_CEREMONY,
    "postmatch": PartIdentifier.POST_MATCH,
    "postgame": PartIdentifier.POST_MATCH,
}


@dataclass(eq=False)
class VideoFile:
    """录像的一个远程分段文件"""

    title: PartIdentifier
    external_url: str
    file_id: str = field(default_factory=_new_id)
    internal_url: Optional[str] = None
    last_refreshed: datetime = EPOCH
    created_at: datetime = field(default_factory=utcnow)
    metadata: Optional[Any] = None

    def __post_init__(self):
        if isinstance(self.title, str):
            self.title = PartIdentifier.from_string(self.title)

    @property
    def duration(self) -> float:
        """元数据中的时长（秒），未知时为 -1"""
        duration = getattr(self.metadata, "duration", None)
        if duration is not None and duration > 0:
            return duration
        return -1

    def __eq__(self, other):
        if other is self:
            return True
        if not isinstance(other, VideoFile):
            return NotImplemented
        return self.external_url == other.external_url

    def __hash__(self):
        return hash(self.external_url)

    def __lt__(self, other):
        if not isinstance(other, VideoFile):
            return NotImplemented
        return self.title < other.title

    def __str__(self):
        return f"{self.title.name} - {self.external_url}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "title": self.title.name,
            "externalUrl": self.external_url,
            "lastRefreshed": self.last_refreshed.isoformat(),
        }


class VideoFilePack:
    """同一画质版本的 VideoFile，按分段索引

    每个分段最多出现一次；冲突时保留最早创建的文件。
    """

    def __init__(self, files: Optional[Iterable[VideoFile]] = None):
        self._files: Dict[PartIdentifier, VideoFile] = {}
        if files:
            self.put_all(files)

    def put(self, video_file: VideoFile) -> bool:
        """向文件包添加文件

        Returns:
            文件是否被文件包保留
        """
        existing = self._files.get(video_file.title)
        if existing is not None and existing is not video_file:
            if (existing.created_at, existing.file_id) <= (video_file.created_at, video_file.file_id):
                logger.warning(
                    f"Dropping duplicate {video_file.title.name} file {video_file.file_id}; "
                    f"keeping {existing.file_id}"
                )
                return False
            logger.warning(
                f"Replacing {video_file.title.name} file {existing.file_id} "
                f"with earlier file {video_file.file_id}"
            )
        self._files[video_file.title] = video_file
        return True

    def put_all(self, files: Iterable[VideoFile]) -> None:
        for video_file in files:
            self.put(video_file)

    def get(self, title: PartIdentifier) -> Optional[VideoFile]:
        return self._files.get(title)

    def all_files(self) -> Dict[PartIdentifier, VideoFile]:
        return {title: self._files[title] for title in sorted(self._files)}

    def contains_any(self, files: Iterable[VideoFile]) -> bool:
        held = set(self._files.values())
        return any(video_file in held for video_file in files)

    def first_part(self) -> Optional[VideoFile]:
        if not self._files:
            return None
        return self._files[min(self._files)]

    def is_playable(self) -> bool:
        return (
            PartIdentifier.FIRST_HALF in self._files
            and PartIdentifier.SECOND_HALF in self._files
        )

    def _sort_key(self):
        return [title.rank for title in sorted(self._files)]

    def __lt__(self, other):
        if not isinstance(other, VideoFilePack):
            return NotImplemented
        return self._sort_key() < other._sort_key()

    def __len__(self):
        return len(self._files)

    def __iter__(self) -> Iterator[VideoFile]:
        return iter(self.all_files().values())

    def __repr__(self):
        return f"VideoFilePack({[title.name for title in sorted(self._files)]})"


@dataclass(eq=False)
class VideoFileSource:
    """赛事视频的一个画质或提供方版本"""

    file_src_id: str = field(default_factory=_new_id)
    video_file_packs: List[VideoFilePack] = field(default_factory=list)
    channel: Optional[str] = None
    source: Optional[str] = None
    languages: Optional[str] = None
    resolution: Optional[str] = None
    approximate_duration: Optional[str] = None
    media_container: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    video_bitrate: Optional[int] = None
    audio_bitrate: Optional[int] = None
    last_refreshed: datetime = EPOCH

    def add_video_file_pack(self, file_pack: VideoFilePack) -> None:
        """与共享文件的文件包合并，否则追加"""
        for pack in self.video_file_packs:
            if pack.contains_any(file_pack):
                pack.put_all(file_pack)
                return
        self.video_file_packs.append(file_pack)

    def add_all_video_file_packs(self, file_packs: Iterable[VideoFilePack]) -> None:
        for pack in file_packs:
            self.add_video_file_pack(pack)

    def all_video_files(self) -> Iterator[VideoFile]:
        for pack in self.video_file_packs:
            yield from pack

    def find_video_file(self, file_id: str) -> Optional[VideoFile]:
        for video_file in self.all_video_files():
            if video_file.file_id == file_id:
                return video_file
        return None

    def first_playable_pack(self) -> Optional[VideoFilePack]:
        for pack in self.video_file_packs:
            if pack.is_playable():
                return pack
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileSrcId": self.file_src_id,
            "channel": self.channel,
            "languages": self.languages,
            "resolution": self.resolution,
            "videoBitrate": self.video_bitrate,
            "lastRefreshed": self.last_refreshed.isoformat(),
            "packs": [[f.to_dict() for f in pack] for pack in self.video_file_packs],
        }
