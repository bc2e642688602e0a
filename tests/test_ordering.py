"""分段排序测试"""

import random
from datetime import timedelta

from matchday.models import PartIdentifier, VideoFilePack
from matchday.stream.ordering import build_input_list, order_video_files

from conftest import make_file


class TestOrderVideoFiles:
    """order_video_files()"""

    def test_scenario_order(self) -> None:
        """POST, FIRST, PRE, SECOND 排成 PRE, FIRST, SECOND, POST"""
        files = [make_file(p) for p in (
            PartIdentifier.POST_MATCH,
            PartIdentifier.FIRST_HALF,
            PartIdentifier.PRE_MATCH,
            PartIdentifier.SECOND_HALF,
        )]
        ordered = order_video_files(files)
        assert [f.title for f in ordered] == [
            PartIdentifier.PRE_MATCH,
            PartIdentifier.FIRST_HALF,
            PartIdentifier.SECOND_HALF,
            PartIdentifier.POST_MATCH,
        ]

    def test_any_permutation_gives_same_order(self) -> None:
        """打乱输入不改变输出"""
        files = [make_file(part) for part in PartIdentifier]
        expected = order_video_files(files)
        rng = random.Random(1234)
        for _ in range(20):
            shuffled = files[:]
            rng.shuffle(shuffled)
            assert order_video_files(shuffled) == expected
        assert [f.title for f in expected] == list(PartIdentifier)

    def test_duplicate_parts_keep_earliest(self) -> None:
        """无论输入顺序，分段冲突时最早创建的文件胜出"""
        early = make_file(PartIdentifier.FIRST_HALF, "early")
        late = make_file(PartIdentifier.FIRST_HALF, "late", created_at=early.created_at + timedelta(minutes=1))
        second = make_file(PartIdentifier.SECOND_HALF)

        for files in ([late, second, early], [early, late, second], [second, early, late]):
            ordered = order_video_files(files)
            assert [f.file_id for f in ordered] == [early.file_id, second.file_id]

    def test_same_timestamp_tie_broken_by_file_id(self) -> None:
        """created_at 相同时按文件 ID 排序"""
        a = make_file(PartIdentifier.PRE_MATCH, "a", file_id="aaa")
        b = make_file(PartIdentifier.PRE_MATCH, "b", file_id="bbb", created_at=a.created_at)
        assert order_video_files([b, a]) == [a]
        assert order_video_files([a, b])[0].file_id == "aaa"


class TestBuildInputList:
    """build_input_list()"""

    def test_unresolved_files_are_left_out(self) -> None:
        """没有内部链接的文件被丢弃，顺序不变"""
        first = make_file(PartIdentifier.FIRST_HALF, internal_url="https://cdn/1")
        second = make_file(PartIdentifier.SECOND_HALF)
        pre = make_file(PartIdentifier.PRE_MATCH, internal_url="https://cdn/0")

        files, uris = build_input_list(VideoFilePack([second, first, pre]))

        assert files == [pre, first]
        assert uris == ["https://cdn/0", "https://cdn/1"]

    def test_empty_when_nothing_resolved(self) -> None:
        """没有已解析的文件时返回空列表"""
        files, uris = build_input_list(VideoFilePack([make_file(PartIdentifier.FIRST_HALF)]))
        assert files == []
        assert uris == []
