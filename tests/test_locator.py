"""流定位器测试"""

from datetime import timedelta

import pytest

from matchday.errors import InvalidStateTransition
from matchday.models import PartIdentifier, utcnow
from matchday.stream import StreamState, TranscodeRequest

from conftest import make_file


class TestCreateStreamLocator:
    """创建定位器"""

    def test_playlist_path_layout(self, locator_service, tmp_path) -> None:
        """播放列表位于 storage_dir/playlist.m3u8"""
        video_file = make_file(PartIdentifier.FIRST_HALF)
        locator = locator_service.create_stream_locator(tmp_path / "src", video_file)

        assert locator.playlist_path == tmp_path / "src" / "playlist.m3u8"
        assert locator.storage_dir == tmp_path / "src"
        assert locator.state == StreamState.CREATED
        assert locator.video_file is video_file
        assert locator_service.get_stream_locator(locator.locator_id) is locator

    def test_create_is_idempotent(self, locator_service, tmp_path) -> None:
        """同一播放列表路径返回同一个定位器"""
        video_file = make_file(PartIdentifier.FIRST_HALF)
        first = locator_service.create_stream_locator(tmp_path / "src", video_file)
        second = locator_service.create_stream_locator(tmp_path / "src", video_file)
        assert first is second
        assert len(locator_service.get_all_stream_locators()) == 1

    def test_path_does_not_depend_on_file(self, locator_service, tmp_path) -> None:
        """同一存储目录下换了引用文件也返回原定位器"""
        first = locator_service.create_stream_locator(tmp_path / "src", make_file(PartIdentifier.FIRST_HALF))
        second = locator_service.create_stream_locator(tmp_path / "src", make_file(PartIdentifier.PRE_MATCH))

        assert second is first
        assert first.video_file.title == PartIdentifier.FIRST_HALF
        assert len(locator_service.get_all_stream_locators()) == 1

    def test_sequential_ids(self, locator_service, tmp_path) -> None:
        """ID 按创建顺序分配"""
        ids = [
            locator_service.create_stream_locator(tmp_path / part.name, make_file(part)).locator_id
            for part in (PartIdentifier.PRE_MATCH, PartIdentifier.FIRST_HALF)
        ]
        assert ids == [1, 2]

    def test_get_stream_locator_for_file(self, locator_service, tmp_path) -> None:
        """按文件 ID 找到最近的定位器"""
        video_file = make_file(PartIdentifier.FIRST_HALF)
        locator_service.create_stream_locator(tmp_path / "a", video_file)
        latest = locator_service.create_stream_locator(tmp_path / "b", video_file)
        assert locator_service.get_stream_locator_for(video_file.file_id) is latest
        assert locator_service.get_stream_locator_for("missing") is None

    def test_to_dict(self, locator_service, tmp_path) -> None:
        """记录包含定位器的各个字段"""
        video_file = make_file(PartIdentifier.FIRST_HALF)
        data = locator_service.create_stream_locator(tmp_path, video_file).to_dict()
        assert data["locatorId"] == 1
        assert data["videoFileRef"] == video_file.file_id
        assert data["state"] == "CREATED"
        assert data["playlistPath"].endswith("playlist.m3u8")
        assert "createdAt" in data and "updatedAt" in data


class TestStateTransitions:
    """定位器状态机"""

    @pytest.fixture
    def locator(self, locator_service, tmp_path):
        return locator_service.create_stream_locator(tmp_path, make_file(PartIdentifier.FIRST_HALF))

    def test_happy_path(self, locator_service, locator) -> None:
        """CREATED -> STREAMING -> READY -> STREAMING"""
        locator_service.update_state(locator, StreamState.STREAMING)
        locator_service.update_state(locator, StreamState.STREAMING, completion_ratio=0.4)
        assert locator.completion_ratio == pytest.approx(0.4)
        locator_service.update_state(locator, StreamState.READY, completion_ratio=1.0)
        locator_service.update_state(locator, StreamState.STREAMING)
        assert locator.completion_ratio == 0.0

    def test_failure_and_restream(self, locator_service, locator) -> None:
        """STREAMING -> FAILED 记录错误，重新转码时清除"""
        locator_service.update_state(locator, StreamState.STREAMING)
        locator_service.update_state(locator, StreamState.FAILED, error="exit 1")
        assert locator.error == "exit 1"
        locator_service.update_state(locator, StreamState.STREAMING)
        assert locator.error is None

    def test_created_can_fail(self, locator_service, locator) -> None:
        """启动失败时 CREATED 直接变为 FAILED"""
        locator_service.update_state(locator, StreamState.FAILED, error="spawn")
        assert locator.state == StreamState.FAILED

    @pytest.mark.parametrize("path", [
        [StreamState.READY],
        [StreamState.STREAMING, StreamState.CREATED],
        [StreamState.STREAMING, StreamState.READY, StreamState.FAILED],
        [StreamState.FAILED, StreamState.READY],
    ])
    def test_illegal_transitions(self, locator_service, locator, path) -> None:
        """状态机之外的变更抛出 InvalidStateTransition"""
        with pytest.raises(InvalidStateTransition):
            for state in path:
                locator_service.update_state(locator, state)


class TestDeleteAndExpiry:
    """删除与过期清理"""

    def test_delete_interrupts_and_removes_files(self, locator_service, supervisor, tmp_path) -> None:
        """删除定位器会停止任务并删除目录"""
        locator = locator_service.create_stream_locator(tmp_path / "src", make_file(PartIdentifier.FIRST_HALF))
        supervisor.submit(TranscodeRequest(inputs=["a"], output=locator.playlist_path))
        locator.playlist_path.write_text("#EXTM3U\n")
        assert supervisor.count() == 1

        assert locator_service.delete_stream_locator(locator) is True

        assert supervisor.count() == 0
        assert not locator.storage_dir.exists()
        assert tmp_path.is_dir()
        assert locator_service.get_stream_locator(locator.locator_id) is None
        assert locator_service.delete_stream_locator(locator) is False

    def test_expired_locators(self, locator_service, tmp_path) -> None:
        """只有早于截止时间的已结束定位器算过期"""
        old_ready, old_streaming, fresh_failed = (
            locator_service.create_stream_locator(tmp_path / part.name, make_file(part))
            for part in (PartIdentifier.PRE_MATCH, PartIdentifier.FIRST_HALF, PartIdentifier.SECOND_HALF)
        )

        for locator in (old_ready, old_streaming, fresh_failed):
            locator_service.update_state(locator, StreamState.STREAMING)
        locator_service.update_state(old_ready, StreamState.READY)
        locator_service.update_state(fresh_failed, StreamState.FAILED)
        old_ready.updated_at = old_streaming.updated_at = utcnow() - timedelta(days=2)

        expired = locator_service.get_expired_locators(utcnow() - timedelta(days=1))
        assert expired == [old_ready]
