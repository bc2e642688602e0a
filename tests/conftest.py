"""pytest 配置和共享 fixture"""

import itertools
import os
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from matchday.errors import TranscodeSpawnError
from matchday.fileserver import (
    DownloadUrlNotFound,
    FileServerPlugin,
    FileServerPluginService,
    FileServerUser,
)
from matchday.models import PartIdentifier, VideoFile, VideoFilePack, VideoFileSource
from matchday.stream import (
    FFmpegRunner,
    FreshnessCoordinator,
    StreamConfig,
    TranscodeSupervisor,
    VideoStreamingService,
    VideoStreamLocatorService,
)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """轮询直到 predicate() 为真或超时"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeProcess:
    """内存中的 ProcessHandle

    ``lines()`` 先输出预设的行，然后阻塞到进程结束或被杀死。
    """

    _pids = itertools.count(1000)

    def __init__(self, output: Optional[List[str]] = None):
        self.pid = next(self._pids)
        self.output = list(output or [])
        self.returncode: Optional[int] = None
        self.kill_calls = 0
        self.kill_error: Optional[Exception] = None
        self._alive = True
        self._released = threading.Event()

    def is_alive(self) -> bool:
        return self._alive

    def kill(self) -> None:
        self.kill_calls += 1
        if self.kill_error is not None:
            raise self.kill_error
        if self.returncode is None:
            self.returncode = -9
        self._alive = False
        self._released.set()

    def finish(self, exit_code: int = 0) -> None:
        self.returncode = exit_code
        self._alive = False
        self._released.set()

    def die_silently(self) -> None:
        """进程已退出，但输出管道一直没有关闭"""
        self.returncode = -11
        self._alive = False

    def wait_for_exit(self, timeout: Optional[float] = None) -> Optional[int]:
        if not self._released.wait(timeout):
            return None
        return self.returncode

    def lines(self):
        for line in self.output:
            yield line
        self._released.wait()


class FakeFFmpegRunner(FFmpegRunner):
    """不启动真实进程、返回 FakeProcess 的 FFmpegRunner"""

    def __init__(self, config: StreamConfig):
        super().__init__(config)
        self.processes: List[FakeProcess] = []
        self.commands: List[List[str]] = []
        self.output: List[str] = []
        self.spawn_error: Optional[Exception] = None
        self.spawn_delay = 0.0
        self._lock = threading.Lock()

    def start_process(self, command, output_dir):
        if self.spawn_delay:
            time.sleep(self.spawn_delay)
        if self.spawn_error is not None:
            raise TranscodeSpawnError(str(self.spawn_error))
        os.makedirs(output_dir, exist_ok=True)
        process = FakeProcess(self.output)
        with self._lock:
            self.commands.append(command)
            self.processes.append(process)
        return process

    @property
    def last_process(self) -> FakeProcess:
        return self.processes[-1]


class StubPlugin(FileServerPlugin):
    """从字典解析链接的文件服务器插件"""

    plugin_id = "stub"
    title = "Stub Server"

    def __init__(self, prefix: str = "https://files.example.com/", refresh_rate: timedelta = timedelta(hours=2)):
        super().__init__()
        self.prefix = prefix
        self.refresh_rate = refresh_rate
        self.links: Dict[str, Optional[str]] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[str] = []

    def authenticate(self, user: FileServerUser) -> bool:
        return user.password == "secret"

    def accepts_url(self, url: str) -> bool:
        return url.startswith(self.prefix)

    def get_refresh_rate(self) -> timedelta:
        return self.refresh_rate

    def get_download_url(self, url, cookies=None):
        self.calls.append(url)
        if url in self.errors:
            raise self.errors[url]
        if url in self.links:
            return self.links[url]
        raise DownloadUrlNotFound(url)


def make_file(part: PartIdentifier, name: Optional[str] = None, **kwargs) -> VideoFile:
    name = name or part.name.lower()
    return VideoFile(title=part, external_url=f"https://files.example.com/{name}", **kwargs)


@pytest.fixture
def stream_config(tmp_path: Path) -> StreamConfig:
    """写入 tmp_path 的流媒体配置"""
    return StreamConfig(storage_root=str(tmp_path / "videos"), max_concurrent_streams=4)


@pytest.fixture
def ffmpeg_runner(stream_config: StreamConfig) -> FakeFFmpegRunner:
    return FakeFFmpegRunner(stream_config)


@pytest.fixture
def supervisor(stream_config: StreamConfig, ffmpeg_runner: FakeFFmpegRunner):
    supervisor = TranscodeSupervisor(stream_config, ffmpeg_runner=ffmpeg_runner)
    yield supervisor
    supervisor.shutdown(wait=True)


@pytest.fixture
def stub_plugin() -> StubPlugin:
    return StubPlugin()


@pytest.fixture
def plugin_service(stub_plugin: StubPlugin) -> FileServerPluginService:
    """注册了 stub 插件并有一个已登录用户的插件服务"""
    service = FileServerPluginService()
    service.register(stub_plugin)
    service.login(FileServerUser(username="fan", password="secret", server_id=stub_plugin.plugin_id))
    return service


@pytest.fixture
def locator_service(supervisor: TranscodeSupervisor, stream_config: StreamConfig) -> VideoStreamLocatorService:
    return VideoStreamLocatorService(supervisor, playlist_name=stream_config.playlist_name)


@pytest.fixture
def streaming_service(stream_config, plugin_service, supervisor, locator_service) -> VideoStreamingService:
    freshness = FreshnessCoordinator(plugin_service)
    return VideoStreamingService(stream_config, plugin_service, supervisor, locator_service, freshness)


@pytest.fixture
def match_source(stub_plugin: StubPlugin) -> VideoFileSource:
    """一个文件包、四个分段且都能解析的来源"""
    parts = [
        PartIdentifier.POST_MATCH,
        PartIdentifier.FIRST_HALF,
        PartIdentifier.PRE_MATCH,
        PartIdentifier.SECOND_HALF,
    ]
    files = [make_file(part) for part in parts]
    for video_file in files:
        stub_plugin.links[video_file.external_url] = f"https://cdn.example.com/{video_file.file_id}.mkv?token=abc"
    return VideoFileSource(file_src_id="src-1", video_file_packs=[VideoFilePack(files)], resolution="1080p")
