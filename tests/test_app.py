"""配置与应用工厂测试"""

import json
from datetime import timedelta

import pytest

from matchday.app import Services, create_app, load_config
from matchday.stream import StreamConfig
from matchday.stream.config import STORAGE_ROOT_ENV


class TestLoadConfig:
    """load_config()"""

    def test_creates_default_file(self, tmp_path) -> None:
        """配置文件不存在时用默认配置创建"""
        config_file = tmp_path / "config" / "config.json"
        config = load_config(str(config_file))

        assert config_file.exists()
        assert json.loads(config_file.read_text())["streaming"]["playlist_name"] == "playlist.m3u8"
        assert config["streaming"]["max_concurrent_streams"] == 4

    def test_file_overrides_defaults(self, tmp_path) -> None:
        """文件中的配置段覆盖默认值"""
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"streaming": {"max_concurrent_streams": 2}}))
        config = load_config(str(config_file))

        assert config["streaming"] == {"max_concurrent_streams": 2}
        assert config["server"]["port"] == 8080

    def test_broken_file_falls_back(self, tmp_path) -> None:
        """无法解析的配置保留默认值"""
        config_file = tmp_path / "config.json"
        config_file.write_text("{not json")
        assert load_config(str(config_file))["streaming"]["segment_duration"] == 6


class TestStreamConfig:
    """StreamConfig.from_app_config()"""

    def test_defaults(self, monkeypatch) -> None:
        """空配置得到默认值"""
        monkeypatch.delenv(STORAGE_ROOT_ENV, raising=False)
        config = StreamConfig.from_app_config({})
        assert config.storage_root == "data/videos"
        assert config.max_concurrent_streams == 4
        assert config.extra_args == []

    def test_values(self, monkeypatch) -> None:
        """从 streaming 配置段读取"""
        monkeypatch.delenv(STORAGE_ROOT_ENV, raising=False)
        config = StreamConfig.from_app_config({"streaming": {
            "storage_root": "/srv/videos",
            "max_concurrent_streams": "3",
            "video_codec": "libx264",
            "extra_args": "-preset veryfast",
            "segment_duration": 10,
        }})
        assert config.storage_root == "/srv/videos"
        assert config.max_concurrent_streams == 3
        assert config.video_codec == "libx264"
        assert config.extra_args == ["-preset", "veryfast"]
        assert config.segment_duration == 10

    def test_env_overrides_storage_root(self, monkeypatch, tmp_path) -> None:
        """MATCHDAY_STORAGE_ROOT 优先于配置文件"""
        monkeypatch.setenv(STORAGE_ROOT_ENV, str(tmp_path))
        config = StreamConfig.from_app_config({"streaming": {"storage_root": "/srv/videos"}})
        assert config.storage_root == str(tmp_path)
        assert config.get_storage_dir("src") == tmp_path / "src"

    def test_invalid_concurrency(self, monkeypatch) -> None:
        """拒绝负数的并发上限"""
        with pytest.raises(ValueError):
            StreamConfig.from_app_config({"streaming": {"max_concurrent_streams": -1}})


class TestCreateApp:
    """create_app() 组装"""

    def test_wires_services(self, tmp_path, monkeypatch) -> None:
        """注册配置中的文件服务器和用户"""
        monkeypatch.setenv(STORAGE_ROOT_ENV, str(tmp_path))
        config = {
            "streaming": {"default_refresh_hours": 6},
            "fileservers": [
                {"id": "host", "url_pattern": "host\\.example", "link_selector": "a.dl"},
                {"id": "broken"},
            ],
            "fileserver_users": [
                {"server_id": "host", "username": "fan", "cookies": "sid=1"},
                {"server_id": "missing", "username": "ghost", "password": "x"},
            ],
        }
        app = create_app(config)
        services = app.extensions["matchday"]
        try:
            assert isinstance(services, Services)
            assert [p.plugin_id for p in services.plugin_service.get_plugins()] == ["host"]
            assert services.plugin_service.get_logged_in_user("host").username == "fan"
            assert services.plugin_service.default_refresh_rate == timedelta(hours=6)

            client = app.test_client()
            assert client.get("/api/streams/count").get_json() == {"count": 0}
            assert client.post("/api/streams/sources/unknown").status_code == 404
        finally:
            services.shutdown()
