#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Matchday 流媒体服务

加载配置，组装流媒体相关服务，并通过 Flask 提供流 API。
"""

import atexit
import json
import logging
import os
from datetime import timedelta
from logging.handlers import TimedRotatingFileHandler
from typing import Dict, Optional

from flask import Flask
from flask_cors import CORS

from .fileserver import (
    FileServerError,
    FileServerPluginService,
    FileServerUser,
    HtmlDownloadPagePlugin,
    PluginNotFoundError,
)
from .models import VideoFileSource
from .stream import (
    FreshnessCoordinator,
    StreamConfig,
    TranscodeSupervisor,
    VideoStreamingService,
    VideoStreamLocatorService,
)
from .stream.api import register_routes

logger = logging.getLogger(__name__)

CONFIG_FILE = os.environ.get("MATCHDAY_CONFIG", "config/config.json")

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

DEFAULT_CONFIG = {
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
    },
    "logging": {
        "dir": "logs",
        "file": "matchday.log",
    },
    "streaming": {
        "storage_root": "data/videos",
        "playlist_name": "playlist.m3u8",
        "max_concurrent_streams": 4,
        "ffmpeg_path": "ffmpeg",
        "ffprobe_path": "ffprobe",
        "loglevel": "error",
        "segment_duration": 6,
        "video_codec": "copy",
        "audio_codec": "copy",
        "extra_args": [],
        "probe_timeout": 30,
        "default_refresh_hours": 4,
    },
    "fileservers": [],
    "fileserver_users": [],
}


def load_config(config_file: str = CONFIG_FILE) -> Dict:
    """Load configuration file, 不存在时用默认配置创建"""
    config = json.loads(json.dumps(DEFAULT_CONFIG))
    try:
        if os.path.exists(config_file):
            with open(config_file, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
                config.update(loaded_config)
                logging.info(f"Loaded configuration file: {config_file}")
        else:
            os.makedirs(os.path.dirname(config_file) or ".", exist_ok=True)
            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
                logging.info(f"Created default configuration file: {config_file}")
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file: {str(e)}")

    return config


def configure_logging(log_dir: str = "logs", log_file: str = "matchday.log") -> None:
    """Configure logging"""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    # 配置较少日志输出的模块
    for module in ['urllib3', 'requests', 'werkzeug']:
        logging.getLogger(module).setLevel(logging.WARNING)

    os.makedirs(log_dir, exist_ok=True)
    # 添加按日期滚动的文件处理器
    file_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, log_file),
        when='midnight',
        interval=1,
        backupCount=3  # 保留3天日志
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(logging.INFO)
    logging.getLogger().addHandler(file_handler)


class Services:
    """一个应用实例的服务组装"""

    def __init__(self, config: Dict):
        self.stream_config = StreamConfig.from_app_config(config)
        self.plugin_service = FileServerPluginService(
            default_refresh_rate=timedelta(hours=self.stream_config.default_refresh_hours)
        )
        self.supervisor = TranscodeSupervisor(self.stream_config)
        self.locator_service = VideoStreamLocatorService(
            self.supervisor, playlist_name=self.stream_config.playlist_name
        )
        self.freshness = FreshnessCoordinator(
            self.plugin_service, metadata_reader=self.supervisor.read_metadata
        )
        self.streaming_service = VideoStreamingService(
            self.stream_config,
            self.plugin_service,
            self.supervisor,
            self.locator_service,
            self.freshness,
        )
        self.sources: Dict[str, VideoFileSource] = {}

    def add_source(self, source: VideoFileSource) -> None:
        self.sources[source.file_src_id] = source

    def find_source(self, file_src_id: str) -> Optional[VideoFileSource]:
        return self.sources.get(file_src_id)

    def load_file_servers(self, config: Dict) -> None:
        for plugin_config in config.get("fileservers", []) or []:
            try:
                plugin = HtmlDownloadPagePlugin.from_config(plugin_config)
            except (KeyError, ValueError) as e:
                logger.error(f"Invalid file server config {plugin_config.get('id')}: {e}")
                continue
            self.plugin_service.register(plugin, enabled=plugin_config.get("enabled", True))

        for user_config in config.get("fileserver_users", []) or []:
            user = FileServerUser(
                username=user_config.get("username", ""),
                password=user_config.get("password", ""),
                server_id=user_config.get("server_id"),
            )
            try:
                if user_config.get("cookies"):
                    self.plugin_service.login_with_cookies(user, user_config["cookies"])
                else:
                    self.plugin_service.login(user)
            except (FileServerError, PluginNotFoundError) as e:
                logger.error(f"Could not log {user.username} into {user.server_id}: {e}")

    def shutdown(self) -> None:
        self.streaming_service.shutdown()


def create_app(config: Optional[Dict] = None, services: Optional[Services] = None) -> Flask:
    """创建 Flask 应用

    Args:
        config: 应用配置，未提供时从 CONFIG_FILE 加载
        services: 预先组装好的服务（测试用）

    Returns:
        Flask 应用，服务组装保存在 ``app.extensions['matchday']``
    """
    if config is None:
        config = load_config()
    if services is None:
        services = Services(config)
        services.load_file_servers(config)

    app = Flask(__name__)
    CORS(app)  # Enable CORS
    app.extensions['matchday'] = services
    register_routes(app, services.streaming_service, services.find_source)
    return app


def main():
    config = load_config()
    logging_config = config.get("logging", {}) or {}
    configure_logging(logging_config.get("dir", "logs"), logging_config.get("file", "matchday.log"))

    app = create_app(config)
    atexit.register(app.extensions['matchday'].shutdown)

    server_config = config.get("server", {}) or {}
    host = server_config.get("host", "0.0.0.0")
    port = int(os.environ.get('PORT', server_config.get("port", 8080)))
    logger.info(f"Starting matchday stream server on {host}:{port}")
    app.run(host=host, port=port, debug=False)


if __name__ == '__main__':
    main()
