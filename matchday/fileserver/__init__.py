"""
文件服务器插件

把外部文件托管链接转换成可直接下载的链接。
"""

from .base import (
    FileServerPlugin,
    FileServerError,
    DownloadUrlNotFound,
    AuthenticationRequired,
    TransientFileServerError,
    FileServerLoginError,
    PluginNotFoundError,
)
from .user import FileServerUser, parse_cookie_string
from .service import FileServerPluginService, DEFAULT_REFRESH_RATE
from .html_plugin import HtmlDownloadPagePlugin

__all__ = [
    'FileServerPlugin',
    'FileServerError',
    'DownloadUrlNotFound',
    'AuthenticationRequired',
    'TransientFileServerError',
    'FileServerLoginError',
    'PluginNotFoundError',
    'FileServerUser',
    'parse_cookie_string',
    'FileServerPluginService',
    'DEFAULT_REFRESH_RATE',
    'HtmlDownloadPagePlugin',
]
