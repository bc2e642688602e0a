"""文件服务器插件接口"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

from requests.cookies import RequestsCookieJar

if TYPE_CHECKING:
    from .user import FileServerUser

__all__ = [
    "FileServerPlugin",
    "FileServerError",
    "DownloadUrlNotFound",
    "AuthenticationRequired",
    "TransientFileServerError",
    "FileServerLoginError",
    "PluginNotFoundError",
]


class FileServerError(RuntimeError):
    """文件服务器无法转换外部链接"""


class DownloadUrlNotFound(FileServerError):
    """文件在服务器上已不存在"""


class AuthenticationRequired(FileServerError):
    """没有有效的文件服务器登录会话"""


class TransientFileServerError(FileServerError):
    """网络抖动或服务端错误，稍后重试可能成功"""


class FileServerLoginError(FileServerError):
    """文件服务器拒绝登录"""


class PluginNotFoundError(LookupError):
    """没有以该 ID 注册的文件服务器插件"""


class FileServerPlugin(ABC):
    """把文件服务器的公开（外部）链接转换成直接下载链接

    子类实现与具体服务商相关的部分；登录状态在这里维护，
    调用方只需要使用 ``login``/``logout``/``is_logged_in``。
    """

    plugin_id: str = ""
    title: str = ""
    description: str = ""

    def __init__(self):
        self._login_lock = threading.Lock()
        self._logged_in = False

    def login(self, user: "FileServerUser") -> bool:
        """登录用户，服务器返回的 cookie 保存在用户对象上

        Args:
            user: 持有凭据的文件服务器用户

        Returns:
            是否登录成功
        """
        with self._login_lock:
            self._logged_in = bool(self.authenticate(user))
            return self._logged_in

    def logout(self) -> None:
        with self._login_lock:
            self._logged_in = False

    def is_logged_in(self) -> bool:
        return self._logged_in

    @abstractmethod
    def authenticate(self, user: "FileServerUser") -> bool:
        """执行服务商的登录流程"""

    @abstractmethod
    def accepts_url(self, url: str) -> bool:
        """该插件能否转换给定的外部链接"""

    @abstractmethod
    def get_refresh_rate(self) -> timedelta:
        """解析出的下载链接的有效期"""

    @abstractmethod
    def get_download_url(
        self, url: str, cookies: Optional[RequestsCookieJar] = None
    ) -> Optional[str]:
        """解析外部链接对应的直接下载链接

        Args:
            url: 外部（面向服务商的）链接
            cookies: 已登录用户的会话 cookie

        Returns:
            直接下载链接，找不到时返回 None

        Raises:
            DownloadUrlNotFound, AuthenticationRequired, TransientFileServerError
        """

    def __repr__(self):
        return f"{self.__class__.__name__}(id={self.plugin_id!r}, title={self.title!r})"
