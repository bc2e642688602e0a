"""
文件服务器插件注册表

把外部链接路由到能转换它的插件，并记录登录到各文件服务器的用户。
"""

import logging
import threading
from datetime import timedelta
from typing import Dict, List, Optional

from .base import (
    AuthenticationRequired,
    FileServerError,
    FileServerLoginError,
    FileServerPlugin,
    PluginNotFoundError,
)
from .user import FileServerUser, parse_cookie_string

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_RATE = timedelta(hours=4)


class FileServerPluginService:
    """文件服务器插件及其用户的注册表"""

    def __init__(self, default_refresh_rate: timedelta = DEFAULT_REFRESH_RATE):
        self.default_refresh_rate = default_refresh_rate
        self._plugins: Dict[str, FileServerPlugin] = {}
        self._enabled: Dict[str, bool] = {}
        self._users: Dict[str, FileServerUser] = {}
        self.lock = threading.RLock()

    # 插件注册

    def register(self, plugin: FileServerPlugin, enabled: bool = True) -> None:
        with self.lock:
            self._plugins[plugin.plugin_id] = plugin
            self._enabled[plugin.plugin_id] = enabled
        logger.info(f"Registered file server plugin {plugin.title or plugin.plugin_id} (enabled={enabled})")

    def get_plugins(self) -> List[FileServerPlugin]:
        with self.lock:
            return list(self._plugins.values())

    def get_enabled_plugins(self) -> List[FileServerPlugin]:
        with self.lock:
            return [p for pid, p in self._plugins.items() if self._enabled.get(pid)]

    def get_plugin_by_id(self, plugin_id: str) -> Optional[FileServerPlugin]:
        with self.lock:
            return self._plugins.get(plugin_id)

    def is_plugin_enabled(self, plugin_id: str) -> bool:
        with self.lock:
            return self._enabled.get(plugin_id, False)

    def enable_plugin(self, plugin_id: str) -> None:
        self._set_enabled(plugin_id, True)

    def disable_plugin(self, plugin_id: str) -> None:
        self._set_enabled(plugin_id, False)

    def _set_enabled(self, plugin_id: str, enabled: bool) -> None:
        with self.lock:
            if plugin_id not in self._plugins:
                raise PluginNotFoundError(f"No file server plugin with ID: {plugin_id}")
            self._enabled[plugin_id] = enabled
        logger.info(f"File server plugin {plugin_id} {'enabled' if enabled else 'disabled'}")

    def get_enabled_plugin_for_url(self, url: str) -> Optional[FileServerPlugin]:
        """第一个接受该链接的已启用插件，没有则返回 None"""
        for plugin in self.get_enabled_plugins():
            if plugin.accepts_url(url):
                return plugin
        return None

    def get_refresh_rate(self, url: str) -> timedelta:
        plugin = self.get_enabled_plugin_for_url(url)
        if plugin is None:
            return self.default_refresh_rate
        return plugin.get_refresh_rate()

    # 用户

    def login(self, user: FileServerUser) -> FileServerUser:
        """登录 ``user.server_id`` 指定的文件服务器

        Raises:
            PluginNotFoundError: 未知的服务器 ID
            FileServerLoginError: 服务器拒绝了凭据
        """
        plugin = self._require_plugin(user.server_id)
        logger.info(f"Logging {user.username} into {plugin.title or plugin.plugin_id}")
        try:
            success = plugin.login(user)
        except FileServerError as e:
            raise FileServerLoginError(f"Login failed for {user.username}: {e}") from e
        if not success:
            raise FileServerLoginError(f"Login failed for {user.username} on {plugin.plugin_id}")

        user.set_logged_into_server(plugin.plugin_id)
        with self.lock:
            self._users[user.user_id] = user
        return user

    def login_with_cookies(self, user: FileServerUser, cookie_data: str) -> FileServerUser:
        """不走登录流程，直接把已有的浏览器会话绑定到用户"""
        plugin = self._require_plugin(user.server_id)
        cookies = parse_cookie_string(cookie_data)
        if not cookies:
            raise FileServerLoginError(f"No cookies found for {user.username}")
        user.set_logged_into_server(plugin.plugin_id, cookies)
        with self.lock:
            self._users[user.user_id] = user
        logger.info(f"Attached {len(cookies)} cookies for {user.username} on {plugin.plugin_id}")
        return user

    def logout(self, user_id: str) -> FileServerUser:
        user = self._require_user(user_id)
        plugin = self.get_plugin_by_id(user.server_id)
        if plugin is not None:
            plugin.logout()
        user.set_logged_out()
        logger.info(f"Logged out {user.username}")
        return user

    def relogin(self, user_id: str) -> FileServerUser:
        user = self._require_user(user_id)
        return self.login(user)

    def get_user(self, user_id: str) -> Optional[FileServerUser]:
        with self.lock:
            return self._users.get(user_id)

    def get_all_users(self, server_id: Optional[str] = None) -> List[FileServerUser]:
        with self.lock:
            users = list(self._users.values())
        if server_id is None:
            return users
        return [u for u in users if u.server_id == server_id]

    def delete_user(self, user_id: str) -> None:
        with self.lock:
            self._users.pop(user_id, None)

    def get_logged_in_user(self, server_id: str) -> Optional[FileServerUser]:
        for user in self.get_all_users(server_id):
            if user.logged_in:
                return user
        return None

    # 链接解析

    def get_download_url(self, external_url: str) -> Optional[str]:
        """解析外部链接的直接下载链接

        使用第一个接受该链接的已启用插件，以及第一个登录到该插件的用户。

        Raises:
            FileServerError: 没有插件处理该链接
            AuthenticationRequired: 该插件没有已登录用户
        """
        plugin = self.get_enabled_plugin_for_url(external_url)
        if plugin is None:
            raise FileServerError(f"No file server plugin enabled for URL: {external_url}")

        user = self.get_logged_in_user(plugin.plugin_id)
        if user is None:
            raise AuthenticationRequired(
                f"No logged-in user for file server {plugin.title or plugin.plugin_id}; cannot resolve {external_url}"
            )
        return plugin.get_download_url(external_url, user.cookies)

    def _require_plugin(self, plugin_id: Optional[str]) -> FileServerPlugin:
        plugin = self.get_plugin_by_id(plugin_id) if plugin_id else None
        if plugin is None:
            raise PluginNotFoundError(f"No file server plugin with ID: {plugin_id}")
        return plugin

    def _require_user(self, user_id: str) -> FileServerUser:
        user = self.get_user(user_id)
        if user is None:
            raise FileServerLoginError(f"No file server user with ID: {user_id}")
        return user
