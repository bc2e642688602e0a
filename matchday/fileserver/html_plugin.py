"""
通用下载页插件

很多文件托管站为每个文件提供一个落地页，登录会话下页面里包含有时效的直链。
本插件带着用户的 cookie 抓取该页面，并用 CSS 选择器取出链接。
"""

import logging
import re
from datetime import timedelta
from typing import Dict, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from requests.cookies import RequestsCookieJar

from .base import (
    AuthenticationRequired,
    DownloadUrlNotFound,
    FileServerPlugin,
    TransientFileServerError,
)
from .user import FileServerUser

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Connection': 'keep-alive',
}


class HtmlDownloadPagePlugin(FileServerPlugin):
    """通过链接正则和 CSS 选择器配置的下载页插件"""

    def __init__(
        self,
        plugin_id: str,
        title: str,
        url_pattern: str,
        link_selector: str,
        refresh_hours: float = 4,
        link_attribute: str = "href",
        login_url: Optional[str] = None,
        username_field: str = "username",
        password_field: str = "password",
        description: str = "",
        timeout: int = 15,
        session_factory=requests.Session,
    ):
        """
        Args:
            plugin_id: 插件唯一 ID
            title: 显示名称
            url_pattern: 匹配外部链接的正则
            link_selector: 包含直链的元素的 CSS 选择器
            refresh_hours: 直链的有效期（小时）
            link_attribute: 元素上保存链接的属性
            login_url: 表单登录地址，不设置时只能使用 cookie 会话
            username_field: 用户名表单字段
            password_field: 密码表单字段
            description: 插件描述
            timeout: HTTP 超时（秒）
            session_factory: 创建 requests.Session 的可调用对象
        """
        super().__init__()
        self.plugin_id = plugin_id
        self.title = title
        self.description = description
        self.url_pattern = re.compile(url_pattern)
        self.link_selector = link_selector
        self.link_attribute = link_attribute
        self.refresh_rate = timedelta(hours=refresh_hours)
        self.login_url = login_url
        self.username_field = username_field
        self.password_field = password_field
        self.timeout = timeout
        self.session_factory = session_factory

    @classmethod
    def from_config(cls, plugin_config: Dict) -> "HtmlDownloadPagePlugin":
        """根据 ``fileservers`` 配置列表中的一项创建插件"""
        return cls(
            plugin_id=plugin_config["id"],
            title=plugin_config.get("title", plugin_config["id"]),
            url_pattern=plugin_config["url_pattern"],
            link_selector=plugin_config["link_selector"],
            refresh_hours=float(plugin_config.get("refresh_hours", 4)),
            link_attribute=plugin_config.get("link_attribute", "href"),
            login_url=plugin_config.get("login_url"),
            username_field=plugin_config.get("username_field", "username"),
            password_field=plugin_config.get("password_field", "password"),
            description=plugin_config.get("description", ""),
            timeout=int(plugin_config.get("timeout", 15)),
        )

    def _new_session(self, cookies: Optional[RequestsCookieJar] = None) -> requests.Session:
        session = self.session_factory()
        session.headers.update(DEFAULT_HEADERS)
        if cookies:
            session.cookies.update(cookies)
        return session

    def authenticate(self, user: FileServerUser) -> bool:
        if not self.login_url:
            # 只支持 cookie 的站点，必须预先提供会话
            return len(user.cookies) > 0

        session = self._new_session()
        data = {self.username_field: user.username, self.password_field: user.password}
        try:
            response = session.post(self.login_url, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientFileServerError(f"Login request to {self.title} failed: {e}") from e

        if response.status_code >= 400 or not session.cookies:
            logger.warning(f"Login to {self.title} rejected for {user.username} ({response.status_code})")
            return False

        user.set_cookies(session.cookies)
        logger.info(f"Logged into {self.title} as {user.username}, got {len(session.cookies)} cookies")
        return True

    def accepts_url(self, url: str) -> bool:
        return bool(url) and self.url_pattern.search(url) is not None

    def get_refresh_rate(self) -> timedelta:
        return self.refresh_rate

    def get_download_url(self, url: str, cookies: Optional[RequestsCookieJar] = None) -> Optional[str]:
        session = self._new_session(cookies)
        try:
            response = session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientFileServerError(f"Request to {url} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationRequired(f"{self.title} rejected the session ({response.status_code}): {url}")
        if response.status_code == 404:
            raise DownloadUrlNotFound(f"File not found on {self.title}: {url}")
        if response.status_code >= 400:
            raise TransientFileServerError(f"{self.title} returned {response.status_code} for {url}")

        soup = BeautifulSoup(response.text, 'html.parser')
        element = soup.select_one(self.link_selector)
        if element is None:
            logger.warning(f"No download link matching '{self.link_selector}' on {url}")
            return None

        link = element.get(self.link_attribute)
        if not link:
            return None
        return urljoin(response.url or url, link.strip())
