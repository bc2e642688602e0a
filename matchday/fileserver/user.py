"""文件服务器用户及其会话 cookie"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional

from requests.cookies import RequestsCookieJar, create_cookie

__all__ = ["FileServerUser", "parse_cookie_string"]


def parse_cookie_string(cookie_data: str, domain: str = "") -> RequestsCookieJar:
    """把 cookie 文本解析成 cookie jar

    支持请求头格式（``"UID=1; SEID=abc"``）和以制表符分隔的
    Netscape ``cookies.txt`` 格式。

    Args:
        cookie_data: 原始 cookie 文本
        domain: 请求头格式 cookie 的默认域名

    Returns:
        包含解析结果的 RequestsCookieJar
    """
    jar = RequestsCookieJar()
    if not cookie_data:
        return jar

    lines = [line for line in cookie_data.splitlines() if line.strip()]
    netscape = [line for line in lines if "\t" in line and not line.startswith("#")]
    if netscape:
        for line in netscape:
            parts = line.split("\t")
            if len(parts) < 7:
                continue
            cookie_domain, _, path, secure, expires, name, value = parts[:7]
            jar.set_cookie(create_cookie(
                name=name.strip(),
                value=value.strip(),
                domain=cookie_domain.strip(),
                path=path.strip() or "/",
                secure=secure.strip().upper() == "TRUE",
                expires=int(expires) if expires.strip().isdigit() and int(expires) > 0 else None,
            ))
        return jar

    for item in cookie_data.replace("\n", ";").split(";"):
        if not item.strip() or "=" not in item:
            continue
        name, value = item.split("=", 1)
        jar.set_cookie(create_cookie(name=name.strip(), value=value.strip(), domain=domain, path="/"))
    return jar


@dataclass
class FileServerUser:
    """文件服务器上的账号"""

    username: str
    password: str = ""
    server_id: Optional[str] = None
    user_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    logged_in: bool = False
    cookies: RequestsCookieJar = field(default_factory=RequestsCookieJar)

    def set_logged_into_server(self, server_id: str, cookies: Optional[RequestsCookieJar] = None) -> None:
        self.server_id = server_id
        self.logged_in = True
        if cookies is not None:
            self.set_cookies(cookies)

    def set_logged_out(self) -> None:
        self.logged_in = False
        self.cookies.clear()

    def set_cookies(self, cookies: RequestsCookieJar) -> None:
        if cookies is self.cookies:
            return
        self.cookies.clear()
        self.cookies.update(cookies)

    def __repr__(self):
        return (
            f"FileServerUser(user_id={self.user_id!r}, username={self.username!r}, "
            f"password=*****, logged_in={self.logged_in}, server_id={self.server_id!r}, "
            f"cookies={len(self.cookies)})"
        )
