# upstream.py
import logging
from dataclasses import dataclass, field
from http.cookiejar import DefaultCookiePolicy
from typing import Dict, Mapping, Optional

import requests

from config import (BROWSER_ACCEPT, BROWSER_ACCEPT_LANGUAGE, BROWSER_USER_AGENT,
                    UPSTREAM_TIMEOUT, VERIFY_TLS)
from utils import origin_of

logger = logging.getLogger(__name__)

BODYLESS_METHODS = ("GET", "HEAD")


class UpstreamError(Exception):
    """上游请求失败（网络错误、超时、TLS 错误等），不做重试"""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


@dataclass
class ProxiedResponse:
    """上游响应 + 跟随重定向后的最终 URL，只被内容重写器消费一次"""
    url: str
    status_code: int
    content_type: str
    content: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def origin(self) -> str:
        return origin_of(self.url)


def build_fetch_headers(target_origin: str) -> Dict[str, str]:
    """模拟浏览器的请求头，Referer/Origin 指向目标站点"""
    return {
        "User-Agent": BROWSER_USER_AGENT,
        "Accept": BROWSER_ACCEPT,
        "Accept-Language": BROWSER_ACCEPT_LANGUAGE,
        "Accept-Encoding": "identity",
        "Referer": target_origin + "/",
        "Origin": target_origin,
    }


class UpstreamClient:

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = UPSTREAM_TIMEOUT, verify: bool = VERIFY_TLS):
        self.session = session or requests.Session()
        # 上游的 Set-Cookie 不能保存下来，否则会带到之后所有客户端的请求里
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self.timeout = timeout
        self.verify = verify

    def fetch(self, url: str, method: str = "GET", accept: Optional[str] = None,
              body: Optional[bytes] = None, body_type: Optional[str] = None) -> ProxiedResponse:
        """
        请求上游并跟随重定向。
        :param accept: 覆盖默认 Accept（catch-all 路由沿用浏览器原始的 Accept）
        :param body: 非 GET/HEAD 请求原样转发的请求体
        :param body_type: 请求体的 Content-Type
        :raises UpstreamError: 任何传输层错误
        """
        method = method.upper()
        headers = build_fetch_headers(origin_of(url))
        if accept:
            headers["Accept"] = accept
        data = None
        if method not in BODYLESS_METHODS and body:
            data = body
            if body_type:
                headers["Content-Type"] = body_type

        logger.debug(f"[UPSTREAM] {method} {url}")
        try:
            resp = self.session.request(
                method,
                url,
                headers=headers,
                data=data,
                timeout=self.timeout,
                verify=self.verify,
                allow_redirects=True,
            )
            content = resp.content
        except requests.RequestException as e:
            logger.warning(f"[UPSTREAM] {method} {url} failed: {e}")
            raise UpstreamError(url, str(e)) from e

        final_url = resp.url or url
        if final_url != url:
            logger.info(f"[UPSTREAM] {url} redirected to {final_url}")
        return ProxiedResponse(
            url=final_url,
            status_code=resp.status_code,
            content_type=resp.headers.get("Content-Type", ""),
            content=content,
            headers=resp.headers,
        )
