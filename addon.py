# addon.py
"""
iframe 同源代理（mitmproxy addon）

用法（反向代理模式，所有请求都在 request 钩子里直接应答，占位的上游不会被访问）：
    mitmdump --mode reverse:http://127.0.0.1:9 -p 3001 -s addon.py

路由：
    GET /proxy?url=<绝对URL>   显式代理；HTML 响应会更新目标 origin
    OPTIONS *                  204 + 宽松 CORS 头
    其它                        catch-all：目标 origin + 原始 path/query
"""
import asyncio
import json
import logging
from typing import Optional
from urllib.parse import urlsplit

from mitmproxy import http

from logger_setup import setup_logging
from config import *
from origin_tracker import NoTargetOriginError, OriginTracker
from replacer import is_html, permissive_headers, process_and_rewrite_response
from upstream import UpstreamClient, UpstreamError
from utils import is_absolute_http_url

setup_logging()
logger = logging.getLogger(__name__)


class InvalidProxyUrlError(Exception):

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


def json_response(status_code: int, payload: dict) -> http.Response:
    headers = permissive_headers({"Content-Type": "application/json; charset=utf-8"})
    return http.Response.make(status_code, json.dumps(payload).encode("utf-8"), headers)


class OriginProxyAddon:

    def __init__(self, tracker: Optional[OriginTracker] = None, client: Optional[UpstreamClient] = None):
        self.tracker = tracker or OriginTracker()
        self.client = client or UpstreamClient()

    # ---------- request hook ----------
    # 上游请求是阻塞的，放到工作线程里，慢的上游只占用自己的那个请求
    async def request(self, flow: http.HTTPFlow):
        await asyncio.to_thread(self.route, flow)

    def route(self, flow: http.HTTPFlow) -> None:
        req = flow.request
        logger.info(f"[HOOK-REQUEST] {req.method} {req.path}")

        if req.method == "OPTIONS":
            flow.response = http.Response.make(204, b"", permissive_headers())
            return

        path = urlsplit(req.path).path
        if req.method == "GET" and path == EXPLICIT_FETCH_PATH:
            flow.response = self.handle_explicit(flow)
        else:
            flow.response = self.handle_catch_all(flow)

    # ---------- /proxy?url= ----------
    def handle_explicit(self, flow: http.HTTPFlow) -> http.Response:
        target_url = flow.request.query.get("url")
        try:
            target_url = self._validate_url(target_url)
        except InvalidProxyUrlError as e:
            logger.info(f"[PROXY] rejected: {e}")
            payload = {"error": str(e)}
            if e.url:
                payload["url"] = e.url
            return json_response(400, payload)

        try:
            proxied = self.client.fetch(target_url)
        except UpstreamError as e:
            logger.warning(f"[PROXY] Error for {target_url}: {e.reason}")
            return json_response(502, {
                "error": "Failed to fetch target URL",
                "details": e.reason,
                "url": target_url,
            })

        # 只有 HTML 文档才会更新目标 origin
        if is_html(proxied.content_type):
            self.tracker.update(proxied.origin)
        return self._send(proxied)

    # ---------- catch-all ----------
    def handle_catch_all(self, flow: http.HTTPFlow) -> http.Response:
        req = flow.request
        try:
            target_url = self.tracker.upstream_url(req.path)
        except NoTargetOriginError as e:
            logger.info(f"[CATCH-ALL] {req.method} {req.path}: no target origin")
            return json_response(404, {"error": str(e)})

        try:
            proxied = self.client.fetch(
                target_url,
                method=req.method,
                accept=req.headers.get("accept") or "*/*",
                body=req.get_content(strict=False) or None,
                body_type=req.headers.get("content-type"),
            )
        except UpstreamError as e:
            logger.warning(f"[CATCH-ALL] Error for {target_url}: {e.reason}")
            return json_response(502, {
                "error": "Failed to fetch from target",
                "details": e.reason,
                "url": target_url,
            })
        return self._send(proxied)

    @staticmethod
    def _validate_url(target_url: Optional[str]) -> str:
        if not target_url:
            raise InvalidProxyUrlError("Missing ?url= parameter")
        target_url = target_url.strip()
        if not is_absolute_http_url(target_url):
            raise InvalidProxyUrlError("Invalid url parameter", target_url)
        return target_url

    @staticmethod
    def _send(proxied) -> http.Response:
        try:
            rewritten = process_and_rewrite_response(proxied)
        except Exception:
            # 改写失败时不要把 mitmproxy 的工作线程带崩，按网关错误返回
            logger.exception(f"[REWRITE-ERR] Failed to rewrite response from {proxied.url}")
            return json_response(502, {
                "error": "Failed to rewrite response",
                "url": proxied.url,
            })
        return http.Response.make(rewritten.status_code, rewritten.content, rewritten.headers)


# Export addon for mitmproxy
addons = [OriginProxyAddon()]
