# replacer.py
import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from html_rewriter import rewrite_html
from upstream import ProxiedResponse
from utils import charset_of, strip_origin_in_text

logger = logging.getLogger(__name__)

PERMISSIVE_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

# 会阻止 iframe 嵌入或脚本注入的响应头，永远不转发
BLOCKED_HEADERS = (
    "x-frame-options",
    "content-security-policy",
    "content-security-policy-report-only",
    "x-content-type-options",
)

# 只转发这几个上游响应头，其余全部丢弃
FORWARDED_HEADERS = ("Cache-Control", "ETag")


@dataclass
class RewrittenResponse:
    status_code: int
    content: bytes
    headers: Dict[str, str]


def is_html(content_type: Optional[str]) -> bool:
    return bool(content_type) and "text/html" in content_type.lower()


def is_text_type(content_type: Optional[str]) -> bool:
    """
    判断是否为需要做文本替换的类型（CSS/JS/JSON/XML 以及其它 text/*）
    """
    if not content_type:
        return False
    ct = content_type.lower().split(";", 1)[0].strip()
    if ct.startswith("text/"):
        return True
    if "javascript" in ct or "ecmascript" in ct:
        return True
    if ct.endswith("/json") or ct.endswith("+json"):
        return True
    if ct.endswith("/xml") or ct.endswith("+xml"):
        return True
    return False


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lname = name.lower()
    for k, v in headers.items():
        if k.lower() == lname:
            return v
    return None


def permissive_headers(extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    headers = dict(PERMISSIVE_HEADERS)
    if extra:
        for k, v in extra.items():
            if k.lower() not in BLOCKED_HEADERS:
                headers[k] = v
    return headers


def build_response_headers(upstream_headers: Mapping[str, str], content_type: Optional[str]) -> Dict[str, str]:
    """
    组装返回给浏览器的响应头：放开 CORS，只转发 Cache-Control/ETag 和 Content-Type
    """
    extra = {}
    for name in FORWARDED_HEADERS:
        value = _header(upstream_headers, name)
        if value:
            extra[name] = value
    if content_type:
        extra["Content-Type"] = content_type
    return permissive_headers(extra)


def rewrite_text(content: bytes, content_type: str, origin: str) -> bytes:
    """
    CSS/JS/JSON 等文本：按声明的字符集解码，删除所有 origin 子串后重新编码。
    解码失败时原样返回。
    """
    if not content or not origin:
        return content
    encoding = charset_of(content_type)
    try:
        text_content = content.decode(encoding)
    except (UnicodeDecodeError, LookupError):
        logger.info(f"[REWRITE] cannot decode body as {encoding}, passing through")
        return content
    if origin not in text_content:
        return content
    return strip_origin_in_text(text_content, origin).encode(encoding)


def process_and_rewrite_response(proxied: ProxiedResponse, origin: Optional[str] = None) -> RewrittenResponse:
    """
    根据 Content-Type 分发：
    ① HTML -> DOM 改写 + 注入
    ② 文本类型 -> origin 子串替换
    ③ 其它 -> 字节原样透传，保留原 Content-Type
    :param proxied: 上游响应
    :param origin: 用于改写的 origin，默认取最终 URL 的 origin
    """
    origin = origin or proxied.origin
    content_type = proxied.content_type
    content = proxied.content or b""

    if is_html(content_type):
        html = rewrite_html(content, proxied.url, from_encoding=charset_of(content_type, default=None))
        body = html.encode("utf-8")
        content_type = "text/html; charset=utf-8"
        logger.info(f"[REWRITE] html {proxied.url} ({len(content)} -> {len(body)} bytes)")
    elif is_text_type(content_type):
        body = rewrite_text(content, content_type, origin)
        if body != content:
            logger.debug(f"[REWRITE] text {proxied.url}")
    else:
        body = content

    return RewrittenResponse(
        status_code=proxied.status_code,
        content=body,
        headers=build_response_headers(proxied.headers, content_type),
    )
