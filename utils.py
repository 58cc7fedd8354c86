# utils.py
import json
import re
from typing import Optional
from urllib.parse import urlsplit

DEFAULT_PORTS = {"http": 80, "https": 443}

CHARSET_RE = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)


def origin_of(url: str) -> str:
    """
    计算 URL 的 origin（scheme://host[:port]），与浏览器 URL.origin 一致：
    scheme 和 host 小写，默认端口省略，IPv6 地址加方括号。
    :param url: 绝对 URL
    :return: origin 字符串；无法解析出 host 时返回空字符串
    """
    if not url:
        return ""
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = parts.hostname
    if not scheme or not host:
        return ""
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        # 端口非法
        return ""
    if port is None or DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def is_absolute_http_url(url: Optional[str]) -> bool:
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in DEFAULT_PORTS and bool(parts.hostname)


def strip_origin(url: str, origin: str) -> str:
    """
    去掉 URL 开头的 origin，使其变为以 / 开头的根相对路径。
    "https://t.example/x" -> "/x"，"https://t.example" -> "/"，其它值原样返回。
    """
    if not url or not origin or not url.startswith(origin):
        return url
    return url[len(origin):] or "/"


def charset_of(content_type: Optional[str], default: str = "utf-8") -> str:
    if content_type:
        m = CHARSET_RE.search(content_type)
        if m:
            return m.group(1)
    return default


def json_dumps_html_safe(value) -> str:
    """序列化为 JSON，并转义在 <script> 中不安全的字符"""
    return (json.dumps(value)
            .replace("<", "\\u003c")
            .replace(">", "\\u003e")
            .replace("&", "\\u0026"))


def strip_origin_in_text(text: str, origin: str) -> str:
    """纯文本替换：删除所有出现的 origin 字符串（不做语法分析，字符串字面量中也会被替换）"""
    if not text or not origin:
        return text
    return text.replace(origin, "")
