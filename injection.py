# injection.py
"""
生成注入到被代理页面中的两段脚本：
① 运行时补丁（runtime_patch.js）：按目标 origin 参数化，必须先于页面原有脚本执行
② 高亮/检查器脚本（highlight.js）：与宿主页面通过 postMessage 通信
"""
from functools import lru_cache
from pathlib import Path

from config import (EXPLICIT_FETCH_PATH, HOST_MESSAGE_SOURCE, INJECTED_ATTR, OVERLAY_ATTR,
                    PAGE_MESSAGE_SOURCE, PARENT_ORIGINS)
from utils import json_dumps_html_safe


STATIC_DIR = Path(__file__).resolve().parent / "static"


@lru_cache(maxsize=None)
def _load_static(name: str) -> str:
    return (STATIC_DIR / name).read_text(encoding="utf-8")


def parent_target(origins=None) -> str:
    """postMessage 的目标 origin：允许列表含 "*" 时不限制，否则取第一个"""
    origins = origins or PARENT_ORIGINS
    return "*" if "*" in origins else origins[0]


def build_runtime_patch(origin: str, origins=None) -> str:
    """
    :param origin: 已解析的目标 origin，例如 "https://t.example"
    :return: 运行时补丁 JS 源码
    """
    js = _load_static("runtime_patch.js")
    replacements = {
        "{{PROXY_ORIGIN}}": json_dumps_html_safe(origin),
        "{{PROXY_PATH}}": json_dumps_html_safe(EXPLICIT_FETCH_PATH),
        "{{MESSAGE_SOURCE}}": json_dumps_html_safe(PAGE_MESSAGE_SOURCE),
        "{{PARENT_TARGET}}": json_dumps_html_safe(parent_target(origins)),
    }
    for placeholder, value in replacements.items():
        js = js.replace(placeholder, value)
    return js


def build_highlight_bundle(origins=None) -> str:
    settings = {
        "allowedOrigins": list(origins or PARENT_ORIGINS),
        "pageSource": PAGE_MESSAGE_SOURCE,
        "hostSource": HOST_MESSAGE_SOURCE,
        "overlayAttr": OVERLAY_ATTR,
        "injectedAttr": INJECTED_ATTR,
    }
    prelude = f"window.__PROXY_HIGHLIGHT_CONFIG__ = {json_dumps_html_safe(settings)};\n"
    return prelude + _load_static("highlight.js")
