# html_rewriter.py
import logging
from typing import Union

from bs4 import BeautifulSoup

from config import HIGHLIGHT_MARKER, INJECTED_ATTR, RUNTIME_MARKER
from injection import build_highlight_bundle, build_runtime_patch
from utils import origin_of, strip_origin, strip_origin_in_text

logger = logging.getLogger(__name__)

URL_ATTRS = ("src", "href", "action", "data", "poster")
BLOCKING_META = ("content-security-policy", "content-security-policy-report-only", "x-frame-options")


def _is_injected(tag) -> bool:
    return tag.has_attr(INJECTED_ATTR)


def _new_script(soup: BeautifulSoup, marker: str, code: str):
    script = soup.new_tag("script")
    script[INJECTED_ATTR] = marker
    script.string = code
    return script


def rewrite_html(html: Union[str, bytes], base_url: str, from_encoding: str = None) -> str:
    """
    改写 HTML，使其可以从代理自己的 origin 提供服务。
    步骤有先后依赖：
    1. 删除 <base>
    2. 删除 CSP 相关 <meta> 以及 integrity/nonce/crossorigin 属性
    3. src/href/action/data/poster 去掉 origin 前缀
    4. srcset、style 属性、<style> 内容做文本替换
    5. 非注入的内联脚本做文本替换
    6. 运行时补丁作为 <head> 第一个子节点
    7. 高亮脚本追加到 <body> 末尾（无 body 时追加到 <head>）
    :param html: 原始 HTML（str 或 bytes）
    :param base_url: 跟随重定向后的最终 URL
    :return: 改写后的 HTML 文本
    """
    origin = origin_of(base_url)
    if isinstance(html, bytes):
        soup = BeautifulSoup(html, "lxml", from_encoding=from_encoding)
    else:
        soup = BeautifulSoup(html, "lxml")

    # 1. <base> 会让相对路径解析到目标站点而不是代理
    for base in soup.find_all("base"):
        base.decompose()

    # 2. CSP meta 会拦截注入脚本；SRI 校验值和 nonce 在改写后都不再匹配
    for meta in soup.find_all("meta", attrs={"http-equiv": True}):
        if meta["http-equiv"].strip().lower() in BLOCKING_META:
            meta.decompose()
    for attr in ("integrity", "nonce"):
        for tag in soup.find_all(attrs={attr: True}):
            if not _is_injected(tag):
                del tag[attr]
    for tag in soup.find_all(["script", "link"], attrs={"crossorigin": True}):
        del tag["crossorigin"]

    if origin:
        # 3. 绝对 URL -> 根相对路径
        for attr in URL_ATTRS:
            for tag in soup.find_all(attrs={attr: True}):
                value = tag[attr]
                if isinstance(value, str) and value.startswith(origin):
                    tag[attr] = strip_origin(value, origin)

        # 4. srcset / 内联样式 / <style>
        for attr in ("srcset", "style"):
            for tag in soup.find_all(attrs={attr: True}):
                value = tag[attr]
                if isinstance(value, str) and origin in value:
                    tag[attr] = strip_origin_in_text(value, origin)
        for style in soup.find_all("style"):
            css = style.string
            if css and origin in css:
                style.string = strip_origin_in_text(str(css), origin)

        # 5. 内联脚本（跳过已注入的脚本）
        for script in soup.find_all("script", src=False):
            if _is_injected(script):
                continue
            code = script.string
            if code and origin in code:
                script.string = strip_origin_in_text(str(code), origin)

    _inject(soup, origin)
    return str(soup)


def _inject(soup: BeautifulSoup, origin: str) -> None:
    head = soup.head
    if head is None:
        head = soup.new_tag("head")
        if soup.html is not None:
            soup.html.insert(0, head)
        else:
            soup.insert(0, head)

    # 6. 补丁必须在页面任何脚本之前执行；已存在则不重复注入
    if soup.find("script", attrs={INJECTED_ATTR: RUNTIME_MARKER}) is None:
        head.insert(0, _new_script(soup, RUNTIME_MARKER, build_runtime_patch(origin)))
    else:
        logger.debug("[REWRITE] runtime patch already present, skipping")

    # 7. 高亮脚本
    if soup.find("script", attrs={INJECTED_ATTR: HIGHLIGHT_MARKER}) is None:
        container = soup.body if soup.body is not None else head
        container.append(_new_script(soup, HIGHLIGHT_MARKER, build_highlight_bundle()))
    else:
        logger.debug("[REWRITE] highlight bundle already present, skipping")
