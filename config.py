# config.py
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off", "")


# --- 上游请求 ---
UPSTREAM_TIMEOUT = float(os.environ.get("PROXY_UPSTREAM_TIMEOUT", "20"))
VERIFY_TLS = _env_flag("PROXY_VERIFY_TLS", True)

# 伪造的浏览器请求头
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
BROWSER_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"
BROWSER_ACCEPT_LANGUAGE = "en-US,en;q=0.5"

# --- 日志 ---
LOG_LEVEL = os.environ.get("PROXY_LOG_LEVEL", "INFO").upper()

# --- 路由 ---
EXPLICIT_FETCH_PATH = "/proxy"

# --- 页面注入 ---
# 允许与注入脚本通信的宿主页面 origin，"*" 表示不限制
PARENT_ORIGINS = [
    o.strip() for o in os.environ.get("PROXY_PARENT_ORIGINS", "*").split(",") if o.strip()
] or ["*"]

INJECTED_ATTR = "data-proxy-injected"
OVERLAY_ATTR = "data-proxy-highlight"
RUNTIME_MARKER = "runtime"
HIGHLIGHT_MARKER = "highlight"

# postMessage 的 source 标识
PAGE_MESSAGE_SOURCE = "proxy-highlight"
HOST_MESSAGE_SOURCE = "proxy-highlight-host"
