# origin_tracker.py
import logging
from threading import Lock

logger = logging.getLogger(__name__)


class NoTargetOriginError(Exception):
    """catch-all 路由在任何 HTML 页面被代理之前被调用"""

    def __init__(self):
        super().__init__("No target origin set. Load a page via /proxy?url= first.")


class OriginTracker:
    """
    记录最近一次成功代理的 HTML 文档的 origin。
    后写覆盖先写；读写都加锁，因为 concurrent 钩子运行在工作线程上。
    """

    def __init__(self, origin: str = ""):
        self._origin = origin
        self._lock = Lock()

    @property
    def current(self) -> str:
        with self._lock:
            return self._origin

    def update(self, origin: str) -> None:
        if not origin:
            return
        with self._lock:
            previous, self._origin = self._origin, origin
        if previous != origin:
            logger.info(f"[ORIGIN] Target origin set to: {origin}")

    def require(self) -> str:
        origin = self.current
        if not origin:
            raise NoTargetOriginError()
        return origin

    def upstream_url(self, path: str) -> str:
        """
        用目标 origin 拼接请求的原始路径和查询串。
        :param path: 入站请求的 path（含 query），例如 "/a/b?c=1"
        """
        origin = self.require()
        if not path.startswith("/"):
            path = "/" + path
        return origin + path
