# logger_setup.py
import logging

from config import LOG_LEVEL


def setup_logging(level=None):
    # 自定义输出格式 调用日志的模块名 + 当前时间
    fmt = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
    if level is None:
        level = getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(level=level,
                        format=fmt,
                        datefmt="%Y-%m-%d %H:%M:%S")
    # 上游请求库的连接日志太多，只保留警告
    logging.getLogger("urllib3").setLevel(logging.WARNING)
