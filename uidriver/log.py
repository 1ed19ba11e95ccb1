"""日志模块：统一的 logger 创建"""

import logging
import os

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _parse_log_level(s: str, default: int = logging.INFO) -> int:
    if not s:
        return default
    return _LEVELS.get(s.strip().upper(), default)


def setup_logger(name: str) -> logging.Logger:
    """
    返回带控制台输出的 logger。

    级别由 UIDRIVER_LOG_LEVEL 决定；重复调用不会叠加 handler。
    """
    level = _parse_log_level(os.getenv("UIDRIVER_LOG_LEVEL", "INFO"))
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logger.addHandler(ch)
    return logger
