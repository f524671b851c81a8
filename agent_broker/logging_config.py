"""
日志配置模块

提供统一的日志配置和日志记录器
"""

import logging
import os
import sys
from pathlib import Path


# 默认日志格式
DEFAULT_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOGGER_NAME = "agent_broker"


def _default_level() -> int:
    """从 LOG_LEVEL 环境变量读取默认级别"""
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _default_log_file() -> Path | None:
    log_file = os.getenv("LOG_FILE")
    return Path(log_file) if log_file else None


def setup_logger(
    name: str = DEFAULT_LOGGER_NAME,
    level: int | None = None,
    log_file: Path | None = None,
    format_string: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT
) -> logging.Logger:
    """
    设置并返回日志记录器

    Args:
        name: 日志记录器名称
        level: 日志级别（默认读取 LOG_LEVEL 环境变量）
        log_file: 日志文件路径（可选，默认读取 LOG_FILE 环境变量）
        format_string: 日志格式
        date_format: 日期格式

    Returns:
        配置好的日志记录器
    """
    if level is None:
        level = _default_level()
    if log_file is None:
        log_file = _default_log_file()

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # 避免重复添加处理器
    if logger.handlers:
        return logger

    formatter = logging.Formatter(format_string, date_format)

    # 控制台处理器
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # 文件处理器（如果指定了日志文件）
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    获取日志记录器

    包内模块（agent_broker.*）的记录器不单独添加处理器，
    继承包级记录器的级别和处理器。

    Args:
        name: 日志记录器名称

    Returns:
        日志记录器
    """
    package_logger = logging.getLogger(DEFAULT_LOGGER_NAME)
    if not package_logger.handlers:
        setup_logger(DEFAULT_LOGGER_NAME)

    if name == DEFAULT_LOGGER_NAME or name.startswith(DEFAULT_LOGGER_NAME + "."):
        return logging.getLogger(name)

    logger = logging.getLogger(name)
    if not logger.handlers:
        # 如果没有配置过，使用默认配置
        return setup_logger(name)
    return logger


def set_log_level(level: int | str, logger_name: str = DEFAULT_LOGGER_NAME):
    """
    设置指定日志记录器的级别

    Args:
        level: 日志级别（可以是 int 或 str，如 "INFO", "DEBUG"）
        logger_name: 日志记录器名称
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = get_logger(logger_name)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def configure_logging(level: int | str, log_file: Path | str | None = None) -> logging.Logger:
    """
    按配置调整包级日志记录器：设置级别，并在需要时追加文件处理器

    Args:
        level: 日志级别
        log_file: 日志文件路径（可选）

    Returns:
        包级日志记录器
    """
    set_log_level(level)
    logger = logging.getLogger(DEFAULT_LOGGER_NAME)

    if log_file:
        log_path = Path(log_file).resolve()
        has_file_handler = any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path
            for h in logger.handlers
        )
        if not has_file_handler:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setLevel(logger.level)
            file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, DEFAULT_DATE_FORMAT))
            logger.addHandler(file_handler)

    return logger
