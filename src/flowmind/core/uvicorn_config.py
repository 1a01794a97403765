"""Cấu hình logging cho Uvicorn sử dụng loguru."""

import logging

from loguru import logger

_UVICORN_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error")


class InterceptHandler(logging.Handler):
    """Handler để bắt log từ logging module và gửi tới loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Tìm caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(tag=record.name).log(
            level, record.getMessage()
        )


def setup_uvicorn_logging(level: int = logging.INFO) -> None:
    """Cấu hình Uvicorn để sử dụng loguru thay vì logging mặc định."""
    for name in _UVICORN_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
        std_logger.setLevel(level)
