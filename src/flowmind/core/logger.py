import sys
from pathlib import Path

from loguru import logger

from .config import settings

_logger_initialized = False


def formatter(record):
    """Bổ sung tag mặc định cho log"""
    record["extra"].setdefault("tag", record["name"])
    return record["message"]


def setup_logging():
    """Thiết lập logging với loguru"""
    global _logger_initialized

    # Chỉ cấu hình log khi khởi tạo lần đầu
    if not _logger_initialized:
        version = settings.APP_VERSION or "0.0.0"
        log_format = (
            "<green>{time:YYMMDD HH:mm:ss}</green>[" + version + "]"
            "[<light-blue>{extra[tag]}</light-blue>]-<level>{level}</level>"
            "-<light-green>{message}</light-green>"
        )
        log_format_file = (
            "{time:YYYY-MM-DD HH:mm:ss} - " + version + " - {name} - {level} - "
            "{extra[tag]} - {message}"
        )
        log_level = settings.LOG_LEVEL

        logger.remove()

        # Ghi log ra console
        logger.add(sys.stdout, format=log_format, level=log_level, filter=formatter)

        if settings.LOG_TO_FILE:
            base_dir = Path(__file__).resolve().parents[3]
            log_dir = Path(settings.LOG_DIR)
            if not log_dir.is_absolute():
                log_dir = base_dir / log_dir
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
            except PermissionError:
                # Fallback to /tmp if logs directory is not writable
                log_dir = Path("/tmp/logs")
                log_dir.mkdir(parents=True, exist_ok=True)

            logger.add(
                log_dir / settings.LOG_FILE,
                format=log_format_file,
                level=log_level,
                filter=formatter,
                rotation="10 MB",
                retention="30 days",
                compression=None,
                encoding="utf-8",
                enqueue=True,
                backtrace=True,
                diagnose=False,
            )
        _logger_initialized = True

    return logger


def get_logger(module_name: str = None):
    """Lấy logger instance. Sử dụng: logger.bind(tag=__name__)"""
    if not _logger_initialized:
        setup_logging()

    if module_name:
        return logger.bind(tag=module_name)
    return logger
