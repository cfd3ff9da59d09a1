import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"


def _build_file_handler(log_path: Path) -> RotatingFileHandler:
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_FORMAT, "%Y-%m-%d %H:%M:%S"))
    file_handler.setLevel(logging.DEBUG)
    file_handler.name = "voice_minutes_file"
    return file_handler


def _build_stream_handler(level: int) -> logging.StreamHandler:
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(_FORMAT, "%H:%M:%S"))
    stream_handler.setLevel(level)
    stream_handler.name = "voice_minutes_stream"
    return stream_handler


def _replace_handlers(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    logger.handlers = []
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False


def configure_logging(level: str = "INFO", logs_dir: Optional[Path] = None) -> Optional[Path]:
    """ルートロガーとuvicornロガーを設定する。ログファイルのパスを返す。"""
    stream_level = logging.getLevelName(level.upper())
    if not isinstance(stream_level, int):
        stream_level = logging.INFO

    handlers: list[logging.Handler] = [_build_stream_handler(stream_level)]
    log_path = None
    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_path = logs_dir / f"server_{timestamp}.log"
        handlers.append(_build_file_handler(log_path))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_path else stream_level)
    _replace_handlers(root_logger, handlers)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.setLevel(logging.INFO)
        _replace_handlers(uv_logger, handlers)

    # httpx / openai のリクエストログは冗長なので抑える
    for name in ("httpx", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info("Logging initialized: %s", log_path or "stream only")
    return log_path
