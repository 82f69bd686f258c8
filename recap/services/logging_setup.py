import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

_FORMATTER = logging.Formatter("[%(asctime)s] [%(name)s] %(message)s", "%H:%M:%S")
_QUIET_LIBRARIES = ("httpx", "httpcore", "multipart")
_STAGE_LOGGERS = ("recap.pipeline", "recap.transcription", "recap.analysis", "recap.email")


def _handler(handler: logging.Handler, name: str, level: int) -> logging.Handler:
    handler.setFormatter(_FORMATTER)
    handler.setLevel(level)
    handler.name = name
    return handler


def _rotating(path: str, name: str) -> logging.Handler:
    return _handler(RotatingFileHandler(path, maxBytes=5_000_000, backupCount=3), name, logging.DEBUG)


def _attach(logger: logging.Logger, handlers: list[logging.Handler], level: int) -> None:
    logger.handlers = list(handlers)
    logger.setLevel(level)
    logger.propagate = False


def configure_logging(logs_dir: Optional[str] = None) -> str:
    """Send every ``recap.*`` and uvicorn record to a per-boot server log.

    Records from the processing stages (see ``_STAGE_LOGGERS``) are
    also copied to ``pipeline.log`` so one meeting's run can be followed
    without the request noise. ``RECAP_LOG_LEVEL`` sets the console level.
    Returns the server log path.
    """
    logs_dir = logs_dir or os.path.join(os.getcwd(), "logs")
    os.makedirs(logs_dir, exist_ok=True)

    stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_path = os.path.join(logs_dir, f"server_{stamp}.log")
    console_level = logging.getLevelName(os.environ.get("RECAP_LOG_LEVEL", "INFO").upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO

    server_file = _rotating(log_path, "recap_file")
    console = _handler(logging.StreamHandler(), "recap_stream", console_level)
    _attach(logging.getLogger(), [server_file, console], logging.DEBUG)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        _attach(logging.getLogger(name), [server_file, console], logging.INFO)

    pipeline_file = _rotating(os.path.join(logs_dir, "pipeline.log"), "recap_pipeline")
    for name in _STAGE_LOGGERS:
        stage_logger = logging.getLogger(name)
        stage_logger.handlers = [h for h in stage_logger.handlers if h.name != "recap_pipeline"]
        stage_logger.addHandler(pipeline_file)

    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("recap.boot").info("Logging initialized: %s", log_path)
    return log_path
