import json
import logging
import os
from logging.handlers import RotatingFileHandler

EVENTS_LEVEL_NUM = 38
DEFAULT_LOG_BACKUP_COUNT = 10
DEFAULT_EVENTS_RETENTION_BYTES = 10 * 1024 * 1024


_HTTP_REQUEST_SUBSTR = "HTTP Request:"


class _HttpRequestFilter(logging.Filter):
    """Drops the per-request INFO lines httpx emits on every status poll."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.INFO:
            return True
        try:
            message = record.getMessage()
        except Exception:
            return True
        return _HTTP_REQUEST_SUBSTR not in message


_http_request_filter = _HttpRequestFilter()


def suppress_http_request_logs() -> None:
    targets = (
        "httpx",
        "httpcore",
    )
    for name in targets:
        logger = logging.getLogger(name)
        if _http_request_filter not in logger.filters:
            logger.addFilter(_http_request_filter)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; dict messages are embedded as-is."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict) and not record.args:
            payload["event"] = record.msg
        else:
            payload["message"] = record.getMessage()
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level="INFO", json_logs=False, events_dir=None):
    """Configure the root logger for a benchmark run."""
    logging.addLevelName(EVENTS_LEVEL_NUM, "EVENT")
    root = logging.getLogger()
    root.setLevel(level if isinstance(level, int) else level.upper())

    handler = logging.StreamHandler()
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
    root.handlers = [handler]

    suppress_http_request_logs()

    if events_dir:
        os.makedirs(events_dir, exist_ok=True)
        setup_events_logger(events_dir, DEFAULT_EVENTS_RETENTION_BYTES)
    return root


def setup_events_logger(full_path, events_retention_size):
    logging.addLevelName(EVENTS_LEVEL_NUM, "EVENT")

    logger = logging.getLogger("benchnet.events")
    logger.setLevel(EVENTS_LEVEL_NUM)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = RotatingFileHandler(
        os.path.join(full_path, "events.log"),
        maxBytes=events_retention_size,
        backupCount=DEFAULT_LOG_BACKUP_COUNT,
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(EVENTS_LEVEL_NUM)
    logger.addHandler(file_handler)

    return logger


def log_event(payload) -> None:
    """Record a lifecycle milestone (node started, machine removed, ...)."""
    logger = logging.getLogger("benchnet.events")
    if logger.isEnabledFor(EVENTS_LEVEL_NUM):
        logger.log(EVENTS_LEVEL_NUM, payload)
