import logging
import sys

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"


class RequestIdFilter(logging.Filter):
    """Guarantee a request_id attribute so the format string never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = None
        return True


def _make_handler(output: str) -> logging.Handler:
    if output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output == "stderr":
        return logging.StreamHandler(sys.stderr)
    return logging.FileHandler(output, encoding="utf-8")


def setup_logging(level: str, fmt: str = "json", output: str = "stdout") -> None:
    logger = logging.getLogger()
    logger.setLevel(level.upper())

    # Remove default handlers to avoid duplicate logs
    while logger.handlers:
        logger.handlers.pop()

    handler = _make_handler(output)
    if fmt == "text":
        formatter = logging.Formatter(TEXT_FORMAT)
    else:
        formatter = jsonlogger.JsonFormatter(JSON_FORMAT)
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    logger.addHandler(handler)
