# logger.py - Log files for the lending app
#
# Each area of the app (loans, payments, ...) writes to its own rotating file
# under LOG_DIR. Card numbers and SSNs are masked before anything hits disk.
import os
import re
import logging
from logging.handlers import RotatingFileHandler

LOG_DIR = os.environ.get("LOG_DIR", "logs")
LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"

_SSN_RE = re.compile(r"\b\d{3}-?\d{2}-?(\d{4})\b")
_PAN_RE = re.compile(r"\b\d{9,15}(\d{4})\b")


class SensitiveDataFilter(logging.Filter):
    """Masks SSNs and long account/card numbers, keeping the last four digits."""

    def filter(self, record):
        message = record.getMessage()
        masked = _PAN_RE.sub(r"****\1", _SSN_RE.sub(r"***-**-\1", message))
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _file_handler(filename, level):
    os.makedirs(LOG_DIR, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(LOG_DIR, filename),
        maxBytes=1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    handler.addFilter(SensitiveDataFilter())
    return handler


def get_area_logger(area, level=logging.INFO):
    """Logger writing to <LOG_DIR>/<area>.log; console too outside production."""
    logger = logging.getLogger(f"lending.{area}")
    if logger.handlers:
        return logger

    logger.setLevel(level)
    logger.addHandler(_file_handler(f"{area}.log", level))

    if os.environ.get("FLASK_ENV") != "production":
        console = logging.StreamHandler()
        console.setLevel(logging.DEBUG)
        console.setFormatter(logging.Formatter("%(name)s - %(levelname)s - %(message)s"))
        console.addFilter(SensitiveDataFilter())
        logger.addHandler(console)
    return logger


def setup_logging(app):
    """Point app.logger at logs/app.log, plus console output in debug."""
    app.logger.handlers.clear()
    app.logger.addHandler(_file_handler("app.log", logging.INFO))
    app.logger.setLevel(logging.DEBUG if app.debug else logging.INFO)
    app.logger.propagate = False

    if app.debug:
        console = logging.StreamHandler()
        console.setLevel(logging.DEBUG)
        app.logger.addHandler(console)


app_logger = get_area_logger("app")
loans_logger = get_area_logger("loans")
payments_logger = get_area_logger("payments")
