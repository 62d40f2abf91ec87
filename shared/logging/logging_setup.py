import logging
import logging.config
import os
from datetime import datetime

from pytz import timezone

from shared.logging.LogBuffer import LogBuffer

debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.DEBUG if debug_mode else logging.INFO

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ANSI_RESET = "\033[0m"
ANSI_COLORS: dict[str, str] = {
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "white": "\033[37m",
}
LEVEL_PREFIXES: dict[int, str] = {
    logging.WARNING: "⚠️ ",
    logging.ERROR: "⛔ ",
    logging.CRITICAL: "⛔ ",
}


class CustomFormatter(logging.Formatter):
    """Formats timestamps in the configured timezone and prefixes warnings and errors."""

    def __init__(self, tz_name: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        created = datetime.fromtimestamp(record.created, self.tz)
        return created.strftime(datefmt) if datefmt else created.isoformat()

    def format(self, record):
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # broken %-args from a third party logger, keep the raw template
            message = str(record.msg)

        # work on a copy, the same record also reaches the file handler and the log buffer
        record = logging.makeLogRecord(record.__dict__)
        record.msg = LEVEL_PREFIXES.get(record.levelno, "") + message
        record.args = ()
        return super().format(record)


class ColoredFormatter(CustomFormatter):
    """Console formatter, wraps the line in the ANSI color named by ``record.color``."""

    def format(self, record) -> str:
        line = super().format(record)
        ansi = ANSI_COLORS.get(getattr(record, "color", None) or "")
        return f"{ansi}{line}{ANSI_RESET}" if ansi else line


class ColorLogger(logging.LoggerAdapter):
    """Logger accepting an optional ``color=`` keyword on every log call.

    Usage::

        logger.info("Ingestion job %s done", job_id, color="green")

    Only the console output is colored; the file handler and the log buffer
    receive plain text.
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        color = kwargs.pop("color", None)
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        return msg, kwargs


def _formatter_config(formatter_class: type[CustomFormatter], tz_name: str) -> dict:
    return {
        "()": formatter_class,
        "format": LOG_FORMAT,
        "datefmt": DATE_FORMAT,
        "tz_name": tz_name,
    }


def setup_logging(log_buffer: LogBuffer | None = None) -> ColorLogger:
    """Configure console, file and (optionally) in-memory log handlers.

    Args:
        log_buffer (LogBuffer | None): Recent-log window served by GET /logs.
            Attached to the root logger when given.

    Returns:
        ColorLogger: The application logger.
    """
    log_dir = os.path.join(os.getenv("ROOT_DIR", os.getcwd()), "logs")
    os.makedirs(log_dir, exist_ok=True)
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": _formatter_config(CustomFormatter, tz_name),
            "colored": _formatter_config(ColoredFormatter, tz_name),
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "colored",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.FileHandler",
                "formatter": "standard",
                "level": loglevel,
                "filename": os.path.join(log_dir, "app.log"),
                "encoding": "utf-8",
            },
        },
        "root": {"handlers": ["console", "file"], "level": loglevel},
    })

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    if log_buffer is not None:
        log_buffer.setLevel(loglevel)
        logging.getLogger().addHandler(log_buffer)

    return ColorLogger(logging.getLogger("csv_rag_sync"))
