import logging
import sys
import time

SIMPLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'

access_logger = logging.getLogger("app.access")


# Custom formatter with colors for console
class ColoredFormatter(logging.Formatter):
    """Colors the level name when writing to a terminal"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def __init__(self, fmt=None, datefmt=None, use_colors=True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_colors = use_colors

    def format(self, record):
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)

        plain = record.levelname
        record.levelname = f"{self.COLORS[plain]}{self.BOLD}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers see the record unchanged
            record.levelname = plain


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure console-only logging and return the ``app`` logger"""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColoredFormatter(
        fmt=SIMPLE_FORMAT,
        datefmt='%H:%M:%S',
        use_colors=sys.stdout.isatty()
    ))

    logging.basicConfig(level=level, handlers=[handler], force=True)

    logger = logging.getLogger("app")
    logger.setLevel(level)

    # Reduce noise from other libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    return logger


def log_request(method: str, path: str, status_code: int, started: float):
    """One access line per API call; 5xx responses are logged as errors"""
    elapsed_ms = (time.perf_counter() - started) * 1000
    if status_code >= 500:
        log = access_logger.error
    elif status_code >= 400:
        log = access_logger.warning
    else:
        log = access_logger.info
    log("%s %s -> %d (%.1f ms)", method, path, status_code, elapsed_ms)
