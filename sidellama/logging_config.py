"""Console logging for the gateway, laid out like uvicorn's own access lines."""

import logging

LOGGER_NAME = "sidellama"
LOG_FORMAT = "%(levelname)s:     %(name)s - %(message)s"

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


class ColoredFormatter(logging.Formatter):
    def format(self, record):
        color = _LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        # Records are shared between handlers; restore the plain level name.
        plain = record.levelname
        record.levelname = f"{color}{plain}{_RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def configure_logging(level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not any(isinstance(handler.formatter, ColoredFormatter) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(ColoredFormatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False
    return logger
