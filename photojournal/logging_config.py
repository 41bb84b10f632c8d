import logging
from pythonjsonlogger.json import JsonFormatter

LOGGER_NAME = 'photojournal'


def configure_logging(level: str = 'INFO') -> logging.Logger:
    """Attach a structured JSON handler to the application logger (once)."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger
