"""
Logging setup for gradstep.

Library modules only create loggers with logging.getLogger(__name__) and
never attach handlers; an application (or a notebook) calls setup_logging()
once to see the engine steps and training progress.
"""
import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "gradstep"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%H:%M:%S'


def _drop_handlers(logger: logging.Logger) -> None:
    # close first so a previous log file is released
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Route the 'gradstep' loggers to stdout and, optionally, to a file.

    Calling it again replaces the handlers of the previous call.

    Args:
        level: Logging level; logging.DEBUG shows every engine step
        log_file: Optional path, overwritten on each call

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    _drop_handlers(logger)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug(f"Logging to {'stdout and ' + log_file if log_file else 'stdout'} at level {logging.getLevelName(level)}")
    return logger
