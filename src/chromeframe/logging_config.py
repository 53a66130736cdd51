"""Logging setup for chromeframe.

Library modules only ever call ``logging.getLogger(__name__)``; handlers are
attached here, on demand, by applications and scripts.
"""

import logging
import sys
from typing import TextIO

from chromeframe.config import CONFIG

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty third-party loggers, kept at CDP_LOGGING_LEVEL
THIRD_PARTY_LOGGERS = ('cdp_use', 'websockets', 'httpx', 'httpcore', 'bubus')

_HANDLER_MARKER = '_chromeframe_handler'


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def setup_logging(
    stream: TextIO | None = None,
    log_level: str | None = None,
    force_setup: bool = False,
) -> logging.Logger:
    """Configure the ``chromeframe`` logger.

    Args:
        stream: Stream for the console handler (defaults to stderr).
        log_level: Level name; defaults to CHROMEFRAME_LOGGING_LEVEL.
        force_setup: Replace handlers installed by an earlier call, and
            configure even when CHROMEFRAME_SETUP_LOGGING is false.

    Returns:
        The configured ``chromeframe`` logger.
    """
    package_logger = logging.getLogger('chromeframe')

    if not force_setup and not CONFIG.SETUP_LOGGING:
        return package_logger

    existing = [h for h in package_logger.handlers if getattr(h, _HANDLER_MARKER, False)]
    if existing and not force_setup:
        return package_logger
    for handler in existing:
        package_logger.removeHandler(handler)
        handler.close()

    level_name = (log_level or CONFIG.LOGGING_LEVEL).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(formatter)
    console.setLevel(level)
    package_logger.addHandler(_mark(console))

    debug_log_file = CONFIG.DEBUG_LOG_FILE
    if debug_log_file:
        debug_log_file.parent.mkdir(parents=True, exist_ok=True)
        debug_file = logging.FileHandler(debug_log_file, encoding='utf-8')
        debug_file.setFormatter(formatter)
        debug_file.setLevel(logging.DEBUG)
        package_logger.addHandler(_mark(debug_file))
        level = logging.DEBUG

    info_log_file = CONFIG.INFO_LOG_FILE
    if info_log_file:
        info_log_file.parent.mkdir(parents=True, exist_ok=True)
        info_file = logging.FileHandler(info_log_file, encoding='utf-8')
        info_file.setFormatter(formatter)
        info_file.setLevel(logging.INFO)
        package_logger.addHandler(_mark(info_file))

    package_logger.setLevel(level)
    package_logger.propagate = False

    third_party_level = logging.getLevelName(CONFIG.CDP_LOGGING_LEVEL)
    if not isinstance(third_party_level, int):
        third_party_level = logging.WARNING
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    return package_logger
