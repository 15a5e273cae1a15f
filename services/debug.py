"""Development-only debug logging, enabled with DEV_DEBUG=true."""

import logging
import time
from config import Config

debug_logger = logging.getLogger('discovery_debug')

if Config.DEV_DEBUG:
    debug_logger.setLevel(logging.DEBUG)
    if not debug_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '\033[35m[DISCOVERY]\033[0m %(asctime)s - %(message)s',
            datefmt='%H:%M:%S'
        ))
        debug_logger.addHandler(handler)
        debug_logger.propagate = False
else:
    debug_logger.setLevel(logging.CRITICAL)


def debug_log(message: str, **fields):
    """
    Log a debug message with key=value context when DEV_DEBUG is enabled.

    Usage:
        debug_log("Objection option generated", case_id=case_id, request=2, option=1)
    """
    if not Config.DEV_DEBUG:
        return

    if fields:
        message = f"{message} | " + ' | '.join(f'{k}={v}' for k, v in fields.items())

    debug_logger.debug(message)


class DebugTimer:
    """
    Times a block of work in debug mode.

    Usage:
        with DebugTimer("Extraction", case_id=case_id):
            adapter.extract(...)
    """
    def __init__(self, label: str, **fields):
        self.label = label
        self.fields = fields
        self.start = None

    def __enter__(self):
        if Config.DEV_DEBUG:
            self.start = time.monotonic()
            debug_log(f"{self.label} started", **self.fields)
        return self

    def __exit__(self, exc_type, exc, tb):
        if Config.DEV_DEBUG and self.start is not None:
            elapsed = time.monotonic() - self.start
            outcome = 'failed' if exc_type else 'completed'
            debug_log(f"{self.label} {outcome}", elapsed=f"{elapsed:.2f}s", **self.fields)
        return False
