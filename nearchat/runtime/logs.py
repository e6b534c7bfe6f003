# nearchat/runtime/logs.py

import logging
import time
from collections import deque

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class BufferHandler(logging.Handler):
    """
    Keeps the most recent log lines in memory for the /logs command.
    """

    def __init__(self, maxlen: int = 200):
        super().__init__()
        self.buffer = deque(maxlen=maxlen)

    def emit(self, record):
        try:
            stamp = time.strftime("%H:%M:%S", time.localtime(record.created))
            self.buffer.append(f"{stamp} {record.getMessage()}")
        except Exception:
            self.handleError(record)


def configure_logging(debug: bool = False) -> BufferHandler:
    """
    Route everything to the in-memory buffer; stderr only in debug mode,
    so the interactive prompt stays readable.
    """
    level = logging.DEBUG if debug else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    handler = BufferHandler()
    root.addHandler(handler)

    if debug:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(stream)

    logging.getLogger("werkzeug").setLevel(logging.ERROR)
    return handler
