import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(name: str, level=logging.INFO) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(level)

    if not any(getattr(h, "_kymux_relay", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._kymux_relay = True
        root.addHandler(handler)

    return logging.getLogger(name)
