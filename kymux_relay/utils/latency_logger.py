import time
import logging
from functools import wraps

logger = logging.getLogger(__name__)


def measure_latency(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            latency_ms = (time.perf_counter() - start) * 1000
            logger.debug("[Latency] %s executed in %.3f ms", func.__name__, latency_ms)

    return wrapper
