from typing import Optional

from pydantic import BaseModel


class StreamSession(BaseModel):
    # monotonic clock reading, seconds
    start: float
    pts_origin: Optional[int] = None

    def elapsed_us(self, now: float) -> int:
        return round((now - self.start) * 1_000_000)
