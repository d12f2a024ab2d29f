import logging
import threading
import time
from typing import Callable, Optional

from kymux_relay.schemas.metadata import MetaHeader
from kymux_relay.schemas.relay_config import PacingMode
from kymux_relay.schemas.session import StreamSession

logger = logging.getLogger(__name__)

MAX_WAIT_SLICE = min(3600.0, threading.TIMEOUT_MAX)


class Pacer:
    """Hold non-config packets back until their PTS comes due.

    ``ORIGIN_RELATIVE`` takes the first non-config PTS of the session as the
    zero point and emits that packet right away, so the wall clock to PTS
    correlation restarts with every run. ``ABSOLUTE`` reads every PTS as a
    duration since the session started.

    Late packets go out immediately. The pacer never sleeps a negative
    duration and never speeds up later packets to catch up.
    """

    def __init__(
        self,
        mode: PacingMode = PacingMode.ORIGIN_RELATIVE,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.__mode = PacingMode(mode)
        self.__clock = clock
        self.__sleep = sleep

    @property
    def mode(self) -> PacingMode:
        return self.__mode

    def start_session(self) -> StreamSession:
        return StreamSession(start=self.__clock())

    def target_us(self, header: MetaHeader, session: StreamSession) -> Optional[int]:
        """Microseconds after session start at which ``header`` is due.

        Returns None for packets that must not wait. Records the PTS origin
        on the first non-config packet in origin-relative mode.
        """
        if header.is_config:
            return None

        if self.__mode is PacingMode.ABSOLUTE:
            return header.pts

        if session.pts_origin is None:
            session.pts_origin = header.pts
            return None
        return header.pts - session.pts_origin

    def schedule(self, header: MetaHeader, session: StreamSession) -> Optional[float]:
        """Seconds until ``header`` is due, negative when it is already late.

        None means the packet is emitted without pacing.
        """
        target = self.target_us(header, session)
        if target is None:
            return None

        elapsed = session.elapsed_us(self.__clock())
        return (target - elapsed) / 1_000_000

    def wait(
        self,
        header: MetaHeader,
        session: StreamSession,
        stop_event: Optional[threading.Event] = None,
    ) -> Optional[float]:
        """Block until ``header`` is due and return its schedule."""
        due = self.schedule(header, session)
        if due is None:
            return None

        if due <= 0:
            if due < 0:
                logger.debug("pts=%d is late by %.3f ms", header.pts, -due * 1000)
            return due

        # bounded slices, a single wait on a huge PTS overflows the platform timeout
        remaining = due
        while remaining > 0:
            step = min(remaining, MAX_WAIT_SLICE)
            if stop_event is not None:
                if stop_event.wait(step):
                    break
            else:
                self.__sleep(step)
            remaining -= step
        return due
