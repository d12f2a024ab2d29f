# kymux_relay/ingestion/relay_worker.py
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional
import logging
import threading

from kymux_relay.errors import MalformedHeader, TruncatedStream
from kymux_relay.ingestion.header_codec import HEADER_SIZE, HeaderCodec
from kymux_relay.ingestion.pacer import Pacer
from kymux_relay.ingestion.packet_source import DEFAULT_CHUNK_SIZE, PacketSource
from kymux_relay.network.transport_sink import TransportSink
from kymux_relay.schemas.metadata import MetaHeader
from kymux_relay.schemas.relay_config import HeaderPolicy, ReadPolicy
from kymux_relay.utils.latency_logger import measure_latency

ProgressReporter = Callable[[MetaHeader, Dict[str, Any]], None]


class RelayState(str, Enum):
    AWAIT_HEADER = "await_header"
    PACE = "pace"
    FORWARD = "forward"
    DONE = "done"


class RelayWorker:
    """Single-stream relay loop: read header, pace, re-frame, forward payload.

    Runs on the calling thread until the source is exhausted. Clean end of
    stream (no header bytes, a short payload, or a partial header under the
    lenient read policy) ends the run normally; any other failure propagates.
    """

    def __init__(
        self,
        source: PacketSource,
        sink: TransportSink,
        pacer: Pacer,
        header_policy: HeaderPolicy = HeaderPolicy.REENCODE,
        read_policy: ReadPolicy = ReadPolicy.LENIENT,
        reporter: Optional[ProgressReporter] = None,
        stop_event: Optional[threading.Event] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.__logger = logging.getLogger(__name__)
        self.__source = source
        self.__sink = sink
        self.__pacer = pacer
        self.__header_policy = HeaderPolicy(header_policy)
        self.__read_policy = ReadPolicy(read_policy)
        self.__reporter = reporter
        self.__stop_event = stop_event
        self.__chunk_size = chunk_size

        self.__state = RelayState.AWAIT_HEADER
        self.__session = None
        self.__stats = {
            "packets_forwarded": 0,
            "config_packets": 0,
            "key_frames": 0,
            "late_packets": 0,
            "bytes_forwarded": 0,
            "last_pts": None,
            "truncated": False,
            "cancelled": False,
            "start_time": None,
            "end_time": None,
        }

    @property
    def state(self) -> RelayState:
        return self.__state

    @property
    def session(self):
        return self.__session

    @property
    def stats(self) -> Dict[str, Any]:
        return dict(self.__stats)

    def run(self) -> Dict[str, Any]:
        self.__logger.info("[%s] Relay started", self.__source.name)
        self.__stats["start_time"] = datetime.now()

        try:
            self.__sink.handshake()
            self.__session = self.__pacer.start_session()

            while self.__state is not RelayState.DONE:
                if self.__stopping():
                    self.__stats["cancelled"] = True
                    self.__state = RelayState.DONE
                    break

                header_bytes = self.__source.read_exact(HEADER_SIZE)
                header = self.__decode(header_bytes)
                if header is None:
                    self.__state = RelayState.DONE
                    break

                self.__state = RelayState.PACE
                due = self.__pacer.wait(header, self.__session, self.__stop_event)
                if due is not None and due < 0:
                    self.__stats["late_packets"] += 1
                if self.__stopping():
                    self.__stats["cancelled"] = True
                    self.__state = RelayState.DONE
                    break

                self.__state = RelayState.FORWARD
                complete = self.__forward_packet(header, header_bytes)
                self.__state = RelayState.AWAIT_HEADER if complete else RelayState.DONE

        finally:
            self.__stats["end_time"] = datetime.now()
            self.__logger.info("[%s] Relay finished → %s", self.__source.name, self.__stats)

        return self.stats

    def __stopping(self) -> bool:
        return self.__stop_event is not None and self.__stop_event.is_set()

    def __decode(self, header_bytes: bytes) -> Optional[MetaHeader]:
        try:
            return HeaderCodec.decode(header_bytes)
        except MalformedHeader:
            if not header_bytes:
                self.__logger.debug("[%s] End of stream", self.__source.name)
                return None
            if self.__read_policy is ReadPolicy.STRICT:
                raise TruncatedStream(len(header_bytes), HEADER_SIZE) from None

            self.__logger.warning(
                "[%s] Partial header (%d bytes) at end of stream, stopping",
                self.__source.name, len(header_bytes),
            )
            self.__stats["truncated"] = True
            return None

    @measure_latency
    def __forward_packet(self, header: MetaHeader, header_bytes: bytes) -> bool:
        self.__sink.write_header(HeaderCodec.apply_policy(header_bytes, self.__header_policy))

        copied = 0
        for chunk in self.__source.iter_payload(header.payload_size, self.__chunk_size):
            self.__sink.write_payload(chunk)
            copied += len(chunk)

        self.__stats["bytes_forwarded"] += HEADER_SIZE + copied
        self.__stats["last_pts"] = header.pts

        if copied < header.payload_size:
            self.__logger.warning(
                "[%s] Payload truncated at pts=%d (%d of %d bytes), stopping",
                self.__source.name, header.pts, copied, header.payload_size,
            )
            self.__stats["truncated"] = True
            return False

        self.__stats["packets_forwarded"] += 1
        if header.is_config:
            self.__stats["config_packets"] += 1
        if header.is_key_frame:
            self.__stats["key_frames"] += 1

        if self.__reporter is not None:
            self.__reporter(header, self.stats)
        return True
