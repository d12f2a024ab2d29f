from typing import Optional
import logging

from kymux_relay.errors import ConfigError, RelayConnectionError, TransportWriteError
from kymux_relay.utils.latency_logger import measure_latency

CHANNEL_ID_SIZE = 4
SYNC_BYTE_COUNT = 1


def codec_announcement(codec: str, size: int) -> bytes:
    tag = codec.encode("ascii")
    if len(tag) > size:
        raise ConfigError(f"codec tag {codec!r} does not fit in a {size}-byte announcement")
    return tag.ljust(size, b"\x00")


class TransportSink:
    """Destination side of the relay.

    ``conn`` is any connected stream object exposing ``sendall`` and ``recv``
    (a ``socket.socket`` in production).
    """

    def __init__(self, conn, name: str = "destination"):
        self._logger = logging.getLogger(__name__)
        self._conn = conn
        self._name = name
        self._bytes_written = 0
        self._ready = False

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    def handshake(self) -> None:
        self._ready = True

    def write_header(self, header: bytes) -> None:
        self._send(header)

    def write_payload(self, chunk: bytes) -> None:
        self._send(chunk)

    def _send(self, data: bytes) -> None:
        if not self._ready:
            raise RuntimeError(f"{type(self).__name__} used before handshake()")
        try:
            self._conn.sendall(data)
        except OSError as e:
            raise TransportWriteError(f"[{self._name}] write failed: {e}") from e
        self._bytes_written += len(data)

    def close(self):
        if self._conn is None:
            return
        try:
            self._conn.close()
        except OSError as e:
            self._logger.debug("[%s] close failed: %s", self._name, e)
        self._conn = None


class KymuxEndpointSink(TransportSink):
    """Endpoint-addressed kymux link.

    Handshake: endpoint id (big-endian, 2 or 8 bytes), one sync byte read
    back from the destination, then the codec announcement block.
    """

    def __init__(
        self,
        conn,
        endpoint_id: bytes,
        codec: str = "h264",
        announce_size: int = 12,
        name: str = "kymux",
    ):
        super().__init__(conn, name)
        if len(endpoint_id) not in (2, 8):
            raise ConfigError(f"endpoint id must be 2 or 8 bytes, got {len(endpoint_id)}")
        self.__endpoint_id = bytes(endpoint_id)
        self.__announcement = codec_announcement(codec, announce_size)
        self.__sync: Optional[bytes] = None

    @property
    def sync_byte(self) -> Optional[bytes]:
        return self.__sync

    @measure_latency
    def handshake(self) -> None:
        self._ready = True
        self._send(self.__endpoint_id)

        try:
            self.__sync = self._conn.recv(SYNC_BYTE_COUNT)
        except OSError as e:
            raise RelayConnectionError(f"[{self._name}] sync byte read failed: {e}") from e
        if not self.__sync:
            raise RelayConnectionError(f"[{self._name}] connection closed before sync byte")

        self._send(self.__announcement)
        self._logger.info(
            "[%s] Endpoint %s selected, codec announced (%d bytes)",
            self._name, self.__endpoint_id.hex(), len(self.__announcement),
        )


class RawChannelSink(TransportSink):
    """Channel-multiplexed raw link: no handshake, channel id before each header."""

    def __init__(self, conn, channel_id: int = 0, name: str = "raw"):
        super().__init__(conn, name)
        self.__prefix = channel_id.to_bytes(CHANNEL_ID_SIZE, "big")

    def write_header(self, header: bytes) -> None:
        self._send(self.__prefix + header)
