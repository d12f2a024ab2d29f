"""
Shared fakes for relay tests.

FakeConnection stands in for a connected TCP socket: it serves scripted
``recv`` data and records every ``sendall`` call in order. FakeClock is a
monotonic clock whose ``sleep`` advances time instead of blocking.
"""

import io

import pytest

from kymux_relay.ingestion.header_codec import HeaderCodec
from kymux_relay.schemas.metadata import MetaHeader


class FakeConnection:
    def __init__(self, incoming: bytes = b"", fail_after: int = None):
        self.incoming = bytearray(incoming)
        self.writes = []
        self.events = []
        self.closed = False
        self.fail_after = fail_after

    @property
    def sent(self) -> bytes:
        return b"".join(self.writes)

    def sendall(self, data: bytes):
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            raise BrokenPipeError("peer went away")
        self.writes.append(bytes(data))
        self.events.append(("send", bytes(data)))

    def recv(self, size: int) -> bytes:
        data = bytes(self.incoming[:size])
        del self.incoming[:size]
        self.events.append(("recv", data))
        return data

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float):
        self.now += seconds


def make_packet(pts: int, payload: bytes = b"", config: bool = False, key: bool = False) -> bytes:
    header = MetaHeader(pts=pts, is_config=config, is_key_frame=key, payload_size=len(payload))
    return HeaderCodec.encode(header) + payload


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def stream_file():
    """Factory building an in-memory recorded stream from packet bytes."""

    def _build(*packets: bytes) -> io.BytesIO:
        return io.BytesIO(b"".join(packets))

    return _build
