"""Tests for the relay loop state machine."""

import io
import threading

import pytest

from conftest import FakeConnection, make_packet
from kymux_relay.errors import TransportWriteError, TruncatedStream
from kymux_relay.ingestion.header_codec import HeaderCodec
from kymux_relay.ingestion.pacer import Pacer
from kymux_relay.ingestion.packet_source import FileSource
from kymux_relay.ingestion.relay_worker import RelayState, RelayWorker
from kymux_relay.network.transport_sink import KymuxEndpointSink, RawChannelSink
from kymux_relay.schemas.relay_config import HeaderPolicy, PacingMode, ReadPolicy

HANDSHAKE = b"\x00\x01" + b"h264" + bytes(8)


def kymux_sink(conn=None):
    conn = conn or FakeConnection(incoming=b"\x01")
    return KymuxEndpointSink(conn, b"\x00\x01"), conn


def make_worker(data: bytes, fake_clock, sink=None, pacing=PacingMode.ORIGIN_RELATIVE, **kwargs):
    if sink is None:
        sink, conn = kymux_sink()
    else:
        conn = None
    pacer = Pacer(pacing, clock=fake_clock, sleep=fake_clock.sleep)
    worker = RelayWorker(FileSource(io.BytesIO(data)), sink, pacer, **kwargs)
    return worker, conn


class TestRelayLoop:
    def test_empty_source_ends_cleanly(self, fake_clock):
        worker, conn = make_worker(b"", fake_clock)

        stats = worker.run()

        assert worker.state is RelayState.DONE
        assert conn.sent == HANDSHAKE
        assert stats["packets_forwarded"] == 0
        assert not stats["truncated"]

    def test_forwards_reencoded_headers_and_payloads(self, fake_clock):
        config = make_packet(0, b"SPS-PPS", config=True)
        key = make_packet(1000, b"frame-1", key=True)
        delta = make_packet(34_333, b"frame-2")
        worker, conn = make_worker(config + key + delta, fake_clock)

        stats = worker.run()

        expected = b"".join(
            HeaderCodec.reencode(p[:12]) + p[12:] for p in (config, key, delta)
        )
        assert conn.sent == HANDSHAKE + expected
        assert stats["packets_forwarded"] == 3
        assert stats["config_packets"] == 1
        assert stats["key_frames"] == 1
        assert stats["last_pts"] == 34_333
        assert stats["bytes_forwarded"] == len(expected)

    def test_passthrough_header_policy(self, fake_clock):
        packet = make_packet(5, b"abc", key=True)
        worker, conn = make_worker(packet, fake_clock, header_policy=HeaderPolicy.PASSTHROUGH)

        worker.run()

        assert conn.sent == HANDSHAKE + packet

    def test_header_and_payload_not_interleaved(self, fake_clock):
        payload = b"x" * 10
        worker, conn = make_worker(make_packet(0, payload), fake_clock, chunk_size=4)

        worker.run()

        assert conn.writes[2:] == [
            HeaderCodec.reencode(make_packet(0, payload)[:12]),
            b"xxxx",
            b"xxxx",
            b"xx",
        ]

    def test_origin_relative_timing(self, fake_clock):
        data = make_packet(1000, b"a") + make_packet(1000, b"b") + make_packet(5000, b"c")
        emitted = []
        worker, _ = make_worker(
            data, fake_clock, reporter=lambda header, stats: emitted.append(fake_clock.now)
        )

        worker.run()

        start = worker.session.start
        assert emitted[0] - start == 0
        assert emitted[1] - start == 0
        assert emitted[2] - emitted[1] >= 0.004

    def test_config_packets_never_paced(self, fake_clock):
        data = make_packet(90_000_000, b"cfg", config=True) + make_packet(90_000_000, b"cfg", config=True)
        worker, _ = make_worker(data, fake_clock, pacing=PacingMode.ABSOLUTE)

        worker.run()

        assert fake_clock.sleeps == []
        assert worker.session.pts_origin is None

    def test_late_packets_counted(self, fake_clock):
        data = make_packet(0, b"a") + make_packet(1000, b"b")
        worker, _ = make_worker(
            data, fake_clock, reporter=lambda header, stats: fake_clock.advance(0.5)
        )

        stats = worker.run()

        assert stats["late_packets"] == 1
        assert fake_clock.sleeps == []

    def test_truncated_payload_forwards_available_bytes(self, fake_clock):
        first = make_packet(0, b"complete")
        header = HeaderCodec.encode(HeaderCodec.decode(make_packet(40_000, b"x" * 100)))
        data = first + header + b"x" * 30
        worker, conn = make_worker(data, fake_clock)

        stats = worker.run()

        assert conn.sent.endswith(HeaderCodec.reencode(header) + b"x" * 30)
        assert stats["truncated"]
        assert stats["packets_forwarded"] == 1
        assert worker.state is RelayState.DONE

    def test_truncated_payload_stops_before_next_pacing(self, fake_clock):
        header = make_packet(0, b"x" * 50)[:12]
        worker, _ = make_worker(header + b"x" * 10, fake_clock, pacing=PacingMode.ABSOLUTE)

        worker.run()

        assert fake_clock.sleeps == []


class TestReadPolicy:
    def test_lenient_partial_header_is_end_of_stream(self, fake_clock):
        data = make_packet(0, b"ok") + b"\x00" * 5
        worker, conn = make_worker(data, fake_clock, read_policy=ReadPolicy.LENIENT)

        stats = worker.run()

        assert stats["packets_forwarded"] == 1
        assert stats["truncated"]
        assert conn.sent.endswith(b"ok")

    def test_strict_partial_header_raises(self, fake_clock):
        data = make_packet(0, b"ok") + b"\x00" * 5
        worker, conn = make_worker(data, fake_clock, read_policy=ReadPolicy.STRICT)

        with pytest.raises(TruncatedStream) as exc:
            worker.run()
        assert exc.value.got == 5
        assert conn.sent.endswith(b"ok")

    def test_strict_empty_source_is_clean(self, fake_clock):
        worker, _ = make_worker(b"", fake_clock, read_policy=ReadPolicy.STRICT)
        assert worker.run()["packets_forwarded"] == 0


class TestFailures:
    def test_write_failure_propagates(self, fake_clock):
        sink, conn = kymux_sink(FakeConnection(incoming=b"\x01", fail_after=3))
        data = make_packet(0, b"a") + make_packet(10, b"b")
        worker, _ = make_worker(data, fake_clock, sink=sink)

        with pytest.raises(TransportWriteError):
            worker.run()
        assert len(conn.writes) == 3

    def test_stop_event_before_run(self, fake_clock):
        stop = threading.Event()
        stop.set()
        worker, conn = make_worker(make_packet(0, b"a"), fake_clock, stop_event=stop)

        stats = worker.run()

        assert stats["cancelled"]
        assert conn.sent == HANDSHAKE

    def test_stop_event_between_packets(self, fake_clock):
        stop = threading.Event()
        data = make_packet(0, b"a") + make_packet(10, b"b")
        worker, _ = make_worker(
            data, fake_clock, stop_event=stop, reporter=lambda header, stats: stop.set()
        )

        stats = worker.run()

        assert stats["cancelled"]
        assert stats["packets_forwarded"] == 1


def test_raw_channel_sink_framing(fake_clock):
    conn = FakeConnection()
    packet = make_packet(0, b"payload")
    worker, _ = make_worker(
        packet, fake_clock, sink=RawChannelSink(conn), header_policy=HeaderPolicy.PASSTHROUGH
    )

    worker.run()

    assert conn.sent == bytes(4) + packet
