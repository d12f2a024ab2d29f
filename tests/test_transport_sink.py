"""Tests for the destination sinks and their handshakes."""

import pytest

from conftest import FakeConnection
from kymux_relay.errors import ConfigError, RelayConnectionError, TransportWriteError
from kymux_relay.network.transport_sink import (
    KymuxEndpointSink,
    RawChannelSink,
    codec_announcement,
)


class TestCodecAnnouncement:
    def test_padded_with_zero_bytes(self):
        assert codec_announcement("h264", 12) == b"h264" + bytes(8)
        assert codec_announcement("opus", 16) == b"opus" + bytes(12)

    def test_tag_too_long(self):
        with pytest.raises(ConfigError):
            codec_announcement("x" * 13, 12)


class TestKymuxEndpointSink:
    def test_handshake_byte_sequence(self):
        conn = FakeConnection(incoming=b"\x01")
        sink = KymuxEndpointSink(conn, (0x1A2B).to_bytes(2, "big"), codec="h264", announce_size=12)

        sink.handshake()

        assert conn.events == [
            ("send", b"\x1a\x2b"),
            ("recv", b"\x01"),
            ("send", b"h264" + bytes(8)),
        ]
        assert sink.sync_byte == b"\x01"
        assert sink.bytes_written == 14

    def test_wide_endpoint_id(self):
        conn = FakeConnection(incoming=b"\x00")
        endpoint = (0x0123456789ABCDEF).to_bytes(8, "big")
        sink = KymuxEndpointSink(conn, endpoint, codec="opus", announce_size=16)

        sink.handshake()

        assert conn.writes == [endpoint, b"opus" + bytes(12)]

    def test_reads_exactly_one_sync_byte(self):
        conn = FakeConnection(incoming=b"\x01\x02\x03")
        KymuxEndpointSink(conn, b"\x00\x01").handshake()
        assert bytes(conn.incoming) == b"\x02\x03"

    def test_peer_closed_before_sync(self):
        conn = FakeConnection(incoming=b"")
        sink = KymuxEndpointSink(conn, b"\x00\x01")

        with pytest.raises(RelayConnectionError):
            sink.handshake()
        # nothing after the endpoint id
        assert conn.writes == [b"\x00\x01"]

    def test_data_after_handshake(self):
        conn = FakeConnection(incoming=b"\x01")
        sink = KymuxEndpointSink(conn, b"\x00\x01")
        sink.handshake()

        sink.write_header(b"H" * 12)
        sink.write_payload(b"payload")

        assert conn.writes[-2:] == [b"H" * 12, b"payload"]

    def test_write_before_handshake_rejected(self):
        sink = KymuxEndpointSink(FakeConnection(), b"\x00\x01")
        with pytest.raises(RuntimeError):
            sink.write_header(b"H" * 12)

    def test_invalid_endpoint_width(self):
        with pytest.raises(ConfigError):
            KymuxEndpointSink(FakeConnection(), b"\x00\x00\x01")

    def test_write_failure(self):
        conn = FakeConnection(incoming=b"\x01", fail_after=2)
        sink = KymuxEndpointSink(conn, b"\x00\x01")
        sink.handshake()

        with pytest.raises(TransportWriteError):
            sink.write_header(b"H" * 12)


class TestRawChannelSink:
    def test_no_handshake_traffic(self):
        conn = FakeConnection()
        sink = RawChannelSink(conn)
        sink.handshake()
        assert conn.events == []

    def test_channel_prefix_before_each_header(self):
        conn = FakeConnection()
        sink = RawChannelSink(conn)
        sink.handshake()

        sink.write_header(b"H" * 12)
        sink.write_payload(b"abc")
        sink.write_header(b"K" * 12)

        assert conn.writes == [bytes(4) + b"H" * 12, b"abc", bytes(4) + b"K" * 12]

    def test_non_zero_channel(self):
        conn = FakeConnection()
        sink = RawChannelSink(conn, channel_id=3)
        sink.handshake()
        sink.write_header(b"H" * 12)
        assert conn.writes[0][:4] == b"\x00\x00\x00\x03"

    def test_close(self):
        conn = FakeConnection()
        sink = RawChannelSink(conn)
        sink.close()
        sink.close()
        assert conn.closed
