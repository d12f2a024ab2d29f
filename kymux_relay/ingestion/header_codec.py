import struct

from kymux_relay.errors import MalformedHeader
from kymux_relay.schemas.metadata import MetaHeader, PTS_MASK
from kymux_relay.schemas.relay_config import HeaderPolicy

# The "meta" header length is 12 bytes:
# [. . . . . . . .|. . . .]. . . . . . . . . . . . . . . ...
#  <-------------> <-----> <-----------------------------...
#        PTS        packet        raw packet
#                    size
#
# The most significant bits of the PTS word carry the packet flags:
#
#  byte 0   byte 1   ...   byte 7
# CK...... ........ ... ........
# ^^<-------------------------->
# ||            PTS
# | `- key frame
#  `-- config packet
HEADER_SIZE = 12
HEADER_STRUCT = struct.Struct(">QI")

FLAG_CONFIG = 1 << 63
FLAG_KEY_FRAME = 1 << 62


class HeaderCodec:
    @staticmethod
    def decode(data: bytes) -> MetaHeader:
        if len(data) < HEADER_SIZE:
            raise MalformedHeader(len(data), HEADER_SIZE)

        pts_and_flags, size = HEADER_STRUCT.unpack_from(data)
        return MetaHeader(
            pts=pts_and_flags & PTS_MASK,
            is_config=bool(pts_and_flags & FLAG_CONFIG),
            is_key_frame=bool(pts_and_flags & FLAG_KEY_FRAME),
            payload_size=size,
        )

    @staticmethod
    def encode(header: MetaHeader) -> bytes:
        pts_and_flags = header.pts & PTS_MASK
        if header.is_config:
            pts_and_flags |= FLAG_CONFIG
        if header.is_key_frame:
            pts_and_flags |= FLAG_KEY_FRAME
        return HEADER_STRUCT.pack(pts_and_flags, header.payload_size)

    @staticmethod
    def reencode(data: bytes) -> bytes:
        """Rewrite byte 0 into the destination multiplexer layout.

        The destination always sets the top bit and moves the two flag bits
        down by one. The low 5 bits (top of the PTS) are kept; bytes 1..11
        are copied unchanged.
        """
        if len(data) < HEADER_SIZE:
            raise MalformedHeader(len(data), HEADER_SIZE)

        b0 = data[0]
        out = bytearray(data[:HEADER_SIZE])
        out[0] = 0x80 | ((b0 & 0xC0) >> 1) | (b0 & 0x1F)
        return bytes(out)

    @staticmethod
    def apply_policy(data: bytes, policy: HeaderPolicy) -> bytes:
        if policy is HeaderPolicy.REENCODE:
            return HeaderCodec.reencode(data)
        return bytes(data[:HEADER_SIZE])

