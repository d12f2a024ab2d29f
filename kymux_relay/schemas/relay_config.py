from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class PacingMode(str, Enum):
    ORIGIN_RELATIVE = "origin"
    ABSOLUTE = "absolute"


class SinkFraming(str, Enum):
    ENDPOINT = "endpoint"
    RAW_CHANNEL = "raw"


class SourceKind(str, Enum):
    FILE = "file"
    SOCKET = "socket"


class HeaderPolicy(str, Enum):
    REENCODE = "reencode"
    PASSTHROUGH = "passthrough"


class ReadPolicy(str, Enum):
    # any header shortfall ends the stream silently
    LENIENT = "lenient"
    # a partial header is reported as TruncatedStream
    STRICT = "strict"


class RelayConfig(BaseModel):
    variant: str = "file-to-kymux"
    source: str
    destination: str

    source_kind: Optional[SourceKind] = None
    framing: Optional[SinkFraming] = None
    pacing: Optional[PacingMode] = None
    header_policy: Optional[HeaderPolicy] = None
    read_policy: ReadPolicy = ReadPolicy.LENIENT

    codec: str = "h264"
    announce_size: Optional[int] = Field(default=None, ge=4, le=64)
    endpoint_id_bits: Optional[Literal[16, 64]] = None
    channel_id: int = Field(default=0, ge=0, le=0xFFFFFFFF)

    chunk_size: int = Field(default=64 * 1024, ge=1)
    connect_timeout: float = Field(default=5.0, gt=0)
    progress_endpoint: Optional[str] = None

    model_config = {
        "extra": "forbid"
    }

    @field_validator("codec")
    @classmethod
    def _ascii_codec(cls, value: str) -> str:
        if not value or not value.isascii():
            raise ValueError(f"codec tag must be non-empty ASCII, got {value!r}")
        return value
