from ipaddress import IPv4Address, IPv6Address, ip_address
from string import hexdigits
from typing import Literal, Tuple, Union
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, model_validator

from kymux_relay.errors import AddressError

KYMUX_SCHEME = "kymux"
TCP_SCHEME = "tcp"


class KymuxEndpointAddress(BaseModel):
    ip: Union[IPv4Address, IPv6Address]
    port: int = Field(ge=1, le=65535)
    endpoint_id: int = Field(ge=0)
    endpoint_id_bits: Literal[16, 64] = 16

    @model_validator(mode="after")
    def _check_endpoint_width(self):
        if self.endpoint_id >= 1 << self.endpoint_id_bits:
            raise ValueError(
                f"endpoint id {self.endpoint_id:#x} does not fit in {self.endpoint_id_bits} bits"
            )
        return self

    @property
    def socket_address(self) -> Tuple[str, int]:
        return str(self.ip), self.port

    def endpoint_id_bytes(self) -> bytes:
        return self.endpoint_id.to_bytes(self.endpoint_id_bits // 8, "big")

    def __str__(self):
        host = f"[{self.ip}]" if self.ip.version == 6 else str(self.ip)
        return f"{KYMUX_SCHEME}://{host}:{self.port}/{self.endpoint_id:x}"


def _split(url: str, scheme: str):
    parts = urlsplit(url)
    if parts.scheme != scheme:
        raise AddressError(f"Wrong scheme in url: {url}")

    host = parts.hostname
    if not host:
        raise AddressError(f"Missing host in url: {url}")

    try:
        port = parts.port
    except ValueError:
        raise AddressError(f"Invalid port in url: {url}") from None
    if port is None:
        raise AddressError(f"Missing port in url: {url}")
    if port == 0:
        raise AddressError(f"Invalid port in url: {url}")

    return parts, host, port


def parse_kymux_url(url: str, endpoint_id_bits: int = 16) -> KymuxEndpointAddress:
    """Parse ``kymux://<ip>:<port>/<hex endpoint id>``."""
    parts, host, port = _split(url, KYMUX_SCHEME)

    try:
        ip = ip_address(host)
    except ValueError:
        raise AddressError(f"Invalid IP in url: {url}") from None

    # the first char is '/'
    path = parts.path[1:]
    if not path:
        raise AddressError(f"Empty path in url: {url}")

    if not all(c in hexdigits for c in path):
        raise AddressError(f"Invalid endpoint: {path}")
    endpoint_id = int(path, 16)

    if endpoint_id_bits not in (16, 64):
        raise AddressError(f"Unsupported endpoint id width: {endpoint_id_bits}")
    if endpoint_id >= 1 << endpoint_id_bits:
        raise AddressError(f"Invalid endpoint: {path} (wider than {endpoint_id_bits} bits)")

    return KymuxEndpointAddress(
        ip=ip,
        port=port,
        endpoint_id=endpoint_id,
        endpoint_id_bits=endpoint_id_bits,
    )


def parse_tcp_address(url: str) -> Tuple[str, int]:
    """Parse ``tcp://<host>:<port>`` into a socket address tuple."""
    _, host, port = _split(url, TCP_SCHEME)
    return host, port
