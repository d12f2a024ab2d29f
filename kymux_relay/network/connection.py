from typing import Tuple
import logging
import socket

from kymux_relay.errors import RelayConnectionError

logger = logging.getLogger(__name__)


def connect_destination(address: Tuple[str, int], timeout: float = 5.0) -> socket.socket:
    host, port = address
    logger.info("Connecting to %s:%d ...", host, port)
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise RelayConnectionError(f"Cannot connect to {host}:{port}: {e}") from e

    # blocking from here on, writes stall the relay instead of timing out
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    logger.info("Connected to %s:%d", host, port)
    return sock


def accept_upstream(address: Tuple[str, int]) -> socket.socket:
    """Listen on ``address`` and return the first accepted connection."""
    host, port = address
    try:
        server = socket.create_server((host, port))
    except OSError as e:
        raise RelayConnectionError(f"Cannot listen on {host}:{port}: {e}") from e

    with server:
        logger.info("Waiting for upstream on %s:%d ...", host, port)
        try:
            conn, peer = server.accept()
        except OSError as e:
            raise RelayConnectionError(f"Accept failed on {host}:{port}: {e}") from e

    logger.info("Upstream connected from %s:%d", peer[0], peer[1])
    return conn
