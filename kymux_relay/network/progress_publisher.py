from typing import Any, Dict, Optional
import logging
import time
import zmq

from kymux_relay.schemas.metadata import MetaHeader


class ZmqProgressPublisher:
    """Publish one progress record per forwarded packet on a PUB socket."""

    def __init__(self, endpoint: str):
        self.__logger = logging.getLogger(__name__)
        self.__endpoint = endpoint
        self.__ctx: Optional[zmq.Context] = None
        self.__pub_socket: Optional[zmq.Socket] = None

    def initialize_runtime(self):
        self.__ctx = zmq.Context.instance()
        self.__pub_socket = self.__ctx.socket(zmq.PUB)
        self.__pub_socket.setsockopt(zmq.SNDHWM, 20)
        self.__pub_socket.setsockopt(zmq.LINGER, 50)
        self.__pub_socket.bind(self.__endpoint)
        self.__logger.info("[ZMQ] Progress PUB bound at %s", self.__endpoint)

    def __call__(self, header: MetaHeader, stats: Dict[str, Any]) -> None:
        self.publish(header, stats)

    def publish(self, header: MetaHeader, stats: Dict[str, Any]) -> None:
        if self.__pub_socket is None:
            raise RuntimeError("ZmqProgressPublisher.publish() called before initialize_runtime()")

        message = {
            "pts": header.pts,
            "is_config": header.is_config,
            "is_key_frame": header.is_key_frame,
            "payload_size": header.payload_size,
            "packets_forwarded": stats.get("packets_forwarded", 0),
            "bytes_forwarded": stats.get("bytes_forwarded", 0),
            "ts": time.time(),
        }
        try:
            self.__pub_socket.send_pyobj(message, flags=zmq.NOBLOCK)
        except zmq.Again:
            # no subscriber keeping up; progress is best effort
            self.__logger.debug("[ZMQ] Progress dropped for pts=%d", header.pts)

    def close(self):
        if self.__pub_socket is not None:
            self.__pub_socket.close()
        self.__pub_socket = None
