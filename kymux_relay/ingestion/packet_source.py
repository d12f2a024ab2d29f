from pathlib import Path
from typing import BinaryIO, Iterator, Union
import logging
import socket

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class PacketSource:
    """Sequential byte reader with "exactly N bytes or end of stream" reads.

    Subclasses implement ``_read(size)`` which returns at most ``size`` bytes
    and an empty result only at end of stream.
    """

    def __init__(self, name: str):
        self.__name = name
        self.__bytes_read = 0
        self.__eof = False

    @property
    def name(self) -> str:
        return self.__name

    @property
    def bytes_read(self) -> int:
        return self.__bytes_read

    @property
    def at_eof(self) -> bool:
        return self.__eof

    def read_exact(self, size: int) -> bytes:
        """Read ``size`` bytes; a shorter result means the stream ended."""
        buf = bytearray()
        while len(buf) < size and not self.__eof:
            chunk = self._read(size - len(buf))
            if not chunk:
                self.__eof = True
                break
            buf += chunk
        self.__bytes_read += len(buf)
        return bytes(buf)

    def iter_payload(self, size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield at most ``size`` bytes in chunks, stopping early at EOF."""
        remaining = size
        while remaining > 0 and not self.__eof:
            chunk = self._read(min(chunk_size, remaining))
            if not chunk:
                self.__eof = True
                return
            self.__bytes_read += len(chunk)
            remaining -= len(chunk)
            yield chunk

    def _read(self, size: int) -> bytes:
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class FileSource(PacketSource):
    def __init__(self, file: Union[str, Path, BinaryIO]):
        if isinstance(file, (str, Path)):
            path = Path(file)
            logger.info("Opening recorded stream: %s", path)
            self.__file = path.open("rb")
            self.__owned = True
            name = str(path)
        else:
            self.__file = file
            self.__owned = False
            name = getattr(file, "name", repr(file))
        super().__init__(name)

    def _read(self, size: int) -> bytes:
        return self.__file.read(size)

    def close(self):
        if self.__owned and not self.__file.closed:
            self.__file.close()


class SocketSource(PacketSource):
    def __init__(self, sock: socket.socket, name: str = None):
        if name is None:
            try:
                name = "%s:%s" % sock.getpeername()[:2]
            except (OSError, AttributeError):
                name = "socket"
        super().__init__(name)
        self.__sock = sock

    def _read(self, size: int) -> bytes:
        return self.__sock.recv(size)

    def close(self):
        try:
            self.__sock.close()
        except OSError as e:
            logger.debug("[%s] close failed: %s", self.name, e)
