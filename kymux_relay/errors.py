class RelayError(Exception):
    """Base class for every failure raised by the relay."""


class AddressError(RelayError, ValueError):
    pass


class ConfigError(RelayError, ValueError):
    pass


class RelayConnectionError(RelayError, ConnectionError):
    pass


class MalformedHeader(RelayError, ValueError):
    def __init__(self, got: int, expected: int = 12):
        super().__init__(f"Meta header needs {expected} bytes, got {got}")
        self.got = got
        self.expected = expected


class TruncatedStream(RelayError):
    """Partial header read under the strict read policy."""

    def __init__(self, got: int, expected: int):
        super().__init__(f"Stream truncated: read {got} of {expected} bytes")
        self.got = got
        self.expected = expected


class TransportWriteError(RelayError):
    pass
