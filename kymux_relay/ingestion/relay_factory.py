from dataclasses import dataclass
from typing import List, Optional
import logging
import threading

from pydantic import ValidationError

from kymux_relay.errors import AddressError, ConfigError
from kymux_relay.ingestion.pacer import Pacer
from kymux_relay.ingestion.packet_source import FileSource, PacketSource, SocketSource
from kymux_relay.ingestion.relay_worker import ProgressReporter, RelayState, RelayWorker
from kymux_relay.network.connection import accept_upstream, connect_destination
from kymux_relay.network.progress_publisher import ZmqProgressPublisher
from kymux_relay.network.transport_sink import (
    KymuxEndpointSink,
    RawChannelSink,
    TransportSink,
    codec_announcement,
)
from kymux_relay.schemas.address import parse_kymux_url, parse_tcp_address
from kymux_relay.schemas.relay_config import (
    HeaderPolicy,
    PacingMode,
    RelayConfig,
    SinkFraming,
    SourceKind,
)


@dataclass(frozen=True)
class VariantPreset:
    source_kind: SourceKind
    framing: SinkFraming
    pacing: PacingMode
    header_policy: HeaderPolicy
    endpoint_id_bits: int = 16
    announce_size: int = 12


VARIANTS = {
    "file-to-kymux": VariantPreset(
        SourceKind.FILE, SinkFraming.ENDPOINT, PacingMode.ORIGIN_RELATIVE, HeaderPolicy.REENCODE,
    ),
    "socket-to-kymux": VariantPreset(
        SourceKind.SOCKET, SinkFraming.ENDPOINT, PacingMode.ORIGIN_RELATIVE, HeaderPolicy.REENCODE,
    ),
    "file-to-raw": VariantPreset(
        SourceKind.FILE, SinkFraming.RAW_CHANNEL, PacingMode.ABSOLUTE, HeaderPolicy.PASSTHROUGH,
    ),
    "file-to-kymux-wide": VariantPreset(
        SourceKind.FILE, SinkFraming.ENDPOINT, PacingMode.ORIGIN_RELATIVE, HeaderPolicy.REENCODE,
        endpoint_id_bits=64, announce_size=16,
    ),
}


def build_config(data: dict) -> RelayConfig:
    try:
        return resolve_config(RelayConfig(**data))
    except ValidationError as e:
        raise ConfigError(f"Invalid relay configuration: {e}") from e


def resolve_config(config: RelayConfig) -> RelayConfig:
    """Fill every field left unset with the variant preset."""
    preset = VARIANTS.get(config.variant)
    if preset is None:
        raise ConfigError(
            f"Unknown variant {config.variant!r}, expected one of: {', '.join(VARIANTS)}"
        )

    updates = {}
    for field in ("source_kind", "framing", "pacing", "header_policy", "endpoint_id_bits", "announce_size"):
        if getattr(config, field) is None:
            updates[field] = getattr(preset, field)
    return config.model_copy(update=updates)


class RelayManager:
    """Owns the connections of one relay run and wires the pipeline together."""

    def __init__(
        self,
        config: RelayConfig,
        stop_event: Optional[threading.Event] = None,
        reporter: Optional[ProgressReporter] = None,
        connect=connect_destination,
        accept=accept_upstream,
    ):
        self.__logger = logging.getLogger(__name__)
        self.__config = resolve_config(config)
        self.__stop_event = stop_event or threading.Event()
        self.__reporter = reporter
        self.__connect = connect
        self.__accept = accept
        self.__publisher: Optional[ZmqProgressPublisher] = None
        self.__worker: Optional[RelayWorker] = None

        # addresses are validated before any I/O happens
        cfg = self.__config
        if cfg.framing is SinkFraming.ENDPOINT:
            self.__kymux_addr = parse_kymux_url(cfg.destination, cfg.endpoint_id_bits)
            self.__dest_addr = self.__kymux_addr.socket_address
            codec_announcement(cfg.codec, cfg.announce_size)
        else:
            self.__kymux_addr = None
            self.__dest_addr = parse_tcp_address(cfg.destination)

        if cfg.source_kind is SourceKind.SOCKET:
            self.__listen_addr = parse_tcp_address(cfg.source)
        else:
            self.__listen_addr = None

        if cfg.progress_endpoint is not None and not cfg.progress_endpoint.startswith(("tcp://", "ipc://", "inproc://")):
            raise AddressError(f"Invalid progress endpoint: {cfg.progress_endpoint}")

    @property
    def config(self) -> RelayConfig:
        return self.__config

    @property
    def stop_event(self) -> threading.Event:
        return self.__stop_event

    @property
    def pacing(self) -> bool:
        """True while the relay sleeps until the next packet is due."""
        return self.__worker is not None and self.__worker.state is RelayState.PACE

    def start(self) -> dict:
        source = None
        sink = None
        try:
            source = self.__open_source()
            sink = self.__open_sink()
            self.__worker = self.build_worker(source, sink)
            return self.__worker.run()
        finally:
            self.__worker = None
            if sink is not None:
                sink.close()
            if source is not None:
                source.close()
            if self.__publisher is not None:
                self.__publisher.close()
                self.__publisher = None

    def stop(self):
        self.__logger.info("Stopping relay ...")
        self.__stop_event.set()

    def build_worker(self, source: PacketSource, sink: TransportSink) -> RelayWorker:
        cfg = self.__config
        return RelayWorker(
            source,
            sink,
            Pacer(cfg.pacing),
            header_policy=cfg.header_policy,
            read_policy=cfg.read_policy,
            reporter=self.__build_reporter(),
            stop_event=self.__stop_event,
            chunk_size=cfg.chunk_size,
        )

    def __open_source(self) -> PacketSource:
        if self.__listen_addr is not None:
            return SocketSource(self.__accept(self.__listen_addr))
        return FileSource(self.__config.source)

    def __open_sink(self) -> TransportSink:
        cfg = self.__config
        conn = self.__connect(self.__dest_addr, cfg.connect_timeout)
        try:
            if self.__kymux_addr is not None:
                return KymuxEndpointSink(
                    conn,
                    self.__kymux_addr.endpoint_id_bytes(),
                    codec=cfg.codec,
                    announce_size=cfg.announce_size,
                    name=str(self.__kymux_addr),
                )
            host, port = self.__dest_addr
            return RawChannelSink(conn, channel_id=cfg.channel_id, name=f"{host}:{port}")
        except Exception:
            conn.close()
            raise

    def __build_reporter(self) -> Optional[ProgressReporter]:
        reporters: List[ProgressReporter] = []
        if self.__reporter is not None:
            reporters.append(self.__reporter)
        if self.__config.progress_endpoint and self.__publisher is None:
            self.__publisher = ZmqProgressPublisher(self.__config.progress_endpoint)
            self.__publisher.initialize_runtime()
        if self.__publisher is not None:
            reporters.append(self.__publisher)

        if not reporters:
            return None
        if len(reporters) == 1:
            return reporters[0]

        def fan_out(header, stats):
            for report in reporters:
                report(header, stats)

        return fan_out
