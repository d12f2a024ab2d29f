from argparse import ArgumentParser
import logging
import signal
import sys

from kymux_relay.errors import ConfigError, RelayError
from kymux_relay.ingestion.relay_factory import VARIANTS, RelayManager, build_config
from kymux_relay.utils.logger import setup_logger
from kymux_relay.utils.utils import load_yaml


def build_arg_parser() -> ArgumentParser:
    arg_parser = ArgumentParser(description="Relay a recorded media stream to a kymux destination")
    arg_parser.add_argument(
        "source", nargs="?", default=None, help="Recorded stream file, or tcp://host:port to listen on"
    )
    arg_parser.add_argument(
        "destination", nargs="?", default=None, help="kymux://ip:port/<hex endpoint> or tcp://ip:port"
    )
    arg_parser.add_argument(
        "--config", type=str, default=None, help="Path to relay configuration YAML file"
    )
    arg_parser.add_argument("--variant", choices=sorted(VARIANTS), default=None)
    arg_parser.add_argument("--codec", type=str, default=None, help="Codec tag announced to kymux")
    arg_parser.add_argument("--announce-size", type=int, default=None)
    arg_parser.add_argument("--endpoint-bits", type=int, choices=(16, 64), default=None)
    arg_parser.add_argument("--pacing", choices=("origin", "absolute"), default=None)
    arg_parser.add_argument("--header", choices=("reencode", "passthrough"), default=None)
    arg_parser.add_argument("--read-policy", choices=("lenient", "strict"), default=None)
    arg_parser.add_argument(
        "--progress-endpoint", type=str, default=None, help="ZeroMQ PUB endpoint for progress records"
    )
    arg_parser.add_argument("--quiet", action="store_true", help="Do not print the progress line")
    arg_parser.add_argument("--log-level", type=str, default="INFO")
    return arg_parser


def merge_config(args, file_cfg: dict) -> dict:
    relay_cfg = file_cfg.get("relay") or {}
    if not isinstance(relay_cfg, dict):
        raise ConfigError("Expected a mapping under 'relay:' in the config file")
    data = dict(relay_cfg)
    overrides = {
        "source": args.source,
        "destination": args.destination,
        "variant": args.variant,
        "codec": args.codec,
        "announce_size": args.announce_size,
        "endpoint_id_bits": args.endpoint_bits,
        "pacing": args.pacing,
        "header_policy": args.header,
        "read_policy": args.read_policy,
        "progress_endpoint": args.progress_endpoint,
    }
    for key, value in overrides.items():
        if value is not None:
            data[key] = value
    return data


def print_progress(header, stats):
    print(f"\rStreaming pts={header.pts}", end="", flush=True)


def main(argv=None) -> int:
    args = build_arg_parser().parse_args(argv)

    logger = setup_logger("kymux-relay", level=getattr(logging, args.log_level.upper(), logging.INFO))

    try:
        config = build_config(merge_config(args, load_yaml(args.config)))
        manager = RelayManager(config, reporter=None if args.quiet else print_progress)
    except (RelayError, FileNotFoundError) as e:
        logger.error("%s", e)
        return 1

    def handle_sig(signum, frame):
        logger.info("Received signal %s → shutting down ...", signum)
        manager.stop()
        # blocking I/O never sees the stop event, only a pacing wait does
        if not manager.pacing:
            raise KeyboardInterrupt

    logger.info(
        "Relaying %s → %s (variant=%s, pacing=%s)",
        config.source, config.destination, manager.config.variant, manager.config.pacing.value,
    )

    signal.signal(signal.SIGINT, handle_sig)
    signal.signal(signal.SIGTERM, handle_sig)

    try:
        stats = manager.start()
    except KeyboardInterrupt:
        if not args.quiet:
            print()
        logger.info("Relay interrupted")
        return 130
    except (RelayError, OSError) as e:
        if not args.quiet:
            print()
        logger.error("Relay failed: %s", e)
        return 1

    if not args.quiet:
        print("\rComplete")
    if stats["cancelled"]:
        logger.info("Relay interrupted after %d packets", stats["packets_forwarded"])
        return 130

    logger.info("Relay stopped cleanly")
    return 0


if __name__ == "__main__":
    sys.exit(main())
