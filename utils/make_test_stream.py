from argparse import ArgumentParser
import os
import yaml

from kymux_relay.ingestion.header_codec import HeaderCodec
from kymux_relay.schemas.metadata import MetaHeader


def write_stream(path: str, packets: int, fps: int, size: int, gop: int) -> int:
    frame_us = 1_000_000 // fps
    written = 0
    with open(path, "wb") as f:
        config = b"\x00\x00\x00\x01" + os.urandom(16)
        f.write(HeaderCodec.encode(MetaHeader(pts=0, is_config=True, payload_size=len(config))))
        f.write(config)
        written += 1

        for i in range(packets):
            header = MetaHeader(pts=i * frame_us, is_key_frame=(i % gop == 0), payload_size=size)
            f.write(HeaderCodec.encode(header))
            f.write(os.urandom(size))
            written += 1
    return written


if __name__ == "__main__":
    arg_parser = ArgumentParser(description="Generate a synthetic recorded stream for relay tests")
    arg_parser.add_argument("output", type=str, help="Stream file to write")
    arg_parser.add_argument("--packets", type=int, default=300)
    arg_parser.add_argument("--fps", type=int, default=30)
    arg_parser.add_argument("--size", type=int, default=4096, help="Payload bytes per packet")
    arg_parser.add_argument("--gop", type=int, default=30, help="Key frame interval")
    arg_parser.add_argument(
        "--relay_config", type=str, default=None, help="Also write a relay YAML config pointing at the stream"
    )
    arg_parser.add_argument("--destination", type=str, default="kymux://127.0.0.1:5000/1")
    args = arg_parser.parse_args()

    count = write_stream(args.output, args.packets, args.fps, args.size, args.gop)
    print(f"Wrote {count} packets to {args.output}")

    if args.relay_config:
        cfg = {"relay": {"variant": "file-to-kymux", "source": args.output, "destination": args.destination}}
        with open(args.relay_config, "w") as f:
            yaml.safe_dump(cfg, f, sort_keys=False)
        print(f"Wrote relay config to {args.relay_config}")
