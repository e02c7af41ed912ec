"""Command-line entry point.

    faceseq detect --file hdfs://master:8020/images/part-0.seq
    faceseq detect --dir s3n://bucket/images/ --ext seq --target eye
    faceseq pack images.seq a.jpg b.ppm --codec deflate --block
    faceseq pack frames.seq a.jpg b.png --to-ppm
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from faceseq.batch.driver import BatchDriver
from faceseq.config import get_settings
from faceseq.errors import DecodeError, UnsupportedFormat
from faceseq.imaging.decoders import decoder_for
from faceseq.imaging.formats import classify
from faceseq.imaging.ppm import encode_ppm
from faceseq.ingest.sequence_file import Codec, SequenceFileWriter
from faceseq.ml.cascade_manager import CascadeManager, DetectionTarget
from faceseq.ml.detector import HaarCascadeDetector

if TYPE_CHECKING:
    from collections.abc import Sequence

    from faceseq.config import Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="faceseq", description=__doc__.splitlines()[0] if __doc__ else None)
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    detect = commands.add_parser("detect", help="Count faces or eyes in SequenceFile containers")
    source = detect.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", action="append", metavar="URI", help="Container URI (repeatable)")
    source.add_argument("--dir", metavar="URI", help="Directory URI holding containers")
    detect.add_argument("--ext", help="Container file suffix, required with --dir (e.g. seq)")
    detect.add_argument("--target", choices=[target.value for target in DetectionTarget], default=None)
    detect.set_defaults(handler=_run_detect)

    pack = commands.add_parser("pack", help="Write image files into a SequenceFile container")
    pack.add_argument("output", type=Path)
    pack.add_argument("images", nargs="+", type=Path)
    pack.add_argument("--codec", choices=[codec.value for codec in Codec], default=Codec.NONE.value)
    pack.add_argument("--block", action="store_true", help="Block-compress records (requires a codec)")
    pack.add_argument("--to-ppm", action="store_true", help="Re-encode every image as a binary PPM record")
    pack.set_defaults(handler=_run_pack)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "detect" and args.dir is not None and not args.ext:
        parser.error("--ext is required with --dir")
    if args.command == "pack" and args.block and args.codec == Codec.NONE:
        parser.error("--block requires --codec deflate or gzip")

    settings = get_settings()
    logging.basicConfig(
        level=args.log_level or settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    exit_code: int = args.handler(args, settings)
    return exit_code


def _run_detect(args: argparse.Namespace, settings: Settings) -> int:
    if args.target is not None:
        settings = settings.model_copy(update={"detector_target": args.target})
    locations: list[str] = args.file if args.file else [args.dir]
    extension: str = args.ext or ""

    try:
        cascade_manager = CascadeManager(settings)
        detector = HaarCascadeDetector(settings, cascade_manager)
    except (KeyError, RuntimeError) as exc:
        logger.error("Cannot set up the %s detector: %s", settings.detector_target, exc)
        return EXIT_FAILED
    driver = BatchDriver(settings, detector)

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda _signum, _frame: cancel.set())
    try:
        result = driver.process(locations, extension, cancel)
    finally:
        signal.signal(signal.SIGINT, previous)
        cascade_manager.shutdown()

    logger.info(
        "records=%d outcomes=%d skipped=%d failures=%d %ss=%d",
        result.record_count,
        len(result.outcomes),
        result.skip_count,
        len(result.failures),
        detector.target,
        result.exit_status(),
    )
    if result.cancelled:
        return EXIT_CANCELLED
    if result.exit_status() < 0:
        return EXIT_FAILED
    return EXIT_OK


def _run_pack(args: argparse.Namespace, settings: Settings) -> int:
    codec = Codec(args.codec)
    try:
        with args.output.open("wb") as stream, SequenceFileWriter(stream, codec, block=args.block) as writer:
            for image in args.images:
                key, payload = image.name, image.read_bytes()
                if args.to_ppm:
                    key, payload = _to_ppm(key, payload, settings)
                writer.append(key, payload)
                logger.debug("Packed %s as %s", image, key)
    except OSError as exc:
        logger.error("Cannot pack into %s: %s", args.output, exc)
        return EXIT_FAILED
    except (DecodeError, UnsupportedFormat) as exc:
        logger.error("Cannot convert image for %s: %s", args.output, exc)
        return EXIT_FAILED
    logger.info("Packed %d image(s) into %s (codec=%s, block=%s)", len(args.images), args.output, codec, args.block)
    return EXIT_OK


def _to_ppm(name: str, payload: bytes, settings: Settings) -> tuple[str, bytes]:
    """Re-encode an image file as a binary PPM record keyed ``<stem>.ppm``."""
    raster = decoder_for(classify(name), settings).decode(payload)
    return f"{Path(name).stem}.ppm", encode_ppm(raster)


if __name__ == "__main__":
    raise SystemExit(main())
