#!/usr/bin/env python3

from concurrent.futures import ThreadPoolExecutor
from functools import partial
from threading import Event
from typing import Callable, Optional
import argparse
import contextlib
import fnmatch
import logging
import os
import shutil
import sys
import tempfile

from PIL import Image
from PIL.Image import Image as PILImage

from png_headers import is_png_8bit_indexed
from quantizer import MAX_COLORS, quantize
from shared import (
    ConversionError,
    ConversionOutcome,
    ConvertOptions,
    DecodeError,
    EncodeOrWriteError,
    Status,
    summarize,
)

PNG_PATTERN = "*.png"

Quantizer = Callable[[PILImage], PILImage]


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Convert PNG files to 8-bit indexed color in place"
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("-f", "--file", help="The PNG file to convert.")
    target.add_argument(
        "-d",
        "--directory",
        help="Convert every PNG in this directory (default: current directory).",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=0,
        help="Number of files to convert at once. 0 converts one at a time.",
    )
    parser.add_argument(
        "-c",
        "--colors",
        type=int,
        default=MAX_COLORS,
        help=f"Maximum palette size (1-{MAX_COLORS}).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Convert files even if they are already 8-bit indexed.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose mode. Can be specified multiple times.",
    )
    args = parser.parse_args(argv)

    if args.verbose >= 2:
        logging.basicConfig(level=logging.DEBUG)
    elif args.verbose == 1:
        logging.basicConfig(level=logging.INFO)
    else:
        logging.basicConfig(level=logging.WARNING)

    if not 1 <= args.colors <= MAX_COLORS:
        parser.error(f"--colors must be between 1 and {MAX_COLORS}")

    if args.directory and not os.path.isdir(args.directory):
        print(f"Error: '{args.directory}' is not a directory", file=sys.stderr)
        return 1

    options = ConvertOptions(
        file=args.file,
        directory=args.directory,
        check_color_depth=not args.force,
        max_degree_of_parallelism=args.jobs,
        colors=args.colors,
    )
    outcomes = run(options)

    counts = summarize(outcomes)
    for outcome in outcomes:
        if outcome.status is Status.FAILED:
            print(f"FAILED {outcome.path}: {outcome.error}", file=sys.stderr)
    print(
        f"converted: {counts[Status.CONVERTED]}, "
        f"skipped: {counts[Status.SKIPPED]}, "
        f"failed: {counts[Status.FAILED]}"
    )

    return 1 if counts[Status.FAILED] else 0


def run(options: ConvertOptions) -> list[ConversionOutcome]:
    """Convert the file or directory named by options."""
    quantizer = partial(quantize, colors=options.colors)

    if options.directory:
        folder = options.directory
    elif options.file:
        return [convert_file(options.file, options.check_color_depth, quantizer)]
    else:
        # nothing was provided - convert current directory
        folder = os.getcwd()

    return convert_folder(
        folder,
        options.max_degree_of_parallelism,
        options.check_color_depth,
        quantizer,
    )


def find_pngs(folder) -> list[str]:
    """List the PNG files directly inside folder (case-insensitive, no recursion)."""
    with os.scandir(folder) as entries:
        return sorted(
            entry.path
            for entry in entries
            if entry.is_file() and fnmatch.fnmatchcase(entry.name.lower(), PNG_PATTERN)
        )


def convert_folder(
    folder,
    max_degree_of_parallelism: Optional[int] = None,
    check_color_depth: bool = True,
    quantizer: Quantizer = quantize,
    cancel: Optional[Event] = None,
) -> list[ConversionOutcome]:
    """Convert every PNG in folder.

    A positive max_degree_of_parallelism bounds how many files are converted at
    once; otherwise files are converted one after another. Setting cancel stops
    new files from starting, files already in progress run to completion and
    files never started have no outcome.
    """
    files = find_pngs(folder)
    logging.info(f"found {len(files)} png files in {folder}")
    if not files:
        return []

    def convert_one(path):
        if cancel is not None and cancel.is_set():
            logging.info(f"{path}: cancelled")
            return None
        return convert_file(path, check_color_depth, quantizer)

    if max_degree_of_parallelism is None or max_degree_of_parallelism <= 0:
        results = [convert_one(path) for path in files]
    else:
        with ThreadPoolExecutor(max_workers=max_degree_of_parallelism) as executor:
            results = list(executor.map(convert_one, files))

    return [outcome for outcome in results if outcome is not None]


def convert_file(
    path, check_color_depth: bool = True, quantizer: Quantizer = quantize
) -> ConversionOutcome:
    """Convert a PNG file to 8-bit indexed color, overwriting it.

    Failures are reported in the returned outcome, not raised.
    """
    path = os.fspath(path)

    if check_color_depth and is_png_8bit_indexed(path):
        # no need to convert - it's already 8 bit
        logging.info(f"{path}: SKIP already 8 bit")
        return ConversionOutcome(path, Status.SKIPPED, None)

    quantized = None
    try:
        quantized = load_and_quantize(path, quantizer)
        logging.debug(f"{path}: quantized {quantized.mode} {quantized.size}")
        save_png(quantized, path)
    except ConversionError as e:
        logging.error(f"{path}: FAIL {e}")
        return ConversionOutcome(path, Status.FAILED, e)
    except Exception as e:
        # one file must never stop the rest of the batch
        logging.exception(f"{path}: FAIL unexpected {type(e).__name__}")
        return ConversionOutcome(path, Status.FAILED, e)
    finally:
        if quantized is not None:
            quantized.close()

    logging.info(f"{path}: SUCCESS")
    return ConversionOutcome(path, Status.CONVERTED, None)


def load_and_quantize(path: str, quantizer: Quantizer) -> PILImage:
    """Decode path and return its quantized copy.

    The decoded image is closed before returning so only the quantized copy
    stays in memory while the file is rewritten.
    """
    try:
        img = Image.open(path)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"cannot open {path}: {e}") from e

    with img:
        if img.format != "PNG":
            raise DecodeError(f"{path} is {img.format}, not PNG")
        try:
            img.load()
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            raise DecodeError(f"cannot decode {path}: {e}") from e

        logging.debug(f"{path}: decoded {img.mode} {img.size}")
        return quantizer(img)


def save_png(image: PILImage, path: str) -> None:
    """Write image as an 8-bit indexed PNG over path.

    The image is written to a temporary file next to path and renamed over it,
    so the original stays intact if encoding or writing fails. Symlinks are
    followed so the link's target is rewritten and the link itself is kept.
    """
    target = os.path.realpath(path)
    directory = os.path.dirname(target)
    try:
        fd, tmp_path = tempfile.mkstemp(
            prefix=".to8bitpng-", suffix=".tmp", dir=directory
        )
    except OSError as e:
        raise EncodeOrWriteError(f"cannot create temporary file in {directory}: {e}") from e

    try:
        with os.fdopen(fd, "wb") as f:
            # without bits=8 Pillow packs small palettes into 1, 2 or 4 bits
            image.save(f, format="PNG", bits=8, optimize=True)
        shutil.copymode(target, tmp_path)
        os.replace(tmp_path, target)
    except (OSError, ValueError) as e:
        with contextlib.suppress(FileNotFoundError):
            os.remove(tmp_path)
        raise EncodeOrWriteError(f"cannot write {path}: {e}") from e


if __name__ == "__main__":
    sys.exit(main())
