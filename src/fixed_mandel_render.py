"""Render the fixed-point Mandelbrot presets as plain-text P2 rasters."""
import argparse
import logging
import os
import sys
from typing import NamedTuple

from fixed_mandel import MAX_INTENSITY, compute_iterations, map_intensities

logger = logging.getLogger(__name__)

WIDTH = 400
HEIGHT = 300


def to_int16(value):
    """Wrap an integer into the signed 16-bit range."""
    value &= 0xFFFF
    return value - 0x10000 if value & 0x8000 else value


# Viewport origin: 16-bit constants nudged by a fixed translation
OFFSET_R = to_int16(to_int16(0xF3CA) + 250)
OFFSET_I = to_int16(to_int16(0xBC40) + 200)


class Preset(NamedTuple):
    filename: str
    scale: int
    max_iterations: int
    divisor: int


PRESETS = (
    Preset("image1.pgm", 1, 64, 4),
    Preset("image2.pgm", 128, 64, 4),
    Preset("image3.pgm", 128, 64 * 1024, 4 * 1024),
    Preset("image4.pgm", 128, 64 * 1024, 0),
)


def find_preset(name):
    for preset in PRESETS:
        if name in (preset.filename, os.path.splitext(preset.filename)[0]):
            return preset
    raise KeyError(name)


def format_header(width, height, maxval=MAX_INTENSITY):
    return f"P2\n{width} {height}\n{maxval}\n"


def write_pgm(stream, intensities, maxval=MAX_INTENSITY):
    """
    Write a 2-D grid of intensities to a text stream as a P2 raster.

    Rows are single-space separated with no trailing space before the
    newline, so the output matches the reference rasters value for value
    but not byte for byte (those end every value with a space).
    """
    height, width = intensities.shape
    stream.write(format_header(width, height, maxval))
    for row in intensities:
        stream.write(" ".join(str(int(v)) for v in row))
        stream.write("\n")


def render(width, height, scale, offset_r, offset_i, max_iterations, divisor,
           detect_fixed_point=False, progress=None):
    if width <= 0 or height <= 0:
        raise ValueError(f"image size must be positive, got {width}x{height}")
    if scale <= 0:
        raise ValueError(f"scale must be positive, got {scale}")
    if max_iterations <= 0:
        raise ValueError(f"max_iterations must be positive, got {max_iterations}")
    if divisor < 0:
        raise ValueError(f"divisor must be >= 0, got {divisor}")

    counts = compute_iterations(width, height, scale, offset_r, offset_i, max_iterations,
                                detect_fixed_point=detect_fixed_point, progress=progress)
    logger.debug("iteration counts: min=%d max=%d", counts.min(), counts.max())
    return map_intensities(counts, divisor)


def render_preset(preset, directory=".", detect_fixed_point=False):
    path = os.path.join(directory, preset.filename)
    logger.info("rendering %s (scale=%d, max_iterations=%d, divisor=%d)",
                path, preset.scale, preset.max_iterations, preset.divisor)
    intensities = render(WIDTH, HEIGHT, preset.scale, OFFSET_R, OFFSET_I,
                         preset.max_iterations, preset.divisor,
                         detect_fixed_point=detect_fixed_point)
    with open(path, "w") as f:
        write_pgm(f, intensities)
    logger.info("wrote %s", path)
    return path


def build_parser():
    parser = argparse.ArgumentParser(
        prog="fixed-mandel",
        description="Render Mandelbrot images with fixed-point integer arithmetic.")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--detect-fixed-point", action="store_true",
                        help="stop iterating once an update leaves zr or zi unchanged")
    parser.add_argument("-o", "--output-dir", default=".",
                        help="directory for the preset images")
    parser.add_argument("-p", "--preset", action="append", dest="presets",
                        choices=[os.path.splitext(p.filename)[0] for p in PRESETS],
                        help="render only this preset (repeatable); all presets by default")
    sub = parser.add_subparsers(dest="command")

    custom = sub.add_parser("custom", help="render a single image with explicit parameters")
    custom.add_argument("--width", type=int, default=WIDTH)
    custom.add_argument("--height", type=int, default=HEIGHT)
    custom.add_argument("--scale", type=int, default=1)
    custom.add_argument("--offset-r", type=int, default=OFFSET_R)
    custom.add_argument("--offset-i", type=int, default=OFFSET_I)
    custom.add_argument("--max-iterations", type=int, default=64)
    custom.add_argument("--divisor", type=int, default=4, help="0 selects the logarithmic policy")
    custom.add_argument("-o", "--output", default="-", help="output file, '-' for stdout")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(levelname)s - %(message)s')

    try:
        if args.command == "custom":
            try:
                intensities = render(args.width, args.height, args.scale, args.offset_r,
                                     args.offset_i, args.max_iterations, args.divisor,
                                     detect_fixed_point=args.detect_fixed_point)
            except ValueError as e:
                parser.error(str(e))
            if args.output == "-":
                write_pgm(sys.stdout, intensities)
            else:
                with open(args.output, "w") as f:
                    write_pgm(f, intensities)
                logger.info("wrote %s", args.output)
        else:
            selected = [find_preset(name) for name in args.presets] if args.presets else PRESETS
            os.makedirs(args.output_dir, exist_ok=True)
            for preset in selected:
                render_preset(preset, args.output_dir, detect_fixed_point=args.detect_fixed_point)
    except OSError as e:
        logger.error("cannot write image: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
