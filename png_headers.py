from collections import namedtuple
import logging
import struct

from shared import InspectionInconclusive

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# typedef struct { // PNG IHDR chunk, big endian, always the first chunk
#     uint32_t length;       // always 13
#     char type[4];          // "IHDR"
#     uint32_t width;
#     uint32_t height;
#     uint8_t bit_depth;     // 1, 2, 4, 8 or 16
#     uint8_t color_type;    // 0 gray, 2 rgb, 3 indexed, 4 gray+alpha, 6 rgba
#     uint8_t compression;
#     uint8_t filter;
#     uint8_t interlace;
# } png_ihdr_t;
PngIhdr = namedtuple(
    "PngIhdr",
    [
        "width",
        "height",
        "bit_depth",
        "color_type",
        "compression",
        "filter",
        "interlace",
    ],
)
png_ihdr_format = ">I4sIIBBBBB"

ColorFields = namedtuple("ColorFields", ["bit_depth", "color_type"])
color_fields_format = ">BB"

# signature (8) + chunk length (4) + chunk type (4) + width (4) + height (4)
COLOR_FIELDS_OFFSET = 24

COLOR_DEPTH_8 = 8
COLOR_TYPE_INDEXED = 3

# Result of a header probe: exactly one of fields/error is set.
HeaderProbe = namedtuple("HeaderProbe", ["fields", "error"])


# This is a fixed offset check, not a PNG parser. It assumes IHDR is the first
# chunk at its canonical position, which every conformant encoder guarantees.
# A damaged or non-standard file can be misclassified without an error.
def probe_color_depth(path) -> HeaderProbe:
    """Read the bit depth and color type bytes from a PNG header."""
    try:
        with open(path, "rb") as f:
            f.seek(COLOR_FIELDS_OFFSET)
            data = f.read(2)
    except OSError as e:
        return HeaderProbe(None, InspectionInconclusive(f"{path}: {e}"))

    if len(data) != 2:
        return HeaderProbe(
            None, InspectionInconclusive(f"{path}: header too short ({len(data)})")
        )

    return HeaderProbe(ColorFields._make(struct.unpack(color_fields_format, data)), None)


def is_png_8bit_indexed(path) -> bool:
    probe = probe_color_depth(path)
    if probe.error is not None:
        logging.debug(f"inconclusive header check: {probe.error}")
        return False

    return (
        probe.fields.bit_depth == COLOR_DEPTH_8
        and probe.fields.color_type == COLOR_TYPE_INDEXED
    )


def read_ihdr(f) -> PngIhdr:
    """Parse the PNG signature and IHDR chunk from a binary stream."""
    sig = f.read(len(PNG_SIGNATURE))
    if sig != PNG_SIGNATURE:
        raise ValueError(f"Invalid png signature: {sig!r}")

    data = f.read(struct.calcsize(png_ihdr_format))
    if len(data) != struct.calcsize(png_ihdr_format):
        raise ValueError(f"Truncated IHDR chunk: {len(data)} bytes")

    length, chunk_type, *fields = struct.unpack(png_ihdr_format, data)
    if chunk_type != b"IHDR" or length != 13:
        raise ValueError(f"First chunk is not IHDR: {chunk_type!r} len {length}")

    return PngIhdr._make(fields)
