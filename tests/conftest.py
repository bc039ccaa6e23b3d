import struct
import zlib

import numpy as np
import pytest
from PIL import Image

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# (bit depth, color type, channels, tRNS gray key) for raw written kinds
RAW_KINDS = {
    "gray1": (1, 0, 1, None),
    "gray2": (2, 0, 1, None),
    "gray4": (4, 0, 1, None),
    "gray_trns": (8, 0, 1, 0),
    "gray16": (16, 0, 1, None),
    "gray16_trns": (16, 0, 1, 0),
    "rgb16": (16, 2, 3, None),
    "rgba16": (16, 6, 4, None),
}


def noise(width, height, channels, seed=0, high=256, dtype=np.uint8):
    rng = np.random.default_rng(seed)
    return rng.integers(0, high, (height, width, channels), dtype=dtype)


def gradient(width, height, high):
    """Gray ramp over every pixel from 0 to high - 1."""
    count = width * height
    ramp = np.arange(count, dtype=np.uint64) * (high - 1) // (count - 1)
    return ramp.reshape(height, width, 1)


def png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(chunk_type + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + chunk_type + data + struct.pack(">I", crc)


def write_raw_png(path, samples, bit_depth, color_type, trns=None):
    """Write samples shaped (height, width, channels) as a PNG without Pillow."""
    height, width, channels = samples.shape
    raw = bytearray()
    for row in samples.reshape(height, width * channels):
        if bit_depth == 16:
            packed = row.astype(">u2").tobytes()
        elif bit_depth == 8:
            packed = row.astype(np.uint8).tobytes()
        else:
            bits = np.unpackbits(row.astype(np.uint8)[:, None], axis=1)
            packed = np.packbits(bits[:, 8 - bit_depth :].ravel()).tobytes()
        raw.append(0)  # filter type None
        raw.extend(packed)

    ihdr = struct.pack(">IIBBBBB", width, height, bit_depth, color_type, 0, 0, 0)
    data = PNG_SIGNATURE + png_chunk(b"IHDR", ihdr)
    if trns is not None:
        data += png_chunk(b"tRNS", struct.pack(">H", trns))
    data += png_chunk(b"IDAT", zlib.compress(bytes(raw)))
    data += png_chunk(b"IEND", b"")
    path.write_bytes(data)


@pytest.fixture
def make_png(tmp_path):
    """Write a synthetic PNG and return its path.

    kind is one of rgb, rgba, gray, indexed (8-bit palette), few (4 colors,
    RGB) or one of RAW_KINDS.
    """

    def _make_png(name="image.png", kind="rgb", size=(32, 24), seed=0, folder=None):
        width, height = size
        path = (folder or tmp_path) / name

        if kind in RAW_KINDS:
            bit_depth, color_type, channels, trns = RAW_KINDS[kind]
            if bit_depth == 16 and channels == 1:
                samples = gradient(width, height, 1 << 16)
            else:
                samples = noise(
                    width, height, channels, seed, high=1 << bit_depth, dtype=np.uint32
                )
            write_raw_png(path, samples, bit_depth, color_type, trns)
            return path

        if kind == "rgb":
            img = Image.fromarray(noise(width, height, 3, seed))
        elif kind == "rgba":
            img = Image.fromarray(noise(width, height, 4, seed))
        elif kind == "gray":
            img = Image.fromarray(np.ascontiguousarray(noise(width, height, 1, seed)[:, :, 0]))
        elif kind == "indexed":
            img = Image.fromarray(noise(width, height, 3, seed)).quantize(colors=64)
        elif kind == "few":
            pixels = np.zeros((height, width, 3), dtype=np.uint8)
            pixels[: height // 2, :, 0] = 255
            pixels[:, : width // 2, 2] = 255
            img = Image.fromarray(pixels)
        else:
            raise ValueError(kind)

        if img.mode == "P":
            img.save(path, format="PNG", bits=8)
        else:
            img.save(path, format="PNG")
        return path

    return _make_png


@pytest.fixture
def corrupt_png(tmp_path):
    def _corrupt_png(name="broken.png", folder=None):
        path = (folder or tmp_path) / name
        path.write_bytes(b"this is not a png file")
        return path

    return _corrupt_png
