"""Reader/writer for the headered binary array format used for depth maps (.npy v1.0).

Only what the cropper needs is supported: little-endian payloads, row-major
order, and four element types on read. Everything written is float32.
"""

from __future__ import annotations

import logging
import math
import re
import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

import numpy as np

from rgbd_cropper.errors import FormatError, UnsupportedShapeError

LOG = logging.getLogger(__name__)

MAGIC: Final[bytes] = b"\x93NUMPY"
VERSION: Final[bytes] = b"\x01\x00"
PREAMBLE_LEN: Final[int] = 10
ALIGNMENT: Final[int] = 16

_SHAPE_RE = re.compile(r"'shape':\s*\(([^)]+)\)")
_DESCR_RE = re.compile(r"'descr':\s*'([^']+)'")
_FORTRAN_RE = re.compile(r"'fortran_order':\s*True")

# Checked in order; the first token found in the descr wins.
_DTYPE_TOKENS: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("f4", "float32"), "float32"),
    (("f8", "float64"), "float64"),
    (("i4", "int32"), "int32"),
    (("u1", "uint8"), "uint8"),
)

_LE_DTYPES: Final[dict[str, np.dtype]] = {
    "float32": np.dtype("<f4"),
    "float64": np.dtype("<f8"),
    "int32": np.dtype("<i4"),
    "uint8": np.dtype("u1"),
}


@dataclass(frozen=True)
class NumericArray:
    """A decoded depth array.

    Attributes:
        dtype: One of "float32", "float64", "int32", "uint8".
        shape: Array shape, row-major.
        data: Flat read-only buffer of length prod(shape).
        descr: The raw dtype token found in the header.
        dtype_recognized: False when `descr` matched none of the known tokens and
            the payload was read as float32 anyway.
    """

    dtype: str
    shape: tuple[int, ...]
    data: np.ndarray
    descr: str = "<f4"
    dtype_recognized: bool = True

    @property
    def size(self) -> int:
        """Number of elements."""
        return int(self.data.size)

    def as_grid(self) -> np.ndarray:
        """Return a (H, W) view of the data (rank-3 singleton arrays are squeezed)."""
        width, height = depth_dimensions(self.shape)
        return self.data.reshape(height, width)


def depth_dimensions(shape: Sequence[int]) -> tuple[int, int]:
    """Extract (width, height) from a (H, W) or (H, W, 1) shape.

    Raises:
        UnsupportedShapeError: For any other rank or a non-singleton trailing axis.
    """
    if len(shape) == 2:
        height, width = shape
        return int(width), int(height)
    if len(shape) == 3 and shape[2] == 1:
        height, width = shape[0], shape[1]
        return int(width), int(height)
    raise UnsupportedShapeError(shape)


def _resolve_dtype(descr: str) -> tuple[str, bool]:
    for tokens, name in _DTYPE_TOKENS:
        if any(tok in descr for tok in tokens):
            return name, True
    return "float32", False


def _parse_shape(raw: str) -> tuple[int, ...]:
    dims: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            dims.append(int(part))
        except ValueError:
            # Same leniency as the header regex: ignore non-numeric entries.
            continue
    return tuple(dims)


def decode(data: bytes) -> NumericArray:
    """Decode a depth file into a `NumericArray`.

    Raises:
        FormatError: On a bad signature, an unparsable header, an empty or
            non-positive shape, or a payload shorter than the shape requires.
    """
    buf = bytes(data)
    if len(buf) < PREAMBLE_LEN or buf[:6] != MAGIC:
        raise FormatError("Not a valid .npy file")

    (header_len,) = struct.unpack_from("<H", buf, 8)
    header_end = PREAMBLE_LEN + header_len
    if header_end > len(buf):
        raise FormatError(
            f"Header length {header_len} exceeds file size ({len(buf)} bytes)"
        )
    header = buf[PREAMBLE_LEN:header_end].decode("latin-1")

    shape_match = _SHAPE_RE.search(header)
    descr_match = _DESCR_RE.search(header)
    if shape_match is None or descr_match is None:
        raise FormatError("Could not parse .npy header")

    shape = _parse_shape(shape_match.group(1))
    descr = descr_match.group(1)
    if not shape:
        raise FormatError(f"Header shape is empty: {shape_match.group(0)!r}")
    if any(d <= 0 for d in shape):
        raise FormatError(f"Header shape must hold positive sizes, got {shape}")

    if _FORTRAN_RE.search(header):
        LOG.warning("fortran_order=True is not supported; reading payload as row-major")

    dtype_name, recognized = _resolve_dtype(descr)
    if not recognized:
        LOG.warning("Unrecognized dtype %r; interpreting payload as float32", descr)

    np_dtype = _LE_DTYPES[dtype_name]
    count = math.prod(shape)
    payload = memoryview(buf)[header_end:]
    needed = count * np_dtype.itemsize
    if len(payload) < needed:
        raise FormatError(
            f"Payload truncated: shape {shape} needs {needed} bytes, got {len(payload)}"
        )
    if len(payload) > needed:
        LOG.debug("Ignoring %d trailing payload bytes", len(payload) - needed)

    arr = np.frombuffer(payload, dtype=np_dtype, count=count).copy()
    arr.setflags(write=False)
    LOG.debug("Decoded array dtype=%s shape=%s", dtype_name, shape)
    return NumericArray(
        dtype=dtype_name,
        shape=shape,
        data=arr,
        descr=descr,
        dtype_recognized=recognized,
    )


decode_depth = decode


def format_shape(shape: Sequence[int]) -> str:
    """Format a shape as a Python tuple literal, e.g. "(3,)" or "(2, 3)"."""
    if len(shape) == 1:
        return f"({shape[0]},)"
    return "(" + ", ".join(str(int(d)) for d in shape) + ")"


def build_header(shape: Sequence[int]) -> bytes:
    """Build the padded header text for a float32, C-order array."""
    text = f"{{'descr': '<f4', 'fortran_order': False, 'shape': {format_shape(shape)}}}\n"
    padding = (ALIGNMENT - (PREAMBLE_LEN + len(text)) % ALIGNMENT) % ALIGNMENT
    return (text + " " * padding).encode("latin-1")


def encode(buffer: Sequence[float] | np.ndarray, shape: Sequence[int]) -> bytes:
    """Encode `buffer` as a float32 .npy file with the given shape.

    Raises:
        ValueError: If the shape holds a non-positive size or does not match the
            number of elements in `buffer`.
    """
    shape = tuple(int(d) for d in shape)
    if not shape or any(d <= 0 for d in shape):
        raise ValueError(f"Shape must hold positive sizes, got {shape}")
    values = np.ascontiguousarray(np.asarray(buffer).reshape(-1), dtype="<f4")
    if values.size != math.prod(shape):
        raise ValueError(
            f"Buffer holds {values.size} elements but shape {shape} needs {math.prod(shape)}"
        )

    header = build_header(shape)
    return b"".join(
        (MAGIC, VERSION, struct.pack("<H", len(header)), header, values.tobytes(order="C"))
    )
