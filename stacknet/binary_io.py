"""
binary_io.py
~~~~~~~~~~~~

Helpers for reading and writing native-width binary fields.

Fields are packed one at a time with native byte order and standard sizes,
so no alignment padding is ever inserted between them.
"""

import struct
from typing import BinaryIO

import numpy as np

INT = struct.Struct('=i')
UINT = struct.Struct('=I')
REAL = struct.Struct('=d')

UINT_MAX = 0xFFFFFFFF

# Wire value standing in for "no error measured yet"
UNKNOWN_ERROR = -9999.0


def write_int(fp: BinaryIO, value: int) -> None:
    fp.write(INT.pack(value))


def write_uint(fp: BinaryIO, value: int) -> None:
    fp.write(UINT.pack(value))


def write_real(fp: BinaryIO, value: float) -> None:
    fp.write(REAL.pack(value))


def write_array(fp: BinaryIO, values: np.ndarray) -> None:
    """Write an array of reals as contiguous native doubles."""
    fp.write(np.ascontiguousarray(values, dtype='=f8').tobytes())


def _read_exact(fp: BinaryIO, size: int) -> bytes:
    data = fp.read(size)
    if len(data) != size:
        raise ValueError(
            f"Unexpected end of data: wanted {size} bytes, got {len(data)}"
        )
    return data


def read_int(fp: BinaryIO) -> int:
    return INT.unpack(_read_exact(fp, INT.size))[0]


def read_uint(fp: BinaryIO) -> int:
    return UINT.unpack(_read_exact(fp, UINT.size))[0]


def read_real(fp: BinaryIO) -> float:
    return REAL.unpack(_read_exact(fp, REAL.size))[0]


def read_array(fp: BinaryIO, shape) -> np.ndarray:
    """Read contiguous native doubles into a new array of the given shape."""
    count = int(np.prod(shape))
    data = _read_exact(fp, count * REAL.size)
    return np.frombuffer(data, dtype='=f8').reshape(shape).astype(np.float64)


def encode_error(value) -> float:
    """Map an optional error value onto its wire representation."""
    return UNKNOWN_ERROR if value is None else value


def decode_error(value: float):
    """Map a wire error value back to None when it holds the sentinel."""
    return None if value == UNKNOWN_ERROR else value
