"""Versioned binary codec for stored embeddings.

Layout (little-endian, independent of host byte order)::

    magic   2 bytes   b"EV"
    version u8        1
    dtype   u8        1 = float32
    dim     u32       number of elements
    payload dim * 4   IEEE-754 binary32 values
    crc32   u32       over header + payload

Decoding is the exact inverse of encoding: every element comes back
bit-for-bit, NaN payloads and signed zeros included.
"""

import struct
import zlib
from typing import Optional

import numpy as np

MAGIC = b"EV"
VERSION = 1
DTYPE_FLOAT32 = 1
CODEC_NAME = "ev1-f32le"

_HEADER = struct.Struct("<2sBBI")
_CRC = struct.Struct("<I")
_ELEMENT = np.dtype("<f4")


class EmbeddingCodecError(ValueError):
    """Raised when a stored embedding blob is not a valid encoding."""


def encoded_size(dimension: int) -> int:
    """Size in bytes of an encoded embedding with ``dimension`` elements."""
    return _HEADER.size + dimension * _ELEMENT.itemsize + _CRC.size


def encode_embedding(embedding: np.ndarray) -> bytes:
    """Encode a 1-D float32 vector."""
    vector = np.asarray(embedding)
    if vector.ndim != 1:
        raise EmbeddingCodecError(f"Expected a 1-D vector, got shape {vector.shape}")
    if vector.dtype != np.float32:
        raise EmbeddingCodecError(f"Expected float32 elements, got {vector.dtype}")

    body = _HEADER.pack(MAGIC, VERSION, DTYPE_FLOAT32, vector.shape[0])
    body += vector.astype(_ELEMENT, copy=False).tobytes()
    return body + _CRC.pack(zlib.crc32(body))


def decode_embedding(data: bytes, expected_dim: Optional[int] = None) -> np.ndarray:
    """Decode a blob produced by :func:`encode_embedding`.

    Args:
        data: Encoded bytes.
        expected_dim: When given, the decoded dimension must match.

    Returns:
        A native-order float32 array.

    Raises:
        EmbeddingCodecError: on any structural or checksum mismatch.
    """
    if data is None:
        raise EmbeddingCodecError("Embedding blob is missing")
    data = bytes(data)
    if len(data) < _HEADER.size + _CRC.size:
        raise EmbeddingCodecError(f"Embedding blob too short ({len(data)} bytes)")

    magic, version, dtype, dim = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise EmbeddingCodecError(f"Bad magic {magic!r}")
    if version != VERSION:
        raise EmbeddingCodecError(f"Unsupported codec version {version}")
    if dtype != DTYPE_FLOAT32:
        raise EmbeddingCodecError(f"Unsupported element type {dtype}")
    if len(data) != encoded_size(dim):
        raise EmbeddingCodecError(
            f"Length {len(data)} does not match dimension {dim} ({encoded_size(dim)} bytes)"
        )
    if expected_dim is not None and dim != expected_dim:
        raise EmbeddingCodecError(f"Dimension {dim} does not match index dimension {expected_dim}")

    body, (crc,) = data[:-_CRC.size], _CRC.unpack_from(data, len(data) - _CRC.size)
    if zlib.crc32(body) != crc:
        raise EmbeddingCodecError("Checksum mismatch")

    payload = np.frombuffer(body, dtype=_ELEMENT, offset=_HEADER.size, count=dim)
    return payload.astype(np.float32)
