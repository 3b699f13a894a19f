# CirrusFlags/cirrusflags/services/hashing.py
"""Consistent hashing used for rollout bucketing.

Buckets are derived from a 32-bit MurmurHash3 (x86 variant) so that the same
``key + salt`` always lands in the same bucket, in every process and on
every platform.
"""


from __future__ import annotations

from typing import Callable


HashFunction = Callable[[str, str], float]

_C1 = 0xCC9E2D51
_C2 = 0x1B873593
_MASK = 0xFFFFFFFF


def _rotl32(x: int, r: int) -> int:
    return ((x << r) | (x >> (32 - r))) & _MASK


def _fmix32(h: int) -> int:
    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK
    h ^= h >> 16
    return h


def murmur3_32(data: bytes, seed: int = 0) -> int:
    """Compute the unsigned 32-bit MurmurHash3 (x86) of ``data``.

    Args:
        data: Bytes to hash.
        seed: Hash seed.

    Returns:
        The hash as an unsigned integer in ``[0, 2**32)``.
    """
    length = len(data)
    h = seed & _MASK
    rounded_end = length & ~0x3

    for i in range(0, rounded_end, 4):
        k = int.from_bytes(data[i:i + 4], "little")
        k = (k * _C1) & _MASK
        k = _rotl32(k, 15)
        k = (k * _C2) & _MASK
        h ^= k
        h = _rotl32(h, 13)
        h = (h * 5 + 0xE6546B64) & _MASK

    k = 0
    tail = length & 0x3
    if tail == 3:
        k ^= data[rounded_end + 2] << 16
    if tail >= 2:
        k ^= data[rounded_end + 1] << 8
    if tail >= 1:
        k ^= data[rounded_end]
        k = (k * _C1) & _MASK
        k = _rotl32(k, 15)
        k = (k * _C2) & _MASK
        h ^= k

    h ^= length
    return _fmix32(h)


def default_hash(key: str, salt: str = "") -> float:
    """Map ``key + salt`` to a bucket in ``[0, 100)`` with two decimals.

    Example:
        >>> 0 <= default_hash("checkout-v2:user-1", "default") < 100
        True
    """
    h = murmur3_32((key + salt).encode("utf-8"))
    return (h % 10000) / 100
