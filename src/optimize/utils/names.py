"""Generated experiment names.

Names look like ULIDs: 48 bits of big-endian millisecond timestamp followed
by 80 random bits, base32 encoded without padding (26 characters). The prefix
sorts by creation time and the alphabet is case-insensitive-safe and URL safe.
"""
from __future__ import annotations

import secrets
import time

from optimize.domain.models import ExperimentName

ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
NAME_LENGTH = 26


def _encode(data: bytes) -> str:
    value = int.from_bytes(data, "big")
    bits = len(data) * 8
    # left-align to a multiple of 5 bits, same as an unpadded base32 encoder
    pad = (-bits) % 5
    value <<= pad
    chars = []
    for _ in range((bits + pad) // 5):
        chars.append(ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def new_experiment_name(now_ms: int | None = None) -> ExperimentName:
    ms = int(time.time() * 1000) if now_ms is None else now_ms
    data = (ms & 0xFFFFFFFFFFFF).to_bytes(6, "big") + secrets.token_bytes(10)
    return ExperimentName(_encode(data))


__all__ = ["ALPHABET", "NAME_LENGTH", "new_experiment_name"]
