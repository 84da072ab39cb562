"""Internal and display identifiers.

Internal ids are ``is-`` followed by a lowercase ULID: 10 characters of
millisecond timestamp and 16 characters of randomness in Crockford base32.
They are generated once and never change.

Display codes are short base36 strings derived from ``(prefix, sequence)``.
Sequences fill width tiers in order: the first 36**4 sequences get 4-character
codes, the next 36**5 get 5 characters, and so on. Inside a tier the code is an
affine permutation ``(n * STRIDE + offset) mod 36**width``; STRIDE is coprime
to 36, so distinct sequences always give distinct codes. Codes from different
tiers differ in length and can never be equal.
"""

from __future__ import annotations

import hashlib
import os
import re
import time

INTERNAL_PREFIX = "is-"
CROCKFORD = "0123456789abcdefghjkmnpqrstvwxyz"
INTERNAL_ID_RE = re.compile(rf"^{INTERNAL_PREFIX}[{CROCKFORD}]{{26}}$")

BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
MIN_WIDTH = 4
STRIDE = 1_000_003


def encode_crockford(value: int, length: int) -> str:
    chars = []
    for _ in range(length):
        value, rem = divmod(value, 32)
        chars.append(CROCKFORD[rem])
    return "".join(reversed(chars))


def generate_internal_id(now_ms: int | None = None) -> str:
    """Return a new ``is-<ulid>`` id."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    timestamp = encode_crockford(now_ms & ((1 << 48) - 1), 10)
    randomness = encode_crockford(int.from_bytes(os.urandom(10), "big"), 16)
    return f"{INTERNAL_PREFIX}{timestamp}{randomness}"


def is_internal_id(token: str) -> bool:
    return bool(INTERNAL_ID_RE.match(token))


def encode_base36(value: int, width: int) -> str:
    chars = []
    for _ in range(width):
        value, rem = divmod(value, 36)
        chars.append(BASE36[rem])
    return "".join(reversed(chars))


def prefix_offset(prefix: str, modulus: int) -> int:
    digest = hashlib.sha256(prefix.encode("utf-8")).hexdigest()
    return int(digest, 16) % modulus


def derive_short_id(prefix: str, sequence: int) -> str:
    """Return the display code for *sequence* under *prefix*."""
    if sequence < 0:
        raise ValueError(f"sequence must be non-negative, got {sequence}")
    width = MIN_WIDTH
    n = sequence
    while n >= 36**width:
        n -= 36**width
        width += 1
    modulus = 36**width
    return encode_base36((n * STRIDE + prefix_offset(prefix, modulus)) % modulus, width)
