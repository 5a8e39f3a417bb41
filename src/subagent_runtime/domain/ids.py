"""Run identifier generation and validation.

Run ids have the form ``run-<ULID>`` where the ULID is a 26-character
uppercase Crockford Base32 string, so ids sort by creation time.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_RANDOM_BYTES: Final[int] = 10
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_ULID_MAX_VALUE: Final[int] = (1 << 128) - 1
_PREFIX_SEPARATOR: Final[str] = "-"
SESSION_TAG_LENGTH: Final[int] = 8

RUN_ID_PREFIX: Final[str] = "run"

_DECODE_TABLE: Final[dict[str, int]] = {
    char: index for index, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

_RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: _RandBytes | None = None,
) -> str:
    """Generate a ULID as a 26-character uppercase Crockford Base32 string."""
    ts_ms = _resolve_timestamp_ms(timestamp_ms)
    random_bytes = _resolve_random_bytes(randbytes)
    ulid_value = (ts_ms << 80) | int.from_bytes(random_bytes, "big")
    return _encode_crockford_base32(ulid_value, ULID_LENGTH)


def validate_ulid(s: str) -> None:
    """Validate a ULID and raise ``ValueError`` with precise context on failure."""
    _ = _decode_validated_ulid(s)


def generate_run_id(*, timestamp_ms: int | None = None, randbytes: _RandBytes | None = None) -> str:
    ulid = generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)
    return f"{RUN_ID_PREFIX}{_PREFIX_SEPARATOR}{ulid}"


def validate_run_id(id_str: str) -> None:
    """Validate ``run-<ulid>`` format."""
    if not isinstance(id_str, str):
        raise ValueError(f"run id must be a string, got {type(id_str).__name__}")

    expected_lead = f"{RUN_ID_PREFIX}{_PREFIX_SEPARATOR}"
    if not id_str.startswith(expected_lead):
        raise ValueError(f"expected prefix '{expected_lead}'")

    try:
        validate_ulid(id_str[len(expected_lead) :])
    except ValueError as exc:
        raise ValueError(f"invalid ULID part of run id: {exc}") from exc


def session_tag(run_id: str) -> str:
    """Return the first 8 characters after the ``run-`` prefix for compact display."""
    if not isinstance(run_id, str):
        raise ValueError(f"run id must be a string, got {type(run_id).__name__}")
    lead = f"{RUN_ID_PREFIX}{_PREFIX_SEPARATOR}"
    body = run_id[len(lead) :] if run_id.startswith(lead) else run_id
    return body[:SESSION_TAG_LENGTH]


# ------------------------
# Internal helper routines
# ------------------------


def _resolve_timestamp_ms(timestamp_ms: int | None) -> int:
    resolved = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not isinstance(resolved, int):
        raise ValueError(f"timestamp_ms must be an int, got {type(resolved).__name__}")
    if not 0 <= resolved <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {resolved}"
        )
    return resolved


def _resolve_random_bytes(randbytes: _RandBytes | None) -> bytes:
    source = secrets.token_bytes if randbytes is None else randbytes
    raw = source(ULID_RANDOM_BYTES)
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("randbytes must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != ULID_RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {ULID_RANDOM_BYTES} bytes")
    return as_bytes


def _decode_validated_ulid(value: str) -> int:
    if not isinstance(value, str):
        raise ValueError(f"ulid must be a string, got {type(value).__name__}")
    if len(value) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(value)}")

    decoded = 0
    for index, char in enumerate(value):
        digit = _DECODE_TABLE.get(char.upper())
        if digit is None:
            raise ValueError(f"invalid ULID character {char!r} at index {index}")
        decoded = (decoded << 5) | digit

    if decoded > _ULID_MAX_VALUE:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")
    return decoded


def _encode_crockford_base32(value: int, length: int) -> str:
    mask = 0b11111
    chars = ["0"] * length
    working = value
    for index in range(length - 1, -1, -1):
        chars[index] = CROCKFORD_BASE32_ALPHABET[working & mask]
        working >>= 5

    if working != 0:
        raise ValueError(f"value does not fit into {length} Crockford Base32 characters")
    return "".join(chars)


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "RUN_ID_PREFIX",
    "SESSION_TAG_LENGTH",
    "ULID_LENGTH",
    "generate_run_id",
    "generate_ulid",
    "session_tag",
    "validate_run_id",
    "validate_ulid",
]
