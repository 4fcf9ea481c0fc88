"""Branca tokens: XChaCha20-Poly1305 authenticated payloads with a
timestamped header, encoded in base62."""

from __future__ import annotations

import os
import struct
import time
from typing import Optional, Union

from nacl import bindings
from nacl.exceptions import CryptoError

VERSION = 0xBA
KEY_SIZE = 32
NONCE_SIZE = 24
TAG_SIZE = 16
HEADER_SIZE = 1 + 4 + NONCE_SIZE
ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
_INDEX = {ch: i for i, ch in enumerate(ALPHABET)}


class BrancaError(ValueError):
    """Raised when a token cannot be made or opened."""


def base62_encode(data: bytes) -> str:
    """Encode bytes in base62; each leading zero byte becomes a leading "0"."""
    zeros = len(data) - len(data.lstrip(b"\0"))
    number = int.from_bytes(data, "big")
    digits = []
    while number:
        number, rest = divmod(number, 62)
        digits.append(ALPHABET[rest])
    return "0" * zeros + "".join(reversed(digits))


def base62_decode(text: str) -> bytes:
    """Decode base62 text produced by base62_encode."""
    zeros = len(text) - len(text.lstrip("0"))
    number = 0
    for ch in text:
        try:
            number = number * 62 + _INDEX[ch]
        except KeyError:
            raise ValueError(f"invalid base62 character {ch!r}") from None
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\0" * zeros + body


def _key_bytes(key: Union[str, bytes]) -> bytes:
    raw = key.encode("utf-8") if isinstance(key, str) else bytes(key)
    if len(raw) != KEY_SIZE:
        raise BrancaError(f"key must be {KEY_SIZE} bytes")
    return raw


def branca_encode(
    key: Union[str, bytes],
    payload: Union[str, bytes],
    timestamp: Optional[int] = None,
    nonce: Optional[bytes] = None,
) -> str:
    """Seal a payload into a branca token."""
    raw_key = _key_bytes(key)
    message = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    if timestamp is None:
        timestamp = int(time.time())
    if not 0 <= timestamp < 2**32:
        raise BrancaError("timestamp out of range")
    if nonce is None:
        nonce = os.urandom(NONCE_SIZE)
    if len(nonce) != NONCE_SIZE:
        raise BrancaError(f"nonce must be {NONCE_SIZE} bytes")

    header = struct.pack(">BI", VERSION, timestamp) + nonce
    sealed = bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
        message, header, nonce, raw_key
    )
    return base62_encode(header + sealed)


def branca_decode(key: Union[str, bytes], token: Union[str, bytes]) -> bytes:
    """Open a branca token and return its payload."""
    raw_key = _key_bytes(key)
    text = token.decode("ascii", errors="replace") if isinstance(token, bytes) else token
    try:
        data = base62_decode(text)
    except ValueError as exc:
        raise BrancaError(str(exc)) from exc
    if len(data) < HEADER_SIZE + TAG_SIZE:
        raise BrancaError("token too short")
    if data[0] != VERSION:
        raise BrancaError("invalid token version")

    header, sealed = data[:HEADER_SIZE], data[HEADER_SIZE:]
    nonce = header[5:]
    try:
        return bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
            sealed, header, nonce, raw_key
        )
    except CryptoError as exc:
        raise BrancaError("invalid token") from exc