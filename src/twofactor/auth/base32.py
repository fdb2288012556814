"""RFC 4648 Base32 codec as used by authenticator apps.

Unlike :func:`base64.b32encode` this never emits ``=`` padding, and decoding
is lenient: input is upper-cased and anything outside ``A-Z2-7`` (spaces,
dashes, padding) is dropped before the bits are unpacked.
"""

from __future__ import annotations

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_INDEX = {char: i for i, char in enumerate(ALPHABET)}


def encode(data: bytes) -> str:
    """Encode bytes to unpadded Base32."""
    out: list[str] = []
    value = 0
    bits = 0
    for byte in data:
        value = ((value << 8) | byte) & 0xFFFF
        bits += 8
        while bits >= 5:
            out.append(ALPHABET[(value >> (bits - 5)) & 31])
            bits -= 5
    if bits:
        out.append(ALPHABET[(value << (5 - bits)) & 31])
    return "".join(out)


def decode(text: str) -> bytes:
    """Decode Base32 text, dropping a trailing incomplete byte."""
    out = bytearray()
    value = 0
    bits = 0
    for char in text.upper():
        index = _INDEX.get(char)
        if index is None:
            continue
        value = ((value << 5) | index) & 0xFFFF
        bits += 5
        if bits >= 8:
            out.append((value >> (bits - 8)) & 0xFF)
            bits -= 8
    return bytes(out)
