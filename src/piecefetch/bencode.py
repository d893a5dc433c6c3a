"""
Bencode codec.

Decodes bencoded bytes into plain Python values (bytes, int, list, dict with
bytes keys), re-encodes them in canonical form and renders them as text for
diagnostics.
"""

from __future__ import annotations

from typing import Any

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_DIGITS = b"0123456789"

# Deepest list/dict nesting accepted before the input is rejected
MAX_DEPTH = 200


class BencodeError(ValueError):
    """Exception raised for malformed bencoded data."""

    pass


def _check_depth(depth: int, index: int) -> None:
    if depth >= MAX_DEPTH:
        raise BencodeError(f"Nesting deeper than {MAX_DEPTH} levels at index {index}")


def _parse_decimal(raw: bytes, index: int, what: str) -> int:
    """Parse a strict ASCII decimal: optional '-', no leading zeros, no '-0'."""
    negative = raw.startswith(b"-")
    digits = raw[1:] if negative else raw

    if not digits or any(c not in _DIGITS for c in digits):
        raise BencodeError(f"Invalid {what} {raw!r} at index {index}")
    if len(digits) > 1 and digits[0:1] == b"0":
        raise BencodeError(f"Leading zero in {what} {raw!r} at index {index}")
    if negative and digits == b"0":
        raise BencodeError(f"Negative zero at index {index}")

    return int(raw)


def bencode_decode(data: bytes, index: int = 0, depth: int = 0) -> tuple[Any, int]:
    """
    Decode one bencoded value starting at ``index``.

    Args:
        data: The raw bytes to decode
        index: Current position in the data
        depth: Number of enclosing lists and dictionaries

    Returns:
        Tuple of (decoded_value, new_index)
    """
    if index >= len(data):
        raise BencodeError(f"Unexpected end of data at index {index}")

    char = data[index : index + 1]

    # Integer: i<number>e
    if char == b"i":
        end_index = data.find(b"e", index + 1)
        if end_index == -1:
            raise BencodeError(f"Unterminated integer at index {index}")
        value = _parse_decimal(data[index + 1 : end_index], index, "integer")
        if not INT64_MIN <= value <= INT64_MAX:
            raise BencodeError(f"Integer out of 64-bit range at index {index}")
        return value, end_index + 1

    # List: l<elements>e
    elif char == b"l":
        _check_depth(depth, index)
        index += 1
        result: list[Any] = []
        while index < len(data) and data[index : index + 1] != b"e":
            value, index = bencode_decode(data, index, depth + 1)
            result.append(value)
        if index >= len(data):
            raise BencodeError(f"Unterminated list at index {index}")
        return result, index + 1

    # Dictionary: d<key-value pairs>e
    elif char == b"d":
        entries, index = _decode_dict_entries(data, index, depth)
        return {key: value for key, value, _, _ in entries}, index

    # String: <length>:<data>
    elif char.isdigit():
        colon_index = data.find(b":", index)
        if colon_index == -1:
            raise BencodeError(f"No colon found for string at index {index}")
        length = _parse_decimal(data[index:colon_index], index, "string length")

        start_index = colon_index + 1
        end_index = start_index + length
        if end_index > len(data):
            raise BencodeError(f"String length exceeds data at index {index}")

        return data[start_index:end_index], end_index

    else:
        raise BencodeError(f"Unexpected character '{char.decode('latin-1', errors='replace')}' at index {index}")


def _decode_dict_entries(data: bytes, index: int, depth: int = 0) -> tuple[list[tuple[bytes, Any, int, int]], int]:
    """
    Decode the dictionary whose 'd' sits at ``index``.

    Returns:
        Tuple of ([(key, value, value_start, value_end), ...], new_index)
    """
    _check_depth(depth, index)
    start = index
    index += 1
    entries: list[tuple[bytes, Any, int, int]] = []
    seen: set[bytes] = set()

    while index < len(data) and data[index : index + 1] != b"e":
        key_index = index
        if not data[index : index + 1].isdigit():
            raise BencodeError(f"Dictionary key must be a string at index {key_index}")
        key, index = bencode_decode(data, index)
        if key in seen:
            raise BencodeError(f"Duplicate dictionary key {key!r} at index {key_index}")
        seen.add(key)

        value_start = index
        value, index = bencode_decode(data, index, depth + 1)
        entries.append((key, value, value_start, index))

    if index >= len(data):
        raise BencodeError(f"Unterminated dictionary at index {start}")
    return entries, index + 1


def _check_consumed(data: bytes, index: int) -> None:
    if index != len(data):
        raise BencodeError(f"Trailing data at index {index}")


def decode(data: bytes | str) -> Any:
    """
    Decode a complete bencoded buffer.

    Args:
        data: Bencoded bytes (text is encoded as UTF-8 first)

    Returns:
        The decoded value
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    value, index = bencode_decode(data, 0)
    _check_consumed(data, index)
    return value


def decode_dict_spans(data: bytes) -> dict[bytes, tuple[Any, int, int]]:
    """
    Decode a top-level dictionary, keeping the raw span of every value.

    ``data[start:end]`` is the exact source encoding of the value stored
    under a key, so it can be hashed without re-encoding.

    Returns:
        Mapping of key -> (value, start, end)
    """
    if data[:1] != b"d":
        raise BencodeError("Expected a dictionary at index 0")
    entries, index = _decode_dict_entries(data, 0)
    _check_consumed(data, index)
    return {key: (value, start, end) for key, value, start, end in entries}


def encode(value: Any) -> bytes:
    """
    Encode a Python value to canonical bencode.

    Dictionary keys are emitted in ascending raw-byte order whatever the
    insertion order.

    Args:
        value: bytes, str, int, list or dict to encode

    Returns:
        Bencoded bytes
    """
    if isinstance(value, bool):
        raise BencodeError("Cannot encode type: bool")
    if isinstance(value, int):
        return f"i{value}e".encode()
    elif isinstance(value, bytes):
        return f"{len(value)}:".encode() + value
    elif isinstance(value, str):
        return encode(value.encode("utf-8"))
    elif isinstance(value, list):
        return b"l" + b"".join(encode(item) for item in value) + b"e"
    elif isinstance(value, dict):
        items = []
        for key, item in value.items():
            if isinstance(key, str):
                key = key.encode("utf-8")
            if not isinstance(key, bytes):
                raise BencodeError(f"Dictionary key must be bytes or str, not {type(key).__name__}")
            items.append((key, item))
        items.sort(key=lambda pair: pair[0])
        return b"d" + b"".join(encode(key) + encode(item) for key, item in items) + b"e"
    else:
        raise BencodeError(f"Cannot encode type: {type(value).__name__}")


def render(value: Any) -> str:
    """
    Render a decoded value as text, e.g. ``{"foo":"bar","hello":52}``.

    Output is for display only and is not meant to be parsed back.
    """
    if isinstance(value, bytes):
        return f'"{value.decode("utf-8", errors="replace")}"'
    if isinstance(value, list):
        return "[" + ",".join(render(item) for item in value) + "]"
    if isinstance(value, dict):
        pairs = sorted(value.items(), key=lambda pair: pair[0])
        return "{" + ",".join(f"{render(key)}:{render(item)}" for key, item in pairs) + "}"
    return str(value)
