"""
Key Codec

Keys are numbers, strings, or (nested) arrays of keys. They are stored as an
order-preserving byte encoding so that SQLite BLOB comparison (memcmp) sorts
them the same way the object store orders keys:

    number < string < array

Arrays compare element by element; a proper prefix sorts first.
"""

import math
import struct
from typing import Any, List, Optional, Sequence, Tuple, Union

from shelfdb.exceptions import DataError

TAG_NUMBER = 0x10
TAG_STRING = 0x30
TAG_ARRAY = 0x50
TERMINATOR = 0x00
ESCAPE = 0x01

KeyPath = Union[str, Sequence[str]]

_MISSING = object()

# Largest integer a double represents exactly
MAX_SAFE_INTEGER = 2 ** 53


def is_valid_key(value: Any) -> bool:
    """True if value can be used as a key."""
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, int):
        return abs(value) <= MAX_SAFE_INTEGER
    if isinstance(value, float):
        return not math.isnan(value)
    if isinstance(value, str):
        return True
    if isinstance(value, (list, tuple)):
        return all(is_valid_key(item) for item in value)
    return False


def validate_key(value: Any) -> Any:
    """
    Return the canonical form of a key (tuples become lists).

    Raises:
        DataError: If value is not a valid key
    """
    if not is_valid_key(value):
        raise DataError(f"{value!r} is not a valid key")
    return _canonical(value)


def _canonical(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return [_canonical(item) for item in value]
    if isinstance(value, float) and value == 0:
        return 0.0
    return value


def encode_key(value: Any) -> bytes:
    """Encode a key into its sortable byte form."""
    if not is_valid_key(value):
        raise DataError(f"{value!r} is not a valid key")
    out = bytearray()
    _encode_into(value, out)
    return bytes(out)


def _encode_into(value: Any, out: bytearray) -> None:
    if isinstance(value, (int, float)):
        out.append(TAG_NUMBER)
        out += _encode_number(float(value))
    elif isinstance(value, str):
        out.append(TAG_STRING)
        for byte in value.encode("utf-8", "surrogatepass"):
            if byte in (TERMINATOR, ESCAPE):
                out.append(ESCAPE)
                out.append(byte + 1)
            else:
                out.append(byte)
        out.append(TERMINATOR)
    else:
        out.append(TAG_ARRAY)
        for item in value:
            _encode_into(item, out)
        out.append(TERMINATOR)


def _encode_number(number: float) -> bytes:
    if number == 0:
        number = 0.0
    (bits,) = struct.unpack(">Q", struct.pack(">d", number))
    if bits & (1 << 63):
        bits = ~bits & 0xFFFFFFFFFFFFFFFF
    else:
        bits |= 1 << 63
    return struct.pack(">Q", bits)


def _decode_number(data: bytes) -> Union[int, float]:
    (bits,) = struct.unpack(">Q", data)
    if bits & (1 << 63):
        bits &= ~(1 << 63)
    else:
        bits = ~bits & 0xFFFFFFFFFFFFFFFF
    (number,) = struct.unpack(">d", struct.pack(">Q", bits))
    if number.is_integer() and abs(number) <= MAX_SAFE_INTEGER:
        return int(number)
    return number


def decode_key(data: bytes) -> Any:
    """Decode bytes produced by encode_key."""
    value, pos = _decode_at(bytes(data), 0)
    if pos != len(data):
        raise DataError("Trailing bytes after encoded key")
    return value


def _decode_at(data: bytes, pos: int) -> Tuple[Any, int]:
    tag = data[pos]
    pos += 1
    if tag == TAG_NUMBER:
        return _decode_number(data[pos:pos + 8]), pos + 8
    if tag == TAG_STRING:
        raw = bytearray()
        while data[pos] != TERMINATOR:
            if data[pos] == ESCAPE:
                raw.append(data[pos + 1] - 1)
                pos += 2
            else:
                raw.append(data[pos])
                pos += 1
        return raw.decode("utf-8", "surrogatepass"), pos + 1
    if tag == TAG_ARRAY:
        items = []
        while data[pos] != TERMINATOR:
            item, pos = _decode_at(data, pos)
            items.append(item)
        return items, pos + 1
    raise DataError(f"Unknown key tag 0x{tag:02x}")


def compare_keys(a: Any, b: Any) -> int:
    """Three-way comparison of two keys (-1, 0, 1)."""
    ea, eb = encode_key(a), encode_key(b)
    return (ea > eb) - (ea < eb)


# ========== KEY PATHS ==========

def _evaluate_path(record: Any, path: str) -> Any:
    if path == "":
        return record
    value = record
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def evaluate_key_path(record: Any, key_path: KeyPath) -> Any:
    """
    Evaluate a key path against a record.

    Returns the raw value (composite paths give a list), or None if any
    segment is missing.
    """
    if isinstance(key_path, str):
        value = _evaluate_path(record, key_path)
        return None if value is _MISSING else value
    values = []
    for path in key_path:
        value = _evaluate_path(record, path)
        if value is _MISSING:
            return None
        values.append(value)
    return values


def extract_key(record: Any, key_path: KeyPath) -> Optional[Any]:
    """
    Extract the key at key_path, or None if it is absent.

    Raises:
        DataError: If the value is present but is not a valid key
    """
    value = evaluate_key_path(record, key_path)
    if value is None:
        return None
    return validate_key(value)


def index_keys(record: Any, key_path: KeyPath, multi_entry: bool) -> List[bytes]:
    """
    Encoded index keys a record contributes to an index.

    Values that are not valid keys are not indexed. A multi-entry index over
    an array contributes each distinct valid element.
    """
    value = evaluate_key_path(record, key_path)
    if value is None:
        return []
    if multi_entry and isinstance(key_path, str) and isinstance(value, (list, tuple)):
        seen = []
        for item in value:
            if is_valid_key(item):
                encoded = encode_key(item)
                if encoded not in seen:
                    seen.append(encoded)
        return seen
    if not is_valid_key(value):
        return []
    return [encode_key(value)]


def inject_key(record: dict, key_path: str, key: Any) -> None:
    """Write a generated key into the record at key_path, creating parents."""
    parts = key_path.split(".")
    target = record
    for part in parts[:-1]:
        target = target.setdefault(part, {})
        if not isinstance(target, dict):
            raise DataError(f"Cannot inject key at '{key_path}': '{part}' is not an object")
    target[parts[-1]] = key
