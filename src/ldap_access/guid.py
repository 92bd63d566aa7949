"""Conversions for Active Directory binary values.

``objectGUID`` is stored as 16 little-endian bytes.  Browsers and the AD
tooling display it as ``XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX`` while searches
need the raw byte order as an escaped octet string (``\\xx\\xx...``).

``pwdLastSet`` and friends are Windows FILETIME values: 100 ns intervals since
1601-01-01 UTC.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

__all__ = [
    "guid_bin_to_str",
    "guid_str_enclose",
    "guid_str_to_octet_str",
    "guid_octet_str_escape",
    "guid_octet_str_to_bin",
    "guid_octet_str_to_str",
    "filetime_to_datetime",
]

_FILETIME_EPOCH = datetime(1601, 1, 1, tzinfo=timezone.utc)
_FILETIME_NEVER = 0x7FFFFFFFFFFFFFFF


def guid_bin_to_str(data: bytes, enclosed: bool = False) -> str:
    """Return the display form of a binary GUID."""
    text = str(uuid.UUID(bytes_le=bytes(data))).upper()
    return guid_str_enclose(text) if enclosed else text


def guid_str_enclose(text: str) -> str:
    if "{" in text or "}" in text:
        return text
    return "{" + text + "}"


def guid_str_to_octet_str(text: str, escaped: bool = False) -> str:
    """Convert a display GUID to the octet string used in search filters."""
    raw = uuid.UUID(text.strip("{}")).bytes_le.hex().upper()
    if escaped:
        return guid_octet_str_escape(raw)
    return raw


def guid_octet_str_escape(octet: str) -> str:
    """Escape every byte pair with a backslash (``0A1B`` -> ``\\0A\\1B``)."""
    if "\\" in octet:
        return octet
    if len(octet) % 2:
        octet += "0"
    return "".join("\\" + octet[i:i + 2] for i in range(0, len(octet), 2))


def guid_octet_str_to_bin(octet: str) -> bytes:
    return bytes.fromhex(octet.replace("\\", ""))


def guid_octet_str_to_str(octet: str) -> str:
    return guid_bin_to_str(guid_octet_str_to_bin(octet))


def filetime_to_datetime(value: Any) -> datetime | None:
    """Convert a FILETIME value to an aware UTC datetime.

    Zero ("must change at next logon"), the *never* sentinel and values that
    are not integers yield ``None``.
    """
    if isinstance(value, datetime):
        return value
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    if n <= 0 or n >= _FILETIME_NEVER:
        return None
    try:
        return _FILETIME_EPOCH + timedelta(microseconds=n // 10)
    except OverflowError:
        return None
