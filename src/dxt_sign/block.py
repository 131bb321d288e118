"""Framing for the signature block appended to a packed extension.

Layout of a signed file::

    [ archive bytes ... ]
    [ b"DXT_SIG_V1" ]            10 bytes
    [ payload length ]           4 bytes, little-endian unsigned
    [ payload ]                  DER-encoded CMS SignedData
    [ b"DXT_SIG_END" ]           11 bytes

The archive itself is treated as opaque bytes.
"""

from __future__ import annotations

import struct

SIGNATURE_HEADER = b"DXT_SIG_V1"
SIGNATURE_FOOTER = b"DXT_SIG_END"

_LENGTH = struct.Struct("<I")
_MIN_BLOCK_SIZE = len(SIGNATURE_HEADER) + _LENGTH.size + len(SIGNATURE_FOOTER)


def locate(file_bytes: bytes) -> tuple[bytes, bytes] | None:
    """Find a signature block at the tail of *file_bytes*.

    Returns:
        ``(archive_bytes, signature_bytes)`` when a well-formed block is
        present, otherwise ``None``.  A block whose declared length does not
        land exactly on the header is treated as absent.
    """
    if len(file_bytes) < _MIN_BLOCK_SIZE:
        return None
    if not file_bytes.endswith(SIGNATURE_FOOTER):
        return None

    payload_end = len(file_bytes) - len(SIGNATURE_FOOTER)
    # The length field sits right after the header, so scan back for every
    # header occurrence and accept the one whose length covers the payload.
    search_end = payload_end - _LENGTH.size
    while True:
        header_start = file_bytes.rfind(SIGNATURE_HEADER, 0, search_end)
        if header_start < 0:
            return None
        length_start = header_start + len(SIGNATURE_HEADER)
        payload_start = length_start + _LENGTH.size
        (declared,) = _LENGTH.unpack_from(file_bytes, length_start)
        if payload_start + declared == payload_end:
            return file_bytes[:header_start], file_bytes[payload_start:payload_end]
        search_end = header_start + len(SIGNATURE_HEADER) - 1


def strip(file_bytes: bytes) -> bytes:
    """Return *file_bytes* without its signature block (unchanged if none)."""
    found = locate(file_bytes)
    if found is None:
        return file_bytes
    return found[0]


def attach(archive_bytes: bytes, signature_bytes: bytes) -> bytes:
    """Append a framed *signature_bytes* block to *archive_bytes*.

    The caller is responsible for stripping any block already present.
    """
    return b"".join(
        (
            archive_bytes,
            SIGNATURE_HEADER,
            _LENGTH.pack(len(signature_bytes)),
            signature_bytes,
            SIGNATURE_FOOTER,
        )
    )


__all__ = [
    "SIGNATURE_FOOTER",
    "SIGNATURE_HEADER",
    "attach",
    "locate",
    "strip",
]
