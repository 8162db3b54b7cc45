"""
Container format sniffing from header magic bytes.
"""

from typing import BinaryIO

from revengo.core.models import FormatTag

HEADER_SIZE = 16

PE_MAGIC = b"MZ"
ELF_MAGIC = b"\x7fELF"
MACHO_MAGICS = (
    b"\xfe\xed\xfa\xce",  # MH_MAGIC, 32-bit big-endian
    b"\xce\xfa\xed\xfe",  # MH_CIGAM, 32-bit little-endian
    b"\xfe\xed\xfa\xcf",  # MH_MAGIC_64, big-endian
    b"\xcf\xfa\xed\xfe",  # MH_CIGAM_64, little-endian
)


def identify(header: bytes) -> FormatTag:
    """
    Classify a file by its first 16 bytes.

    The tag is a candidate: the matching container parser confirms it, and a
    failed parse downgrades the file to Unknown. Pure function of ``header``.
    """
    header = bytes(header[:HEADER_SIZE])
    if header[:2] == PE_MAGIC:
        return FormatTag.PE
    if header[:4] == ELF_MAGIC:
        return FormatTag.ELF
    if header[:4] in MACHO_MAGICS:
        return FormatTag.MACHO
    return FormatTag.UNKNOWN


def sniff_stream(stream: BinaryIO) -> FormatTag:
    """Peek at a seekable stream's header without moving its cursor."""
    position = stream.tell()
    try:
        header = stream.read(HEADER_SIZE)
    finally:
        stream.seek(position)
    return identify(header)
