"""
Mach-O (macOS) container parser.

Thin 32/64-bit images in either byte order are decoded directly with struct;
fat/universal archives are not sniffed as Mach-O in the first place. Every
read is bounds-checked against the buffer so corrupt load commands surface as
FormatParseFailure rather than IndexError or struct.error.
"""

import struct
from typing import List, Optional, Tuple

from revengo.core.errors import FormatParseFailure
from revengo.core.models import FormatTag, Section
from revengo.parsers.common import ParsedContainer, decode_name, resolve_architecture
from revengo.utils.logger import get_logger

logger = get_logger(__name__)

MACHO_CPU_TYPES = {
    7: "x86",
    0x01000007: "x86_64",
    12: "ARM",
    0x0100000C: "ARM64",
    18: "PowerPC",
    0x01000012: "PowerPC64",
}

# magic as read big-endian -> (struct byte order, is_64)
_MAGICS = {
    0xFEEDFACE: (">", False),
    0xCEFAEDFE: ("<", False),
    0xFEEDFACF: (">", True),
    0xCFFAEDFE: ("<", True),
}

LC_SEGMENT = 0x1
LC_SYMTAB = 0x2
LC_DYSYMTAB = 0xB
LC_SEGMENT_64 = 0x19

N_STAB = 0xE0
N_TYPE = 0x0E
N_EXT = 0x01
N_UNDF = 0x0


class _Reader:
    """Bounds-checked struct access over an immutable buffer."""

    def __init__(self, data: bytes, order: str):
        self.data = data
        self.order = order

    def unpack(self, fmt: str, offset: int) -> Tuple:
        fmt = self.order + fmt
        size = struct.calcsize(fmt)
        if offset < 0 or offset + size > len(self.data):
            raise FormatParseFailure(
                "Mach-O", f"read of {size} bytes at {offset:#x} runs past end of file"
            )
        return struct.unpack_from(fmt, self.data, offset)

    def cstring(self, offset: int, limit: int) -> str:
        if offset < 0 or offset >= limit or limit > len(self.data):
            raise FormatParseFailure("Mach-O", f"string offset {offset:#x} out of range")
        end = self.data.find(b"\x00", offset, limit)
        if end == -1:
            end = limit
        return self.data[offset:end].decode("utf-8", errors="replace")


def _parse_segment(reader: _Reader, offset: int, cmdsize: int, is_64: bool) -> List[Section]:
    if is_64:
        segment_fmt, section_fmt = "16sQQQQiiII", "16s16sQQIIIIIIII"
    else:
        segment_fmt, section_fmt = "16sIIIIiiII", "16s16sIIIIIIIII"
    header_size = 8 + struct.calcsize("<" + segment_fmt)
    section_size = struct.calcsize("<" + section_fmt)

    nsects = reader.unpack(segment_fmt, offset + 8)[7]
    if header_size + nsects * section_size > cmdsize:
        raise FormatParseFailure("Mach-O", f"segment declares {nsects} sections beyond its command size")

    sections = []
    cursor = offset + header_size
    for _ in range(nsects):
        fields = reader.unpack(section_fmt, cursor)
        sections.append(Section(
            name=decode_name(fields[0]),
            address=fields[2],
            size=fields[3],
            offset=fields[4],
            flags=fields[8],
            container=FormatTag.MACHO,
        ))
        cursor += section_size
    return sections


def _symbol_names(
    reader: _Reader,
    symtab: Tuple[int, int, int, int],
    is_64: bool,
    index_range: Optional[Tuple[int, int]],
) -> List[str]:
    symoff, nsyms, stroff, strsize = symtab
    nlist_fmt = "IBBHQ" if is_64 else "IBBHI"
    nlist_size = struct.calcsize("<" + nlist_fmt)
    str_limit = stroff + strsize
    if str_limit > len(reader.data):
        raise FormatParseFailure("Mach-O", "string table runs past end of file")

    if index_range is None:
        indices = range(nsyms)
    else:
        first, count = index_range
        if first + count > nsyms:
            raise FormatParseFailure("Mach-O", "undefined-symbol range exceeds symbol table")
        indices = range(first, first + count)

    names = []
    for index in indices:
        n_strx, n_type, _, _, _ = reader.unpack(nlist_fmt, symoff + index * nlist_size)
        if index_range is None:
            # no LC_DYSYMTAB: pick external undefined, non-debug entries
            if n_type & N_STAB or (n_type & N_TYPE) != N_UNDF or not n_type & N_EXT:
                continue
        if n_strx == 0:
            continue
        name = reader.cstring(stroff + n_strx, str_limit)
        if name:
            names.append(name)
    return names


def parse_macho(data: bytes) -> ParsedContainer:
    """
    Decode a thin Mach-O image.

    Raises:
        FormatParseFailure: bad magic, truncated header or load commands,
            or symbol tables pointing outside the file
    """
    try:
        if len(data) < 4:
            raise FormatParseFailure("Mach-O", "file shorter than magic")
        magic = struct.unpack_from(">I", data, 0)[0]
        if magic not in _MAGICS:
            raise FormatParseFailure("Mach-O", f"bad magic {magic:#010x}")
        order, is_64 = _MAGICS[magic]
        reader = _Reader(data, order)

        cputype, _, _, ncmds, sizeofcmds, _ = reader.unpack("IiIIII", 4)
        header_size = 32 if is_64 else 28
        if header_size + sizeofcmds > len(data):
            raise FormatParseFailure("Mach-O", "load commands run past end of file")

        parsed = ParsedContainer(architecture=resolve_architecture(MACHO_CPU_TYPES, cputype))

        symtab = None
        undefined_range = None
        offset = header_size
        commands_end = header_size + sizeofcmds
        for _ in range(ncmds):
            cmd, cmdsize = reader.unpack("II", offset)
            if cmdsize < 8 or offset + cmdsize > commands_end:
                raise FormatParseFailure("Mach-O", f"load command at {offset:#x} has bad size {cmdsize}")
            if cmd == LC_SEGMENT:
                parsed.sections.extend(_parse_segment(reader, offset, cmdsize, is_64=False))
            elif cmd == LC_SEGMENT_64:
                parsed.sections.extend(_parse_segment(reader, offset, cmdsize, is_64=True))
            elif cmd == LC_SYMTAB:
                symtab = reader.unpack("IIII", offset + 8)
            elif cmd == LC_DYSYMTAB:
                fields = reader.unpack("IIIIII", offset + 8)
                undefined_range = (fields[4], fields[5])
            offset += cmdsize

        if symtab is not None:
            parsed.imports = _symbol_names(reader, symtab, is_64, undefined_range)
    except FormatParseFailure:
        raise
    except Exception as e:
        raise FormatParseFailure("Mach-O", str(e)) from e

    logger.debug(
        f"Mach-O parsed: {parsed.architecture}, {len(parsed.sections)} sections, "
        f"{len(parsed.imports)} imports"
    )
    return parsed
