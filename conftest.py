"""
Shared pytest fixtures: synthetic PE/ELF/Mach-O images and fake capabilities.

The images are the smallest layouts the real parsers accept, built with
struct so the tests never depend on binaries being present on the host.
"""

import struct
import threading
import time
from typing import Dict, Iterable, Optional, Sequence

import pytest

from revengo.core.errors import CapabilityError
from revengo.core.inspector import BinaryInspector
from revengo.models.base import InsightCapability
from revengo.parsers.strings import StringExtractor


# ==================== PE ====================

PE_SECTION_ALIGNMENT = 0x1000
PE_FILE_ALIGNMENT = 0x200
IMAGE_SCN_CNT_CODE = 0x00000020
IMAGE_SCN_MEM_EXECUTE = 0x20000000
IMAGE_SCN_MEM_READ = 0x40000000
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040


def build_pe(machine: int = 0x8664, sections: Optional[Sequence] = None) -> bytes:
    """
    Minimal PE32+ image.

    Args:
        machine: FILE_HEADER.Machine
        sections: (name, characteristics, raw data) tuples; defaults to one .text
    """
    if sections is None:
        sections = [(b".text", IMAGE_SCN_CNT_CODE | IMAGE_SCN_MEM_EXECUTE | IMAGE_SCN_MEM_READ, b"\xc3" * 16)]

    e_lfanew = 0x40
    dos_header = b"MZ" + b"\x00" * 0x3A + struct.pack("<I", e_lfanew)

    file_header = struct.pack(
        "<HHIIIHH",
        machine,
        len(sections),
        0,      # TimeDateStamp
        0,      # PointerToSymbolTable
        0,      # NumberOfSymbols
        240,    # SizeOfOptionalHeader (PE32+)
        0x0022,  # EXECUTABLE_IMAGE | LARGE_ADDRESS_AWARE
    )

    size_of_image = PE_SECTION_ALIGNMENT * (len(sections) + 1)
    optional_header = struct.pack(
        "<HBBIIIIIQIIHHHHHHIIIIHHQQQQII",
        0x20B,                  # Magic (PE32+)
        14, 0,                  # linker version
        PE_FILE_ALIGNMENT,      # SizeOfCode
        0, 0,                   # SizeOfInitializedData, SizeOfUninitializedData
        PE_SECTION_ALIGNMENT,   # AddressOfEntryPoint
        PE_SECTION_ALIGNMENT,   # BaseOfCode
        0x140000000,            # ImageBase
        PE_SECTION_ALIGNMENT,
        PE_FILE_ALIGNMENT,
        6, 0, 0, 0, 6, 0,       # OS, image and subsystem versions
        0,                      # Win32VersionValue
        size_of_image,
        PE_FILE_ALIGNMENT,      # SizeOfHeaders
        0,                      # CheckSum
        3,                      # Subsystem (console)
        0,                      # DllCharacteristics
        0x100000, 0x1000, 0x100000, 0x1000,
        0,                      # LoaderFlags
        16,                     # NumberOfRvaAndSizes
    ) + b"\x00" * (16 * 8)

    section_table = b""
    raw_data = b""
    for index, (name, characteristics, data) in enumerate(sections):
        raw = data.ljust(PE_FILE_ALIGNMENT, b"\x00")[:PE_FILE_ALIGNMENT]
        section_table += struct.pack(
            "<8sIIIIIIHHI",
            name,
            len(data),                                   # VirtualSize
            PE_SECTION_ALIGNMENT * (index + 1),          # VirtualAddress
            PE_FILE_ALIGNMENT,                           # SizeOfRawData
            PE_FILE_ALIGNMENT * (index + 1),             # PointerToRawData
            0, 0, 0, 0,
            characteristics,
        )
        raw_data += raw

    headers = dos_header + b"PE\x00\x00" + file_header + optional_header + section_table
    return headers.ljust(PE_FILE_ALIGNMENT, b"\x00") + raw_data


# ==================== ELF ====================

SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3
SHT_DYNSYM = 11
SHF_ALLOC = 0x2
SHF_EXECINSTR = 0x4

ELF64_SYM = "<IBBHQQ"
ELF64_SYM_SIZE = struct.calcsize(ELF64_SYM)


def _elf_symbols(entries: Iterable) -> tuple:
    """(name, st_info, st_shndx) entries -> (symbol table bytes, string table bytes)."""
    strtab = b"\x00"
    table = b"\x00" * ELF64_SYM_SIZE
    for name, info, shndx in entries:
        offset = len(strtab)
        strtab += name.encode() + b"\x00"
        table += struct.pack(ELF64_SYM, offset, info, 0, shndx, 0x1000 if shndx else 0, 16 if shndx else 0)
    return table, strtab


def build_elf64(
    machine: int = 62,
    symbols: Optional[Sequence[str]] = ("main", "helper"),
    dynamic_imports: Sequence[str] = (),
) -> bytes:
    """
    Minimal little-endian ELF64 relocatable-style image.

    Args:
        machine: e_machine
        symbols: Global function names for .symtab; None omits .symtab
            entirely, an empty sequence keeps only the null symbol
        dynamic_imports: Names added to .dynsym as undefined global functions,
            next to a global object and a local function that must be ignored
    """
    # (name, type, flags, data, linked section name, entsize)
    sections = [(".text", SHT_PROGBITS, SHF_ALLOC | SHF_EXECINSTR, b"\x90" * 16 + b"\xc3", None, 0)]

    if symbols is not None:
        symtab, strtab = _elf_symbols((name, 0x12, 1) for name in symbols)
        sections.append((".symtab", SHT_SYMTAB, 0, symtab, ".strtab", ELF64_SYM_SIZE))
        sections.append((".strtab", SHT_STRTAB, 0, strtab, None, 0))

    if dynamic_imports:
        entries = [(name, 0x12, 0) for name in dynamic_imports]
        entries.append(("environ", 0x11, 0))       # STB_GLOBAL, STT_OBJECT
        entries.append(("local_helper", 0x02, 1))  # STB_LOCAL, STT_FUNC
        dynsym, dynstr = _elf_symbols(entries)
        sections.append((".dynsym", SHT_DYNSYM, SHF_ALLOC, dynsym, ".dynstr", ELF64_SYM_SIZE))
        sections.append((".dynstr", SHT_STRTAB, SHF_ALLOC, dynstr, None, 0))

    names = [s[0] for s in sections] + [".shstrtab"]
    shstrtab = b"\x00"
    name_offsets = {}
    for name in names:
        name_offsets[name] = len(shstrtab)
        shstrtab += name.encode() + b"\x00"
    sections.append((".shstrtab", SHT_STRTAB, 0, shstrtab, None, 0))

    index_of = {s[0]: i + 1 for i, s in enumerate(sections)}

    body = b""
    offsets = []
    cursor = 64
    for _, _, _, data, _, _ in sections:
        offsets.append(cursor)
        body += data
        cursor += len(data)
    padding = (-cursor) % 8
    body += b"\x00" * padding
    shoff = cursor + padding

    section_headers = b"\x00" * 64
    for (name, sh_type, flags, data, link, entsize), offset in zip(sections, offsets):
        section_headers += struct.pack(
            "<IIQQQQIIQQ",
            name_offsets[name],
            sh_type,
            flags,
            0x1000 if name == ".text" else 0,
            offset,
            len(data),
            index_of[link] if link else 0,
            1 if sh_type in (SHT_SYMTAB, SHT_DYNSYM) else 0,  # sh_info: first non-local symbol
            8 if entsize else 1,
            entsize,
        )

    e_ident = b"\x7fELF" + bytes([2, 1, 1, 0]) + b"\x00" * 8
    header = e_ident + struct.pack(
        "<HHIQQQIHHHHHH",
        1,                  # ET_REL
        machine,
        1,                  # EV_CURRENT
        0,                  # e_entry
        0,                  # e_phoff
        shoff,
        0,                  # e_flags
        64, 56, 0,          # e_ehsize, e_phentsize, e_phnum
        64,                 # e_shentsize
        len(sections) + 1,  # e_shnum
        index_of[".shstrtab"],
    )
    return header + body + section_headers


# ==================== MACH-O ====================

MH_MAGIC_64_LE = b"\xcf\xfa\xed\xfe"
LC_SEGMENT_64 = 0x19
LC_SYMTAB = 0x2
LC_DYSYMTAB = 0xB
CPU_TYPE_X86_64 = 0x01000007
CPU_TYPE_ARM64 = 0x0100000C


def build_macho64(
    cputype: int = CPU_TYPE_ARM64,
    imports: Sequence[str] = ("_printf", "_malloc"),
    with_dysymtab: bool = True,
) -> bytes:
    """
    Minimal little-endian 64-bit Mach-O with one __TEXT,__text section.

    The symbol table holds one defined external (_main) followed by the
    undefined imports; LC_DYSYMTAB, when present, names that undefined range.
    """
    text = b"\x1f\x20\x03\xd5" * 4  # nop
    segment_size = 72 + 80
    symtab_size = 24
    dysymtab_size = 80 if with_dysymtab else 0
    ncmds = 3 if with_dysymtab else 2
    sizeofcmds = segment_size + symtab_size + dysymtab_size
    header_size = 32

    strtab = b"\x00"
    name_offsets = []
    for name in ["_main", *imports]:
        name_offsets.append(len(strtab))
        strtab += name.encode() + b"\x00"

    symoff = header_size + sizeofcmds
    nlist = struct.pack("<IBBHQ", name_offsets[0], 0x0F, 1, 0, 0x100000000)  # N_SECT | N_EXT
    for offset in name_offsets[1:]:
        nlist += struct.pack("<IBBHQ", offset, 0x01, 0, 0x0100, 0)  # N_UNDF | N_EXT
    stroff = symoff + len(nlist)
    text_offset = stroff + len(strtab)
    text_offset += (-text_offset) % 16

    header = MH_MAGIC_64_LE + struct.pack("<IiIIII", cputype, 0, 2, ncmds, sizeofcmds, 0) + b"\x00" * 4

    segment = struct.pack(
        "<II16sQQQQiiII",
        LC_SEGMENT_64, segment_size,
        b"__TEXT",
        0x100000000, 0x4000,
        0, text_offset + len(text),
        5, 5,
        1,      # nsects
        0,
    )
    segment += struct.pack(
        "<16s16sQQIIIIIIII",
        b"__text", b"__TEXT",
        0x100000000 + text_offset, len(text),
        text_offset,
        2, 0, 0,
        0x80000400,  # S_ATTR_PURE_INSTRUCTIONS | S_ATTR_SOME_INSTRUCTIONS
        0, 0, 0,
    )

    commands = segment + struct.pack("<IIIIII", LC_SYMTAB, symtab_size, symoff, 1 + len(imports), stroff, len(strtab))
    if with_dysymtab:
        commands += struct.pack(
            "<II" + "I" * 18,
            LC_DYSYMTAB, dysymtab_size,
            0, 0,                   # locals
            0, 1,                   # external defined
            1, len(imports),        # undefined
            *([0] * 12),
        )

    image = header + commands + nlist + strtab
    return image.ljust(text_offset, b"\x00") + text


# ==================== FAKE CAPABILITIES ====================

def task_of(prompt: str) -> str:
    """Which analysis task a prompt belongs to."""
    if "security vulnerabilities" in prompt:
        return "vulnerability_scan"
    if "concise summary" in prompt:
        return "summary"
    return "extraction"


DEFAULT_RESPONSES = {
    "extraction": '[{"type": "Import", "description": "Dynamically links printf", '
                  '"location": ".dynsym", "severity": "Low"}]',
    "vulnerability_scan": "Memory Safety: Use of gets(): reads unbounded input: main: High: 8.1: Replace with fgets",
    "summary": "<think>looking at imports</think>\nA small command-line utility.",
}


class ScriptedCapability(InsightCapability):
    """Answers each task with a canned response; failures and hangs per task."""

    def __init__(
        self,
        responses: Optional[Dict[str, str]] = None,
        fail: Iterable[str] = (),
        hang: Optional[Dict[str, float]] = None,
        name: str = "scripted",
    ):
        super().__init__(name)
        self.responses = dict(DEFAULT_RESPONSES, **(responses or {}))
        self.fail = set(fail)
        self.hang = hang or {}
        self.prompts = []
        self._lock = threading.Lock()

    def generate(self, prompt: str) -> str:
        task = task_of(prompt)
        with self._lock:
            self.prompts.append(prompt)
        if task in self.hang:
            time.sleep(self.hang[task])
        if task in self.fail:
            raise CapabilityError(f"{task} backend unavailable")
        return self.responses[task]


class OverlapCounter(ScriptedCapability):
    """Records the largest number of overlapping generate() calls."""

    thread_safe = False

    def __init__(self, delay: float = 0.05, **kwargs):
        super().__init__(**kwargs)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    def generate(self, prompt: str) -> str:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(self.delay)
            return super().generate(prompt)
        finally:
            with self._lock:
                self.in_flight -= 1


class BarrierCapability(ScriptedCapability):
    """Only succeeds if all three tasks are in generate() at the same time."""

    thread_safe = True

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.barrier = threading.Barrier(3, timeout=5)

    def generate(self, prompt: str) -> str:
        self.barrier.wait()
        return super().generate(prompt)


# ==================== FIXTURES ====================

@pytest.fixture
def inspector():
    """Inspector with a 1 MiB cap and the in-process string scanner."""
    return BinaryInspector(max_file_size=1024 * 1024, string_extractor=StringExtractor(use_external=False))


@pytest.fixture
def write_file(tmp_path):
    """Write bytes to tmp_path/name and return the path as a string."""

    def _write(name: str, data: bytes) -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)

    return _write
