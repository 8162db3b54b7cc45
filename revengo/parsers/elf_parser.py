"""
ELF (Linux/Unix) container parser built on pyelftools.
"""

from io import BytesIO

from elftools.elf.elffile import ELFFile
from elftools.elf.enums import ENUM_E_MACHINE
from elftools.elf.sections import SymbolTableSection

from revengo.core.errors import FormatParseFailure
from revengo.core.models import FormatTag, Section
from revengo.parsers.common import ParsedContainer, resolve_architecture
from revengo.utils.logger import get_logger

logger = get_logger(__name__)

ELF_MACHINES = {
    3: "x86",
    8: "MIPS",
    20: "PowerPC",
    21: "PowerPC64",
    40: "ARM",
    62: "x86_64",
    183: "ARM64",
    243: "RISC-V",
}


def _machine_code(e_machine) -> int:
    # pyelftools reports known machines by name and unknown ones as ints
    if isinstance(e_machine, int):
        return e_machine
    return ENUM_E_MACHINE.get(e_machine, 0)


def _is_stripped(elf: ELFFile) -> bool:
    """Stripped iff the static symbol table is missing or holds only the null symbol."""
    symtab = elf.get_section_by_name(".symtab")
    if not isinstance(symtab, SymbolTableSection):
        return True
    return symtab.num_symbols() <= 1


def _dynamic_function_imports(elf: ELFFile) -> list:
    dynsym = elf.get_section_by_name(".dynsym")
    if not isinstance(dynsym, SymbolTableSection):
        return []
    imports = []
    for symbol in dynsym.iter_symbols():
        info = symbol["st_info"]
        if info["bind"] == "STB_GLOBAL" and info["type"] == "STT_FUNC" and symbol.name:
            imports.append(symbol.name)
    return imports


def parse_elf(data: bytes) -> ParsedContainer:
    """
    Decode an ELF image.

    Raises:
        FormatParseFailure: headers, section table or symbol tables are corrupt
            or truncated
    """
    try:
        elf = ELFFile(BytesIO(data))

        parsed = ParsedContainer(
            architecture=resolve_architecture(ELF_MACHINES, _machine_code(elf.header["e_machine"]))
        )

        for section in elf.iter_sections():
            parsed.sections.append(Section(
                name=section.name,
                address=section["sh_addr"],
                size=section["sh_size"],
                offset=section["sh_offset"],
                flags=section["sh_flags"],
                container=FormatTag.ELF,
            ))

        parsed.imports = _dynamic_function_imports(elf)
        parsed.is_stripped = _is_stripped(elf)
    except Exception as e:
        raise FormatParseFailure("ELF", str(e)) from e

    logger.debug(
        f"ELF parsed: {parsed.architecture}, {len(parsed.sections)} sections, "
        f"{len(parsed.imports)} imports, stripped={parsed.is_stripped}"
    )
    return parsed
