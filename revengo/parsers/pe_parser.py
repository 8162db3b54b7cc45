"""
PE (Windows) container parser built on pefile.

Exports are recovered through a swappable ExportStrategy. The default,
SectionScanExports, is a heuristic: it pattern-matches symbol-shaped ASCII in
export-looking sections instead of decoding the export directory, so it can
both miss exports and report junk. DirectoryExports decodes the structured
export directory and can be passed in instead.
"""

import re
from typing import List, Optional

import pefile

from revengo.core.errors import FormatParseFailure
from revengo.core.models import FormatTag, Section
from revengo.parsers.common import ParsedContainer, decode_name, resolve_architecture
from revengo.utils.logger import get_logger

logger = get_logger(__name__)

PE_MACHINES = {
    0x14C: "x86",
    0x8664: "x86_64",
    0x1C0: "ARM",
    0x1C4: "ARM Thumb-2",
    0xAA64: "ARM64",
}

_IMPORT_DIRECTORY = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_IMPORT"]
_EXPORT_DIRECTORY = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_EXPORT"]


class ExportStrategy:
    """Recovers exported symbol names from a loaded PE."""

    name = "base"

    def extract(self, pe: pefile.PE) -> List[str]:
        raise NotImplementedError


class SectionScanExports(ExportStrategy):
    """Heuristic: scan `.edata`/`*export*` sections for symbol-shaped runs."""

    name = "section-scan"
    _SYMBOL_RE = re.compile(rb"[A-Za-z0-9_]+")

    def extract(self, pe: pefile.PE) -> List[str]:
        exports = []
        for section in pe.sections:
            section_name = decode_name(section.Name)
            if section_name != ".edata" and "export" not in section_name:
                continue
            for match in self._SYMBOL_RE.finditer(section.get_data()):
                token = match.group().decode("ascii")
                if len(token) > 3 and not token.startswith("_"):
                    exports.append(token)
        return exports


class DirectoryExports(ExportStrategy):
    """Structured decoding of the export directory via pefile."""

    name = "directory"

    def extract(self, pe: pefile.PE) -> List[str]:
        pe.parse_data_directories(directories=[_EXPORT_DIRECTORY])
        if not hasattr(pe, "DIRECTORY_ENTRY_EXPORT"):
            return []
        exports = []
        for symbol in pe.DIRECTORY_ENTRY_EXPORT.symbols:
            if symbol.name:
                exports.append(symbol.name.decode("utf-8", errors="replace"))
            else:
                exports.append(f"ord_{symbol.ordinal}")
        return exports


def parse_pe(data: bytes, export_strategy: Optional[ExportStrategy] = None) -> ParsedContainer:
    """
    Decode a PE image.

    Raises:
        FormatParseFailure: the MZ/PE headers or tables could not be decoded
    """
    strategy = export_strategy or SectionScanExports()
    try:
        pe = pefile.PE(data=data, fast_load=True)
    except Exception as e:
        raise FormatParseFailure("PE", str(e)) from e

    try:
        parsed = ParsedContainer(
            architecture=resolve_architecture(PE_MACHINES, pe.FILE_HEADER.Machine)
        )

        for section in pe.sections:
            parsed.sections.append(Section(
                name=decode_name(section.Name),
                address=section.VirtualAddress,
                size=section.SizeOfRawData,
                offset=section.PointerToRawData,
                flags=section.Characteristics,
                container=FormatTag.PE,
            ))

        pe.parse_data_directories(directories=[_IMPORT_DIRECTORY])
        if hasattr(pe, "DIRECTORY_ENTRY_IMPORT"):
            for entry in pe.DIRECTORY_ENTRY_IMPORT:
                for imp in entry.imports:
                    if imp.name:
                        parsed.imports.append(imp.name.decode("utf-8", errors="replace"))
                    else:
                        parsed.imports.append(f"ord_{imp.ordinal}")

        parsed.exports = strategy.extract(pe)
        logger.debug(
            f"PE parsed: {parsed.architecture}, {len(parsed.sections)} sections, "
            f"{len(parsed.imports)} imports, {len(parsed.exports)} exports ({strategy.name})"
        )
        return parsed
    except FormatParseFailure:
        raise
    except Exception as e:
        raise FormatParseFailure("PE", str(e)) from e
    finally:
        pe.close()
