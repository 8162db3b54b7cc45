"""
Binary inspection: size-capped load, format sniffing, container parsing and
string extraction, assembled into one immutable FileInfo.
"""

from pathlib import Path
from typing import Callable, Dict, Optional

from revengo.core.errors import AccessError, FormatParseFailure, SizeLimitExceeded
from revengo.core.models import FileInfo, FormatTag
from revengo.parsers.common import ParsedContainer
from revengo.parsers.elf_parser import parse_elf
from revengo.parsers.macho_parser import parse_macho
from revengo.parsers.pe_parser import ExportStrategy, parse_pe
from revengo.parsers.sniffer import HEADER_SIZE, identify
from revengo.parsers.strings import StringExtractor
from revengo.utils.config import get_analysis_option
from revengo.utils.logger import get_logger

logger = get_logger(__name__)

MiB = 1024 * 1024

# Extension hints for files no container parser recognises
_EXTENSION_TYPES = {
    ".exe": "Windows PE Executable",
    ".dll": "Windows PE Executable",
    ".elf": "ELF Binary",
    ".so": "ELF Binary",
    ".dylib": "Mach-O Binary",
    ".jar": "Java Archive",
    ".class": "Java Bytecode",
    ".js": "JavaScript",
    ".py": "Python",
    ".go": "Go",
    ".c": "C/C++",
    ".cpp": "C/C++",
    ".h": "C/C++",
    ".hpp": "C/C++",
}


class BinaryInspector:
    """Turns a path into a FileInfo, degrading gracefully on malformed input."""

    def __init__(
        self,
        max_file_size: Optional[int] = None,
        string_extractor: Optional[StringExtractor] = None,
        export_strategy: Optional[ExportStrategy] = None,
    ):
        """
        Args:
            max_file_size: Hard cap in bytes (default: max_file_size_mb from config)
            string_extractor: StringExtractor to use (default: configured one)
            export_strategy: PE export recovery strategy (default: section scan heuristic)
        """
        if max_file_size is None:
            max_file_size = int(float(get_analysis_option("max_file_size_mb", 10)) * MiB)
        self.max_file_size = max_file_size
        self.string_extractor = string_extractor or StringExtractor(
            use_external=bool(get_analysis_option("use_external_strings", True)),
            timeout=float(get_analysis_option("strings_timeout_seconds", 30)),
        )
        self.export_strategy = export_strategy

        self._parsers: Dict[FormatTag, Callable[[bytes], ParsedContainer]] = {
            FormatTag.PE: lambda data: parse_pe(data, self.export_strategy),
            FormatTag.ELF: parse_elf,
            FormatTag.MACHO: parse_macho,
        }

    def load(self, path: str) -> bytes:
        """
        Read a file once, enforcing the size cap before any parsing.

        Raises:
            AccessError: missing, not a regular file, or unreadable
            SizeLimitExceeded: larger than max_file_size
        """
        p = Path(path)
        try:
            stat = p.stat()
        except OSError as e:
            raise AccessError(str(path), e.strerror or str(e)) from e
        if not p.is_file():
            raise AccessError(str(path), "not a regular file")
        if stat.st_size > self.max_file_size:
            raise SizeLimitExceeded(str(path), stat.st_size, self.max_file_size)

        try:
            with open(p, "rb") as f:
                # one byte past the cap catches files that grew after stat()
                data = f.read(self.max_file_size + 1)
        except OSError as e:
            raise AccessError(str(path), e.strerror or str(e)) from e
        if len(data) > self.max_file_size:
            raise SizeLimitExceeded(str(path), len(data), self.max_file_size)
        return data

    def inspect(self, path: str) -> FileInfo:
        """Load and inspect ``path``."""
        return self.inspect_bytes(path, self.load(path))

    def inspect_bytes(self, path: str, data: bytes) -> FileInfo:
        """Build a FileInfo from content that has already passed load()."""
        candidate = identify(data[:HEADER_SIZE])
        parsed = None

        parser = self._parsers.get(candidate)
        if parser is not None:
            try:
                parsed = parser(data)
            except FormatParseFailure as e:
                logger.warning(f"{Path(path).name}: {e} - treating as Unknown format")

        strings = self.string_extractor.extract(str(path), data)

        if parsed is None:
            return FileInfo(
                path=str(path),
                name=Path(path).name,
                size=len(data),
                strings=tuple(strings),
            )

        return FileInfo(
            path=str(path),
            name=Path(path).name,
            size=len(data),
            format=candidate,
            architecture=parsed.architecture,
            sections=tuple(parsed.sections),
            imports=tuple(parsed.imports),
            exports=tuple(parsed.exports),
            strings=tuple(strings),
            is_stripped=parsed.is_stripped,
        )


def describe_file_type(file_info: FileInfo, data: bytes) -> str:
    """Human-readable file type for reports."""
    if file_info.format is not FormatTag.UNKNOWN:
        return file_info.format.value
    hint = _EXTENSION_TYPES.get(Path(file_info.name).suffix.lower())
    if hint:
        return hint
    return "Binary" if b"\x00" in data[:1000] else "Text"
