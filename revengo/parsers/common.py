"""
Shared pieces for the container parsers.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from revengo.core.models import Section


@dataclass
class ParsedContainer:
    """The format-specific part of a FileInfo, as produced by one parser."""

    architecture: str
    sections: List[Section] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    is_stripped: bool = False


def resolve_architecture(table: Dict[int, str], code: int) -> str:
    """Map a native machine/CPU code to a readable name, never failing."""
    return table.get(code, f"Unknown ({code:#x})")


def decode_name(raw: bytes) -> str:
    """Decode a NUL-padded fixed-width name field."""
    return raw.split(b"\x00", 1)[0].decode("utf-8", errors="replace")
