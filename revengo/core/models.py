"""
Pydantic models shared by the inspector, the orchestrator and the API.
"""

from enum import Enum
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


# ==================== ENUMERATIONS ====================

class FormatTag(str, Enum):
    PE = "PE"
    ELF = "ELF"
    MACHO = "Mach-O"
    UNKNOWN = "Unknown"


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


UNKNOWN_ARCHITECTURE = "Unknown"

# The three concurrent analysis tasks, in dispatch order
TASK_NAMES = ("extraction", "vulnerability_scan", "summary")

# "contains executable instructions" bit per container
EXECUTABLE_FLAG = {
    FormatTag.PE: 0x20000000,     # IMAGE_SCN_MEM_EXECUTE
    FormatTag.ELF: 0x4,           # SHF_EXECINSTR
    FormatTag.MACHO: 0x00000400,  # S_ATTR_SOME_INSTRUCTIONS
}


# ==================== STRUCTURAL MODELS ====================

class Section(BaseModel):
    """A named region of a binary as listed in its section table."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Section name (e.g., '.text', '__text')")
    address: int = Field(0, ge=0, description="Virtual address")
    size: int = Field(0, ge=0, description="Size in bytes")
    offset: int = Field(0, ge=0, description="File offset")
    flags: int = Field(0, ge=0, description="Raw flag bits as stored by the container")
    container: FormatTag = Field(..., description="Format of the owning binary")

    @computed_field
    @property
    def is_executable(self) -> bool:
        return bool(self.flags & EXECUTABLE_FLAG.get(self.container, 0))

    @computed_field
    @property
    def flags_hex(self) -> str:
        return f"{self.flags:08x}"


class FileInfo(BaseModel):
    """Structural and textual facts about one inspected file."""
    model_config = ConfigDict(frozen=True)

    path: str
    name: str
    size: int = Field(..., ge=0)
    format: FormatTag = FormatTag.UNKNOWN
    architecture: str = UNKNOWN_ARCHITECTURE
    sections: Tuple[Section, ...] = ()
    imports: Tuple[str, ...] = ()
    exports: Tuple[str, ...] = ()
    strings: Tuple[str, ...] = ()
    is_stripped: bool = False

    @model_validator(mode="after")
    def _unknown_has_no_structure(self):
        if self.format is FormatTag.UNKNOWN:
            if self.architecture != UNKNOWN_ARCHITECTURE:
                raise ValueError("Unknown format cannot carry an architecture")
            if self.sections or self.imports or self.exports:
                raise ValueError("Unknown format cannot carry sections, imports or exports")
        return self


# ==================== ANALYSIS MODELS ====================

class Finding(BaseModel):
    """Notable item reported by the extraction task."""
    category: str = Field(..., description="Finding type (e.g., 'Import', 'Packer')")
    description: str
    location: str = Field("N/A", description="Section, offset or symbol hint")
    severity: Severity = Severity.LOW


class Vulnerability(BaseModel):
    """Potential security issue reported by the vulnerability task."""
    category: str = Field(..., description="Vulnerability type (e.g., 'Buffer Overflow')")
    description: str
    location: str = Field("N/A", description="Section, offset or symbol hint")
    severity: Severity = Severity.LOW
    cvss: float = Field(0.0, ge=0.0, le=10.0, description="CVSS-like score 0.0-10.0")
    remediation: str = ""


class AnalysisResult(BaseModel):
    """Aggregated output of one analysis call."""
    filename: str
    file_type: str
    file_size: int = Field(..., ge=0)
    findings: List[Finding] = Field(default_factory=list)
    vulnerabilities: List[Vulnerability] = Field(default_factory=list)
    summary: str = ""
    failed_tasks: List[str] = Field(
        default_factory=list,
        description="Tasks that failed or timed out and contributed nothing"
    )

    @property
    def inconclusive(self) -> bool:
        """True when every analysis task failed."""
        return set(TASK_NAMES) <= set(self.failed_tasks)
