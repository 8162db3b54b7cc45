"""
Tests for the shared data models.
"""

import pytest
from pydantic import ValidationError

from revengo.core.models import (
    AnalysisResult,
    FileInfo,
    Finding,
    FormatTag,
    Section,
    Severity,
    Vulnerability,
)


@pytest.mark.parametrize("container,flags,executable", [
    (FormatTag.PE, 0x60000020, True),
    (FormatTag.PE, 0x40000040, False),
    (FormatTag.ELF, 0x6, True),
    (FormatTag.ELF, 0x2, False),
    (FormatTag.MACHO, 0x80000400, True),
    (FormatTag.MACHO, 0x0, False),
])
def test_section_is_executable_per_container(container, flags, executable):
    section = Section(name="s", flags=flags, container=container)
    assert section.is_executable is executable


def test_section_flags_hex_is_zero_padded():
    assert Section(name=".text", flags=0x6, container=FormatTag.ELF).flags_hex == "00000006"


def test_file_info_is_frozen():
    info = FileInfo(path="/tmp/a", name="a", size=1)
    with pytest.raises(ValidationError):
        info.size = 2


def test_unknown_format_cannot_carry_structure():
    with pytest.raises(ValidationError):
        FileInfo(path="/tmp/a", name="a", size=1, architecture="x86")
    with pytest.raises(ValidationError):
        FileInfo(path="/tmp/a", name="a", size=1, imports=("puts",))

    # strings are fine for Unknown
    assert FileInfo(path="/tmp/a", name="a", size=1, strings=("hello",)).strings == ("hello",)


def test_cvss_range_is_validated():
    with pytest.raises(ValidationError):
        Vulnerability(category="X", description="y", cvss=10.5)


def test_analysis_result_json_round_trip():
    result = AnalysisResult(
        filename="a.out",
        file_type="ELF",
        file_size=4096,
        findings=[Finding(category="Import", description="puts", location=".dynsym")],
        vulnerabilities=[
            Vulnerability(
                category="Buffer Overflow",
                description="strcpy into stack buffer",
                location="main",
                severity=Severity.HIGH,
                cvss=7.3,
                remediation="Use strncpy",
            )
        ],
        summary="Prints a greeting.",
        failed_tasks=["summary"],
    )

    restored = AnalysisResult.model_validate_json(result.model_dump_json())

    assert restored == result
    assert restored.vulnerabilities[0].cvss == 7.3
    assert restored.vulnerabilities[0].severity is Severity.HIGH


def test_inconclusive_only_when_every_task_failed():
    partial = AnalysisResult(filename="a", file_type="Text", file_size=1, failed_tasks=["summary"])
    total = AnalysisResult(
        filename="a", file_type="Text", file_size=1,
        failed_tasks=["extraction", "summary", "vulnerability_scan"],
    )
    assert not partial.inconclusive
    assert total.inconclusive
