"""
Prompt builders for the three analysis tasks.

Each prompt carries the human-readable file type, a decoded content sample
and the structural facts already recovered by the inspector, so the model
does not have to rediscover imports or sections from raw bytes.
"""

import json
from typing import Dict, Any

from revengo.core.models import FileInfo

# Caps keep prompts bounded for large binaries
MAX_PROMPT_IMPORTS = 50
MAX_PROMPT_EXPORTS = 50
MAX_PROMPT_STRINGS = 40
MAX_PROMPT_SECTIONS = 30


def decode_sample(data: bytes, sample_size: int = 1000) -> str:
    """First ``sample_size`` bytes as text, undecodable bytes replaced."""
    return data[:sample_size].decode("utf-8", errors="replace")


def _file_facts(file_info: FileInfo) -> Dict[str, Any]:
    return {
        "name": file_info.name,
        "size": file_info.size,
        "format": file_info.format.value,
        "architecture": file_info.architecture,
        "stripped": file_info.is_stripped,
        "sections": [
            {
                "name": s.name,
                "size": s.size,
                "flags": s.flags_hex,
                "executable": s.is_executable,
            }
            for s in file_info.sections[:MAX_PROMPT_SECTIONS]
        ],
        "imports": list(file_info.imports[:MAX_PROMPT_IMPORTS]),
        "exports": list(file_info.exports[:MAX_PROMPT_EXPORTS]),
        "strings": list(file_info.strings[:MAX_PROMPT_STRINGS]),
    }


def _input_block(file_type: str, sample: str, file_info: FileInfo) -> str:
    return f"""=== INPUT DATA ===

File type: {file_type}

File facts: {json.dumps(_file_facts(file_info), indent=2)}

Content sample:
{sample}

=== END INPUT DATA ==="""


def build_extraction_prompt(file_type: str, sample: str, file_info: FileInfo) -> str:
    """Prompt for the extraction task: structure, imports, dependencies."""
    return f"""Analyze this {file_type} file and extract key information.
Provide detailed findings about the structure, imports, dependencies, or other notable elements.

{_input_block(file_type, sample, file_info)}

Respond ONLY with a JSON array. Each element must be an object with the keys
"type", "description", "location" and "severity" (one of "Low", "Medium", "High").
If JSON is not possible, write one finding per line in the format:
TYPE: DESCRIPTION: LOCATION: SEVERITY
If there is nothing notable, respond with an empty array: []
"""


def build_vulnerability_prompt(file_type: str, sample: str, file_info: FileInfo) -> str:
    """Prompt for the vulnerability scan: memory safety, input validation, insecure APIs."""
    return f"""Analyze this {file_type} file for security vulnerabilities.
Look for common issues like memory safety, input validation, insecure functions, etc.

{_input_block(file_type, sample, file_info)}

Respond ONLY with a JSON array. Each element must be an object with the keys
"type", "description", "location", "severity" (one of "Low", "Medium", "High"),
"cvss" (number from 0.0 to 10.0) and "remediation".
If JSON is not possible, write one vulnerability per line in the format:
TYPE: DESCRIPTION: LOCATION: SEVERITY: CVSS: REMEDIATION
If no vulnerabilities are found, respond with an empty array: []
"""


def build_summary_prompt(file_type: str, sample: str, file_info: FileInfo) -> str:
    """Prompt for the free-text summary."""
    return f"""Provide a concise summary of this {file_type} file.
What is its likely purpose? What are its main components? Is it potentially malicious?

{_input_block(file_type, sample, file_info)}

Provide your analysis in paragraph form, without headings or lists.
"""
