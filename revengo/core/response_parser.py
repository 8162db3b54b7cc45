"""
Turns free-form model answers into Findings, Vulnerabilities and summaries.

Strategies, tried in order:
1. Direct JSON parsing
2. JSON inside a markdown code fence
3. The first bracketed JSON array anywhere in the text
4. The line format ``TYPE: DESCRIPTION: LOCATION: SEVERITY[: CVSS: REMEDIATION]``

An explicit "none found" answer (or an empty array) is a successful empty
result. Anything else that yields no items raises ResponseParseError.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, TypeVar

from pydantic import ValidationError

from revengo.core.errors import ResponseParseError
from revengo.core.models import Finding, Severity, Vulnerability
from revengo.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_CVSS = {
    Severity.LOW: 3.0,
    Severity.MEDIUM: 5.0,
    Severity.HIGH: 8.0,
}

_SEVERITY_WORDS = {
    "critical": Severity.HIGH,
    "severe": Severity.HIGH,
    "high": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "low": Severity.LOW,
    "info": Severity.LOW,
    "informational": Severity.LOW,
}

# the whole field must be the severity, e.g. "High" or "Medium risk", not "Low-level ..."
_SEVERITY_RE = re.compile(
    r"^(critical|severe|high|medium|moderate|low|informational|info)"
    r"(?:\s+(?:risk|severity|priority))?[\s.!;,]*$",
    re.IGNORECASE,
)
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_NONE_RE = re.compile(
    r"^(none|n/?a|nothing( notable)?( found)?|no (notable )?"
    r"(findings|vulnerabilities|issues|vulnerabilities or issues)( (were )?(found|identified|detected))?)\.?$",
    re.IGNORECASE,
)

# keys models commonly use for a wrapped list of items
_LIST_KEYS = ("findings", "vulnerabilities", "items", "results")


# ==================== NORMALISATION ====================

def normalize_severity(value: Any) -> Optional[Severity]:
    """Map a severity word to Severity, or None when it is not one."""
    if isinstance(value, Severity):
        return value
    if not isinstance(value, str):
        return None
    match = _SEVERITY_RE.match(value.strip().strip("*_[]()"))
    if not match:
        return None
    return _SEVERITY_WORDS[match.group(1).lower()]


def clamp_cvss(value: Any, severity: Severity) -> float:
    """Coerce a CVSS-ish value into [0, 10], defaulting from severity."""
    if isinstance(value, bool):
        value = None
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        value = float(match.group()) if match else None
    if not isinstance(value, (int, float)):
        return DEFAULT_CVSS[severity]
    return min(max(float(value), 0.0), 10.0)


def strip_think_blocks(content: str) -> str:
    """Remove reasoning-model ``<think>...</think>`` preambles."""
    content = _THINK_RE.sub("", content)
    # an unterminated block leaves only the closing tag to split on
    if "</think>" in content:
        content = content.rsplit("</think>", 1)[1]
    return content.strip()


# ==================== JSON STRATEGIES ====================

def _as_item_list(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in _LIST_KEYS:
            if isinstance(value.get(key), list):
                return value[key]
        return [value]
    return None


def _first_json_array(content: str) -> Optional[List[Any]]:
    decoder = json.JSONDecoder()
    start = content.find("[")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(content, start)
            # an empty array in prose is not a "none found" answer
            if isinstance(value, list) and value:
                return value
        except json.JSONDecodeError:
            pass
        start = content.find("[", start + 1)
    return None


def extract_json_items(content: str) -> Optional[List[Any]]:
    """
    Pull a list of JSON items out of a model answer.

    Returns:
        The item list, or None if no JSON strategy succeeded
    """
    # Strategy 1: Direct parsing
    try:
        items = _as_item_list(json.loads(content))
        if items is not None:
            return items
    except json.JSONDecodeError:
        pass

    # Strategy 2: Markdown code fence
    for block in _FENCE_RE.findall(content):
        try:
            items = _as_item_list(json.loads(block.strip()))
            if items is not None:
                logger.debug("Parsed JSON from markdown code block")
                return items
        except json.JSONDecodeError:
            continue

    # Strategy 3: First non-empty bracketed array in surrounding prose
    items = _first_json_array(content)
    if items is not None:
        logger.debug("Parsed JSON array embedded in text")
    return items


def _lower_keys(item: Dict[str, Any]) -> Dict[str, Any]:
    return {str(k).lower(): v for k, v in item.items()}


def _text(item: Dict[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = item.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return default


def _finding_from_json(item: Dict[str, Any]) -> Optional[Finding]:
    item = _lower_keys(item)
    category = _text(item, "type", "category", "name", "title")
    description = _text(item, "description", "details", "detail", "summary")
    if not category and not description:
        return None
    return Finding(
        category=category or "General",
        description=description,
        location=_text(item, "location", "address", "section", default="N/A"),
        severity=normalize_severity(item.get("severity")) or Severity.LOW,
    )


def _vulnerability_from_json(item: Dict[str, Any]) -> Optional[Vulnerability]:
    item = _lower_keys(item)
    category = _text(item, "type", "category", "name", "title")
    description = _text(item, "description", "details", "detail", "summary")
    if not category and not description:
        return None
    severity = normalize_severity(item.get("severity")) or Severity.LOW
    return Vulnerability(
        category=category or "General",
        description=description,
        location=_text(item, "location", "address", "section", default="N/A"),
        severity=severity,
        cvss=clamp_cvss(item.get("cvss", item.get("cvss_score")), severity),
        remediation=_text(item, "remediation", "fix", "mitigation", "recommendation"),
    )


# ==================== LINE FORMAT ====================

def _split_line(line: str) -> Optional[List[str]]:
    line = _BULLET_RE.sub("", line.replace("**", "")).strip()
    if not line:
        return None
    return [part.strip() for part in line.split(":")]


def _severity_index(parts: List[str]) -> Optional[int]:
    # TYPE and at least one DESCRIPTION part precede the severity
    for index in range(2, len(parts)):
        if normalize_severity(parts[index]) is not None:
            return index
    return None


def _finding_from_line(line: str) -> Optional[Finding]:
    parts = _split_line(line)
    if not parts:
        return None
    index = _severity_index(parts)
    if index is None:
        return None
    if index == 2:
        description, location = parts[1], "N/A"
    else:
        description, location = ": ".join(parts[1:index - 1]), parts[index - 1] or "N/A"
    return Finding(
        category=parts[0] or "General",
        description=description,
        location=location,
        severity=normalize_severity(parts[index]),
    )


def _vulnerability_from_line(line: str) -> Optional[Vulnerability]:
    parts = _split_line(line)
    if not parts:
        return None
    index = _severity_index(parts)
    if index is None:
        return None
    severity = normalize_severity(parts[index])
    if index == 2:
        description, location = parts[1], "N/A"
    else:
        description, location = ": ".join(parts[1:index - 1]), parts[index - 1] or "N/A"

    rest = parts[index + 1:]
    cvss = DEFAULT_CVSS[severity]
    if rest and _NUMBER_RE.search(rest[0]):
        cvss = clamp_cvss(rest[0], severity)
        rest = rest[1:]
    return Vulnerability(
        category=parts[0] or "General",
        description=description,
        location=location,
        severity=severity,
        cvss=cvss,
        remediation=": ".join(rest),
    )


# ==================== PUBLIC API ====================

def _is_none_answer(content: str) -> bool:
    return bool(_NONE_RE.match(content.strip().strip("*_`")))


def _parse_items(
    content: str,
    task: str,
    from_json: Callable[[Dict[str, Any]], Optional[T]],
    from_line: Callable[[str], Optional[T]],
) -> List[T]:
    content = strip_think_blocks(content or "")
    if not content:
        raise ResponseParseError(f"{task}: empty response")
    if _is_none_answer(content):
        return []

    items = extract_json_items(content)
    if items is not None:
        if not items:
            return []
        parsed = []
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                value = from_json(item)
            except ValidationError as e:
                logger.debug(f"{task}: skipping invalid item {item!r}: {e}")
                continue
            if value is not None:
                parsed.append(value)
        if parsed:
            return parsed
        logger.debug(f"{task}: JSON items present but none usable, trying line format")

    parsed = []
    for line in content.splitlines():
        try:
            value = from_line(line)
        except ValidationError as e:
            logger.debug(f"{task}: skipping invalid line {line!r}: {e}")
            continue
        if value is not None:
            parsed.append(value)
    if not parsed:
        raise ResponseParseError(f"{task}: no parseable items in response")
    return parsed


def parse_findings(content: str) -> List[Finding]:
    """
    Parse an extraction answer.

    Raises:
        ResponseParseError: the answer is empty or contains no usable finding
    """
    return _parse_items(content, "extraction", _finding_from_json, _finding_from_line)


def parse_vulnerabilities(content: str) -> List[Vulnerability]:
    """
    Parse a vulnerability-scan answer.

    Raises:
        ResponseParseError: the answer is empty or contains no usable vulnerability
    """
    return _parse_items(
        content, "vulnerability_scan", _vulnerability_from_json, _vulnerability_from_line
    )


def parse_summary(content: str) -> str:
    """Clean a summary answer; raises ResponseParseError when nothing is left."""
    summary = strip_think_blocks(content or "")
    if not summary:
        raise ResponseParseError("summary: empty response")
    return summary
