"""
Printable string recovery, independent of container format.
"""

import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

from revengo.utils.logger import get_logger

logger = get_logger(__name__)

MIN_STRING_LEN = 4

# letters, digits and a fixed punctuation allow-list
_PRINTABLE_RUN_RE = re.compile(
    rb"[A-Za-z0-9/\-:.,_$%'()\[\]<> ]{" + str(MIN_STRING_LEN).encode() + rb",}"
)


def scan_printable_runs(data: bytes) -> List[str]:
    """Maximal printable runs of length >= 4, left to right, non-overlapping."""
    return [m.group().decode("ascii") for m in _PRINTABLE_RUN_RE.finditer(data)]


class StringExtractor:
    """Recovers printable strings from a file.

    Prefers the external ``strings`` tool when it is on PATH and falls back
    to scanning the raw buffer. Both paths drop anything shorter than four
    characters.
    """

    def __init__(self, use_external: bool = True, timeout: float = 30.0):
        self.use_external = use_external
        self.timeout = timeout
        self.strings_tool = shutil.which("strings") if use_external else None

    def extract(self, path: str, data: Optional[bytes] = None) -> List[str]:
        """
        Extract strings from ``path`` with a single full scan.

        Args:
            path: File to scan
            data: The file's already-loaded content, used by the fallback scan

        Returns:
            Strings in first-occurrence order
        """
        if self.strings_tool:
            try:
                return self._run_strings_tool(path)
            except (OSError, subprocess.SubprocessError) as e:
                logger.warning(f"External strings tool failed, falling back to buffer scan: {e}")

        if data is None:
            data = Path(path).read_bytes()
        return scan_printable_runs(data)

    def _run_strings_tool(self, path: str) -> List[str]:
        completed = subprocess.run(
            [self.strings_tool, "--", path],
            capture_output=True,
            timeout=self.timeout,
            check=True,
        )
        result = []
        for line in completed.stdout.decode("utf-8", errors="replace").splitlines():
            trimmed = line.strip()
            if len(trimmed) >= MIN_STRING_LEN:
                result.append(trimmed)
        return result
