"""
Error taxonomy for file inspection and analysis.

Only AccessError and SizeLimitExceeded (and AnalysisCancelled, when the caller
asks for it) ever reach the caller of AnalysisOrchestrator.analyze. Everything
else is recovered where it happens and reported through logging.
"""


class RevEnGoError(Exception):
    """Base class for all RevEnGo errors."""


class AccessError(RevEnGoError):
    """File is missing, not a regular file, or unreadable."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to access file {path}: {reason}")


class SizeLimitExceeded(RevEnGoError):
    """File is larger than the configured analysis cap."""

    def __init__(self, path: str, size: int, limit: int):
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(
            f"File too large for analysis: {path} is {size} bytes "
            f"(max {limit} bytes)"
        )


class FormatParseFailure(RevEnGoError):
    """A container parser could not decode a format confirmed by its magic."""

    def __init__(self, container: str, reason: str):
        self.container = container
        self.reason = reason
        super().__init__(f"{container} parse failed: {reason}")


class TaskInvocationError(RevEnGoError):
    """An orchestrator task could not produce items."""


class CapabilityError(TaskInvocationError):
    """Transport or service failure inside an insight capability."""


class TaskTimeout(TaskInvocationError):
    """A task did not finish within its time budget."""


class ResponseParseError(TaskInvocationError):
    """The capability answered, but nothing usable could be parsed."""


class AnalysisCancelled(RevEnGoError):
    """The caller abandoned the analysis; all tasks were cancelled."""


class UnknownCapabilityError(RevEnGoError):
    """No registered capability matches the requested name."""
