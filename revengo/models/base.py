"""
InsightCapability contract shared by every model backend.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, Type

# provider name -> capability class, filled by @register_capability
PROVIDERS: Dict[str, Type["InsightCapability"]] = {}


class InsightCapability(ABC):
    """Prompt in, text out.

    ``generate`` is synchronous and may be called from worker threads.
    Implementations whose client must not be used concurrently declare
    ``thread_safe = False`` and the orchestrator serialises their calls.
    """

    provider: str = "base"
    thread_safe: bool = True

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """
        Run one prompt.

        Raises:
            CapabilityError: transport or service failure after retries
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def register_capability(provider: str) -> Callable[[Type[InsightCapability]], Type[InsightCapability]]:
    """Class decorator that makes a capability constructible by provider name."""

    def decorator(cls: Type[InsightCapability]) -> Type[InsightCapability]:
        cls.provider = provider
        PROVIDERS[provider] = cls
        return cls

    return decorator
