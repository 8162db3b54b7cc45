"""
Capability registry: resolves configured capability names to providers.

Names come from the ``capabilities`` table of model_config.json, e.g.
``"deepseek:8b"`` -> provider ``ollama`` with model ``deepseek-r1:8b``. A
bare provider name (``"openai"``) also works with that provider's defaults.
"""

from typing import Any, Dict, List, Optional

# imported for their @register_capability side effect
import revengo.models.anthropic_client  # noqa: F401
import revengo.models.openai_client  # noqa: F401
from revengo.core.errors import UnknownCapabilityError
from revengo.models.base import PROVIDERS, InsightCapability
from revengo.utils.config import get_config
from revengo.utils.cost_tracker import CostTracker
from revengo.utils.logger import get_logger

logger = get_logger(__name__)

# pricing lives in the cost tracker, not in the client
_PRICING_KEYS = ("cost_per_1k_input_tokens", "cost_per_1k_output_tokens")

_cost_tracker: Optional[CostTracker] = None


def get_cost_tracker() -> CostTracker:
    """Process-wide tracker shared by capabilities built without one."""
    global _cost_tracker
    if _cost_tracker is None:
        _cost_tracker = CostTracker()
    return _cost_tracker


def available_providers() -> List[str]:
    """Registered provider names."""
    return sorted(PROVIDERS)


def available_capabilities(config: Optional[Dict[str, Any]] = None) -> List[str]:
    """Capability names from the configuration table."""
    config = config or get_config()
    return sorted(config.get("capabilities", {}))


def create_capability(
    name: Optional[str] = None,
    config: Optional[Dict[str, Any]] = None,
    **overrides: Any,
) -> InsightCapability:
    """
    Build a capability by name.

    Args:
        name: Configured capability or provider name (defaults to default_capability)
        config: Configuration dict (defaults to the loaded model_config.json)
        **overrides: Constructor arguments that win over the configured ones

    Returns:
        Ready-to-use InsightCapability

    Raises:
        UnknownCapabilityError: the name matches neither a configured
            capability nor a registered provider
    """
    config = config or get_config()
    name = name or config.get("default_capability", "anthropic")

    entry = config.get("capabilities", {}).get(name)
    if entry is None:
        if name not in PROVIDERS:
            raise UnknownCapabilityError(
                f"Unknown capability '{name}'. Configured: {available_capabilities(config)}; "
                f"providers: {available_providers()}"
            )
        entry = {"provider": name}

    provider = entry.get("provider", name)
    factory = PROVIDERS.get(provider)
    if factory is None:
        raise UnknownCapabilityError(f"Capability '{name}' uses unregistered provider '{provider}'")

    settings = {k: v for k, v in entry.items() if k != "provider" and k not in _PRICING_KEYS}
    settings.update(overrides)
    thread_safe = settings.pop("thread_safe", None)
    settings.setdefault("cost_tracker", get_cost_tracker())

    capability = factory(name=name, **settings)
    if thread_safe is not None:
        capability.thread_safe = bool(thread_safe)

    logger.debug(f"Created capability '{name}' (provider: {provider}, thread_safe: {capability.thread_safe})")
    return capability
