"""
Configuration loading for RevEnGo.
Reads config/model_config.json and applies environment overrides.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from revengo.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "model_config.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "default_capability": "anthropic",
    "capabilities": {
        "anthropic": {"provider": "anthropic", "model": "claude-3-5-sonnet-20241022"},
        "openai": {"provider": "openai", "model": "gpt-4o-mini"},
    },
    "analysis_options": {
        "max_file_size_mb": 10,
        "content_sample_bytes": 1000,
        "task_timeout_seconds": 120,
        "use_external_strings": True,
        "strings_timeout_seconds": 30,
        "ollama_base_url": "http://localhost:11434/v1",
    },
}

# env var -> (analysis_options key, converter)
_ENV_OVERRIDES = {
    "TASK_TIMEOUT_SECONDS": ("task_timeout_seconds", float),
    "MAX_FILE_SIZE_MB": ("max_file_size_mb", float),
    "USE_EXTERNAL_STRINGS": ("use_external_strings", lambda v: v.strip().lower() in ("1", "true", "yes")),
    "OLLAMA_BASE_URL": ("ollama_base_url", str),
}

_config: Dict[str, Any] = {}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from JSON, falling back to built-in defaults.

    Args:
        config_path: Explicit path; defaults to REVENGO_CONFIG, then
            config/model_config.json in the repository.

    Returns:
        Configuration dict with environment overrides applied
    """
    path = Path(config_path or os.getenv("REVENGO_CONFIG") or DEFAULT_CONFIG_PATH)

    config = copy.deepcopy(DEFAULT_CONFIG)
    if path.exists():
        with open(path, "r") as f:
            loaded = json.load(f)
        config["default_capability"] = loaded.get("default_capability", config["default_capability"])
        config["capabilities"] = loaded.get("capabilities", config["capabilities"])
        config["analysis_options"].update(loaded.get("analysis_options", {}))
        logger.debug(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file not found: {path} - using built-in defaults")

    options = config["analysis_options"]
    for env_name, (key, convert) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or raw == "":
            continue
        try:
            options[key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {env_name}={raw!r}")

    if os.getenv("DEFAULT_CAPABILITY"):
        config["default_capability"] = os.getenv("DEFAULT_CAPABILITY")

    return config


def get_config() -> Dict[str, Any]:
    """Get config, loading if needed."""
    global _config
    if not _config:
        _config = load_config()
    return _config


def reset_config():
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config
    _config = {}


def get_analysis_option(key: str, default: Any = None) -> Any:
    """Shortcut for a single analysis_options value."""
    return get_config().get("analysis_options", {}).get(key, default)
