"""Generation settings and provider configuration.

Two sources:
  - {data}/config.json: generation settings (attempt bound, acceptance
    threshold, temperature), defaults merged with stored values.
  - Environment (.env loaded by the app): provider URLs, keys and models.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from encounter_forge.llm import ChatProvider, FallbackGenerationService

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_LIMIT = 5

_CONFIG_DEFAULTS: dict[str, Any] = {
    "max_attempts": 3,
    "min_substantive_chars": 500,
    "temperature": 0.8,
}

GEMINI_OPENAI_URL = "https://generativelanguage.googleapis.com/v1beta/openai"


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    config["max_attempts"] = max(1, min(MAX_ATTEMPTS_LIMIT, int(config["max_attempts"])))
    config["min_substantive_chars"] = max(0, int(config["min_substantive_chars"]))
    config["temperature"] = max(0.0, min(2.0, float(config["temperature"])))
    return config


def get_config(data_dir: Path) -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config = dict(_CONFIG_DEFAULTS)
    path = _config_path(data_dir)
    if path.is_file():
        stored = json.loads(path.read_text())
        for key in _CONFIG_DEFAULTS:
            if key in stored:
                config[key] = stored[key]
    return _normalize(config)


def update_config(data_dir: Path, fields: dict[str, Any]) -> dict[str, Any]:
    """Merge known fields into config and persist. Returns full config."""
    config = get_config(data_dir)
    for key in _CONFIG_DEFAULTS:
        if key in fields and fields[key] is not None:
            config[key] = fields[key]
    config = _normalize(config)
    data_dir.mkdir(parents=True, exist_ok=True)
    _config_path(data_dir).write_text(json.dumps(config, indent=2))
    return config


def providers_from_env(env: dict[str, str] | None = None) -> list[ChatProvider]:
    """Build the provider chain from PRIMARY_* and ALTERNATIVE_* variables.

    A provider is configured when its API key or URL is set. The primary
    defaults to Gemini's OpenAI-compatible endpoint.
    """
    env = dict(os.environ if env is None else env)
    timeout = float(env.get("LLM_TIMEOUT", "120"))
    providers: list[ChatProvider] = []

    if env.get("PRIMARY_API_KEY") or env.get("PRIMARY_API_URL"):
        providers.append(ChatProvider(
            name="primary",
            provider_url=env.get("PRIMARY_API_URL") or GEMINI_OPENAI_URL,
            api_key=env.get("PRIMARY_API_KEY", ""),
            model=env.get("PRIMARY_MODEL", "gemini-2.5-pro"),
            label="primary",
            timeout=timeout,
        ))
    if env.get("ALTERNATIVE_API_URL"):
        providers.append(ChatProvider(
            name="alternative",
            provider_url=env["ALTERNATIVE_API_URL"],
            api_key=env.get("ALTERNATIVE_API_KEY", ""),
            model=env.get("ALTERNATIVE_MODEL", ""),
            label="alternative",
            provider_format="koboldcpp" if env.get("ALTERNATIVE_FORMAT") == "koboldcpp" else "openai",
            timeout=timeout,
        ))

    if not providers:
        logger.warning("no generation providers configured; generation requests will fail")
    return providers


def service_from_env(env: dict[str, str] | None = None) -> FallbackGenerationService:
    return FallbackGenerationService(providers_from_env(env))
