"""Configuration for llm-relay.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./llm_relay.yaml``
  3. ``~/.config/llm-relay/config.yaml``
  4. Built-in defaults

Example::

    default_provider: anthropic
    max_tool_depth: 10
    providers:
      anthropic:
        api_key_env: ANTHROPIC_API_KEY
      local:
        kind: openai_compatible
        url: http://localhost:1234/v1/chat/completions
        api_key: no-key
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from llm_relay.errors import ConfigError, UnknownProviderError

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

# Provider kinds with a dedicated adapter.
PROVIDER_KINDS = (
    "openai",
    "anthropic",
    "google",
    "poe",
    "cohere",
    "openrouter",
    "llmstats",
    "openai_compatible",
)


@dataclass
class ProviderSpec:
    """Connection settings for one provider.

    ``kind`` selects the adapter.  An empty ``url`` means the adapter's
    default endpoint.  ``api_key`` wins over ``api_key_env``.
    ``extra_params`` are merged into every request body.
    """

    kind: str = "openai"
    url: str = ""
    api_key: str = ""
    api_key_env: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    extra_params: dict[str, Any] = field(default_factory=dict)

    @property
    def resolved_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env, "")
        return ""


_DEFAULT_PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(kind="openai", api_key_env="OPENAI_API_KEY"),
    "anthropic": ProviderSpec(kind="anthropic", api_key_env="ANTHROPIC_API_KEY"),
    "google": ProviderSpec(kind="google", api_key_env="GOOGLE_API_KEY"),
    "poe": ProviderSpec(kind="poe", api_key_env="POE_API_KEY"),
    "cohere": ProviderSpec(kind="cohere", api_key_env="COHERE_API_KEY"),
    "openrouter": ProviderSpec(kind="openrouter", api_key_env="OPENROUTER_API_KEY"),
    "llmstats": ProviderSpec(kind="llmstats", api_key_env="LLMSTATS_API_KEY"),
}


def default_providers() -> dict[str, ProviderSpec]:
    return {name: replace(spec, headers={}, extra_params={}) for name, spec in _DEFAULT_PROVIDERS.items()}


@dataclass
class RelayConfig:
    """Top-level config for llm-relay."""

    default_provider: str = "openai"
    providers: dict[str, ProviderSpec] = field(default_factory=default_providers)

    # Tool loop
    max_tool_depth: int = 25
    tool_timeout: float = 300.0

    # Broadcast channel capacity per subscriber
    event_buffer: int = 100

    # HTTP
    connect_timeout: float = 30.0
    read_timeout: float = 120.0

    def provider(self, name: str) -> ProviderSpec:
        try:
            return self.providers[name]
        except KeyError:
            raise UnknownProviderError(name) from None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./llm_relay.yaml"),
    Path.home() / ".config" / "llm-relay" / "config.yaml",
]


def _parse_provider(name: str, raw: dict[str, Any]) -> ProviderSpec:
    base = _DEFAULT_PROVIDERS.get(name)
    default_kind = base.kind if base else "openai_compatible"
    kind = raw.get("kind", default_kind)
    if kind not in PROVIDER_KINDS:
        raise ConfigError(f"Provider {name!r} has unknown kind {kind!r}")
    return ProviderSpec(
        kind=kind,
        url=raw.get("url", base.url if base else ""),
        api_key=raw.get("api_key", ""),
        api_key_env=raw.get("api_key_env", base.api_key_env if base else ""),
        headers=dict(raw.get("headers") or {}),
        extra_params=dict(raw.get("extra_params") or {}),
    )


def load_config(path: str | Path | None = None) -> RelayConfig:
    """Load configuration from YAML.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.

    Returns
    -------
    RelayConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return RelayConfig()
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return RelayConfig()

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")

    providers = default_providers()
    for name, praw in (raw.get("providers") or {}).items():
        providers[name] = _parse_provider(name, praw or {})

    return RelayConfig(
        default_provider=raw.get("default_provider", "openai"),
        providers=providers,
        max_tool_depth=int(raw.get("max_tool_depth", 25)),
        tool_timeout=float(raw.get("tool_timeout", 300.0)),
        event_buffer=int(raw.get("event_buffer", 100)),
        connect_timeout=float(raw.get("connect_timeout", 30.0)),
        read_timeout=float(raw.get("read_timeout", 120.0)),
    )
