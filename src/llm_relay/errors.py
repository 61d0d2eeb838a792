"""Exceptions raised for caller mistakes.

Provider and transport failures are never raised; they are reported as
``StreamOutcome`` errors and ``ERROR`` events instead.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for llm-relay errors."""


class UnknownProviderError(RelayError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Unknown provider: {provider}")
        self.provider = provider


class MissingApiKeyError(RelayError):
    def __init__(self, display_name: str) -> None:
        super().__init__(f"{display_name} API key is required")
        self.display_name = display_name


class RequestConflictError(RelayError):
    """A request with the same id is already active."""

    def __init__(self, request_id: str) -> None:
        super().__init__(f"Request {request_id} is already active")
        self.request_id = request_id


class ConfigError(RelayError):
    """Configuration is incomplete or invalid."""
