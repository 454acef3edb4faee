"""
Backend routing for OpenAI-compatible chat providers.

Each known provider id maps to a default base URL, default model and the
environment variable that may carry its API key. The core only ever sees the
resolved ``LLMClientConfig``; persisted settings live with the caller.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


DEFAULT_TIMEOUT_SECONDS = 60.0
NO_KEY_PLACEHOLDER = "ollama"


@dataclass(frozen=True)
class ProviderDefaults:
    provider_id: str
    base_url: str
    model: str
    requires_api_key: bool = True
    api_key_env: Optional[str] = None


PROVIDER_DEFAULTS: Dict[str, ProviderDefaults] = {
    "openai": ProviderDefaults("openai", "https://api.openai.com/v1", "gpt-4o", True, "OPENAI_API_KEY"),
    "groq": ProviderDefaults("groq", "https://api.groq.com/openai/v1", "llama-3.3-70b-versatile", True, "GROQ_API_KEY"),
    "deepseek": ProviderDefaults("deepseek", "https://api.deepseek.com/v1", "deepseek-chat", True, "DEEPSEEK_API_KEY"),
    "ollama": ProviderDefaults("ollama", "http://localhost:11434/v1", "llama3.2", False, None),
    "custom": ProviderDefaults("custom", "", "", True, "TRAYCER_API_KEY"),
}


def get_provider_defaults(provider_id: Optional[str]) -> ProviderDefaults:
    """Unknown provider ids fall back to the OpenAI defaults."""
    return PROVIDER_DEFAULTS.get(provider_id or "openai", PROVIDER_DEFAULTS["openai"])


@dataclass
class LLMClientConfig:
    provider: str
    api_key: str
    base_url: str
    model: str
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def requires_api_key(self) -> bool:
        return get_provider_defaults(self.provider).requires_api_key

    def effective_api_key(self) -> str:
        """Key sent on the wire; keyless backends get a placeholder."""
        if self.requires_api_key:
            return self.api_key
        return self.api_key or NO_KEY_PLACEHOLDER


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def resolve_client_config(
    provider: Optional[str] = None,
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    model: Optional[str] = None,
    timeout: Optional[float] = None,
) -> LLMClientConfig:
    """Fill blanks from the provider defaults table and the environment."""
    provider_id = provider or "openai"
    defaults = get_provider_defaults(provider_id)
    key = api_key or ""
    if not key and defaults.api_key_env:
        key = os.environ.get(defaults.api_key_env, "")
    return LLMClientConfig(
        provider=provider_id,
        api_key=key,
        base_url=base_url or defaults.base_url,
        model=model or defaults.model,
        timeout=float(timeout) if timeout else DEFAULT_TIMEOUT_SECONDS,
    )


def validate_client_config(config: Optional[LLMClientConfig]) -> ValidationResult:
    errors: List[str] = []
    if config is None:
        return ValidationResult(valid=False, errors=["Configuration not set"])

    if config.requires_api_key and not (config.api_key or "").strip():
        errors.append("API Key is required. Please configure it in Traycer Settings.")
    if not (config.base_url or "").strip():
        errors.append("API Base URL is required.")
    if not (config.model or "").strip():
        errors.append("Model name is required.")

    return ValidationResult(valid=not errors, errors=errors)
