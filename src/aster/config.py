"""Configuration: frozen provider and batch settings."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Literal

from dotenv import load_dotenv

from aster.errors import ConfigurationError

load_dotenv()

ProviderName = Literal["gemini", "openai"]
AspectRatio = Literal["Auto", "1:1", "3:4", "4:3", "9:16", "16:9"]
Resolution = Literal["1K", "2K", "4K"]

ASPECT_RATIOS: tuple[str, ...] = ("Auto", "1:1", "3:4", "4:3", "9:16", "16:9")
RESOLUTIONS: tuple[str, ...] = ("1K", "2K", "4K")

MAX_BATCH_SIZE = 20
MAX_CONCURRENT_REQUESTS = 10
MAX_IMAGE_BYTES = 20 * 1024 * 1024

DEFAULT_MODEL = "gemini-3-pro-image-preview"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"

_API_KEY_ENV_VARS: dict[ProviderName, str] = {
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
}
_BASE_URL_ENV_VARS: dict[ProviderName, str] = {
    "gemini": "GEMINI_BASE_URL",
    "openai": "OPENAI_BASE_URL",
}


@dataclass(frozen=True)
class ProviderConfig:
    """Which provider to call, and how.

    API keys and base URLs are auto-resolved from the environment when not
    given. A missing key is only an error once a real provider is built, so
    callers may also pass it per batch to ``start_batch``. A Gemini
    ``base_url`` routes calls through a raw HTTP proxy instead of the SDK.

    Example:
        config = ProviderConfig(provider="openai", base_url="https://gw.example/v1")
        # API key is automatically resolved from OPENAI_API_KEY
    """

    provider: ProviderName = "gemini"
    #: Auto-resolved from ``GEMINI_API_KEY`` or ``OPENAI_API_KEY`` when *None*.
    api_key: str | None = None
    base_url: str | None = None
    model: str = DEFAULT_MODEL
    use_mock: bool = False

    def __post_init__(self) -> None:
        """Auto-resolve API key and base URL, then validate."""
        if self.provider not in ("gemini", "openai"):
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint="Supported providers: 'gemini', 'openai'",
            )
        if not isinstance(self.model, str) or not self.model.strip():
            raise ConfigurationError(
                "model must be a non-empty string",
                hint=f"Try model={DEFAULT_MODEL!r}.",
            )

        base_url = self.base_url
        if base_url is None:
            base_url = os.environ.get(_BASE_URL_ENV_VARS[self.provider])
        base_url = base_url.strip() if base_url else None
        if not base_url and self.provider == "openai":
            base_url = DEFAULT_OPENAI_BASE_URL
        object.__setattr__(self, "base_url", base_url or None)

        if self.use_mock:
            return

        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get(self.api_key_env_var))

    @property
    def api_key_env_var(self) -> str:
        """Environment variable the API key is read from."""
        return _API_KEY_ENV_VARS[self.provider]

    def require_api_key(self) -> str:
        """Return the API key, or raise when none was given or found."""
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {self.api_key_env_var} environment variable or pass api_key=...",
            )
        return self.api_key

    def with_api_key(self, api_key: str | None) -> ProviderConfig:
        """Return a copy using *api_key* when one is given."""
        if not api_key:
            return self
        return ProviderConfig(
            provider=self.provider,
            api_key=api_key,
            base_url=self.base_url,
            model=self.model,
            use_mock=self.use_mock,
        )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ProviderConfig(provider={self.provider!r}, model={self.model!r}, "
            f"base_url={self.base_url!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, use_mock={self.use_mock})"
        )

    __repr__ = __str__


@dataclass(frozen=True)
class Settings:
    """Per-batch generation settings."""

    provider_config: ProviderConfig
    batch_size: int = 2
    aspect_ratio: AspectRatio = "Auto"
    resolution: Resolution = "1K"

    def __post_init__(self) -> None:
        """Validate batch shape early for clear errors."""
        if (
            not isinstance(self.batch_size, int)
            or isinstance(self.batch_size, bool)
            or not 1 <= self.batch_size <= MAX_BATCH_SIZE
        ):
            raise ConfigurationError(
                f"batch_size must be between 1 and {MAX_BATCH_SIZE}, got {self.batch_size!r}",
                hint="This controls how many images one batch produces.",
            )
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise ConfigurationError(
                f"Unknown aspect_ratio: {self.aspect_ratio!r}",
                hint=f"Supported values: {', '.join(ASPECT_RATIOS)}",
            )
        if self.resolution not in RESOLUTIONS:
            raise ConfigurationError(
                f"Unknown resolution: {self.resolution!r}",
                hint=f"Supported values: {', '.join(RESOLUTIONS)}",
            )
