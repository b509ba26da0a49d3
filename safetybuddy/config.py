"""
Configuration
=============
Environment-driven settings. Values come from the process environment,
optionally populated from a local .env file via python-dotenv.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_KNOWLEDGE_DIR = PROJECT_ROOT / "data"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class ConfigurationError(RuntimeError):
    """Raised when the service cannot start because of missing settings."""


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


class Settings:
    """Runtime settings for SafetyBuddy.

    Attributes:
        azure_openai_endpoint: Azure OpenAI endpoint. Empty means the plain
            OpenAI API is used with openai_api_key.
        azure_openai_key: Azure OpenAI key.
        azure_openai_api_version: Azure API version for the deployment.
        openai_api_key: Key for the public OpenAI API.
        deployment: Model or Azure deployment name.
        max_completion_tokens: Completion budget per provider call.
        knowledge_dir: Directory holding the knowledge JSON files.
        session_ttl_seconds: Idle session eviction; 0 disables it.
        max_image_bytes: Largest accepted image upload.
        twilio_account_sid / twilio_auth_token: Credentials for downloading
            WhatsApp media from Twilio.
    """

    def __init__(self, **overrides) -> None:
        self.azure_openai_endpoint: str = os.getenv("AZURE_OPENAI_ENDPOINT", "")
        self.azure_openai_key: str = os.getenv("AZURE_OPENAI_KEY", "")
        self.azure_openai_api_version: str = os.getenv(
            "AZURE_OPENAI_API_VERSION", "2024-12-01-preview"
        )
        self.openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
        self.deployment: str = os.getenv("GPT_DEPLOYMENT", "gpt-4o-mini")
        self.max_completion_tokens: int = _int_env("MAX_COMPLETION_TOKENS", 800)

        self.knowledge_dir: Path = Path(
            os.getenv("KNOWLEDGE_DIR", "") or DEFAULT_KNOWLEDGE_DIR
        )
        self.session_ttl_seconds: int = _int_env("SESSION_TTL_SECONDS", 0)
        self.max_image_bytes: int = _int_env("MAX_IMAGE_BYTES", 5 * 1024 * 1024)

        self.twilio_account_sid: str = os.getenv("TWILIO_ACCOUNT_SID", "")
        self.twilio_auth_token: str = os.getenv("TWILIO_AUTH_TOKEN", "")

        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.port: int = _int_env("PORT", 8000)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise ConfigurationError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def uses_azure(self) -> bool:
        return bool(self.azure_openai_endpoint)

    @property
    def provider_configured(self) -> bool:
        key = self.azure_openai_key if self.uses_azure else self.openai_api_key
        return bool(key) and key != "your-key"

    def require_provider_credentials(self) -> None:
        """Fail fast when no usable provider key is configured."""
        if self.provider_configured:
            return
        if self.uses_azure:
            raise ConfigurationError(
                "AZURE_OPENAI_ENDPOINT is set but AZURE_OPENAI_KEY is missing."
            )
        raise ConfigurationError(
            "No generative provider configured. Set OPENAI_API_KEY, or "
            "AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_KEY."
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide Settings, reading the environment once."""
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.info(
            "Settings loaded (provider=%s, deployment=%s, knowledge_dir=%s).",
            "azure" if _settings.uses_azure else "openai",
            _settings.deployment,
            _settings.knowledge_dir,
        )
    return _settings
