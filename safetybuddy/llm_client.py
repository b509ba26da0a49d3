"""
Generative Client
=================
Thin wrapper around the OpenAI chat-completions API (Azure OpenAI or the
public endpoint). Exposes text-only and text-plus-image generation and
turns every failure into ProviderError so callers handle one exception.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Optional

from safetybuddy.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """The generative provider failed or returned an unusable completion."""


class GenerativeClient:
    """OpenAI / Azure OpenAI completion client.

    Attributes:
        deployment: Model or Azure deployment name.
        max_completion_tokens: Completion budget per call.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        """Create the SDK client.

        Raises:
            ConfigurationError: If no provider key is configured.
        """
        self.settings = settings or get_settings()
        self.settings.require_provider_credentials()
        self.deployment: str = self.settings.deployment
        self.max_completion_tokens: int = self.settings.max_completion_tokens
        self.client = self._create_client()

    def _create_client(self) -> Any:
        from openai import AzureOpenAI, OpenAI

        if not self.settings.uses_azure:
            logger.info("OpenAI client initialized (model=%s).", self.deployment)
            return OpenAI(api_key=self.settings.openai_api_key)

        # Newer openai SDK versions removed the 'proxies' kwarg; fall back to
        # an explicit httpx client when the environment trips over it.
        try:
            client = AzureOpenAI(
                azure_endpoint=self.settings.azure_openai_endpoint,
                api_key=self.settings.azure_openai_key,
                api_version=self.settings.azure_openai_api_version,
            )
        except TypeError:
            import httpx

            client = AzureOpenAI(
                azure_endpoint=self.settings.azure_openai_endpoint,
                api_key=self.settings.azure_openai_key,
                api_version=self.settings.azure_openai_api_version,
                http_client=httpx.Client(),
            )
        logger.info("Azure OpenAI client initialized (deployment=%s).", self.deployment)
        return client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_text(self, prompt: str) -> str:
        """Complete a text-only prompt."""
        return self._complete([{"role": "user", "content": prompt}], "generate_text")

    def generate_from_text_and_image(
        self, prompt: str, image_bytes: bytes, mime_type: str
    ) -> str:
        """Complete a prompt with one inline image.

        The image is sent as a base64 data URL in an image_url content part.
        """
        encoded = base64.b64encode(image_bytes).decode("ascii")
        content = [
            {"type": "text", "text": prompt},
            {
                "type": "image_url",
                "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
            },
        ]
        return self._complete(
            [{"role": "user", "content": content}], "generate_from_text_and_image"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _complete(self, messages: list[dict], operation: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.deployment,
                messages=messages,
                max_completion_tokens=self.max_completion_tokens,
            )
        except Exception as exc:
            raise ProviderError(f"{operation} request failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        if usage:
            logger.info(
                "%s — tokens used: prompt=%s completion=%s total=%s",
                operation,
                usage.prompt_tokens,
                usage.completion_tokens,
                usage.total_tokens,
            )

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise ProviderError(f"{operation} returned a malformed response") from exc

        if not text or not text.strip():
            raise ProviderError(f"{operation} returned an empty completion")
        return text.strip()
