"""LLM provider integration for structured JSON extraction."""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

from openai import OpenAI

from ..core.config import Settings

logger = logging.getLogger(__name__)


class LLMProvider:
    """Base class for OpenAI-compatible LLM providers."""

    provider_name = "base"
    base_url: Optional[str] = None
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: Optional[str], timeout: float = 45.0):
        """Initialize provider.

        Args:
            api_key: Provider API key
            timeout: Request timeout in seconds

        Raises:
            ValueError: If the API key is not configured
        """
        if not api_key:
            raise ValueError(f"{self.provider_name.upper()}_API_KEY not configured")

        self.client = OpenAI(api_key=api_key, base_url=self.base_url, timeout=timeout, max_retries=1)
        logger.info(f"✅ {self.provider_name} provider initialized")

    def model_name(self, model: Optional[str]) -> str:
        return model or self.default_model

    def generate_response(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        model: Optional[str] = None,
        json_mode: bool = True,
    ) -> Optional[str]:
        """Generate a response from the LLM.

        Args:
            system_prompt: System prompt for the model
            user_message: User message/query
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
            model: Model to use, provider default when None
            json_mode: Request a JSON object response

        Returns:
            Generated response or None if failed
        """
        model = self.model_name(model)
        try:
            logger.info(f"Calling {self.provider_name} ({model}) with {len(user_message)} chars")

            kwargs = {}
            if json_mode:
                kwargs["response_format"] = {"type": "json_object"}

            response = self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )

            content = response.choices[0].message.content
            if not content:
                logger.warning(f"⚠️ {self.provider_name} returned an empty response")
                return None
            result = content.strip()
            logger.info(f"✅ {self.provider_name} response: {len(result)} chars")
            return result

        except Exception as e:
            logger.error(f"{self.provider_name} error: {e}")
            return None


class CerebrasProvider(LLMProvider):
    """Cerebras API provider for fast inference."""

    provider_name = "cerebras"
    base_url = "https://api.cerebras.ai/v1"
    default_model = "llama-3.3-70b"


class OpenRouterProvider(LLMProvider):
    """OpenRouter API provider."""

    provider_name = "openrouter"
    base_url = "https://openrouter.ai/api/v1"
    default_model = "openai/gpt-4o-mini"

    def model_name(self, model: Optional[str]) -> str:
        # OpenRouter model ids are vendor-prefixed
        model = model or self.default_model
        return model if "/" in model else f"openai/{model}"


class OpenAIProvider(LLMProvider):
    """OpenAI API provider."""

    provider_name = "openai"


PROVIDERS = {
    "cerebras": CerebrasProvider,
    "openrouter": OpenRouterProvider,
    "openai": OpenAIProvider,
}


def get_llm_provider(settings: Settings, provider_name: Optional[str] = None) -> LLMProvider:
    """Get LLM provider instance.

    Args:
        settings: Application settings
        provider_name: Provider to use (cerebras, openrouter, openai).
                      If None, uses the LLM_PROVIDER setting

    Returns:
        Initialized provider

    Raises:
        ValueError: If the provider is unknown or its key is missing
    """
    provider = provider_name or settings.llm_provider
    provider_cls = PROVIDERS.get(provider)
    if provider_cls is None:
        raise ValueError(f"Unknown LLM provider: {provider}")

    api_key = {
        "cerebras": settings.cerebras_api_key,
        "openrouter": settings.openrouter_api_key,
        "openai": settings.openai_api_key,
    }[provider]
    return provider_cls(api_key, timeout=settings.llm_timeout_seconds)


def parse_json_object(response: Optional[str]) -> Optional[dict]:
    """Parse a JSON object from an LLM response.

    Falls back to the outermost ``{...}`` span when the model wrapped the
    JSON in prose or code fences.

    Returns:
        Parsed object, or None if no JSON object could be read
    """
    if not response:
        return None
    try:
        parsed = json.loads(response)
    except json.JSONDecodeError:
        json_match = re.search(r"\{.*\}", response, re.DOTALL)
        if not json_match:
            return None
        try:
            parsed = json.loads(json_match.group())
        except json.JSONDecodeError:
            return None
    return parsed if isinstance(parsed, dict) else None
