"""LLM service abstraction: supports disabled and cloud (OpenAI, Claude, OpenRouter) modes."""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

JSON_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


def parse_json_response(raw: str) -> dict:
    """Parse an LLM reply that should be a JSON object, tolerating code fences."""
    cleaned = _JSON_FENCE.sub("", raw.strip())
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class LLMService(ABC):
    """Abstract base class for text-generation backends."""

    name = "llm"

    @abstractmethod
    async def generate_text(self, prompt: str, system: str = "", max_tokens: int = 2000) -> str:
        """Generate text from a prompt."""
        ...

    async def generate_json(self, prompt: str, system: str = "", max_tokens: int = 2000) -> dict:
        """Generate a JSON object from a prompt.

        Backends with a native JSON mode should override this.
        """
        system = f"{system}\n{JSON_INSTRUCTION}".strip()
        raw = await self.generate_text(prompt, system=system, max_tokens=max_tokens)
        return parse_json_response(raw)


class DisabledLLM(LLMService):
    """No backend configured."""

    name = "disabled"

    async def generate_text(self, prompt: str, system: str = "", max_tokens: int = 2000) -> str:
        raise NotImplementedError(
            "LLM analysis is disabled. Set MINUTES_LLM_PROVIDER and an API key."
        )


class ClaudeLLM(LLMService):
    """Text generation via the Anthropic Messages API."""

    name = "claude"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0):
        import anthropic

        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model
        self.timeout = timeout

    async def generate_text(self, prompt: str, system: str = "", max_tokens: int = 2000) -> str:
        kwargs = {"system": system} if system else {}
        response = await asyncio.wait_for(
            self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            ),
            timeout=self.timeout,
        )
        return response.content[0].text


class OpenAILLM(LLMService):
    """Text generation via the OpenAI chat completions API."""

    name = "openai"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0, base_url: str | None = None):
        import openai

        self.client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.timeout = timeout

    def _messages(self, prompt: str, system: str) -> list[dict]:
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        return messages

    async def generate_text(self, prompt: str, system: str = "", max_tokens: int = 2000) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(prompt, system),
                max_tokens=max_tokens,
            ),
            timeout=self.timeout,
        )
        return response.choices[0].message.content or ""

    async def generate_json(self, prompt: str, system: str = "", max_tokens: int = 2000) -> dict:
        system = f"{system}\n{JSON_INSTRUCTION}".strip()
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(prompt, system),
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            ),
            timeout=self.timeout,
        )
        return parse_json_response(response.choices[0].message.content or "{}")


class OpenRouterLLM(OpenAILLM):
    """OpenRouter (OpenAI-compatible, access to many models).

    Free models often lack JSON mode, so JSON goes through the prompt.
    """

    name = "openrouter"

    def __init__(self, api_key: str, model: str, timeout: float = 60.0):
        super().__init__(
            api_key=api_key,
            model=model,
            timeout=timeout,
            base_url="https://openrouter.ai/api/v1",
        )

    async def generate_json(self, prompt: str, system: str = "", max_tokens: int = 2000) -> dict:
        return await LLMService.generate_json(self, prompt, system=system, max_tokens=max_tokens)


def create_llm_service(
    provider: str,
    openai_api_key: str = "",
    openai_model: str = "gpt-4o",
    anthropic_api_key: str = "",
    anthropic_model: str = "",
    openrouter_api_key: str = "",
    openrouter_model: str = "",
    timeout: float = 60.0,
) -> LLMService:
    """Factory function to create the configured LLM backend."""
    if provider == "claude":
        if not anthropic_api_key:
            logger.warning("Claude selected but no API key set, falling back to disabled")
            return DisabledLLM()
        return ClaudeLLM(api_key=anthropic_api_key, model=anthropic_model, timeout=timeout)

    elif provider == "openai":
        if not openai_api_key:
            logger.warning("OpenAI selected but no API key set, falling back to disabled")
            return DisabledLLM()
        return OpenAILLM(api_key=openai_api_key, model=openai_model, timeout=timeout)

    elif provider == "openrouter":
        if not openrouter_api_key:
            logger.warning("OpenRouter selected but no API key set, falling back to disabled")
            return DisabledLLM()
        model = openrouter_model or "google/gemma-3-27b-it:free"
        return OpenRouterLLM(api_key=openrouter_api_key, model=model, timeout=timeout)

    else:
        return DisabledLLM()
