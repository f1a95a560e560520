"""
LLM adapters and engine.

Rationale:
- A tiny uniform interface over chat-completion providers: is_available() + generate_completion().
- Credentials are read once at construction; a missing key leaves the adapter unavailable, it never crashes.
- Provider errors are wrapped once into LLMError (message preserved, plus code/status when known).
- No retries / no fallback.
"""

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from google.genai import errors as genai_errors
from openai import APIError, OpenAI

from .gemini_client import GeminiClient, extract_text, extract_usage

logger = logging.getLogger(__name__)

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")

DEFAULT_TEMPERATURE = 0.7
JSON_INSTRUCTION = "Respond with valid JSON only."


@dataclass
class LLMOptions:
    model: Optional[str] = None
    temperature: Optional[float] = None  # sampling randomness, 0..2
    max_tokens: Optional[int] = None
    system_message: Optional[str] = None


@dataclass(frozen=True)
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class LLMResponse:
    content: str
    model: str
    usage: Optional[LLMUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"content": self.content, "model": self.model}
        if self.usage is not None:
            payload["usage"] = {
                "promptTokens": self.usage.prompt_tokens,
                "completionTokens": self.usage.completion_tokens,
                "totalTokens": self.usage.total_tokens,
            }
        return payload


class LLMError(RuntimeError):
    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class LLMUnavailableError(LLMError):
    """Adapter has no credential configured."""


class LLMResponseParseError(LLMError):
    """Model output could not be parsed as JSON."""


class LLMAdapter(Protocol):
    def is_available(self) -> bool:
        ...

    def generate_completion(self, prompt: str, options: Optional[LLMOptions] = None) -> LLMResponse:
        ...


def build_messages(prompt: str, options: Optional[LLMOptions] = None) -> List[Dict[str, str]]:
    """Optional system message followed by exactly one user message."""
    messages: List[Dict[str, str]] = []
    if options is not None and options.system_message:
        messages.append({"role": "system", "content": options.system_message})
    messages.append({"role": "user", "content": prompt})
    return messages


def _temperature(options: LLMOptions) -> float:
    return DEFAULT_TEMPERATURE if options.temperature is None else options.temperature


class OpenAIAdapter:
    provider = "openai"

    def __init__(self, api_key: Optional[str] = None, default_model: Optional[str] = None, client: Any = None):
        self.default_model = default_model or OPENAI_MODEL
        if client is not None:
            self._client = client
        else:
            key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
            self._client = OpenAI(api_key=key) if key else None

    def is_available(self) -> bool:
        return self._client is not None

    def generate_completion(self, prompt: str, options: Optional[LLMOptions] = None) -> LLMResponse:
        if self._client is None:
            raise LLMUnavailableError("OpenAI client is not initialized. Please check your API key.")
        options = options or LLMOptions()

        try:
            response = self._client.chat.completions.create(
                model=options.model or self.default_model,
                messages=build_messages(prompt, options),
                temperature=_temperature(options),
                max_tokens=options.max_tokens,
            )
        except APIError as e:
            raise LLMError(
                e.message,
                code=getattr(e, "code", None),
                status=getattr(e, "status_code", None),
            ) from e
        except Exception as e:
            raise LLMError(f"Unexpected error during OpenAI API call: {e}") from e

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        completion = getattr(message, "content", None) if message is not None else None
        if not completion:
            raise LLMError("No completion received from OpenAI")

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=completion,
            model=getattr(response, "model", None) or options.model or self.default_model,
            usage=LLMUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
        )


class GeminiAdapter:
    """Chat-style adapter over GeminiClient: system message becomes the system instruction."""

    provider = "gemini"

    def __init__(self, client: Optional[GeminiClient] = None):
        self._gemini = client if client is not None else GeminiClient()

    def is_available(self) -> bool:
        return self._gemini.is_available()

    def generate_completion(self, prompt: str, options: Optional[LLMOptions] = None) -> LLMResponse:
        if not self._gemini.is_available():
            raise LLMUnavailableError("Gemini client is not initialized. Please check your API key.")
        options = options or LLMOptions()
        model = options.model or self._gemini.model_name

        try:
            response = self._gemini.generate(
                prompt,
                system_instruction=options.system_message or None,
                temperature=_temperature(options),
                max_tokens=options.max_tokens,
                model_name=model,
            )
            content = extract_text(response)
        except genai_errors.APIError as e:
            raise LLMError(
                e.message or str(e),
                code=getattr(e, "status", None),
                status=getattr(e, "code", None),
            ) from e
        except Exception as e:
            raise LLMError(f"Gemini API error: {e}") from e

        usage = extract_usage(response)
        return LLMResponse(
            content=content,
            model=getattr(response, "model_version", None) or model,
            usage=LLMUsage(**usage) if usage else None,
        )


def create_default_adapter(provider: Optional[str] = None, gemini_client: Optional[GeminiClient] = None) -> LLMAdapter:
    name = (provider or LLM_PROVIDER).strip().lower()
    if name == "openai":
        return OpenAIAdapter()
    if name == "gemini":
        return GeminiAdapter(client=gemini_client)
    raise ValueError(f"Unknown LLM provider '{name}'. Expected 'openai' or 'gemini'.")


class LLMEngine:
    def __init__(self, adapter: Optional[LLMAdapter] = None):
        self.adapter = adapter if adapter is not None else create_default_adapter()

    def is_available(self) -> bool:
        return self.adapter.is_available()

    def generate_completion(self, prompt: str, options: Optional[LLMOptions] = None) -> LLMResponse:
        response = self.adapter.generate_completion(prompt, options)
        logger.info(
            "llm.completion model=%s prompt_chars=%d completion_chars=%d total_tokens=%s",
            response.model,
            len(prompt),
            len(response.content),
            response.usage.total_tokens if response.usage else None,
        )
        return response

    def generate_json(self, prompt: str, options: Optional[LLMOptions] = None) -> Any:
        """
        Completion parsed as JSON.

        Temperature is forced to 0 regardless of `options`. The parsed value is not
        validated against any schema; shape-checking is the caller's job.
        """
        enhanced_prompt = f"{prompt}\n\n{JSON_INSTRUCTION}"
        json_options = dataclasses.replace(options or LLMOptions(), temperature=0)
        response = self.generate_completion(enhanced_prompt, json_options)

        try:
            return json.loads(response.content)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error("llm.json_parse_failed model=%s raw=%s", response.model, response.content[:500])
            raise LLMResponseParseError(f"Failed to parse JSON response from LLM: {e}") from e
