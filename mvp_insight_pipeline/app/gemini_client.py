"""
Gemini client wrapper (google-genai SDK).

Rationale:
- One explicitly constructed instance per process, passed to whoever needs it (no module singleton).
- The API key is read once at construction; without it the client stays unavailable for the process lifetime.
- Three generation modes: search-grounded, plain, and schema-instructed structured output.
- Grounding metadata is normalized into small dataclasses so callers never touch SDK shapes.
- No retries / no fallback here; callers decide what a failure means.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

try:
    from google import genai
    from google.genai import types
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "Missing dependency for Gemini client. Install 'google-genai' and remove 'google-generativeai'. "
        "Original import error: " + str(e)
    )

logger = logging.getLogger(__name__)

GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
DEFAULT_TEMPERATURE = 0.7

STRUCTURED_OUTPUT_INSTRUCTION = """\
IMPORTANT: You must respond ONLY with a valid JSON object that follows this schema:
{schema}

Do not include any explanations, markdown formatting, or anything else outside the JSON object.
Just return the raw JSON object that matches the schema."""


@dataclass(frozen=True)
class GroundingChunk:
    uri: str
    title: str

    def to_dict(self) -> Dict[str, Any]:
        return {"web": {"uri": self.uri, "title": self.title}}


@dataclass(frozen=True)
class GroundingMetadata:
    web_search_queries: List[str] = field(default_factory=list)
    rendered_content: Optional[str] = None
    grounding_chunks: List[GroundingChunk] = field(default_factory=list)


def _read_api_key() -> Optional[str]:
    return os.getenv("GEMINI_API_KEY") or os.getenv("LLM_API_KEY")


class GeminiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        client: Any = None,
    ):
        """
        `client` lets tests inject anything exposing `models.generate_content`.
        """
        self.model_name = model_name or GEMINI_MODEL
        if client is not None:
            self._client = client
        else:
            key = api_key if api_key is not None else _read_api_key()
            self._client = genai.Client(api_key=key) if key else None
        logger.info(
            "gemini.client_init model=%s available=%s",
            self.model_name,
            self._client is not None,
        )

    def is_available(self) -> bool:
        return self._client is not None

    def generate(
        self,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: Optional[int] = None,
        model_name: Optional[str] = None,
        tools: Optional[List[Any]] = None,
    ) -> Any:
        """Single generate_content call; returns the raw SDK response."""
        if self._client is None:
            raise RuntimeError("GEMINI_API_KEY or LLM_API_KEY must be set in environment")

        model = model_name or self.model_name
        logger.debug(
            "gemini.generate model=%s temperature=%s tools=%d prompt_chars=%d",
            model,
            temperature,
            len(tools or []),
            len(prompt),
        )
        return self._client.models.generate_content(
            model=model,
            contents=prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                temperature=temperature,
                max_output_tokens=max_tokens,
                tools=tools,
            ),
        )

    def generate_with_search(self, prompt: str, temperature: float = DEFAULT_TEMPERATURE) -> Any:
        """Let the model decide when to ground its answer with Google Search."""
        search_tool = types.Tool(google_search=types.GoogleSearch())
        return self.generate(prompt, temperature=temperature, tools=[search_tool])

    def generate_without_tools(self, prompt: str, temperature: float = DEFAULT_TEMPERATURE) -> Any:
        return self.generate(prompt, temperature=temperature)

    def generate_with_structured_output(
        self,
        prompt: str,
        schema: Dict[str, Any],
        temperature: float = DEFAULT_TEMPERATURE,
        model_name: Optional[str] = None,
    ) -> Any:
        """
        Ask for JSON matching `schema`.

        The schema travels inside the prompt; the response is not constrained by the API,
        so callers must still parse and shape-check it.
        """
        instruction = STRUCTURED_OUTPUT_INSTRUCTION.format(schema=json.dumps(schema, indent=2))
        structured_prompt = f"{prompt.strip()}\n\n{instruction}\n"
        return self.generate(structured_prompt, temperature=temperature, model_name=model_name)


def _first_candidate(response: Any) -> Any:
    candidates = getattr(response, "candidates", None) or []
    return candidates[0] if candidates else None


def extract_text(response: Any) -> str:
    # Prefer the SDK's convenience property
    result = getattr(response, "text", None)
    if result:
        return result

    # Fallback: attempt to extract from candidates (SDK shape can vary across versions)
    candidate0 = _first_candidate(response)
    if candidate0 is None:
        raise RuntimeError("Gemini returned no candidates.")

    content = getattr(candidate0, "content", None)
    parts = getattr(content, "parts", None) if content else None
    if parts:
        text0 = getattr(parts[0], "text", None)
        if text0:
            return text0

    raise RuntimeError("Gemini returned empty response")


def extract_grounding_metadata(response: Any) -> Optional[GroundingMetadata]:
    """Grounding metadata of the first candidate, or None when the answer was not grounded."""
    candidate0 = _first_candidate(response)
    raw = getattr(candidate0, "grounding_metadata", None) if candidate0 is not None else None
    if raw is None:
        return None

    chunks: List[GroundingChunk] = []
    for chunk in getattr(raw, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        uri = getattr(web, "uri", None) or ""
        title = getattr(web, "title", None) or uri
        if uri:
            chunks.append(GroundingChunk(uri=uri, title=title))

    entry_point = getattr(raw, "search_entry_point", None)
    rendered = getattr(entry_point, "rendered_content", None) if entry_point is not None else None

    return GroundingMetadata(
        web_search_queries=list(getattr(raw, "web_search_queries", None) or []),
        rendered_content=rendered or None,
        grounding_chunks=chunks,
    )


def extract_usage(response: Any) -> Optional[Dict[str, int]]:
    usage = getattr(response, "usage_metadata", None)
    if usage is None:
        return None
    prompt_tokens = getattr(usage, "prompt_token_count", None) or 0
    completion_tokens = getattr(usage, "candidates_token_count", None) or 0
    total_tokens = getattr(usage, "total_token_count", None) or (prompt_tokens + completion_tokens)
    return {
        "prompt_tokens": int(prompt_tokens),
        "completion_tokens": int(completion_tokens),
        "total_tokens": int(total_tokens),
    }
