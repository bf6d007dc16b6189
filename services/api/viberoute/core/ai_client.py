import logging
from dataclasses import dataclass, field
from typing import Optional, Type
from datetime import datetime, timezone
from pydantic import BaseModel
from google import genai
from google.genai import types

from ..settings import settings

logger = logging.getLogger("viberoute.ai")


class AIClientError(Exception):
    """The completion service failed or is not configured."""


@dataclass
class CompletionUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class CompletionResult:
    """Raw completion: JSON text plus why the model stopped."""
    content: str
    finish_reason: Optional[str]
    usage: CompletionUsage = field(default_factory=CompletionUsage)
    model: Optional[str] = None


def _normalize_finish_reason(reason) -> Optional[str]:
    if reason is None:
        return None
    value = getattr(reason, "value", reason)
    return str(value).lower()


class AIClient:
    _instance = None

    def __init__(self):
        self.api_key = settings.gemini_api_key
        self.mode = settings.ai_mode  # "mock" or "gemini"
        self._client: Optional[genai.Client] = None
        self.last_error: Optional[str] = None
        self.last_error_at: Optional[datetime] = None

        if self.mode == "gemini" and self.api_key:
            self._client = genai.Client(api_key=self.api_key)

    @classmethod
    def get_instance(cls):
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def is_available(self) -> bool:
        return self.mode == "gemini" and self._client is not None

    def generate_json(
        self,
        prompt: str,
        response_schema: Optional[Type[BaseModel]] = None,
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        """
        Request a JSON completion from Gemini.
        Returns the raw text with finish reason and token usage; parsing is left to the caller
        so a truncated response can be told apart from a malformed one.
        """
        if not self.is_available():
            raise AIClientError(f"AI is not available (mode={self.mode})")

        model_id = model or settings.gemini_text_model
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=response_schema,
            system_instruction=system_instruction,
            max_output_tokens=max_output_tokens or settings.ai_max_output_tokens,
            temperature=settings.ai_temperature if temperature is None else temperature,
        )

        try:
            response = self._client.models.generate_content(
                model=model_id,
                contents=prompt,
                config=config
            )
        except Exception as e:
            self.last_error = f"{e.__class__.__name__}: {str(e)}"
            self.last_error_at = datetime.now(timezone.utc)
            logger.error(f"Gemini generation failed: {e}")
            raise AIClientError(self.last_error) from e

        finish_reason = None
        if response.candidates:
            finish_reason = _normalize_finish_reason(response.candidates[0].finish_reason)

        usage = CompletionUsage()
        meta = getattr(response, "usage_metadata", None)
        if meta is not None:
            usage.prompt_tokens = meta.prompt_token_count or 0
            usage.completion_tokens = meta.candidates_token_count or 0

        content = response.text or ""
        logger.debug(
            f"Gemini completion model={model_id} finish_reason={finish_reason} "
            f"chars={len(content)} tokens={usage.total_tokens}"
        )
        return CompletionResult(content=content, finish_reason=finish_reason, usage=usage, model=model_id)


# Singleton instance access
ai_client = AIClient.get_instance()
