import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from groq import AsyncGroq, APIStatusError, RateLimitError

from tailor_service.config import settings
from tailor_service.reliability.circuit_breaker import get_circuit_breaker, CircuitBreakerOpenException

# Configure logging
logger = logging.getLogger(__name__)

PROVIDER_PREFIX = "groq:"


class GenerationError(Exception):
    """Raised when the provider call fails or returns no text."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitedError(GenerationError):
    """Provider answered HTTP 429. Callers may offer a retry."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message, status=429)
        self.retry_after = retry_after


@dataclass
class GenerationResult:
    text: str
    usage: Dict[str, int] = field(default_factory=dict)
    model: Optional[str] = None


def resolve_model_name(model_key: Optional[str]) -> str:
    """
    Map a model key such as ``groq:openai/gpt-oss-120b`` to the provider's
    model name.
    """
    key = model_key or settings.DEFAULT_MODEL_KEY
    if key.startswith(PROVIDER_PREFIX):
        return key[len(PROVIDER_PREFIX):]
    return key


def _retry_after_from(error: APIStatusError) -> Optional[int]:
    response = getattr(error, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return max(0, int(float(value))) if value is not None else None
    except ValueError:
        return None


class GroqTextGenerator:
    """
    Single-shot text generation over the Groq chat completions API.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        client: Optional[AsyncGroq] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.temperature = temperature if temperature is not None else settings.GENERATION_TEMPERATURE
        self.max_tokens = max_tokens if max_tokens is not None else settings.GENERATION_MAX_TOKENS
        self._client = client
        self.circuit_breaker = get_circuit_breaker(
            "groq_api",
            failure_threshold=5,
            recovery_timeout=60,
            expected_exceptions=[GenerationError],
        )

    def _get_client(self) -> AsyncGroq:
        if self._client is None:
            if not self.api_key:
                raise GenerationError("GROQ_API_KEY is not set in settings.")
            self._client = AsyncGroq(api_key=self.api_key)
        return self._client

    async def _execute_request(self, prompt: str, model: str, options: Dict[str, Any]) -> GenerationResult:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=options.get("temperature", self.temperature),
                max_tokens=options.get("max_tokens", self.max_tokens),
            )
        except RateLimitError as e:
            raise RateLimitedError(f"Groq rate limit reached: {e}", retry_after=_retry_after_from(e)) from e
        except APIStatusError as e:
            if e.status_code == 429:
                raise RateLimitedError(f"Groq rate limit reached: {e}", retry_after=_retry_after_from(e)) from e
            raise GenerationError(f"Groq API error: {e}", status=e.status_code) from e
        except Exception as e:
            raise GenerationError(f"Error calling Groq API: {e}") from e

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise GenerationError("Groq returned an empty completion")

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens or 0,
                "completion_tokens": response.usage.completion_tokens or 0,
                "total_tokens": response.usage.total_tokens or 0,
            }

        return GenerationResult(text=text, usage=usage, model=response.model)

    async def generate(
        self,
        prompt: str,
        model_key: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> GenerationResult:
        """
        Generate text for ``prompt``.

        Raises:
            RateLimitedError: Provider answered 429
            GenerationError: Any other provider failure, or an open circuit
        """
        model = resolve_model_name(model_key)
        try:
            result = await self.circuit_breaker.call(self._execute_request, prompt, model, options or {})
        except CircuitBreakerOpenException as e:
            logger.error(f"Groq Circuit Breaker OPEN: {e}")
            raise GenerationError(str(e)) from e
        except GenerationError as e:
            logger.error(f"Generation failed for {model}: {e}")
            raise

        logger.info(f"Generated {len(result.text)} chars with {model} (usage={result.usage})")
        return result


_generator: Optional[GroqTextGenerator] = None


def get_text_generator() -> GroqTextGenerator:
    global _generator
    if _generator is None:
        _generator = GroqTextGenerator()
    return _generator
