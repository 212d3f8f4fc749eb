"""
LLM service for chat-completion calls against an OpenAI-compatible API
"""
import time
from typing import Optional
import httpx
import structlog

from kbchat.services.config import Settings
from kbchat.services.errors import ConfigurationError, LLMError
from kbchat.utils.metrics import llm_duration, track_token_usage

logger = structlog.get_logger()


def describe_http_error(error: httpx.HTTPError) -> str:
    """httpx timeouts often stringify to an empty message"""
    return str(error) or type(error).__name__


class LLMService:
    """Service for LLM generation

    Constructed once at startup and injected into every component that
    talks to the model, so tests can substitute a fake.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.LLM_TIMEOUT)

    @property
    def configured(self) -> bool:
        return bool(self.settings.OPENAI_API_KEY)

    async def complete(
        self,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
        call_site: str = "chat"
    ) -> str:
        """
        Run one chat completion and return the message content (may be empty)
        """
        if not self.configured:
            raise ConfigurationError(
                "Language model API key is not set. Please set OPENAI_API_KEY."
            )

        payload = {
            "model": self.settings.MODEL_NAME,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user}
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        headers = {"Authorization": f"Bearer {self.settings.OPENAI_API_KEY}"}

        start_time = time.time()
        try:
            response = await self.http_client.post(
                f"{self.settings.LLM_BASE_URL.rstrip('/')}/chat/completions",
                json=payload,
                headers=headers,
                timeout=self.settings.LLM_TIMEOUT
            )
            response.raise_for_status()
            result = response.json()

        except httpx.HTTPStatusError as e:
            logger.error(
                "LLM request failed",
                call_site=call_site,
                status=e.response.status_code,
                error=e.response.text[:500]
            )
            raise LLMError(
                f"Language model returned HTTP {e.response.status_code}: {e.response.text}"
            ) from e

        except httpx.HTTPError as e:
            logger.error("LLM request failed", call_site=call_site, error=describe_http_error(e))
            raise LLMError(f"Language model request failed: {describe_http_error(e)}") from e

        except ValueError as e:
            logger.error("LLM returned a malformed body", call_site=call_site, error=str(e))
            raise LLMError("Language model returned a malformed response") from e

        finally:
            llm_duration.labels(call_site=call_site).observe(time.time() - start_time)

        content = ""
        choices = result.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            content = message.get("content") or ""

        usage = result.get("usage") or {}
        if usage.get("total_tokens"):
            track_token_usage(usage["total_tokens"], self.settings.MODEL_NAME, call_site)

        logger.info(
            "LLM completion received",
            call_site=call_site,
            prompt_chars=len(system) + len(user),
            response_chars=len(content)
        )
        return content

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()
