"""
Language-model provider for the copilot — Google Gemini over its REST API.
The copilot only needs `generate(messages) -> text`; everything provider-specific lives here.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from healbridge.config import get_config, CopilotConfig

log = structlog.get_logger()

PLACEHOLDER_KEYS = {"", "sk-..."}


class ProviderError(Exception):
    """The provider call failed; the copilot turns this into a fallback reply."""


class ProviderRateLimitError(ProviderError):
    pass


class ProviderNotConfiguredError(ProviderError):
    pass


class AIProvider(ABC):
    """Abstract text-generation capability."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def generate(self, messages: List[Dict[str, str]]) -> str:
        """
        Generate the next assistant reply.

        Args:
            messages: OpenAI-style dicts with 'role' (system/user/assistant) and 'content'

        Returns:
            Reply text

        Raises:
            ProviderError (or a subclass) on any failure, timeouts included
        """
        ...

    async def close(self) -> None:
        pass


class GeminiProvider(AIProvider):
    """Async client for the Gemini generateContent endpoint."""

    def __init__(self, copilot_cfg: Optional[CopilotConfig] = None):
        self.cfg = copilot_cfg or get_config().copilot
        self.api_key = str(self.cfg.api_key or "")
        self.model = self.cfg.model
        self._client: Optional[httpx.AsyncClient] = None

        if not self.is_configured:
            log.warning("gemini_client_no_key", message="GOOGLE_AI_API_KEY not set")

    @property
    def is_configured(self) -> bool:
        return self.api_key not in PLACEHOLDER_KEYS

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.cfg.base_url,
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(float(self.cfg.timeout_seconds), connect=10.0),
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            log.info("gemini_client_closed")

    @staticmethod
    def build_payload(messages: List[Dict[str, str]]) -> Dict:
        """Convert OpenAI-style messages to Gemini format."""
        system_parts = []
        contents = []
        for msg in messages:
            role = msg["role"]
            text = msg.get("content", "")
            if role == "system":
                system_parts.append({"text": text})
                continue
            # Gemini uses "user" and "model" roles
            contents.append({
                "role": "model" if role == "assistant" else "user",
                "parts": [{"text": text}],
            })

        payload: Dict = {"contents": contents}
        if system_parts:
            payload["system_instruction"] = {"parts": system_parts}
        return payload

    @staticmethod
    def extract_text(data: Dict) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError("Gemini returned no candidates")
        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise ProviderError("Gemini returned an empty reply")
        return text

    async def generate(self, messages: List[Dict[str, str]]) -> str:
        if not self.is_configured:
            raise ProviderNotConfiguredError("GOOGLE_AI_API_KEY not configured")

        payload = self.build_payload(messages)
        try:
            data = await self._post(payload)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.error("gemini_http_error", status=status, model=self.model)
            if status == 429:
                raise ProviderRateLimitError("Gemini rate limit reached") from e
            raise ProviderError(f"Gemini returned {status}") from e
        except httpx.HTTPError as e:
            log.error("gemini_request_error", error=str(e), error_type=type(e).__name__)
            raise ProviderError(str(e) or type(e).__name__) from e

        return self.extract_text(data)

    async def _post(self, payload: Dict) -> Dict:
        retrying = retry(
            retry=retry_if_exception_type(httpx.ConnectError),
            stop=stop_after_attempt(max(1, int(self.cfg.retry_attempts))),
            wait=wait_exponential_jitter(initial=0.5, max=4.0),
            reraise=True,
        )
        return await retrying(self._post_once)(payload)

    async def _post_once(self, payload: Dict) -> Dict:
        response = await self.client.post(
            f"/models/{self.model}:generateContent",
            params={"key": self.api_key},
            json=payload,
        )
        response.raise_for_status()
        return response.json()


_provider: Optional[AIProvider] = None


def get_ai_provider() -> AIProvider:
    global _provider
    if _provider is None:
        _provider = GeminiProvider()
    return _provider


def reset_ai_provider() -> None:
    global _provider
    _provider = None
