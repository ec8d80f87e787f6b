"""
Thin async client for the language model used by collaboration AI actions.

Dispatches to Groq's OpenAI-compatible chat completions when ``GROQ_API`` is
configured, otherwise to a local Ollama ``/api/generate``.  Every failure
raises ``LLMError``; callers persist nothing in that case.

Public API
----------
LLMClient.complete(prompt, context="", max_tokens=None) -> str
LLMClient.check_health()                                 -> bool
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"


class LLMError(RuntimeError):
    """The model call timed out, could not connect, or returned nothing usable."""


class LLMClient:
    """Language-model collaborator: ``complete(prompt, context) -> text``."""

    TEMPERATURE: float = 0.4

    def __init__(
        self,
        groq_api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.groq_api_key = settings.GROQ_API if groq_api_key is None else groq_api_key
        self._transport = transport  # injectable for tests

    @property
    def backend(self) -> str:
        return "groq" if self.groq_api_key else "ollama"

    async def complete(
        self,
        prompt: str,
        context: str = "",
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Run one completion and return the stripped text.

        Args:
            prompt:     The user-facing instruction.
            context:    System-level framing (idea details, transcript).
            max_tokens: Completion budget; defaults to LLM_MAX_TOKENS.

        Raises:
            LLMError: on timeout, connection failure, non-200 or empty output.
        """
        max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        if self.groq_api_key:
            text = await self._call_groq(prompt, context, max_tokens)
        else:
            text = await self._call_ollama(prompt, context, max_tokens)

        text = (text or "").strip()
        if not text:
            logger.error("complete: %s returned an empty completion", self.backend)
            raise LLMError("Language model returned an empty response")
        return text

    async def check_health(self) -> bool:
        """True if the configured backend answers a cheap request."""
        try:
            async with self._client(httpx.Timeout(5.0)) as client:
                if self.groq_api_key:
                    resp = await client.get(
                        "https://api.groq.com/openai/v1/models",
                        headers={"Authorization": f"Bearer {self.groq_api_key}"},
                    )
                else:
                    resp = await client.get(f"{settings.OLLAMA_BASE_URL}/api/tags")
            return resp.status_code == 200
        except Exception as exc:
            logger.warning("LLM health check failed: %s", exc)
            return False

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    async def _call_groq(self, prompt: str, context: str, max_tokens: int) -> str:
        """POST to Groq chat completions and return the text."""
        messages: List[Dict[str, str]] = []
        if context:
            messages.append({"role": "system", "content": context})
        messages.append({"role": "user", "content": prompt})

        timeout = httpx.Timeout(float(settings.GROQ_TIMEOUT), connect=10.0)
        resp = await self._post(
            GROQ_CHAT_URL,
            timeout,
            headers={"Authorization": f"Bearer {self.groq_api_key}"},
            json={
                "model": settings.GROQ_MODEL,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": self.TEMPERATURE,
            },
        )
        try:
            return resp.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("_call_groq: malformed response body: %s", resp.text[:200])
            raise LLMError("Malformed response from language model") from exc

    async def _call_ollama(self, prompt: str, context: str, max_tokens: int) -> str:
        """POST to local Ollama /api/generate and return the response text."""
        full_prompt = f"{context}\n\n{prompt}" if context else prompt
        timeout = httpx.Timeout(float(settings.OLLAMA_TIMEOUT), connect=10.0)
        resp = await self._post(
            f"{settings.OLLAMA_BASE_URL}/api/generate",
            timeout,
            json={
                "model": settings.OLLAMA_LLM_MODEL,
                "prompt": full_prompt,
                "stream": False,
                "options": {"num_predict": max_tokens, "temperature": self.TEMPERATURE},
            },
        )
        try:
            return resp.json().get("response", "")
        except ValueError as exc:
            logger.error("_call_ollama: non-JSON response: %s", resp.text[:200])
            raise LLMError("Malformed response from language model") from exc

    async def _post(self, url: str, timeout: httpx.Timeout, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client(timeout) as client:
                resp = await client.post(url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("%s request timed out after %.0f s", self.backend, timeout.read or 0)
            raise LLMError("Language model request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("%s connection error: %s", self.backend, exc)
            raise LLMError("Could not reach language model") from exc

        if resp.status_code != 200:
            logger.error("%s returned HTTP %d: %s", self.backend, resp.status_code, resp.text[:200])
            raise LLMError(f"Language model returned HTTP {resp.status_code}")
        return resp

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)
