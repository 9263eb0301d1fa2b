"""Chat completion provider abstractions."""

from __future__ import annotations

import json
import sys
from abc import ABC, abstractmethod
from typing import Any, Optional

import openai

from .errors import (
    TranslationProviderConfigurationError,
    TranslationProviderError,
)
from .policy import extract_retry_after
from .prompts import extract_envelope
from .structures import ChatRequest


class ChatProvider(ABC):
    """Abstract adapter for chat completion services."""

    @abstractmethod
    async def complete(self, request: ChatRequest) -> str:
        """Send the request and return the raw text of the reply."""


class EchoChatProvider(ChatProvider):
    """A provider that returns the original text (useful for testing)."""

    async def complete(self, request: ChatRequest) -> str:
        payload = extract_envelope(request.user_content())
        if "items" in payload:
            return json.dumps(
                {
                    "decisions": [
                        {"id": item["id"], "accept": True, "reason": "echo"}
                        for item in payload["items"]
                    ]
                }
            )
        return json.dumps(
            {
                "translations": [
                    {"id": segment["id"], "text": segment["text"]}
                    for segment in payload.get("segments", [])
                ]
            },
            ensure_ascii=False,
        )


class OpenAIChatProvider(ChatProvider):
    """Provider for OpenAI-compatible Chat Completions endpoints."""

    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: str,
        debug: bool = False,
        client: Any = None,
    ) -> None:
        self.debug = debug
        self._client = client if client is not None else self._build_client(api_key, base_url)

    @staticmethod
    def _build_client(api_key: Optional[str], base_url: str) -> Any:
        if not api_key:
            raise TranslationProviderConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different provider."
            )
        # Retries are owned by the translation engine's policy.
        return openai.AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    async def complete(self, request: ChatRequest) -> str:
        messages = [message.as_payload() for message in request.messages]
        self._log_debug("provider.request.messages", messages)
        try:
            response = await self._client.chat.completions.create(
                model=request.model,
                messages=messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                timeout=request.timeout,
            )
        except openai.APIStatusError as exc:
            raise TranslationProviderError(
                f"API error {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                retry_after=extract_retry_after(exc),
            ) from exc
        except openai.APITimeoutError as exc:
            raise TranslationProviderError(f"Request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise TranslationProviderError(f"Network connection failed: {exc}") from exc
        self._log_debug("provider.response.raw", self._safe_dump_response(response))

        content = self._extract_content(response)
        if not content:
            raise TranslationProviderError("Empty response content from API")
        return content

    def _extract_content(self, response: Any) -> Optional[str]:
        choices = getattr(response, "choices", None) or []
        for choice in choices:
            message = getattr(choice, "message", None)
            if message is None:
                continue
            message_content = getattr(message, "content", None)
            if isinstance(message_content, list):
                parts: list[str] = []
                for part in message_content:
                    text_value = getattr(part, "text", None)
                    if text_value is None and isinstance(part, dict):
                        text_value = part.get("text")
                    if text_value:
                        parts.append(str(text_value))
                if parts:
                    return "\n".join(parts)
            elif message_content:
                return str(message_content)
        return None

    def _log_debug(self, label: str, payload: Any) -> None:
        """Emit structured debug information when enabled."""

        if not self.debug:
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        print(f"[mdtranslate][provider-debug] {label}:\n{message}", file=sys.stderr)

    def _safe_dump_response(self, response: Any) -> Any:
        """Best-effort conversion of SDK response objects into JSON-friendly data."""

        dump = getattr(response, "model_dump", None)
        if callable(dump):
            try:
                return dump()
            except (TypeError, ValueError):
                pass
        return str(response)


def build_provider(
    name: Optional[str],
    *,
    api_key: Optional[str] = None,
    base_url: str = "https://api.openai.com/v1",
    debug: bool = False,
) -> ChatProvider:
    """Factory to create providers by name."""

    normalized = (name or "openai").strip().lower()
    if normalized in {"openai", "gpt", "default"}:
        return OpenAIChatProvider(api_key=api_key, base_url=base_url, debug=debug)
    if normalized in {"echo", "noop", "mock"}:
        return EchoChatProvider()
    raise TranslationProviderConfigurationError(
        f"Unknown translation provider '{name}'."
    )
