"""Minimal Gemini API wrapper: one-shot generation, chat sessions and SSE streaming."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class GeminiError(Exception):
    """Base exception for Gemini client errors."""


class GeminiRequestError(GeminiError):
    """Raised when Gemini API request fails."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class GeminiResponseError(GeminiError):
    """Raised when Gemini response shape cannot be parsed."""


@dataclass
class GeminiChatSession:
    """
    Opaque conversation handle.

    Holds the full `contents` history sent with every streamed turn. A turn is
    only recorded once its reply finished streaming, so a failed turn leaves the
    history untouched.
    """

    history: list[dict[str, Any]] = field(default_factory=list)

    def record_turn(self, user_text: str, model_text: str) -> None:
        self.history.append(_content("user", user_text))
        self.history.append(_content("model", model_text))


def _content(role: str, text: str) -> dict[str, Any]:
    return {"role": role, "parts": [{"text": text}]}


def extract_text(payload: dict[str, Any]) -> str:
    """Join every text part of the first candidate (empty when there is none)."""
    candidates = payload.get("candidates") or []
    if not candidates:
        return ""

    candidate = candidates[0] or {}
    parts = ((candidate.get("content") or {}).get("parts")) or []

    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


class GeminiClient:
    """Thin async client for Gemini `generateContent` and `streamGenerateContent`."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout_seconds: int = 30,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)

    def _url(self, method: str) -> str:
        return f"{GEMINI_BASE_URL}/{self.model}:{method}"

    def start_chat(self, seed_instruction: str, acknowledgment: str) -> GeminiChatSession:
        """Open a conversation primed with a seed instruction and a canned model reply."""
        return GeminiChatSession(
            history=[
                _content("user", f"System Instruction: {seed_instruction}"),
                _content("model", acknowledgment),
            ]
        )

    async def generate_content(self, prompt: str) -> str:
        """One-shot completion with retry on transient failures."""
        body = {"contents": [_content("user", prompt)]}
        params = {"key": self.api_key}

        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                async with self._client() as client:
                    response = await client.post(self._url("generateContent"), params=params, json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_error = exc
                if attempt < self.max_retries:
                    await asyncio.sleep(0.5 * (2**attempt))
                    continue
                raise GeminiRequestError(503, "Gemini request failed") from exc

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                logger.info("Gemini returned %s, retrying (attempt %s)", response.status_code, attempt + 1)
                await asyncio.sleep(0.5 * (2**attempt))
                continue

            if response.status_code >= 400:
                raise GeminiRequestError(response.status_code, response.text)

            try:
                payload = response.json()
            except ValueError as exc:
                raise GeminiResponseError("Invalid JSON from Gemini") from exc

            if not payload.get("candidates"):
                raise GeminiResponseError("Gemini response missing candidates")

            return extract_text(payload).strip()

        raise GeminiRequestError(503, f"Gemini request failed: {last_error or 'unknown error'}")

    async def stream_message(self, session: GeminiChatSession, text: str) -> AsyncIterator[str]:
        """
        Send one user turn and yield reply text increments in arrival order.

        The stream is finite and cannot be restarted. Streams are never retried:
        a partial reply has already been handed to the caller.
        """
        body = {"contents": [*session.history, _content("user", text)]}
        params = {"key": self.api_key, "alt": "sse"}
        received: list[str] = []

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    self._url("streamGenerateContent"),
                    params=params,
                    json=body,
                ) as response:
                    if response.status_code >= 400:
                        detail = (await response.aread()).decode("utf-8", errors="replace")
                        raise GeminiRequestError(response.status_code, detail)

                    async for line in response.aiter_lines():
                        chunk = _parse_sse_line(line)
                        if chunk:
                            received.append(chunk)
                            yield chunk
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise GeminiRequestError(503, "Gemini stream failed") from exc

        session.record_turn(text, "".join(received))


def _parse_sse_line(line: str) -> str:
    line = line.strip()
    if not line.startswith("data:"):
        return ""

    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return ""

    try:
        payload = json.loads(data)
    except ValueError as exc:
        raise GeminiResponseError("Invalid JSON chunk from Gemini stream") from exc

    error = payload.get("error")
    if isinstance(error, dict):
        raise GeminiRequestError(int(error.get("code") or 500), str(error.get("message") or "stream error"))

    return extract_text(payload)
