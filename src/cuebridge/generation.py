# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Clients for the text-generation service that writes bridge sentences.

This module defines the interface the reconstruction trigger talks to, and an
aiohttp implementation for the Gemini `generateContent` REST API. Every
failure (HTTP error, timeout, malformed response) is reported as a skipped
result rather than raised, so a flaky service can never block live tracking.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiohttp
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Token the service returns when no bridge sentence is needed
SKIP_MARKER: str = "[SKIP]"

DEFAULT_MODEL: str = "gemini-2.5-flash-lite"
GEMINI_ENDPOINT: str = (
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)
API_KEY_ENV: str = "GEMINI_API_KEY"

# Characters stripped from around generated text (models like to quote)
_QUOTES: str = "\"'“”‘’「」『』"


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one generation call."""
    text: str
    skipped: bool
    error: str | None = None

    @classmethod
    def skip(cls, error: str | None = None) -> 'GenerationResult':
        """A result carrying no suggestion, optionally recording why."""
        return cls(text="", skipped=True, error=error)


def interpret_generation_text(text: str | None) -> GenerationResult:
    """Turn raw service output into a result, honouring the skip marker."""
    cleaned: str = (text or "").strip().strip(_QUOTES).strip()
    if not cleaned or SKIP_MARKER.casefold() in cleaned.casefold():
        return GenerationResult.skip()
    return GenerationResult(text=cleaned, skipped=False)


def extract_candidate_text(data: Any) -> str | None:
    """Pull the first candidate's text out of a generateContent response.

    Returns None if the response doesn't have the expected shape.
    """
    try:
        parts = data["candidates"][0]["content"]["parts"]
        text = parts[0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) else None


def resolve_api_key(configured: str | None = None) -> str | None:
    """
    Find the generation API key.

    A key set in the config file wins; otherwise GEMINI_API_KEY is read from
    the environment, after loading `.env.local` and `.env` from the working
    directory if present.
    """
    if configured:
        return configured
    for env_file in (Path.cwd() / ".env.local", Path.cwd() / ".env"):
        if env_file.exists():
            load_dotenv(env_file, override=False)
    return os.getenv(API_KEY_ENV) or None


class GenerationClient(ABC):
    """Base interface for text-generation services."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        temperature: float = 0.4,
        max_output_tokens: int = 100
    ) -> GenerationResult:
        """
        Generate text for a prompt.

        Implementations must not raise for service failures; they return
        `GenerationResult.skip(...)` instead.
        """

    async def close(self) -> None:
        """Release any network resources."""


class GeminiClient(GenerationClient):
    """Generation client for the Gemini REST API, using aiohttp."""

    def __init__(
        self,
        api_key: str | None,
        model: str = DEFAULT_MODEL,
        timeout_s: float = 10.0,
        endpoint: str = GEMINI_ENDPOINT,
        session: aiohttp.ClientSession | None = None
    ) -> None:
        """
        Args:
            api_key: API key; without one every call is skipped
            model: Model name substituted into the endpoint
            timeout_s: Total timeout for one HTTP request
            endpoint: URL template with a `{model}` placeholder
            session: Optional session to reuse (not closed by close())
        """
        self.api_key: str | None = api_key
        self.model: str = model
        self.timeout_s: float = timeout_s
        self.endpoint: str = endpoint
        self._session: aiohttp.ClientSession | None = session
        self._owns_session: bool = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_s)
            )
            self._owns_session = True
        return self._session

    async def generate(
        self,
        prompt: str,
        temperature: float = 0.4,
        max_output_tokens: int = 100
    ) -> GenerationResult:
        if not self.api_key:
            logger.warning("No %s configured; skipping generation", API_KEY_ENV)
            return GenerationResult.skip("missing api key")

        request_body: dict[str, Any] = {
            "contents": [
                {"role": "user", "parts": [{"text": prompt}]},
            ],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        url: str = self.endpoint.format(model=self.model)

        try:
            session = self._get_session()
            async with session.post(url, params={"key": self.api_key}, json=request_body) as response:
                if response.status != 200:
                    detail: str = await response.text()
                    logger.error("Generation service returned HTTP %d: %s",
                                 response.status, detail[:200])
                    return GenerationResult.skip(f"http {response.status}")
                data: Any = await response.json(content_type=None)
        except asyncio.TimeoutError:
            logger.warning("Generation request timed out after %.1fs", self.timeout_s)
            return GenerationResult.skip("timeout")
        except aiohttp.ClientError as e:
            logger.error("Generation request failed: %s", e)
            return GenerationResult.skip(str(e))
        except ValueError as e:
            logger.error("Generation service sent invalid JSON: %s", e)
            return GenerationResult.skip("malformed response")

        text: str | None = extract_candidate_text(data)
        if text is None:
            logger.error("Generation response had no candidate text")
            return GenerationResult.skip("malformed response")

        return interpret_generation_text(text)

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
