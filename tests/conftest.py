# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Shared fixtures for the cuebridge tests.
"""

import asyncio

import pytest

from cuebridge import debug_log
from cuebridge.generation import GenerationClient, GenerationResult


class FakeGenerationClient(GenerationClient):
    """Generation client returning canned results and recording prompts."""

    def __init__(
        self,
        text: str = "As I said, this matters.",
        skipped: bool = False,
        delay_s: float = 0.0,
        error: Exception | None = None
    ) -> None:
        self.text = text
        self.skipped = skipped
        self.delay_s = delay_s
        self.error = error
        self.prompts: list[str] = []
        self.calls: list[dict[str, float]] = []
        self.closed = False

    async def generate(
        self,
        prompt: str,
        temperature: float = 0.4,
        max_output_tokens: int = 100
    ) -> GenerationResult:
        self.prompts.append(prompt)
        self.calls.append({
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
        })
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        if self.skipped:
            return GenerationResult.skip()
        return GenerationResult(text=self.text, skipped=False)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeGenerationClient:
    """A generation client that answers immediately."""
    return FakeGenerationClient()


@pytest.fixture(autouse=True)
def debug_log_disabled():
    """Keep the debug log off unless a test turns it on."""
    debug_log.disable()
    yield
    debug_log.disable()


@pytest.fixture
def make_client():
    """Factory for generation clients with custom behaviour."""
    return FakeGenerationClient
