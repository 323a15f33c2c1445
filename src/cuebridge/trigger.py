# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debounced policy deciding when to ask for a bridge sentence.

Whenever the set of skipped spans changes, the trigger checks whether the
gaps are big enough to be worth bridging. If so it waits for the recognizer
to go quiet (the debounce window restarts on every further change) and then
issues a single generation request. Only one request is ever in flight;
conditions that arise meanwhile are not queued.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable

from . import debug_log
from .config import DEFAULT_CONFIG, TriggerSettings
from .gaps import GapSet
from .generation import GenerationClient, GenerationResult
from .matcher import SequentialMatcher
from .reconstruction import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TEMPERATURE,
    ReconstructionRequest,
    build_bridge_prompt,
    extract_context,
)
from .transcript import RecentSpeechBuffer

logger = logging.getLogger(__name__)

ResultHandler = Callable[[ReconstructionRequest, GenerationResult], Awaitable[None] | None]
IssueHandler = Callable[[ReconstructionRequest], Awaitable[None] | None]


class ReconstructionTrigger:
    """
    Decides whether and when to request a reconstruction.

    The trigger reads the live matcher and gap set when it fires, never a
    copy taken when the debounce started. Results are handed to `on_result`
    together with the request they answer; whoever receives them re-reads
    live state to decide what to do.
    """

    def __init__(
        self,
        matcher: SequentialMatcher,
        gaps: GapSet,
        client: GenerationClient | None,
        on_result: ResultHandler,
        on_issue: IssueHandler | None = None,
        has_displayed_suggestion: Callable[[], bool] = lambda: False,
        recent_speech: RecentSpeechBuffer | None = None,
        settings: TriggerSettings | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    ) -> None:
        """
        Args:
            matcher: Live matcher (source of the cursor and current script)
            gaps: Live gap set
            client: Generation service, or None to disable reconstruction
            on_result: Called with (request, result) once a call completes
            on_issue: Called with the request once it is in flight
            has_displayed_suggestion: True while a suggestion awaits accept/dismiss
            recent_speech: Rolling buffer of final transcripts sent as context
            settings: Trigger thresholds and timings (defaults from config)
            temperature: Sampling temperature for the generation call
            max_output_tokens: Output length cap for the generation call
        """
        settings = settings or DEFAULT_CONFIG["trigger"]
        self.matcher: SequentialMatcher = matcher
        self.gaps: GapSet = gaps
        self.client: GenerationClient | None = client
        self.on_result: ResultHandler = on_result
        self.on_issue: IssueHandler | None = on_issue
        self.has_displayed_suggestion: Callable[[], bool] = has_displayed_suggestion
        self.recent_speech: RecentSpeechBuffer | None = recent_speech
        self.temperature: float = temperature
        self.max_output_tokens: int = max_output_tokens

        self.debounce_ms: int = settings.get("debounce_ms", 1200)
        self.min_skipped_chars: int = settings.get("min_skipped_chars", 10)
        self.min_skipped_sentences: int = settings.get("min_skipped_sentences", 1)
        self.context_chars: int = settings.get("context_chars", 300)
        self.max_spans: int = settings.get("max_spans", 5)
        self.min_call_interval_ms: int = settings.get("min_call_interval_ms", 50)
        self.request_timeout_s: float = settings.get("request_timeout_s", 10.0)

        self.pending: bool = False
        self._last_call_time: float | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._request_task: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @property
    def is_scheduled(self) -> bool:
        """True while a debounce timer is running."""
        return self._debounce_task is not None and not self._debounce_task.done()

    def gaps_exceed_threshold(self) -> bool:
        """Check the size condition alone: enough skipped sentences or characters."""
        if not len(self.gaps):
            return False
        return (
            self.gaps.skipped_sentence_count() >= self.min_skipped_sentences
            or self.gaps.total_skipped_chars >= self.min_skipped_chars
        )

    def should_fire(self) -> bool:
        """Full fire condition: big enough gaps, nothing pending or displayed."""
        if not self.enabled or self.pending or self.has_displayed_suggestion():
            return False
        return self.gaps_exceed_threshold()

    def notify_gaps_changed(self) -> None:
        """
        React to a change in the gap set.

        Cancels any running debounce timer and, if the fire condition holds,
        starts a new one for the current gap set version.
        """
        self._cancel_debounce()
        if not self.should_fire():
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; reconstruction not scheduled")
            return

        self._debounce_task = loop.create_task(self._debounce(self.gaps.version))

    async def _debounce(self, version: int) -> None:
        await asyncio.sleep(self.debounce_ms / 1000)
        if version != self.gaps.version:
            # A newer change has its own timer
            return
        self.fire()

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    def fire(self) -> ReconstructionRequest | None:
        """
        Issue a request now if the fire condition holds.

        Returns:
            The request issued, or None if nothing was sent
        """
        if not self.should_fire():
            return None

        now: float = time.monotonic()
        if (self._last_call_time is not None
                and (now - self._last_call_time) * 1000 < self.min_call_interval_ms):
            logger.debug("Reconstruction throttled (%.0fms since last call)",
                         (now - self._last_call_time) * 1000)
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; reconstruction not issued")
            return None

        request: ReconstructionRequest = self.build_request()
        self.pending = True
        self._last_call_time = now
        logger.info("Requesting reconstruction for %d skipped chars: '%s'",
                    self.gaps.total_skipped_chars, request.skipped_text[:60])
        debug_log.log_request(request.issued_at_cursor, request.skipped_text)

        self._request_task = loop.create_task(self._run_request(request))
        return request

    def build_request(self) -> ReconstructionRequest:
        """Snapshot the live cursor, script and gaps into a request."""
        script = self.matcher.script
        cursor_offset: int = self.matcher.cursor_char_offset
        previous, current = extract_context(script.text, cursor_offset, self.context_chars)
        gap_end: int | None = self.gaps.last_span_end
        return ReconstructionRequest(
            skipped_text=self.gaps.joined_text(self.max_spans),
            current_context=current,
            previous_context=previous,
            issued_at_cursor=cursor_offset,
            gap_end_offset=gap_end if gap_end is not None else cursor_offset,
            script_version=script.version,
            recent_speech=self.recent_speech.text if self.recent_speech else "",
        )

    async def _run_request(self, request: ReconstructionRequest) -> None:
        assert self.client is not None
        try:
            if self.on_issue is not None:
                issued = self.on_issue(request)
                if inspect.isawaitable(issued):
                    await issued
            result: GenerationResult = await asyncio.wait_for(
                self.client.generate(
                    build_bridge_prompt(request),
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens
                ),
                timeout=self.request_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning("Reconstruction request timed out after %.1fs",
                           self.request_timeout_s)
            result = GenerationResult.skip("timeout")
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Reconstruction request failed: %s", e, exc_info=True)
            result = GenerationResult.skip(str(e))
        finally:
            self.pending = False

        handled = self.on_result(request, result)
        if inspect.isawaitable(handled):
            await handled

    def reset(self) -> None:
        """Cancel any pending debounce (after a merge, dismissal or script change).

        An in-flight request is left to finish; its result is checked for
        staleness when it arrives.
        """
        self._cancel_debounce()

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or request is outstanding."""
        while True:
            tasks = [
                t for t in (self._debounce_task, self._request_task)
                if t is not None and not t.done()
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel all outstanding work (shutdown only)."""
        self._cancel_debounce()
        if self._request_task is not None and not self._request_task.done():
            self._request_task.cancel()
            await asyncio.gather(self._request_task, return_exceptions=True)
        self._request_task = None
        self.pending = False
