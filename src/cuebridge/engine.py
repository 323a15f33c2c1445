# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
The alignment engine: a single owner for the script, the match cursor, the
gap set and the reconstruction machinery.

Transcript events are queued with `submit()` and processed strictly in
arrival order by one consumer loop (`run()`). Everything that changes engine
state runs on the event loop between awaits, so a merge can never interleave
with matching. After each step a snapshot is pushed to registered listeners.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .config import (
    DEFAULT_CONFIG,
    MatchingSettings,
    MergeSettings,
    TriggerSettings,
)
from .gaps import GapSet
from .generation import GenerationClient, GenerationResult
from .matcher import BatchResult, MismatchRecord, SequentialMatcher
from .merge import SuggestionMergeManager
from .reconstruction import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TEMPERATURE,
    ReconstructionRequest,
)
from .script_parser import ReferenceScript
from .transcript import RecentSpeechBuffer, TranscriptEvent, UtteranceTracker
from .trigger import ReconstructionTrigger

logger = logging.getLogger(__name__)

# Mismatches included in a snapshot
SNAPSHOT_MISMATCHES: int = 10

SnapshotListener = Callable[['EngineSnapshot'], Awaitable[None] | None]


@dataclass
class EngineSnapshot:
    """Read-only view of engine state pushed to listeners after each step."""
    script_version: int
    script_text: str
    word_count: int
    cursor: int
    cursor_char_offset: int
    speculative_cursor: int
    progress: float
    skipped_spans: list[dict[str, Any]] = field(default_factory=list)
    mismatches: list[MismatchRecord] = field(default_factory=list)
    suggestion: str | None = None
    suggestion_offset: int | None = None
    reconstruction_pending: bool = False

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form of the snapshot."""
        return {
            "scriptVersion": self.script_version,
            "scriptText": self.script_text,
            "wordCount": self.word_count,
            "cursor": self.cursor,
            "cursorCharOffset": self.cursor_char_offset,
            "speculativeCursor": self.speculative_cursor,
            "progress": self.progress,
            "skippedSpans": self.skipped_spans,
            "mismatches": [
                {
                    "expected": m.expected_word,
                    "spoken": m.spoken_word,
                    "position": m.position,
                }
                for m in self.mismatches
            ],
            "suggestion": self.suggestion,
            "suggestionOffset": self.suggestion_offset,
            "reconstructionPending": self.reconstruction_pending,
        }


class AlignmentEngine:
    """
    Owns all live alignment state and funnels every change through one place.

    Usage:
        engine = AlignmentEngine(script_text, client=GeminiClient(api_key))
        engine.add_listener(send_to_ui)
        runner = asyncio.create_task(engine.run())

        # From the recognizer callback
        engine.submit(TranscriptEvent("hello every", is_final=False))

        # From the UI
        await engine.accept_suggestion()
    """

    def __init__(
        self,
        script_text: str = "",
        client: GenerationClient | None = None,
        matching: MatchingSettings | None = None,
        trigger_settings: TriggerSettings | None = None,
        merge_settings: MergeSettings | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        max_queue_size: int = 100
    ) -> None:
        """
        Initialize the engine.

        Args:
            script_text: Initial reference script
            client: Generation service; None disables reconstruction
            matching: Matching settings (window, threshold, throttling)
            trigger_settings: Reconstruction trigger settings
            merge_settings: Suggestion merge settings
            temperature: Sampling temperature for bridge sentences
            max_output_tokens: Output length cap for bridge sentences
            max_queue_size: Transcript events buffered before backpressure
        """
        matching = matching or DEFAULT_CONFIG["matching"]
        self.interim_throttle_ms: int = matching.get("interim_throttle_ms", 50)

        self.matcher = SequentialMatcher(
            ReferenceScript(script_text),
            window_size=matching.get("window_size", 20),
            match_threshold=matching.get("match_threshold", 0.8)
        )
        self.gaps = GapSet(self.matcher.script)
        self.utterance = UtteranceTracker()
        self.recent_speech = RecentSpeechBuffer(matching.get("recent_speech_chars", 200))
        self.merge = SuggestionMergeManager(self.matcher, self.gaps, merge_settings)
        self.trigger = ReconstructionTrigger(
            self.matcher,
            self.gaps,
            client,
            on_result=self._on_generation_result,
            on_issue=self._on_reconstruction_issued,
            has_displayed_suggestion=lambda: self.merge.has_suggestion,
            recent_speech=self.recent_speech,
            settings=trigger_settings,
            temperature=temperature,
            max_output_tokens=max_output_tokens
        )

        # Cursor shown for interim speech that hasn't been committed
        self.speculative_cursor: int = 0
        self.last_final_batch: BatchResult | None = None

        self.queue: asyncio.Queue[TranscriptEvent | None] = asyncio.Queue(
            maxsize=max_queue_size
        )
        self._last_interim_time: float | None = None
        self._listeners: list[SnapshotListener] = []

    @property
    def script(self) -> ReferenceScript:
        return self.matcher.script

    # ------------------------------------------------------------------
    # Transcript processing
    # ------------------------------------------------------------------

    def handle_transcript(self, event: TranscriptEvent) -> bool:
        """
        Process one transcript event.

        Final events are authoritative: their unconsumed words are matched
        against the live matcher and the utterance is closed. Interim events
        are matched on a throwaway copy; the result is kept only if every word
        matched in sequence, otherwise it just moves the speculative cursor
        and the final event decides.

        Returns:
            True if anything visible changed
        """
        if event.is_final:
            return self._handle_final(event)
        return self._handle_interim(event)

    def _handle_final(self, event: TranscriptEvent) -> bool:
        words: list[str] = self.utterance.pending_words(event.text)
        before: int = self.matcher.cursor

        batch: BatchResult = self.matcher.consume_batch(words)
        self.last_final_batch = batch
        gaps_changed: bool = self._record_batch(batch)

        self.recent_speech.append(event.text)
        self.utterance.close()
        moved: bool = self.speculative_cursor != self.matcher.cursor
        self.speculative_cursor = self.matcher.cursor

        if batch.mismatches:
            logger.debug("Final transcript had %d unmatched word(s)", len(batch.mismatches))
        return bool(words) or gaps_changed or moved or before != self.matcher.cursor

    def _handle_interim(self, event: TranscriptEvent) -> bool:
        if event.text == self.utterance.last_interim_text:
            return False
        self.utterance.last_interim_text = event.text

        words: list[str] = self.utterance.pending_words(event.text)
        if not words:
            return False

        speculative: SequentialMatcher = self.matcher.clone()
        batch: BatchResult = speculative.consume_batch(words)

        if batch.is_fully_matched:
            self.matcher.commit(speculative)
            self.utterance.mark_consumed(len(words))
            logger.debug("Committed interim words up to cursor %d", self.matcher.cursor)

        previous: int = self.speculative_cursor
        self.speculative_cursor = max(self.matcher.cursor, speculative.cursor)
        return batch.is_fully_matched or previous != self.speculative_cursor

    def _record_batch(self, batch: BatchResult) -> bool:
        """Feed newly skipped spans into the gap set and poke the trigger."""
        changed: bool = False
        for span in batch.skipped_spans:
            if self.gaps.add_span(span):
                changed = True
        if changed:
            self.trigger.notify_gaps_changed()
        return changed

    def submit(self, event: TranscriptEvent) -> bool:
        """
        Queue a transcript event for the consumer loop (non-blocking).

        Interim events arriving faster than the throttle interval are dropped.
        When the queue is full, queued interim events are discarded first
        since each later event for the utterance supersedes them.

        Returns:
            True if the event was queued, False if it was dropped
        """
        if not event.is_final:
            if (self._last_interim_time is not None
                    and (event.timestamp - self._last_interim_time) * 1000
                    < self.interim_throttle_ms):
                return False
            self._last_interim_time = event.timestamp

        try:
            self.queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            pass

        kept: list[TranscriptEvent | None] = []
        while not self.queue.empty():
            item = self.queue.get_nowait()
            self.queue.task_done()
            if item is None or item.is_final:
                kept.append(item)
        dropped: int = self.queue.maxsize - len(kept)
        for item in kept:
            self.queue.put_nowait(item)

        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Backpressure: dropping %s transcript (queue full)",
                           "final" if event.is_final else "interim")
            return False
        logger.warning("Backpressure: dropped %d queued interim transcript(s)", dropped)
        return True

    async def run(self) -> None:
        """Consume queued transcript events until stop() is called."""
        logger.info("Alignment engine started")
        try:
            while True:
                event = await self.queue.get()
                try:
                    if event is None:
                        break
                    if self.handle_transcript(event):
                        await self.publish()
                except Exception as e:  # pylint: disable=broad-except
                    logger.error("Error processing transcript: %s", e, exc_info=True)
                finally:
                    self.queue.task_done()
        finally:
            logger.info("Alignment engine stopped")

    async def stop(self) -> None:
        """Stop the consumer loop and cancel outstanding reconstruction work.

        Events still queued are discarded.
        """
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()
        self.queue.put_nowait(None)
        await self.trigger.close()

    # ------------------------------------------------------------------
    # Reconstruction results and user actions
    # ------------------------------------------------------------------

    async def _on_reconstruction_issued(self, request: ReconstructionRequest) -> None:
        await self.publish()

    async def _on_generation_result(
        self,
        request: ReconstructionRequest,
        result: GenerationResult
    ) -> None:
        # Always published; the pending flag has just cleared
        self.merge.receive(request, result)
        await self.publish()

    async def accept_suggestion(self) -> bool:
        """Merge the displayed suggestion into the script."""
        script: ReferenceScript | None = self.merge.accept()
        if script is None:
            return False
        self.trigger.reset()
        self.speculative_cursor = self.matcher.cursor
        await self.publish()
        return True

    async def dismiss_suggestion(self) -> bool:
        """Discard the displayed suggestion and the gaps behind it."""
        if not self.merge.dismiss():
            return False
        self.trigger.reset()
        await self.publish()
        return True

    async def load_script(self, script_text: str) -> None:
        """Replace the script; tracking restarts from the beginning."""
        self._restart(script_text, cursor=0)
        logger.info("Loaded script (%d words, version %d)",
                    self.script.word_count, self.script.version)
        await self.publish()

    async def reset(self) -> None:
        """Restart the session on the current script."""
        self._restart(self.script.text, cursor=0)
        self.recent_speech.clear()
        logger.info("Engine reset")
        await self.publish()

    async def jump_to(self, word_index: int) -> None:
        """Move the cursor to a word chosen by the user."""
        self._restart(self.script.text, cursor=word_index)
        logger.info("Jumped to word %d", self.matcher.cursor)
        await self.publish()

    def _restart(self, script_text: str, cursor: int) -> None:
        # A fresh version makes any in-flight reconstruction stale
        script = ReferenceScript(script_text, self.script.version + 1)
        self.matcher.replace_script(script, keep_cursor=False)
        self.matcher.jump_to(cursor)
        self.gaps.rebind(script)
        self.merge.clear()
        self.trigger.reset()
        self.utterance.close()
        self.speculative_cursor = self.matcher.cursor

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def add_listener(self, listener: SnapshotListener) -> None:
        """Register a callable that receives a snapshot after each step."""
        self._listeners.append(listener)

    def remove_listener(self, listener: SnapshotListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> EngineSnapshot:
        """Capture the current engine state."""
        script: ReferenceScript = self.script
        suggestion = self.merge.suggestion
        mismatches: list[MismatchRecord] = list(self.matcher.mismatches)
        return EngineSnapshot(
            script_version=script.version,
            script_text=script.text,
            word_count=script.word_count,
            cursor=self.matcher.cursor,
            cursor_char_offset=self.matcher.cursor_char_offset,
            speculative_cursor=self.speculative_cursor,
            progress=self.matcher.progress,
            skipped_spans=[
                {"start": e.chars.start, "end": e.chars.end, "text": e.text}
                for e in self.gaps
            ],
            mismatches=mismatches[-SNAPSHOT_MISMATCHES:],
            suggestion=suggestion.text if suggestion else None,
            suggestion_offset=self.merge.insertion_offset() if suggestion else None,
            reconstruction_pending=self.trigger.pending,
        )

    async def publish(self) -> None:
        """Push a snapshot to every listener."""
        snapshot: EngineSnapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:  # pylint: disable=broad-except
                logger.error("Snapshot listener failed: %s", e, exc_info=True)
