# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
HTTP and WebSocket server exposing the alignment engine.

The two stateless interfaces (speech comparison and script reconstruction)
are plain JSON POST endpoints. Live sessions use the WebSocket: clients send
transcript events and suggestion decisions, and receive a state message
after every engine step.
"""

import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from .engine import AlignmentEngine, EngineSnapshot
from .matcher import DEFAULT_WINDOW_SIZE, compare_speech
from .reconstruction import ReconstructionResponse, reconstruct_script
from .similarity import DEFAULT_MATCH_THRESHOLD
from .transcript import TranscriptEvent

logger = logging.getLogger(__name__)

MessageHandler = Callable[[web.WebSocketResponse, dict[str, Any]], Awaitable[None]]


def _as_int(value: object, default: int = 0) -> int:
    """Coerce a JSON value to int, falling back to a default."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def parse_ranges(raw: object) -> list[tuple[int, int]]:
    """Accept skipped ranges as [{start, end}, ...] or [[start, end], ...]."""
    ranges: list[tuple[int, int]] = []
    if not isinstance(raw, list):
        return ranges
    for item in raw:
        if isinstance(item, dict):
            ranges.append((_as_int(item.get("start")), _as_int(item.get("end"))))
        elif isinstance(item, (list, tuple)) and len(item) == 2:
            ranges.append((_as_int(item[0]), _as_int(item[1])))
    return ranges


class WebServer:
    """
    Serves the engine over HTTP and manages WebSocket connections.
    """

    def __init__(
        self,
        engine: AlignmentEngine,
        host: str = "127.0.0.1",
        port: int = 8000,
        window_size: int = DEFAULT_WINDOW_SIZE,
        match_threshold: float = DEFAULT_MATCH_THRESHOLD
    ) -> None:
        self.engine: AlignmentEngine = engine
        self.host: str = host
        self.port: int = port
        self.window_size: int = window_size
        self.match_threshold: float = match_threshold
        self.app: web.Application = web.Application()
        self.websockets: set[web.WebSocketResponse] = set()
        self.runner: web.AppRunner | None = None

        # Last suggestion text announced to clients
        self._announced_suggestion: str | None = None

        self.engine.add_listener(self._on_snapshot)
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get('/ws', self._handle_websocket)
        self.app.router.add_get('/state', self._handle_get_state)
        self.app.router.add_post('/script', self._handle_script_upload)
        self.app.router.add_post('/api/speech-comparison', self._handle_speech_comparison)
        self.app.router.add_post('/api/reconstruct-script', self._handle_reconstruct_script)

    @staticmethod
    async def _read_json(request: web.Request) -> dict[str, Any]:
        """Parse a JSON object body, raising 400 if it isn't one."""
        try:
            data: Any = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise web.HTTPBadRequest(
                text=json.dumps({"status": "error", "message": f"Invalid JSON: {e}"}),
                content_type='application/json'
            ) from e
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(
                text=json.dumps({"status": "error", "message": "Expected a JSON object"}),
                content_type='application/json'
            )
        return data

    async def _handle_speech_comparison(self, request: web.Request) -> web.Response:
        """Stateless alignment of spoken text against a script."""
        data: dict[str, Any] = await self._read_json(request)
        result = compare_speech(
            str(data.get("spokenText", "")),
            str(data.get("referenceText", data.get("scriptText", ""))),
            last_matched_index=max(0, _as_int(data.get("lastMatchedIndex", 0))),
            window_size=self.window_size,
            match_threshold=self.match_threshold
        )
        return web.json_response(result.to_dict())

    async def _handle_reconstruct_script(self, request: web.Request) -> web.Response:
        """Stateless bridge-sentence generation for given skipped ranges."""
        data: dict[str, Any] = await self._read_json(request)
        client = self.engine.trigger.client
        if client is None:
            return web.json_response(
                ReconstructionResponse(reconstructed="", skipped=True).to_dict())

        response: ReconstructionResponse = await reconstruct_script(
            str(data.get("script", "")),
            parse_ranges(data.get("skippedRanges", [])),
            _as_int(data.get("currentIndex", 0)),
            client,
            context_chars=self.engine.trigger.context_chars,
            max_spans=self.engine.trigger.max_spans,
            temperature=self.engine.trigger.temperature,
            max_output_tokens=self.engine.trigger.max_output_tokens
        )
        return web.json_response(response.to_dict())

    async def _handle_get_state(self, request: web.Request) -> web.Response:
        """Current engine snapshot."""
        return web.json_response(self.engine.snapshot().to_dict())

    async def _handle_script_upload(self, request: web.Request) -> web.Response:
        """Handle script upload via POST."""
        data: dict[str, Any] = await self._read_json(request)
        await self.engine.load_script(str(data.get("text", "")))
        return web.json_response({"status": "ok", "scriptVersion": self.engine.script.version})

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Handle WebSocket connections for live sessions."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self.websockets.add(ws)
        logger.info("WebSocket connected. Total: %d", len(self.websockets))

        try:
            await ws.send_json({"type": "state", **self.engine.snapshot().to_dict()})

            async for msg in ws:
                if msg.type == web.WSMsgType.TEXT:
                    try:
                        data: Any = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.warning("Ignoring non-JSON WebSocket message")
                        continue
                    if isinstance(data, dict):
                        await self._handle_ws_message(ws, data)
                elif msg.type == web.WSMsgType.ERROR:
                    logger.error("WebSocket error: %s", ws.exception())
        finally:
            self.websockets.discard(ws)
            logger.info("WebSocket disconnected. Total: %d", len(self.websockets))

        return ws

    async def _handle_ws_message(self, ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Handle incoming WebSocket messages using dispatch pattern."""
        msg_type: object | None = data.get("type")
        if not msg_type:
            return

        # Message type to handler dispatch
        handlers: dict[str, MessageHandler] = {
            "transcript": self._on_transcript_message,
            "accept_suggestion": self._on_accept_message,
            "dismiss_suggestion": self._on_dismiss_message,
            "reset": self._on_reset_message,
            "jump_to": self._on_jump_to_message,
            "script": self._on_script_message,
        }

        handler: MessageHandler | None = handlers.get(str(msg_type))
        if handler:
            await handler(ws, data)
        else:
            logger.warning("Unhandled WebSocket message: %s", msg_type)

    async def _on_transcript_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        """Queue a recognizer result for the engine."""
        event = TranscriptEvent(
            text=str(data.get("text", "")),
            is_final=bool(data.get("isFinal", False))
        )
        self.engine.submit(event)

    async def _on_accept_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        await self.engine.accept_suggestion()

    async def _on_dismiss_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        await self.engine.dismiss_suggestion()

    async def _on_reset_message(self, _ws: web.WebSocketResponse, _data: dict[str, Any]) -> None:
        await self.engine.reset()

    async def _on_jump_to_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        await self.engine.jump_to(_as_int(data.get("wordIndex", 0)))

    async def _on_script_message(self, _ws: web.WebSocketResponse, data: dict[str, Any]) -> None:
        await self.engine.load_script(str(data.get("text", "")))

    async def _on_snapshot(self, snapshot: EngineSnapshot) -> None:
        """Engine listener: broadcast state, and announce new suggestions."""
        if snapshot.suggestion is not None and snapshot.suggestion != self._announced_suggestion:
            await self.broadcast({
                "type": "suggestion",
                "text": snapshot.suggestion,
                "offset": snapshot.suggestion_offset
            })
        self._announced_suggestion = snapshot.suggestion
        await self.broadcast({"type": "state", **snapshot.to_dict()})

    async def broadcast(self, message: dict[str, object]) -> None:
        """Send a message to all connected WebSocket clients."""
        if not self.websockets:
            return

        dead: set[web.WebSocketResponse] = set()
        for ws in list(self.websockets):
            try:
                await ws.send_json(message)
            except (ConnectionError, RuntimeError) as e:
                logger.warning("Error sending to WebSocket: %s", e)
                dead.add(ws)

        self.websockets -= dead

    async def start(self) -> None:
        """Start the web server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site: web.TCPSite = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info("Web server running at http://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the web server."""
        # Close all WebSocket connections
        for ws in list(self.websockets):
            with contextlib.suppress(Exception):
                await ws.close()
        self.websockets.clear()

        if self.runner:
            await self.runner.cleanup()
