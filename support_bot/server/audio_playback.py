"""
Audio Playback Module.

Playback sinks take synthesized audio and report when it has finished
playing. The WebSocket sink forwards audio to the connected client, which
does the actual decoding and playback.
"""

import asyncio
import base64
from typing import Any, Dict, Optional


PLAYBACK_COMPLETED = "completed"
PLAYBACK_STOPPED = "stopped"
PLAYBACK_FAILED = "failed"


class PlaybackError(Exception):
    """Exception raised when playback cannot be started."""
    pass


class PlaybackSink:
    """
    Interface every playback sink follows.

    play() starts playback and returns a future that resolves with one of
    PLAYBACK_COMPLETED / PLAYBACK_STOPPED / PLAYBACK_FAILED. stop() is
    synchronous and idempotent.
    """

    def play(self, audio: bytes) -> "asyncio.Future[str]":
        raise NotImplementedError

    def stop(self) -> bool:
        raise NotImplementedError


class WebSocketPlaybackSink(PlaybackSink):
    """
    Sends audio and control messages to the client over its WebSocket.

    A single worker task owns the socket's send side; everything else only
    enqueues messages, so stop() never has to await.
    """

    def __init__(self, websocket=None, audio_format: str = "mp3", maxsize: int = 20):
        """
        Initialize the sink.

        Args:
            websocket: Connected client socket (may be attached later)
            audio_format: Container of the audio handed to play()
            maxsize: Outgoing message queue size
        """
        self.websocket = websocket
        self.audio_format = audio_format
        self.outgoing: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.worker_task: Optional[asyncio.Task] = None
        self._completion: Optional[asyncio.Future] = None

    # --- Client attachment ---

    def attach(self, websocket):
        self.websocket = websocket
        print("[Playback Worker] Client attached")

    def detach(self):
        self.stop()
        self.websocket = None
        self._clear_outgoing(None)
        print("[Playback Worker] Client detached")

    @property
    def is_playing(self) -> bool:
        return self._completion is not None and not self._completion.done()

    # --- Worker lifecycle ---

    async def start(self):
        """Start the sender task."""
        if self.worker_task is None or self.worker_task.done():
            self.worker_task = asyncio.create_task(self._run())
            print("[Playback Worker] Started")

    async def shutdown(self):
        """Stop playback and the sender task."""
        self.stop()
        if self.worker_task and not self.worker_task.done():
            self.worker_task.cancel()
            try:
                await self.worker_task
            except asyncio.CancelledError:
                pass
        print("[Playback Worker] Stopped")

    # --- Sink interface ---

    def play(self, audio: bytes) -> "asyncio.Future[str]":
        """
        Queue audio for the client.

        Raises:
            PlaybackError: No client attached or the outgoing queue is full
        """
        if self.websocket is None:
            raise PlaybackError("No client attached for playback")
        if not audio:
            raise PlaybackError("No audio to play")

        # A new clip replaces whatever was still playing
        self.stop()

        completion = asyncio.get_running_loop().create_future()
        try:
            self.outgoing.put_nowait({
                "event": "audio",
                "audio": base64.b64encode(audio).decode("utf-8"),
                "format": self.audio_format,
            })
        except asyncio.QueueFull as e:
            raise PlaybackError("Playback queue is full") from e

        self._completion = completion
        print(f"[Playback Worker] ACTIVE ({len(audio)} bytes queued)")
        return completion

    def stop(self) -> bool:
        """
        Stop current playback.

        Returns:
            True if something was playing, False if this was a no-op
        """
        if not self.is_playing:
            return False

        self._clear_outgoing("audio")
        if self.websocket is not None:
            self._enqueue({"event": "stop_playback"})
        self._resolve(PLAYBACK_STOPPED)
        print("[Playback Worker] Stop requested")
        return True

    def notify_complete(self):
        """The client reported it finished playing the clip."""
        if self._resolve(PLAYBACK_COMPLETED):
            print("[Playback Worker] IDLE (client playback complete)")

    def send_event(self, payload: Dict[str, Any]):
        """Queue a non-audio message for the client, if one is attached."""
        if self.websocket is not None:
            self._enqueue(payload)

    # --- Internals ---

    def _resolve(self, result: str) -> bool:
        completion = self._completion
        if completion is None or completion.done():
            return False
        completion.set_result(result)
        return True

    def _enqueue(self, payload: Dict[str, Any]):
        try:
            self.outgoing.put_nowait(payload)
        except asyncio.QueueFull:
            print(f"[Playback Worker] ⚠️ Outgoing queue full, dropping '{payload.get('event')}'")

    def _clear_outgoing(self, event: Optional[str]):
        """Drop queued messages of one event type, or all of them when event is None."""
        kept = []
        cleared = 0
        while not self.outgoing.empty():
            try:
                message = self.outgoing.get_nowait()
            except asyncio.QueueEmpty:
                break
            if event is None or message.get("event") == event:
                cleared += 1
            else:
                kept.append(message)
        for message in kept:
            self.outgoing.put_nowait(message)
        if cleared:
            print(f"[Playback Worker] Cleared {cleared} queued messages")

    async def _run(self):
        """Send queued messages to the client, one at a time."""
        print("[Playback Worker] Worker loop started")
        while True:
            try:
                message = await self.outgoing.get()
            except asyncio.CancelledError:
                print("[Playback Worker] Shutting down...")
                break

            websocket = self.websocket
            if websocket is None:
                continue
            try:
                await websocket.send_json(message)
            except asyncio.CancelledError:
                print("[Playback Worker] Shutting down...")
                break
            except Exception as e:
                print(f"[Playback Worker] ERROR sending '{message.get('event')}': {e}")
                if message.get("event") == "audio":
                    self._resolve(PLAYBACK_FAILED)
