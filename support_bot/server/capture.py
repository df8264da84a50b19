"""
Capture Module.

Owns the recording lifecycle: opens a capture source, buffers the encoded
chunks it produces, and hands the finished recording to the turn pipeline.
"""

import asyncio
from typing import AsyncIterator, List, Optional, Union

from .orchestrator import TurnPipeline, TurnResult
from .state_types import ErrorCode


# Error names reported by browser clients (getUserMedia)
_CLIENT_PERMISSION_ERRORS = ("NotAllowedError", "PermissionDeniedError", "SecurityError")
_CLIENT_DEVICE_ERRORS = ("NotFoundError", "DevicesNotFoundError", "OverconstrainedError")


class CaptureError(Exception):
    """Capture could not start; carries its classified code."""

    def __init__(self, code: ErrorCode, message: str = ""):
        super().__init__(message or code.value)
        self.code = code


def classify_capture_error(error: Union[Exception, str]) -> ErrorCode:
    """
    Map a microphone failure onto a status code.

    Accepts an exception raised locally or an error name reported by a
    browser client.
    """
    if isinstance(error, CaptureError):
        return error.code
    if isinstance(error, PermissionError):
        return ErrorCode.PERM_DENIED

    name = error if isinstance(error, str) else type(error).__name__
    if name in _CLIENT_PERMISSION_ERRORS:
        return ErrorCode.PERM_DENIED
    if name in _CLIENT_DEVICE_ERRORS:
        return ErrorCode.NO_MIC_FOUND

    message = str(error).lower()
    if "permission" in message or "not allowed" in message or "denied" in message:
        return ErrorCode.PERM_DENIED
    if (
        "no device" in message
        or "device unavailable" in message
        or "invalid device" in message
        or "no default input" in message
        or "not found" in message
    ):
        return ErrorCode.NO_MIC_FOUND
    return ErrorCode.MIC_ERROR


async def _drain(queue: asyncio.Queue) -> AsyncIterator[bytes]:
    """Yield chunks from queue until the None end marker."""
    while True:
        chunk = await queue.get()
        if chunk is None:
            break
        yield chunk


# ============================================================================
# CAPTURE SOURCES
# ============================================================================

class CaptureSource:
    """
    Interface every capture source follows.

    open() returns an async stream of encoded chunks that ends after
    close(); package() turns the collected chunks into one payload of
    mime_type.
    """

    mime_type = "application/octet-stream"

    async def open(self) -> AsyncIterator[bytes]:
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def package(self, chunks: List[bytes]) -> bytes:
        return b"".join(chunks)


class WebSocketCaptureSource(CaptureSource):
    """Chunks recorded by the client and forwarded over its WebSocket."""

    def __init__(self, mime_type: str = "audio/webm"):
        self.mime_type = mime_type
        self._queue: Optional[asyncio.Queue] = None

    async def open(self) -> AsyncIterator[bytes]:
        self._queue = asyncio.Queue()
        return _drain(self._queue)

    def feed(self, chunk: bytes) -> bool:
        """Add a chunk from the client; ignored when not recording."""
        if self._queue is None or not chunk:
            return False
        self._queue.put_nowait(chunk)
        return True

    def close(self):
        if self._queue is not None:
            self._queue.put_nowait(None)
        self._queue = None


# ============================================================================
# CAPTURE CONTROLLER
# ============================================================================

class CaptureController:
    """
    Starts and stops recordings for the turn pipeline.

    The capture source is owned exclusively by this controller between
    start() and stop().
    """

    def __init__(self, pipeline: TurnPipeline, source: CaptureSource):
        self.pipeline = pipeline
        self.source = source
        self._chunks: List[bytes] = []
        self._reader: Optional[asyncio.Task] = None
        self._capturing = False

    @property
    def is_capturing(self) -> bool:
        return self._capturing

    async def start(self) -> bool:
        """
        Open the source and start buffering audio.

        Returns:
            True if recording started
        """
        if self._capturing:
            return False
        if not self.pipeline.can_start_capture():
            print(f"[Capture] ⚠️ Cannot start while {self.pipeline.state.value}")
            return False

        # Talking over the bot stops it
        self.pipeline.stop_playback()

        try:
            stream = await self.source.open()
        except Exception as e:
            print(f"[Capture] ✗ Microphone error: {type(e).__name__}: {e}")
            self.pipeline.capture_failed(classify_capture_error(e))
            return False

        self._chunks = []
        self._capturing = True
        self._reader = asyncio.create_task(self._collect(stream))
        self.pipeline.begin_capture()
        print("[Capture] Recording...")
        return True

    async def _collect(self, stream: AsyncIterator[bytes]):
        try:
            async for chunk in stream:
                self._chunks.append(chunk)
        except Exception as e:
            print(f"[Capture] ⚠️ Capture stream ended with error: {e}")

    async def _release(self) -> bytes:
        """Close the source and return the packaged recording."""
        self._capturing = False
        try:
            self.source.close()
        finally:
            if self._reader is not None:
                await self._reader
                self._reader = None
        chunks, self._chunks = self._chunks, []
        return self.source.package(chunks)

    async def stop(self) -> Optional[TurnResult]:
        """
        Finish the recording and run it as a voice turn.

        Returns:
            The voice turn's result, or None if nothing was recording
        """
        if not self._capturing:
            return None

        payload = await self._release()
        print(f"[Capture] Stopped ({len(payload)} bytes, {self.source.mime_type})")
        return await self.pipeline.run_voice_turn(payload, self.source.mime_type)

    async def fail(self, error: Union[Exception, str]):
        """A capture error reported after start (e.g. by the client)."""
        if self._capturing:
            await self._release()
        elif self.pipeline.turn_in_flight:
            print(f"[Capture] ⚠️ Ignoring microphone error during a turn: {error}")
            return
        self.pipeline.capture_failed(classify_capture_error(error))

    async def cancel(self):
        """Discard the current recording without running a turn."""
        if not self._capturing:
            return
        await self._release()
        self.pipeline.abort_capture()
        print("[Capture] Recording discarded")
