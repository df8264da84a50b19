"""
Shared fakes for the bot's external collaborators.

Each fake records what it was called with and can be told to wait on a
gate, sleep, return something specific or raise.
"""
import asyncio
from typing import List, Optional

import pytest

from support_bot.server.ai_agent import AgentReply
from support_bot.server.audio_playback import PLAYBACK_COMPLETED, PLAYBACK_STOPPED, PlaybackSink
from support_bot.server.orchestrator import TurnPipeline


class FakeSTT:
    def __init__(self):
        self.transcript: Optional[str] = "Where is order ORD-123?"
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.calls: List[tuple] = []

    async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> str:
        self.calls.append((audio, mime_type))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.transcript


class FakeAgent:
    def __init__(self):
        self.reply = AgentReply(text="Your order ORD-123 has shipped.", tool_used=True)
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []
        self.resets = 0

    async def ask(self, user_text: str) -> AgentReply:
        self.calls.append(user_text)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply

    def reset_conversation(self):
        self.resets += 1


class FakeTTS:
    def __init__(self):
        self.audio: Optional[bytes] = b"ID3-fake-mp3"
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def synthesize(self, text: str, voice: Optional[str] = None) -> Optional[bytes]:
        self.calls.append((text, voice))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.audio


class FakePlayback(PlaybackSink):
    def __init__(self):
        self.played: List[bytes] = []
        self.stops = 0
        self.error: Optional[Exception] = None
        self.completion: Optional[asyncio.Future] = None

    def play(self, audio: bytes) -> "asyncio.Future[str]":
        if self.error is not None:
            raise self.error
        self.played.append(audio)
        self.completion = asyncio.get_running_loop().create_future()
        return self.completion

    def stop(self) -> bool:
        self.stops += 1
        if self.completion is not None and not self.completion.done():
            self.completion.set_result(PLAYBACK_STOPPED)
            return True
        return False

    def finish(self, result: str = PLAYBACK_COMPLETED):
        self.completion.set_result(result)


class FakeWebSocket:
    """Stands in for a connected client socket."""

    def __init__(self, fail_on: Optional[str] = None):
        self.sent: List[dict] = []
        self.fail_on = fail_on

    async def send_json(self, message: dict):
        if self.fail_on is not None and message.get("event") == self.fail_on:
            raise ConnectionError("client went away")
        self.sent.append(message)

    def events(self) -> List[str]:
        return [m.get("event") for m in self.sent]


async def settle(rounds: int = 5):
    """Let scheduled callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def stt():
    return FakeSTT()


@pytest.fixture
def agent():
    return FakeAgent()


@pytest.fixture
def tts():
    return FakeTTS()


@pytest.fixture
def playback():
    return FakePlayback()


@pytest.fixture
def pipeline(agent, stt, tts, playback):
    return TurnPipeline(
        agent=agent,
        stt=stt,
        tts=tts,
        playback=playback,
        min_audio_bytes=100,
        error_recovery_seconds=0.05,
    )


@pytest.fixture
def speech():
    """A recording long enough to be transcribed."""
    return b"\x1a\x45\xdf\xa3" + b"\x00" * 400
