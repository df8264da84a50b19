"""
Bot session tests.
Client events go in through handle_client_event; everything the client
would see is captured on a fake socket.
"""
import base64

import pytest

from conftest import FakeWebSocket, settle
from support_bot.server.audio_playback import WebSocketPlaybackSink
from support_bot.server.config import BotConfig
from support_bot.server.orchestrator import TurnPipeline
from support_bot.server.session import SUGGESTIONS, BotSession
from support_bot.server.state_types import PipelineState


@pytest.fixture
def sink():
    return WebSocketPlaybackSink()


@pytest.fixture
def session(agent, stt, tts, sink):
    pipeline = TurnPipeline(agent=agent, stt=stt, tts=tts, playback=sink)
    return BotSession(pipeline, sink)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("utf-8")


class TestBotSession:

    def test_suggestions(self):
        assert len(SUGGESTIONS) == 6
        assert "Where is order #ORD-123?" in SUGGESTIONS

    def test_from_config_requires_keys(self):
        with pytest.raises(ValueError, match="DEEPGRAM_API_KEY"):
            BotSession.from_config(BotConfig(groq_api_key="gsk-0123456789"))

    def test_single_client(self, session):
        assert session.attach_client(FakeWebSocket()) is True
        assert session.attach_client(FakeWebSocket()) is False
        assert session.status()["client_attached"] is True

    @pytest.mark.asyncio
    async def test_voice_turn_over_events(self, session, stt):
        websocket = FakeWebSocket()
        session.attach_client(websocket)
        await session.start()

        await session.handle_client_event({"type": "start_capture", "mime_type": "audio/ogg"})
        await session.handle_client_event({"type": "audio_chunk", "audio": _b64(b"OggS" + b"\x00" * 300)})
        await settle()
        task = await session.handle_client_event({"type": "stop_capture"})
        result = await task
        await settle()

        assert result.reply == "Your order ORD-123 has shipped."
        assert stt.calls[0][1] == "audio/ogg"
        assert session.state == PipelineState.PLAYING

        states = [m["state"] for m in websocket.sent if m["event"] == "state"]
        assert states == ["capturing", "transcribing", "reasoning", "synthesizing", "playing"]
        assert "audio" in websocket.events()

        turn = next(m for m in websocket.sent if m["event"] == "turn")
        assert turn["outcome"] == "completed"
        assert [m["role"] for m in turn["transcript"]] == ["user", "assistant"]
        assert turn["analytics"]["total_queries"] == 1

        await session.handle_client_event({"type": "client_playback_complete"})
        await settle()
        assert session.state == PipelineState.IDLE

        await session.close()

    @pytest.mark.asyncio
    async def test_suggestion_then_stop(self, session, agent):
        websocket = FakeWebSocket()
        session.attach_client(websocket)
        await session.start()

        task = await session.handle_client_event({"type": "suggestion", "text": "Check my account balance"})
        await task
        assert session.state == PipelineState.PLAYING

        await session.handle_client_event({"type": "stop_playback"})
        await settle()

        assert session.state == PipelineState.IDLE
        assert "stop_playback" in websocket.events()
        assert agent.calls == ["Check my account balance"]
        await session.close()

    @pytest.mark.asyncio
    async def test_capture_error_event(self, session):
        session.attach_client(FakeWebSocket())

        await session.handle_client_event({"type": "capture_error", "error": "NotAllowedError"})

        assert session.state == PipelineState.ERROR
        assert session.status()["error"] == "PERM DENIED"
        session.pipeline.close()

    @pytest.mark.asyncio
    async def test_blank_suggestion_ignored(self, session, agent):
        assert await session.handle_client_event({"type": "suggestion", "text": "  "}) is None
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_unknown_event(self, session, capsys):
        assert await session.handle_client_event({"type": "dance"}) is None
        assert "Unknown client event: dance" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_reset(self, session, agent):
        await session.handle_client_event({"type": "reset"})
        assert agent.resets == 1

    @pytest.mark.asyncio
    async def test_detach_discards_capture(self, session, stt):
        session.attach_client(FakeWebSocket())
        await session.handle_client_event({"type": "start_capture"})
        assert session.state == PipelineState.CAPTURING

        await session.detach_client()

        assert session.state == PipelineState.IDLE
        assert not session.has_client
        assert stt.calls == []
