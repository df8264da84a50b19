"""
Bot Session.

Composes the bot for one process: the dialogue context, the turn pipeline,
capture and playback. Its lifetime is the bot's lifetime; nothing here is a
module-level global.
"""

import asyncio
import base64
from typing import Dict, List, Optional, Set, Tuple

from .ai_agent import AIAgent, DialogueSession, create_chat_model
from .analytics import AggregateAnalytics
from .audio_playback import WebSocketPlaybackSink
from .capture import CaptureController, WebSocketCaptureSource
from .config import BotConfig
from .orchestrator import TurnPipeline, TurnResult
from .state_types import ErrorCode, PipelineState, TurnOutcome
from .stt import AudioFormatError, STTProcessor, is_no_speech
from .transcript import GREETING, TranscriptLog
from .tts import TTSError, TTSProcessor


SUGGESTIONS: List[str] = [
    "Where is order #ORD-123?",
    "Check my account balance",
    "I have a problem with my delivery",
    "What are your support hours?",
    "What is your refund policy?",
    "Can I speak to a human agent?",
]


class BotSession:
    """
    The bot, as seen by the transport layer.

    Client events are routed here. Turns run as background tasks so the
    transport keeps receiving stop and playback-complete events while a
    turn is in flight.
    """

    def __init__(
        self,
        pipeline: TurnPipeline,
        playback: WebSocketPlaybackSink,
        capture_source: Optional[WebSocketCaptureSource] = None,
    ):
        self.pipeline = pipeline
        self.playback = playback
        self.capture_source = capture_source or WebSocketCaptureSource()
        self.capture = CaptureController(pipeline, self.capture_source)
        self._tasks: Set[asyncio.Task] = set()
        self.pipeline.add_state_listener(self._publish_state)

    @classmethod
    def from_config(cls, config: BotConfig) -> "BotSession":
        """
        Build a session with the live Deepgram, Groq and gTTS collaborators.

        Raises:
            ValueError: If a provider key is missing
        """
        config.require_keys()

        stt = STTProcessor(api_key=config.deepgram_api_key, model=config.stt_model, language=config.stt_language)
        dialogue = DialogueSession(
            create_chat_model(config.groq_api_key, config.groq_model, config.temperature),
            system_prompt=config.system_prompt,
        )
        agent = AIAgent(dialogue, max_tool_rounds=config.max_tool_rounds)
        tts = TTSProcessor(voice=config.tts_voice)
        playback = WebSocketPlaybackSink()

        pipeline = TurnPipeline(
            agent=agent,
            stt=stt,
            tts=tts,
            playback=playback,
            transcript=TranscriptLog(greeting=GREETING),
            min_audio_bytes=config.min_audio_bytes,
            error_recovery_seconds=config.error_recovery_seconds,
            tts_voice=config.tts_voice,
        )
        return cls(pipeline, playback)

    # --- Read-only views ---

    @property
    def state(self) -> PipelineState:
        return self.pipeline.state

    @property
    def transcript(self) -> TranscriptLog:
        return self.pipeline.transcript

    @property
    def analytics(self) -> AggregateAnalytics:
        return self.pipeline.analytics.snapshot

    def status(self) -> Dict:
        error = self.pipeline.last_error
        return {
            "state": self.pipeline.state.value,
            "error": error.value if error else None,
            "turn_in_flight": self.pipeline.turn_in_flight,
            "client_attached": self.has_client,
        }

    # --- Lifecycle ---

    async def start(self):
        await self.playback.start()
        print("[Session] Started")

    async def close(self):
        """Tear the session down; turns still running are cancelled."""
        print("[Session] Closing...")
        await self.capture.cancel()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.pipeline.close()
        await self.playback.shutdown()
        print("[Session] Closed")

    # --- Client attachment (one client at a time) ---

    @property
    def has_client(self) -> bool:
        return self.playback.websocket is not None

    def attach_client(self, websocket) -> bool:
        if self.has_client:
            return False
        self.playback.attach(websocket)
        return True

    async def detach_client(self):
        await self.capture.cancel()
        self.pipeline.stop_playback()
        self.playback.detach()

    def _publish_state(self, state: PipelineState, error: Optional[ErrorCode]):
        self.playback.send_event({
            "event": "state",
            "state": state.value,
            "error": error.value if error else None,
        })

    # --- Turns ---

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _publish_turn(self, turn) -> TurnResult:
        result = await turn
        if result is None:
            return result
        self.playback.send_event({
            "event": "turn",
            **result.to_dict(),
            "transcript": self.transcript.to_list()[-2:] if result.outcome == TurnOutcome.COMPLETED else [],
            "analytics": self.analytics.to_dict(),
        })
        return result

    async def run_text_turn(self, text: str) -> TurnResult:
        """Run a turn from typed text or a suggestion and publish it."""
        return await self._publish_turn(self.pipeline.run_turn(text, 0.0))

    # --- Standalone transcription and speech (no bot turn) ---

    async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> Tuple[str, Optional[ErrorCode]]:
        """
        Transcribe a recording without running a turn.

        Returns:
            (text, None) on success, or ("", code) with the classified problem
        """
        if not audio or len(audio) < self.pipeline.min_audio_bytes:
            return "", ErrorCode.TOO_SHORT
        try:
            text = await self.pipeline.stt.transcribe(audio, mime_type)
        except AudioFormatError as e:
            print(f"[Session] ✗ Unusable audio: {e}")
            return "", ErrorCode.BAD_AUDIO
        except Exception as e:
            print(f"[Session] ✗ Transcription failed: {type(e).__name__}: {e}")
            return "", ErrorCode.STT_FAILED
        if is_no_speech(text):
            return "", ErrorCode.NO_SPEECH
        return text.strip(), None

    async def speak(self, text: str, voice: Optional[str] = None) -> Tuple[Optional[bytes], Optional[ErrorCode]]:
        """
        Synthesize text with the given voice, outside the conversation.

        Returns:
            (mp3, None) on success, or (None, code)
        """
        try:
            audio = await self.pipeline.tts.synthesize(text, voice)
        except TTSError as e:
            print(f"[Session] ✗ Speech generation failed: {e}")
            return None, ErrorCode.SPEECH_FAILED
        if not audio:
            return None, ErrorCode.SPEECH_FAILED
        return audio, None

    def reset(self) -> bool:
        """Forget the dialogue context (transcript and analytics are kept)."""
        if self.pipeline.turn_in_flight:
            return False
        self.pipeline.agent.reset_conversation()
        return True

    # --- Client events ---

    async def handle_client_event(self, event: Dict) -> Optional[asyncio.Task]:
        """
        Main entry point for client events.

        Args:
            event: Event dict with a 'type' key. Types:
                   'start_capture'  (optional 'mime_type')
                   'audio_chunk'    ('audio': base64)
                   'stop_capture'
                   'capture_error'  ('error': browser error name)
                   'suggestion'     ('text')
                   'stop_playback'
                   'client_playback_complete'
                   'reset'

        Returns:
            The background task for events that start a turn, else None
        """
        event_type = event.get("type")

        if event_type == "start_capture":
            mime_type = event.get("mime_type")
            if mime_type:
                self.capture_source.mime_type = mime_type
            await self.capture.start()

        elif event_type == "audio_chunk":
            audio = event.get("audio")
            if audio:
                chunk = base64.b64decode(audio) if isinstance(audio, str) else audio
                self.capture_source.feed(chunk)

        elif event_type == "stop_capture":
            if self.capture.is_capturing:
                return self._spawn(self._publish_turn(self.capture.stop()))

        elif event_type == "capture_error":
            await self.capture.fail(event.get("error") or "MicError")

        elif event_type == "suggestion":
            text = (event.get("text") or "").strip()
            if text:
                return self._spawn(self.run_text_turn(text))

        elif event_type == "stop_playback":
            self.pipeline.stop_playback()

        elif event_type == "client_playback_complete":
            self.playback.notify_complete()

        elif event_type == "reset":
            self.reset()

        else:
            print(f"[Session] ⚠️ Unknown client event: {event_type}")

        return None
