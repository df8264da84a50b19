"""
Turn Pipeline.

This is the "brain" of the bot. It sequences one user turn through
transcription, reasoning (with tools), speech synthesis and playback,
keeps the displayed state in step with whichever call is in flight, and
records the outcome in the transcript and the analytics.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .ai_agent import AIAgent
from .analytics import AnalyticsAggregator, TurnMetrics
from .audio_playback import PLAYBACK_FAILED, PlaybackSink
from .state_types import ErrorCode, PipelineState, TurnOutcome
from .stt import AudioFormatError, STTProcessor, is_no_speech
from .transcript import TranscriptLog
from .tts import TTSProcessor


StateListener = Callable[[PipelineState, Optional[ErrorCode]], None]

# States in which a new turn may begin
TURN_ENTRY_STATES = (PipelineState.IDLE, PipelineState.ERROR, PipelineState.CAPTURING)
CAPTURE_ENTRY_STATES = (PipelineState.IDLE, PipelineState.ERROR, PipelineState.PLAYING)


def _elapsed_millis(start: float) -> float:
    return (time.perf_counter() - start) * 1000


@dataclass(frozen=True)
class TurnResult:
    """What happened to a turn request."""
    outcome: TurnOutcome
    reply: Optional[str] = None
    tool_used: bool = False
    metrics: Optional[TurnMetrics] = None
    error: Optional[ErrorCode] = None

    def to_dict(self) -> Dict:
        return {
            "outcome": self.outcome.value,
            "reply": self.reply,
            "tool_used": self.tool_used,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "error": self.error.value if self.error else None,
        }


class TurnPipeline:
    """
    Runs conversation turns, one at a time.

    State machine:
        idle -> capturing -> transcribing -> reasoning -> synthesizing
             -> playing -> idle
    with error reachable from any non-idle state and recovering to idle
    after error_recovery_seconds. capturing is entered and left only
    through the capture controller.

    At most one turn is in flight. Every external call is awaited in
    sequence, so analytics and transcript updates never interleave.
    """

    def __init__(
        self,
        agent: AIAgent,
        stt: STTProcessor,
        tts: TTSProcessor,
        playback: PlaybackSink,
        analytics: Optional[AnalyticsAggregator] = None,
        transcript: Optional[TranscriptLog] = None,
        min_audio_bytes: int = 100,
        error_recovery_seconds: float = 4.0,
        tts_voice: Optional[str] = None,
    ):
        self.agent = agent
        self.stt = stt
        self.tts = tts
        self.playback = playback
        self.analytics = analytics or AnalyticsAggregator()
        self.transcript = transcript or TranscriptLog()
        self.min_audio_bytes = min_audio_bytes
        self.error_recovery_seconds = error_recovery_seconds
        self.tts_voice = tts_voice

        self._state = PipelineState.IDLE
        self.last_error: Optional[ErrorCode] = None
        self._listeners: List[StateListener] = []

        self._turn_in_flight = False
        self._cancel_requested = False
        self._playback_token = 0
        self._recovery_handle: Optional[asyncio.TimerHandle] = None

    # --- State ---

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def turn_in_flight(self) -> bool:
        return self._turn_in_flight

    def add_state_listener(self, listener: StateListener):
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, state: PipelineState):
        previous = self._state
        self._state = state
        if previous != state:
            print(f"[Pipeline] {previous.value} -> {state.value}"
                  f"{f' ({self.last_error.value})' if self.last_error else ''}")
        for listener in list(self._listeners):
            try:
                listener(state, self.last_error)
            except Exception as e:
                print(f"[Pipeline] ⚠️ State listener failed: {e}")

    def _advance(self, state: PipelineState):
        """Transition for the running turn; a stop request silences it."""
        if self._cancel_requested:
            return
        self._set_state(state)

    def can_start_turn(self) -> bool:
        return not self._turn_in_flight and self._state in TURN_ENTRY_STATES

    def can_start_capture(self) -> bool:
        return not self._turn_in_flight and self._state in CAPTURE_ENTRY_STATES

    # --- Errors ---

    def _enter_error(self, code: ErrorCode):
        if self._cancel_requested:
            print(f"[Pipeline] Turn was stopped, not surfacing {code.value}")
            return
        self.last_error = code
        self._set_state(PipelineState.ERROR)
        self._schedule_recovery()

    def _schedule_recovery(self):
        self._cancel_recovery()
        loop = asyncio.get_running_loop()
        self._recovery_handle = loop.call_later(self.error_recovery_seconds, self._recover_from_error)

    def _cancel_recovery(self):
        if self._recovery_handle is not None:
            self._recovery_handle.cancel()
            self._recovery_handle = None

    def _recover_from_error(self):
        self._recovery_handle = None
        # A capture or turn may already have moved us on
        if self._state == PipelineState.ERROR:
            self._set_state(PipelineState.IDLE)

    def _finish_without_reply(self, outcome: TurnOutcome, code: ErrorCode) -> TurnResult:
        """Validation outcomes: back to idle with a classified message."""
        print(f"[Pipeline] ⚠️ {code.value}")
        self.last_error = code
        self._set_state(PipelineState.IDLE)
        return TurnResult(outcome=outcome, error=code)

    # --- Capture hooks ---

    def begin_capture(self):
        """Called by the capture controller once the microphone is open."""
        self._cancel_recovery()
        self.last_error = None
        self._set_state(PipelineState.CAPTURING)

    def capture_failed(self, code: ErrorCode):
        """Called by the capture controller when the microphone fails."""
        print(f"[Pipeline] ✗ Capture failed: {code.value}")
        self._enter_error(code)

    def abort_capture(self):
        if self._state == PipelineState.CAPTURING:
            self._set_state(PipelineState.IDLE)

    # --- Turns ---

    def _reject(self, what: str) -> TurnResult:
        print(f"[Pipeline] ⚠️ Rejected {what}: busy "
              f"(state={self._state.value}, turn_in_flight={self._turn_in_flight})")
        return TurnResult(outcome=TurnOutcome.REJECTED)

    def _begin_turn(self):
        self._turn_in_flight = True
        self._cancel_requested = False
        self._cancel_recovery()
        self.last_error = None

    def _end_turn(self):
        self._turn_in_flight = False
        self._cancel_requested = False

    async def run_voice_turn(self, audio: bytes, mime_type: str = "audio/webm") -> TurnResult:
        """
        Run a turn from a finished recording.

        Too-short payloads never reach the transcription service, and a
        transcript with no speech ends the turn before anything is added to
        the transcript log.

        Args:
            audio: Encoded recording
            mime_type: Content type of the recording

        Returns:
            TurnResult describing the outcome
        """
        if not self.can_start_turn():
            return self._reject("voice turn")

        self._begin_turn()
        try:
            if not audio or len(audio) < self.min_audio_bytes:
                return self._finish_without_reply(TurnOutcome.TOO_SHORT, ErrorCode.TOO_SHORT)

            self._advance(PipelineState.TRANSCRIBING)
            stt_start = time.perf_counter()
            try:
                transcript = await self.stt.transcribe(audio, mime_type)
            except AudioFormatError as e:
                print(f"[Pipeline] ✗ Unusable audio: {e}")
                self._enter_error(ErrorCode.BAD_AUDIO)
                return TurnResult(outcome=TurnOutcome.FAILED, error=ErrorCode.BAD_AUDIO)
            except Exception as e:
                print(f"[Pipeline] ✗ Transcription failed: {type(e).__name__}: {e}")
                self._enter_error(ErrorCode.STT_FAILED)
                return TurnResult(outcome=TurnOutcome.FAILED, error=ErrorCode.STT_FAILED)
            stt_millis = _elapsed_millis(stt_start)

            if is_no_speech(transcript):
                if self._cancel_requested:
                    return TurnResult(outcome=TurnOutcome.NO_SPEECH, error=ErrorCode.NO_SPEECH)
                return self._finish_without_reply(TurnOutcome.NO_SPEECH, ErrorCode.NO_SPEECH)

            return await self._run_turn(transcript.strip(), stt_millis)
        finally:
            self._end_turn()

    async def run_turn(self, user_text: str, stt_millis: float = 0.0) -> TurnResult:
        """
        Run a turn from text (a transcript or a canned suggestion).

        Args:
            user_text: What the user said
            stt_millis: Time already spent transcribing it

        Returns:
            TurnResult describing the outcome
        """
        if not self.can_start_turn():
            return self._reject("turn")

        self._begin_turn()
        try:
            return await self._run_turn(user_text, stt_millis)
        finally:
            self._end_turn()

    async def _run_turn(self, user_text: str, stt_millis: float) -> TurnResult:
        # User input is kept even if the rest of the turn fails
        self.transcript.append_user(user_text)

        # 1. Reasoning
        self._advance(PipelineState.REASONING)
        llm_start = time.perf_counter()
        try:
            reply = await self.agent.ask(user_text)
        except Exception as e:
            print(f"[Pipeline] ✗ Pipeline error (agent raised): {type(e).__name__}: {e}")
            self._enter_error(ErrorCode.SYSTEM_ERR)
            return TurnResult(outcome=TurnOutcome.FAILED, error=ErrorCode.SYSTEM_ERR)
        llm_millis = _elapsed_millis(llm_start)

        # 2. Synthesis (degrades to a text-only turn)
        audio: Optional[bytes] = None
        tts_millis = 0.0
        if self._cancel_requested:
            print("[Pipeline] Stop requested, skipping synthesis")
        else:
            self._advance(PipelineState.SYNTHESIZING)
            tts_start = time.perf_counter()
            try:
                audio = await self.tts.synthesize(reply.text, self.tts_voice)
            except Exception as e:
                print(f"[Pipeline] ⚠️ TTS failed, continuing without audio: {e}")
                audio = None
            tts_millis = _elapsed_millis(tts_start)

        # 3. Analytics
        metrics = TurnMetrics.from_phases(stt_millis, llm_millis, tts_millis)
        self.analytics.record_turn(metrics, reply.tool_used)
        print(f"[Pipeline] ⏱️  stt={stt_millis:.0f}ms llm={llm_millis:.0f}ms "
              f"tts={tts_millis:.0f}ms total={metrics.total_millis:.0f}ms tool={reply.tool_used}")

        # 4. Playback
        if audio and not self._cancel_requested:
            self._start_playback(audio)
        else:
            self._advance(PipelineState.IDLE)

        # 5. Transcript updates once playback has started, not when it ends
        self.transcript.append_assistant(reply.text, used_tool=reply.tool_used)

        return TurnResult(
            outcome=TurnOutcome.COMPLETED,
            reply=reply.text,
            tool_used=reply.tool_used,
            metrics=metrics,
        )

    # --- Playback ---

    def _start_playback(self, audio: bytes):
        self._set_state(PipelineState.PLAYING)
        try:
            completion = self.playback.play(audio)
        except Exception as e:
            print(f"[Pipeline] ⚠️ Playback failed: {e}")
            self.last_error = ErrorCode.AUDIO_ERR
            self._set_state(PipelineState.IDLE)
            return

        self._playback_token += 1
        token = self._playback_token
        completion.add_done_callback(lambda fut: self._on_playback_finished(token, fut))

    def _on_playback_finished(self, token: int, completion: "asyncio.Future[str]"):
        if token != self._playback_token or self._state != PipelineState.PLAYING:
            return
        if completion.cancelled():
            result = None
        else:
            result = completion.result()
        if result == PLAYBACK_FAILED:
            print("[Pipeline] ⚠️ Playback failed on the client")
            self.last_error = ErrorCode.AUDIO_ERR
        self._set_state(PipelineState.IDLE)

    def stop_playback(self):
        """
        Stop whatever is playing and return to idle.

        Synchronous and idempotent: with nothing playing and the pipeline
        idle this changes nothing. A stop that arrives while a turn is
        still transcribing, reasoning or synthesizing cannot abort that
        call; it makes sure the turn finishes without playing audio. The
        turn's assistant message and metrics still land once it resolves.
        A capture in progress is left alone.
        """
        self.playback.stop()
        # Invalidate any completion callback still pending
        self._playback_token += 1

        if self._turn_in_flight and not self._cancel_requested:
            print("[Pipeline] Stop requested while turn in flight, audio will be suppressed")
            self._cancel_requested = True

        if self._state in (PipelineState.IDLE, PipelineState.CAPTURING):
            return
        self._cancel_recovery()
        self._set_state(PipelineState.IDLE)

    def close(self):
        """Release timers and stop playback."""
        self._cancel_recovery()
        self.playback.stop()
        self._listeners.clear()
