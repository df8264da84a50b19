"""
Server-side modules for the voice support bot.

This package contains all bot components:
- TurnPipeline: The turn state machine
- AIAgent / DialogueSession: Response engine adapter and dialogue context
- Tools: Backend lookups (orders, account)
- STTProcessor: Speech-to-Text
- TTSProcessor: Text-to-Speech
- WebSocketPlaybackSink: Audio delivery to the client
- CaptureController: Recording lifecycle
- AnalyticsAggregator: Latency analytics
- BotSession: Composition root
"""

from .state_types import PipelineState, ErrorCode, TurnOutcome
from .config import BotConfig
from .transcript import TranscriptLog, TranscriptMessage
from .analytics import AnalyticsAggregator, AggregateAnalytics, TurnMetrics
from .tools import TOOLS, TOOL_REGISTRY, execute_tool, describe_tools
from .ai_agent import AIAgent, AgentReply, DialogueSession
from .stt import STTProcessor, TranscriptionError, AudioFormatError
from .tts import TTSProcessor, TTSError, VOICES, DEFAULT_VOICE
from .audio_playback import WebSocketPlaybackSink, PlaybackError
from .orchestrator import TurnPipeline, TurnResult
from .capture import CaptureController, CaptureError, WebSocketCaptureSource
from .session import BotSession, SUGGESTIONS

__all__ = [
    'PipelineState',
    'ErrorCode',
    'TurnOutcome',
    'BotConfig',
    'TranscriptLog',
    'TranscriptMessage',
    'AnalyticsAggregator',
    'AggregateAnalytics',
    'TurnMetrics',
    'TOOLS',
    'TOOL_REGISTRY',
    'execute_tool',
    'describe_tools',
    'AIAgent',
    'AgentReply',
    'DialogueSession',
    'STTProcessor',
    'TranscriptionError',
    'AudioFormatError',
    'TTSProcessor',
    'TTSError',
    'VOICES',
    'DEFAULT_VOICE',
    'WebSocketPlaybackSink',
    'PlaybackError',
    'TurnPipeline',
    'TurnResult',
    'CaptureController',
    'CaptureError',
    'WebSocketCaptureSource',
    'BotSession',
    'SUGGESTIONS',
]
