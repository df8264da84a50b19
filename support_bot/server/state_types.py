"""
State type definitions for the turn pipeline.
"""

from enum import Enum


class PipelineState(Enum):
    """Phases of a single conversation turn."""
    IDLE = "idle"
    CAPTURING = "capturing"
    TRANSCRIBING = "transcribing"
    REASONING = "reasoning"
    SYNTHESIZING = "synthesizing"
    PLAYING = "playing"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Short classified codes shown on the status surface."""
    TOO_SHORT = "TOO SHORT"
    NO_SPEECH = "NO SPEECH"
    BAD_AUDIO = "BAD AUDIO"
    STT_FAILED = "STT FAILED"
    SYSTEM_ERR = "SYSTEM ERR"
    AUDIO_ERR = "AUDIO ERR"
    PERM_DENIED = "PERM DENIED"
    NO_MIC_FOUND = "NO MIC FOUND"
    MIC_ERROR = "MIC ERROR"
    SPEECH_FAILED = "SPEECH FAILED"


class TurnOutcome(Enum):
    """How a turn request ended."""
    COMPLETED = "completed"
    REJECTED = "rejected"  # Another turn is in flight
    TOO_SHORT = "too_short"
    NO_SPEECH = "no_speech"
    FAILED = "failed"
