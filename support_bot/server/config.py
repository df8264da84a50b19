"""
Bot configuration.

Loads provider keys and pipeline tuning values from environment variables
(and a local .env file, if present).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


DEFAULT_SYSTEM_PROMPT = (
    "You are 'Sonic', a helpful customer service voice bot. "
    "You are concise, friendly, and professional. "
    "Keep responses brief as they will be spoken aloud. "
    "You have access to tools to check order statuses and account balances."
)


def _strip_comment(value: Optional[str]) -> str:
    """Drop trailing '# comment' text and whitespace from an env value."""
    if not value:
        return ""
    if "#" in value:
        value = value.split("#")[0]
    return value.strip()


def _parse_int_env(key: str, default: int) -> int:
    value = _strip_comment(os.environ.get(key))
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _strip_comment(os.environ.get(key))
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class BotConfig:
    """Voice support bot configuration."""

    # Deepgram (STT)
    deepgram_api_key: Optional[str] = None
    stt_model: str = "nova-2"
    stt_language: str = "en"

    # Groq (LLM)
    groq_api_key: Optional[str] = None
    groq_model: str = "llama-3.3-70b-versatile"
    temperature: float = 0.7
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_tool_rounds: int = 3

    # gTTS accent (top-level domain) used as the voice id
    tts_voice: str = "com"

    # Pipeline tuning
    min_audio_bytes: int = 100
    error_recovery_seconds: float = 4.0

    @classmethod
    def from_env(cls) -> "BotConfig":
        """Load configuration from environment variables."""
        load_dotenv()
        return cls(
            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            stt_model=os.environ.get("STT_MODEL", "nova-2"),
            stt_language=os.environ.get("STT_LANGUAGE", "en"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),
            groq_model=os.environ.get("GROQ_MODEL", "llama-3.3-70b-versatile"),
            temperature=_parse_float_env("GROQ_TEMPERATURE", 0.7),
            system_prompt=os.environ.get("SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            max_tool_rounds=_parse_int_env("MAX_TOOL_ROUNDS", 3),
            tts_voice=os.environ.get("TTS_VOICE", "com"),
            min_audio_bytes=_parse_int_env("MIN_AUDIO_BYTES", 100),
            error_recovery_seconds=_parse_float_env("ERROR_RECOVERY_SECONDS", 4.0),
        )

    def require_keys(self):
        """
        Ensure the provider keys needed to build a live session are present.

        Raises:
            ValueError: If DEEPGRAM_API_KEY or GROQ_API_KEY is missing
        """
        if not self.deepgram_api_key:
            raise ValueError("DEEPGRAM_API_KEY is required")
        if not self.groq_api_key:
            raise ValueError("GROQ_API_KEY is required")
