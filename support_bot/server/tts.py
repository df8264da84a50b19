"""
Text-to-Speech (TTS) Module.

This module converts the assistant's text into spoken audio with gTTS.
"""

import asyncio
import time
from io import BytesIO
from typing import Dict, Optional

from gtts import gTTS


# Selectable voices, each a gTTS accent (Google Translate top-level domain)
VOICES: Dict[str, str] = {
    "Puck": "com",
    "Charon": "co.uk",
    "Kore": "com.au",
    "Fenrir": "ca",
    "Zephyr": "co.in",
}
DEFAULT_VOICE = "Kore"


class TTSError(Exception):
    """Exception raised for TTS errors."""
    pass


class TTSProcessor:
    """
    Text-to-Speech processor.

    Stateless: converts text into MP3 audio bytes per call.
    """

    def __init__(self, voice: str = "com", language: str = "en", slow: bool = False):
        """
        Initialize the TTS processor.

        Args:
            voice: Accent to speak with, as a Google Translate top-level
                   domain (e.g., "com", "co.uk", "com.au")
            language: Language code
            slow: Read more slowly
        """
        self.voice = voice
        self.language = language
        self.slow = slow
        print(f"[TTS] Initialized with voice={voice}, language={language}")

    async def synthesize(self, text: str, voice: Optional[str] = None) -> Optional[bytes]:
        """
        Convert text to speech audio.

        Args:
            text: Text to synthesize
            voice: Voice name from VOICES or an accent domain, for this call only

        Returns:
            MP3 bytes, or None when there is nothing to say

        Raises:
            TTSError: If the synthesis call fails
        """
        if not text or not text.strip():
            return None

        voice = voice or self.voice
        voice = VOICES.get(voice, voice)
        print(f"[TTS] Synthesizing: '{text[:50]}{'...' if len(text) > 50 else ''}'")
        start_time = time.perf_counter()

        try:
            # gTTS is blocking; run it off the event loop
            loop = asyncio.get_running_loop()
            audio_bytes = await loop.run_in_executor(None, self._call_tts_api, text, voice)
        except Exception as e:
            raise TTSError(f"TTS synthesis failed: {e}") from e

        elapsed = time.perf_counter() - start_time
        if not audio_bytes:
            print(f"[TTS] No audio produced in {elapsed:.2f}s")
            return None
        print(f"[TTS] ✅ Generated MP3 audio ({len(audio_bytes)} bytes) in {elapsed:.2f}s")
        return audio_bytes

    def _call_tts_api(self, text: str, voice: str) -> bytes:
        tts = gTTS(text=text, lang=self.language, tld=voice, slow=self.slow)
        mp3_buffer = BytesIO()
        tts.write_to_fp(mp3_buffer)
        return mp3_buffer.getvalue()

    def set_voice(self, voice: str):
        """
        Change the TTS voice.

        Args:
            voice: Accent top-level domain
        """
        self.voice = voice
        print(f"[TTS] Voice set to {voice}")
