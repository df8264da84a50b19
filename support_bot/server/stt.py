"""
Speech-to-Text (STT) Module using Deepgram API.

This module transcribes a finished recording into text using Deepgram's
Nova-2 model.
"""

import asyncio
from typing import Optional

from deepgram import DeepgramClient


NO_SPEECH_SENTINEL = "..."


class TranscriptionError(Exception):
    """Transcription failed (network, auth, engine)."""
    pass


class AudioFormatError(TranscriptionError):
    """The recording is malformed, unsupported or too short to transcribe."""
    pass


def is_no_speech(transcript: Optional[str]) -> bool:
    """True for an empty transcript or the 'no speech' sentinel."""
    if transcript is None:
        return True
    text = transcript.strip()
    return not text or text == NO_SPEECH_SENTINEL


class STTProcessor:
    """
    Speech-to-Text processor using Deepgram Nova-2.

    Stateless: converts one audio payload into text per call.
    """

    def __init__(self, api_key: str, model: str = "nova-2", language: str = "en", client=None):
        """
        Initialize the STT processor with Deepgram.

        Args:
            api_key: Deepgram API key
            model: Deepgram model (default: "nova-2")
            language: Language code (e.g., "en", "es", "fr")
            client: Pre-built Deepgram client (created from api_key if omitted)
        """
        self.model = model
        self.language = language
        self.client = client or DeepgramClient(api_key=api_key)
        print(f"[STT] ✓ Initialized Deepgram with model={model}, language={language}")

    async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> str:
        """
        Transcribe an audio payload into text.

        An empty string means no speech was detected; that is not an error.

        Args:
            audio: Encoded audio bytes (WebM/WAV/...)
            mime_type: Content type declared by the capture source

        Returns:
            The transcript, possibly empty

        Raises:
            AudioFormatError: Malformed, unsupported or too-short audio
            TranscriptionError: Any other engine or network failure
        """
        if not audio:
            raise AudioFormatError("Empty audio payload")

        detected = self._detect_audio_format(audio)
        print(f"[STT] Transcribing {len(audio)} bytes ({mime_type}, detected={detected})...")

        try:
            loop = asyncio.get_running_loop()
            response = await loop.run_in_executor(
                None,
                lambda: self.client.listen.v1.media.transcribe_file(
                    request=audio,
                    model=self.model,
                    language=self.language,
                    smart_format=True,
                    punctuate=True,
                )
            )
        except Exception as e:
            raise self._classify_error(e) from e

        text = self._extract_transcript(response)
        if text:
            print(f"[STT] ✓ Result: '{text}'")
        else:
            print("[STT] No speech detected in audio")
        return text

    @staticmethod
    def _classify_error(error: Exception) -> TranscriptionError:
        """Split format problems (HTTP 400 and friends) from everything else."""
        status_code = getattr(error, "status_code", None)
        message = str(error).lower()
        if (
            status_code == 400
            or "bad request" in message
            or "corrupt" in message
            or "unsupported" in message
            or "too short" in message
        ):
            print(f"[STT] ⚠️ Audio format issue detected: {error}")
            return AudioFormatError("Audio format not supported or file too short.")
        print(f"[STT] ✗ Deepgram API error: {error}")
        return TranscriptionError("Failed to process audio. Please try again.")

    @staticmethod
    def _extract_transcript(response) -> str:
        """First alternative of the first channel, or ''."""
        results = getattr(response, "results", None)
        channels = getattr(results, "channels", None) if results else None
        if not channels:
            return ""
        alternatives = getattr(channels[0], "alternatives", None)
        if not alternatives:
            return ""
        transcript = getattr(alternatives[0], "transcript", None) or ""
        return transcript.strip()

    def _detect_audio_format(self, audio_buffer: bytes) -> str:
        """
        Detect audio format from magic bytes.

        Args:
            audio_buffer: Raw audio bytes

        Returns:
            Container name (e.g., "webm", "wav", "mp3")
        """
        if len(audio_buffer) < 4:
            return "unknown"

        # WebM: 1A 45 DF A3 (EBML header)
        if audio_buffer[:4] == b'\x1a\x45\xdf\xa3':
            return "webm"

        if audio_buffer[:4] == b'RIFF':
            return "wav"

        # MP3: ID3 tag or frame sync
        if audio_buffer[:3] == b'ID3' or audio_buffer[:2] in (b'\xff\xfb', b'\xff\xf3'):
            return "mp3"

        if audio_buffer[:4] == b'OggS':
            return "ogg"

        if audio_buffer[:4] == b'fLaC':
            return "flac"

        return "unknown"

    def set_language(self, language: str):
        """
        Change the transcription language.

        Args:
            language: Language code (e.g., "en", "es", "fr")
        """
        self.language = language
        print(f"[STT] Language set to {language}")
