"""
Speech capabilities: transcribe(audio) -> text and speak(text) -> audio.

Both go through OpenAI's audio endpoints and are metered by the shared
usage tracker before the call is made.
"""
import logging

import openai

import config
from errors import SpeechFailed, TranscriptionFailed
from usage import UsageTracker

logger = logging.getLogger(__name__)

TRANSCRIBE_MODEL = "whisper-1"
SPEECH_MODEL = "tts-1"
MAX_SPEECH_CHARS = 4000

AUDIO_EXTENSIONS = {
    "wav": "wav",
    "mp3": "mp3",
    "mpeg": "mp3",
    "webm": "webm",
    "ogg": "ogg",
}


def audio_filename(content_type: str) -> str:
    """Whisper infers the codec from the upload's extension."""
    for marker, extension in AUDIO_EXTENSIONS.items():
        if marker in content_type:
            return f"audio.{extension}"
    return "audio.m4a"


def truncate_for_speech(text: str) -> str:
    if len(text) <= MAX_SPEECH_CHARS:
        return text
    return text[:MAX_SPEECH_CHARS] + "..."


class VoiceService:
    def __init__(self, usage: UsageTracker, api_key: str | None = None, client=None):
        self.usage = usage
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self._client = client

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    async def transcribe(self, audio: bytes, content_type: str = "audio/m4a") -> str:
        if not audio:
            raise TranscriptionFailed("No audio data provided")
        if self._client is None and not config.api_key_configured(self.api_key):
            raise TranscriptionFailed("Transcription is not configured")

        self.usage.try_acquire("whisper")
        filename = audio_filename(content_type)
        logger.info("Transcribing audio: %d bytes, type: %s", len(audio), content_type)
        try:
            transcription = await self.client.audio.transcriptions.create(
                file=(filename, audio, content_type or "audio/m4a"),
                model=TRANSCRIBE_MODEL,
                language="en",
                response_format="text",
            )
        except openai.OpenAIError as e:
            logger.error("Transcription error: %s", e)
            raise TranscriptionFailed("Transcription failed") from e

        text = transcription if isinstance(transcription, str) else getattr(transcription, "text", "")
        return text.strip()

    async def speak(self, text: str, voice: str = "nova") -> bytes:
        if not text.strip():
            raise SpeechFailed("No text provided")
        if self._client is None and not config.api_key_configured(self.api_key):
            raise SpeechFailed("Speech is not configured")

        spoken = truncate_for_speech(text)
        self.usage.try_acquire("tts", chars=len(spoken))
        logger.info("Generating speech (%d chars) with voice: %s", len(spoken), voice)
        try:
            response = await self.client.audio.speech.create(
                model=SPEECH_MODEL,
                voice=voice,
                input=spoken,
                response_format="mp3",
            )
        except openai.OpenAIError as e:
            logger.error("Speech error: %s", e)
            raise SpeechFailed("Speech generation failed") from e

        return response.content
