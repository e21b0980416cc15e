"""Text-to-speech and speech-to-text bridge over sounddevice and OpenAI audio."""

import asyncio
import threading
from types import ModuleType

import numpy as np
import structlog
from openai import OpenAIError

from ..generation.client import GenerationClient, GenerationError
from .encoder import pcm16_to_float, to_wav

logger = structlog.get_logger()

# The TTS endpoint returns 24 kHz mono PCM16.
TTS_SAMPLE_RATE = 24000


class SpeechError(Exception):
    """Speech recognition failed."""


def _load_sounddevice() -> ModuleType | None:
    try:
        import sounddevice
    except OSError:
        # PortAudio shared library is missing on this host.
        logger.warning("speech_portaudio_unavailable")
        return None
    return sounddevice


class SpeechAdapter:
    """Feature-detected speech capability.

    When audio is unavailable every method is a no-op returning False or
    None, so callers can hide speech controls instead of handling errors.

    Args:
        generator: Generation client providing the OpenAI connection.
        tts_model: Text-to-speech model.
        voice: Default voice.
        transcription_model: Speech-to-text model.
        sample_rate: Capture sample rate in Hz.
        input_device: Input device index (None for default).
        output_device: Output device index (None for default).
    """

    def __init__(
        self,
        generator: GenerationClient,
        tts_model: str = "gpt-4o-mini-tts",
        voice: str = "alloy",
        transcription_model: str = "whisper-1",
        sample_rate: int = 24000,
        input_device: int | None = None,
        output_device: int | None = None,
    ):
        self.generator = generator
        self.tts_model = tts_model
        self.voice = voice
        self.transcription_model = transcription_model
        self.sample_rate = sample_rate
        self.input_device = input_device
        self.output_device = output_device

        self._sd: ModuleType | None = None
        self._supported: bool | None = None
        self._speak_task: asyncio.Task | None = None
        self._stream = None
        self._chunks: list[np.ndarray] = []
        self._chunks_lock = threading.Lock()

    @property
    def supported(self) -> bool:
        """Whether PortAudio and an output device are available."""
        if self._supported is None:
            self._supported = self._detect()
        return self._supported

    @property
    def listening(self) -> bool:
        return self._stream is not None

    def _detect(self) -> bool:
        sd = _load_sounddevice()
        if sd is None:
            return False
        try:
            sd.query_devices(self.output_device, kind="output")
        except (sd.PortAudioError, ValueError):
            logger.warning("speech_no_output_device", device=self.output_device)
            return False
        self._sd = sd
        return True

    def speak(self, text: str, voice: str | None = None) -> bool:
        """Start speaking `text`, cutting off any utterance in progress."""
        if not self.supported or not text.strip():
            return False
        self._cancel_speech()
        self._speak_task = asyncio.create_task(self._speak(text, voice or self.voice))
        return True

    async def _speak(self, text: str, voice: str) -> None:
        try:
            response = await self.generator.client.audio.speech.create(
                model=self.tts_model,
                voice=voice,
                input=text,
                response_format="pcm",
            )
        except (OpenAIError, GenerationError):
            logger.warning("speech_synthesis_failed", exc_info=True)
            return
        audio = pcm16_to_float(response.content)
        try:
            self._sd.play(audio, samplerate=TTS_SAMPLE_RATE, device=self.output_device)
        except self._sd.PortAudioError:
            logger.warning("speech_playback_failed", exc_info=True)
            return
        logger.info("speech_playing", chars=len(text), seconds=round(len(audio) / TTS_SAMPLE_RATE, 2))

    def _cancel_speech(self) -> None:
        if self._speak_task is not None and not self._speak_task.done():
            self._speak_task.cancel()
        self._speak_task = None
        if self._sd is not None:
            self._sd.stop()

    def stop_speaking(self) -> None:
        if self.supported:
            self._cancel_speech()

    def _on_audio(self, indata: np.ndarray, frames: int, time_info: object, status) -> None:
        if status:
            logger.warning("speech_capture_status", status=str(status))
        with self._chunks_lock:
            self._chunks.append(indata.copy().flatten())

    def start_listening(self) -> bool:
        """Open the microphone. Only one recognition session at a time."""
        if not self.supported or self._stream is not None:
            return False
        self._chunks = []
        try:
            stream = self._sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self.input_device,
                callback=self._on_audio,
            )
            stream.start()
        except self._sd.PortAudioError as e:
            logger.warning("speech_capture_open_failed", exc_info=True)
            raise SpeechError("Could not access the microphone.") from e
        self._stream = stream
        logger.info("speech_listening", sample_rate=self.sample_rate)
        return True

    async def stop_listening(self) -> str | None:
        """Close the microphone and return the final transcript."""
        if self._stream is None:
            return None
        stream, self._stream = self._stream, None
        stream.stop()
        stream.close()
        with self._chunks_lock:
            chunks, self._chunks = self._chunks, []
        if not chunks:
            raise SpeechError("No speech was captured.")

        audio = np.concatenate(chunks)
        try:
            transcription = await self.generator.client.audio.transcriptions.create(
                model=self.transcription_model,
                file=("speech.wav", to_wav(audio, self.sample_rate), "audio/wav"),
            )
        except (OpenAIError, GenerationError) as e:
            logger.warning("speech_transcription_failed", exc_info=True)
            raise SpeechError("Speech recognition failed. Please try again.") from e
        text = transcription.text.strip()
        logger.info("speech_transcribed", chars=len(text))
        return text
