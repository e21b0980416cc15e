"""PCM16 and WAV conversions for the speech endpoints."""

import io
import wave

import numpy as np


def pcm16_to_float(data: bytes) -> np.ndarray:
    """Convert raw little-endian PCM16 bytes to float32 audio.

    Args:
        data: PCM16 bytes as returned by the TTS endpoint.

    Returns:
        Float32 audio array in range [-1.0, 1.0].
    """
    pcm16 = np.frombuffer(data[: len(data) - len(data) % 2], dtype="<i2")
    return pcm16.astype(np.float32) / 32767.0


def float_to_pcm16(audio: np.ndarray) -> bytes:
    """Convert float32 audio to PCM16 bytes, clipping out-of-range samples."""
    clipped = np.clip(audio, -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def to_wav(audio: np.ndarray, sample_rate: int) -> bytes:
    """Wrap mono float32 audio in a WAV container for transcription."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(float_to_pcm16(audio))
    return buffer.getvalue()
