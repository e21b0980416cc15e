"""Tests for the speech adapter and PCM/WAV helpers."""

import io
import wave
from unittest.mock import AsyncMock, MagicMock, patch

import numpy as np
import pytest

from adaptive_learning_hub.generation.client import GenerationClient
from adaptive_learning_hub.speech.adapter import SpeechAdapter, SpeechError
from adaptive_learning_hub.speech.encoder import float_to_pcm16, pcm16_to_float, to_wav


class FakePortAudioError(Exception):
    pass


class TestEncoder:
    def test_clipping(self):
        audio = np.array([2.0, -2.0, 0.0], dtype=np.float32)
        decoded = pcm16_to_float(float_to_pcm16(audio))
        assert decoded[0] > 0.99
        assert decoded[1] < -0.99
        assert abs(decoded[2]) < 1e-5

    def test_odd_byte_count_is_truncated(self):
        assert len(pcm16_to_float(b"\x00\x01\x02")) == 1

    def test_wav_header(self):
        audio = np.zeros(2400, dtype=np.float32)
        with wave.open(io.BytesIO(to_wav(audio, 24000)), "rb") as wav:
            assert wav.getnchannels() == 1
            assert wav.getsampwidth() == 2
            assert wav.getframerate() == 24000
            assert wav.getnframes() == 2400


@pytest.fixture
def sd():
    module = MagicMock()
    module.PortAudioError = FakePortAudioError
    return module


@pytest.fixture
def speech_generator():
    gen = MagicMock(spec=GenerationClient)
    gen.client.audio.speech.create = AsyncMock(return_value=MagicMock(content=b"\x00\x10" * 240))
    gen.client.audio.transcriptions.create = AsyncMock(return_value=MagicMock(text="  I like music. "))
    return gen


@pytest.fixture
def adapter(sd, speech_generator):
    with patch("adaptive_learning_hub.speech.adapter._load_sounddevice", return_value=sd):
        speech = SpeechAdapter(speech_generator)
        assert speech.supported
    return speech


class TestFeatureDetection:
    def test_no_portaudio(self, speech_generator):
        with patch("adaptive_learning_hub.speech.adapter._load_sounddevice", return_value=None):
            speech = SpeechAdapter(speech_generator)
            assert not speech.supported
            assert not speech.speak("Hello")
            assert not speech.start_listening()

    def test_no_output_device(self, sd, speech_generator):
        sd.query_devices.side_effect = FakePortAudioError("no device")
        with patch("adaptive_learning_hub.speech.adapter._load_sounddevice", return_value=sd):
            assert not SpeechAdapter(speech_generator).supported


class TestSpeak:
    async def test_speak_plays_synthesized_audio(self, adapter, sd, speech_generator):
        assert adapter.speak("Hello there", voice="verse")
        await adapter._speak_task

        kwargs = speech_generator.client.audio.speech.create.await_args.kwargs
        assert kwargs["voice"] == "verse"
        assert kwargs["response_format"] == "pcm"
        sd.play.assert_called_once()
        assert len(sd.play.call_args.args[0]) == 240

    async def test_blank_text_not_spoken(self, adapter, speech_generator):
        assert not adapter.speak("   ")
        speech_generator.client.audio.speech.create.assert_not_called()

    async def test_new_utterance_cuts_off_previous(self, adapter, sd):
        adapter.speak("first")
        first = adapter._speak_task
        adapter.speak("second")

        assert first.cancelling() or first.cancelled()
        sd.stop.assert_called()
        await adapter._speak_task


class TestListen:
    async def test_transcribes_captured_audio(self, adapter, sd, speech_generator):
        assert adapter.start_listening()
        assert adapter.listening
        assert not adapter.start_listening()

        adapter._on_audio(np.zeros((480, 1), dtype=np.float32), 480, None, None)
        text = await adapter.stop_listening()

        assert text == "I like music."
        assert not adapter.listening
        name, wav_bytes, mime = speech_generator.client.audio.transcriptions.create.await_args.kwargs["file"]
        assert (name, mime) == ("speech.wav", "audio/wav")
        assert wav_bytes.startswith(b"RIFF")

    async def test_nothing_captured(self, adapter):
        adapter.start_listening()

        with pytest.raises(SpeechError):
            await adapter.stop_listening()

    async def test_stop_when_not_listening(self, adapter):
        assert await adapter.stop_listening() is None

    def test_microphone_unavailable(self, adapter, sd):
        sd.InputStream.side_effect = FakePortAudioError("busy")

        with pytest.raises(SpeechError):
            adapter.start_listening()
        assert not adapter.listening
