"""
読み上げサービスのテスト
"""
import asyncio
import threading
from unittest.mock import Mock, patch

import pytest

from speaking_coach.services.narration_service import OpenAINarrator, SilentNarrator


class TestOpenAINarrator:
    """OpenAINarratorのテストクラス"""

    @pytest.fixture
    def mock_client(self):
        client = Mock()
        client.audio.speech.create.return_value = Mock(content=b"RIFFfake-wav")
        return client

    @pytest.fixture
    def segment(self):
        segment = Mock()
        segment.get_array_of_samples.return_value = [0, 16384, -16384, 0]
        segment.sample_width = 2
        segment.channels = 1
        segment.frame_rate = 24000
        return segment

    @pytest.mark.asyncio
    @patch("speaking_coach.services.narration_service.sd")
    @patch("speaking_coach.services.narration_service.AudioSegment")
    async def test_speak(self, mock_segment_cls, mock_sd, mock_client, segment):
        """音声を合成して再生する"""
        mock_segment_cls.from_file.return_value = segment
        narrator = OpenAINarrator("test_key", rate=0.9, client=mock_client)

        await narrator.speak("How old are you?")

        kwargs = mock_client.audio.speech.create.call_args.kwargs
        assert kwargs["input"] == "How old are you?"
        assert kwargs["speed"] == 0.9
        samples = mock_sd.play.call_args.args[0]
        assert samples[1] == pytest.approx(0.5)
        assert mock_sd.play.call_args.kwargs["samplerate"] == 24000
        assert mock_sd.wait.called

    @pytest.mark.asyncio
    @patch("speaking_coach.services.narration_service.sd")
    @patch("speaking_coach.services.narration_service.AudioSegment")
    async def test_same_text_uses_cache(self, mock_segment_cls, mock_sd, mock_client, segment):
        """同じ質問は再合成しない"""
        mock_segment_cls.from_file.return_value = segment
        narrator = OpenAINarrator("test_key", client=mock_client)

        await narrator.speak("How old are you?")
        await narrator.speak("How old are you?")

        assert mock_client.audio.speech.create.call_count == 1
        assert mock_sd.play.call_count == 2

    @pytest.mark.asyncio
    @patch("speaking_coach.services.narration_service.sd")
    async def test_speak_error_is_silent(self, mock_sd, mock_client):
        """音声合成に失敗しても例外を投げない"""
        mock_client.audio.speech.create.side_effect = Exception("API Error")
        narrator = OpenAINarrator("test_key", client=mock_client)

        try:
            await narrator.speak("How old are you?")
        except Exception:
            pytest.fail("speak should not raise exceptions")
        assert not mock_sd.play.called

    @staticmethod
    def _track_finish(narrator):
        """ワーカースレッドでの_play終了を通知するイベントを仕込む"""
        finished = threading.Event()
        original = narrator._play

        def tracked(text, cancelled):
            try:
                original(text, cancelled)
            finally:
                finished.set()

        narrator._play = tracked
        return finished

    @pytest.mark.asyncio
    @patch("speaking_coach.services.narration_service.sd")
    @patch("speaking_coach.services.narration_service.AudioSegment")
    async def test_cancel_during_synthesis_never_plays(
        self, mock_segment_cls, mock_sd, mock_client, segment
    ):
        """音声合成中に取り消されたら、合成が終わっても再生しない"""
        mock_segment_cls.from_file.return_value = segment
        requested = threading.Event()
        release = threading.Event()

        def slow_create(**kwargs):
            requested.set()
            release.wait(2)
            return Mock(content=b"RIFFfake-wav")

        mock_client.audio.speech.create.side_effect = slow_create
        narrator = OpenAINarrator("test_key", client=mock_client)
        finished = self._track_finish(narrator)

        task = asyncio.create_task(narrator.speak("How old are you?"))
        assert await asyncio.to_thread(requested.wait, 2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        assert await asyncio.to_thread(finished.wait, 2)
        assert not mock_sd.play.called

    @pytest.mark.asyncio
    @patch("speaking_coach.services.narration_service.sd")
    @patch("speaking_coach.services.narration_service.AudioSegment")
    async def test_cancel_during_playback_stops_audio(
        self, mock_segment_cls, mock_sd, mock_client, segment
    ):
        """再生中に取り消されたら再生を止める"""
        mock_segment_cls.from_file.return_value = segment
        playing = threading.Event()
        stopped = threading.Event()

        def blocking_wait():
            playing.set()
            stopped.wait(2)

        mock_sd.wait.side_effect = blocking_wait
        mock_sd.stop.side_effect = stopped.set
        narrator = OpenAINarrator("test_key", client=mock_client)
        finished = self._track_finish(narrator)

        task = asyncio.create_task(narrator.speak("How old are you?"))
        assert await asyncio.to_thread(playing.wait, 2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert mock_sd.play.call_count == 1
        assert mock_sd.stop.called
        assert await asyncio.to_thread(finished.wait, 2)


class TestSilentNarrator:
    """SilentNarratorのテストクラス"""

    @pytest.mark.asyncio
    async def test_speak_does_nothing(self):
        await SilentNarrator().speak("How old are you?")
