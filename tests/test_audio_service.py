"""
AudioCaptureServiceのテスト
"""
import io
from unittest.mock import MagicMock, Mock, patch

import numpy as np
import pytest
import scipy.io.wavfile as wavfile

from speaking_coach.errors import DeviceUnavailableError, InvalidStateError
from speaking_coach.services.audio_service import (
    AudioCaptureService,
    compute_spectrum,
    encode_wav,
)


class TestAudioCaptureService:
    """AudioCaptureServiceのテストクラス"""

    @pytest.fixture
    def audio_service(self):
        """AudioCaptureServiceのインスタンスを作成"""
        return AudioCaptureService(sample_rate=16000, level_interval=0.0)

    @pytest.fixture
    def mock_sd(self):
        """sounddeviceをモック（入力デバイス1台）"""
        with patch("speaking_coach.services.audio_service.sd") as sd:
            sd.default.device = [0, 1]
            sd.query_devices.return_value = [
                {"name": "Mic", "max_input_channels": 1, "max_output_channels": 0},
            ]
            sd.InputStream.return_value = MagicMock()
            yield sd

    def test_init(self, audio_service):
        """初期化テスト"""
        assert audio_service.is_capturing is False
        assert audio_service.sample_rate == 16000
        assert audio_service.channels == 1

    def test_start(self, audio_service, mock_sd):
        """録音開始のテスト"""
        audio_service.start()

        assert audio_service.is_capturing is True
        mock_sd.InputStream.return_value.start.assert_called_once()
        assert mock_sd.InputStream.call_args.kwargs["device"] == 0

    def test_start_twice_rejected(self, audio_service, mock_sd):
        """録音中の再開始は拒否"""
        audio_service.start()

        with pytest.raises(InvalidStateError):
            audio_service.start()
        assert mock_sd.InputStream.call_count == 1

    def test_start_tries_next_device(self, audio_service, mock_sd):
        """デフォルトデバイスが失敗したら次の候補を試す"""
        mock_sd.query_devices.return_value = [
            {"name": "Mic", "max_input_channels": 1, "max_output_channels": 0},
            {"name": "USB Mic", "max_input_channels": 1, "max_output_channels": 0},
        ]
        good_stream = MagicMock()
        mock_sd.InputStream.side_effect = [Exception("Device busy"), good_stream]

        audio_service.start()

        assert audio_service.is_capturing is True
        assert mock_sd.InputStream.call_args.kwargs["device"] == 1

    def test_start_all_devices_fail(self, audio_service, mock_sd):
        """すべてのデバイスが失敗したらDeviceUnavailableErrorで状態は変わらない"""
        mock_sd.InputStream.side_effect = Exception("Permission denied")

        with pytest.raises(DeviceUnavailableError):
            audio_service.start()

        assert audio_service.is_capturing is False

    def test_start_failure_closes_stream(self, audio_service, mock_sd):
        """ストリーム開始に失敗したらストリームを閉じる"""
        stream = MagicMock()
        stream.start.side_effect = Exception("PortAudio error")
        mock_sd.InputStream.return_value = stream

        with pytest.raises(DeviceUnavailableError):
            audio_service.start()

        assert stream.close.called
        assert audio_service.is_capturing is False

    def test_stop_returns_wav_clip(self, audio_service, mock_sd):
        """停止すると録音がWAVクリップになりマイクが解放される"""
        audio_service.start()
        stream = mock_sd.InputStream.return_value
        block = np.full((1600, 1), 0.25, dtype=np.float32)
        audio_service._audio_callback(block, 1600, None, None)
        audio_service._audio_callback(block, 1600, None, None)

        clip = audio_service.stop()

        assert audio_service.is_capturing is False
        stream.stop.assert_called_once()
        stream.close.assert_called_once()
        assert clip.mime_type == "audio/wav"
        assert clip.duration == pytest.approx(0.2)
        rate, data = wavfile.read(io.BytesIO(clip.data))
        assert rate == 16000
        assert len(data) == 3200

    def test_stop_when_idle(self, audio_service):
        """録音していないときの停止はエラー（クリップは作らない）"""
        with pytest.raises(InvalidStateError):
            audio_service.stop()

    def test_level_callback(self, audio_service, mock_sd):
        """録音中はスペクトラムが通知される"""
        on_level = Mock()
        audio_service.start(on_level)
        block = np.sin(np.linspace(0, 200, 1024, dtype=np.float32)).reshape(-1, 1)

        audio_service._audio_callback(block, 1024, None, None)

        levels = on_level.call_args.args[0]
        assert len(levels) == 128
        assert all(0 <= v <= 255 for v in levels)

    def test_level_callback_error_does_not_break_capture(self, audio_service, mock_sd):
        """スペクトラム通知の失敗は録音に影響しない"""
        audio_service.start(Mock(side_effect=RuntimeError("UI closed")))
        block = np.zeros((1024, 1), dtype=np.float32)

        audio_service._audio_callback(block, 1024, None, None)
        clip = audio_service.stop()

        assert clip.duration == pytest.approx(1024 / 16000)

    def test_level_callback_throttled(self, mock_sd):
        """通知は最小間隔で間引かれる"""
        service = AudioCaptureService(level_interval=60.0)
        on_level = Mock()
        service.start(on_level)
        block = np.zeros((1024, 1), dtype=np.float32)

        for _ in range(5):
            service._audio_callback(block, 1024, None, None)

        assert on_level.call_count == 1
        assert len(service._chunks) == 5

    def test_abort(self, audio_service, mock_sd):
        """破棄するとクリップを作らずマイクを解放"""
        audio_service.start()
        audio_service.abort()

        assert audio_service.is_capturing is False
        mock_sd.InputStream.return_value.close.assert_called_once()
        # 録音していないときは何もしない
        audio_service.abort()


class TestHelpers:
    """補助関数のテスト"""

    def test_compute_spectrum_silence(self):
        """無音はすべて0"""
        assert compute_spectrum(np.zeros(256, dtype=np.float32)) == [0] * 128

    def test_compute_spectrum_short_input(self):
        """窓より短い入力も扱える"""
        assert len(compute_spectrum(np.ones(10, dtype=np.float32))) == 128
        assert compute_spectrum(np.array([], dtype=np.float32)) == [0] * 128

    def test_encode_wav_empty(self):
        """サンプルがなければ空クリップ"""
        clip = encode_wav(np.array([], dtype=np.float32), 16000)

        assert clip.is_empty
