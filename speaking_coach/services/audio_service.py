"""
音声入力サービス
マイクから録音し、録音中はスペクトラム（周波数ごとの音量）を通知する
"""

import io
import logging
import threading
import time
from typing import Callable, Protocol

import numpy as np
import scipy.io.wavfile as wavfile
import sounddevice as sd

from speaking_coach.errors import DeviceUnavailableError, InvalidStateError
from speaking_coach.models.schemas import AudioClip

logger = logging.getLogger(__name__)

# 録音クリップのエンコード形式
CLIP_MIME_TYPE: str = "audio/wav"

LevelCallback = Callable[[list[int]], None]


class AudioSource(Protocol):
    """コントローラーが依存する録音機能のインターフェース"""

    @property
    def is_capturing(self) -> bool: ...

    def start(self, on_level: LevelCallback | None = None) -> None: ...

    def stop(self) -> AudioClip: ...

    def abort(self) -> None: ...


def compute_spectrum(samples: np.ndarray, fft_size: int = 256) -> list[int]:
    """
    音声サンプルから周波数ビンごとの音量を計算

    Args:
        samples: モノラルのfloat32サンプル（-1.0〜1.0）
        fft_size: FFTの窓サイズ（ビン数はその半分）

    Returns:
        0〜255に正規化した音量のリスト（長さ fft_size // 2）
    """
    bin_count: int = fft_size // 2
    if samples.size == 0:
        return [0] * bin_count

    window = samples[-fft_size:]
    if window.size < fft_size:
        window = np.pad(window, (fft_size - window.size, 0))
    window = window * np.hanning(fft_size)

    magnitudes = np.abs(np.fft.rfft(window))[:bin_count] / (fft_size / 2)
    # dB（-100〜-30）を0〜255に写像する
    with np.errstate(divide="ignore"):
        decibels = 20 * np.log10(magnitudes)
    scaled = (decibels + 100.0) / 70.0 * 255.0
    return np.clip(np.nan_to_num(scaled, nan=0.0, neginf=0.0), 0, 255).astype(int).tolist()


class AudioCaptureService:
    """マイク録音を管理するサービスクラス"""

    def __init__(
        self,
        sample_rate: int = 16000,
        chunk_size: int = 1024,
        fft_size: int = 256,
        level_interval: float = 0.05,
    ) -> None:
        """
        初期化処理

        Args:
            sample_rate: サンプリングレート
            chunk_size: 1ブロックあたりのフレーム数
            fft_size: スペクトラム計算用のFFTサイズ
            level_interval: スペクトラム通知の最小間隔（秒）
        """
        self.sample_rate: int = sample_rate
        self.chunk_size: int = chunk_size
        self.channels: int = 1
        self.dtype: str = "float32"
        self.fft_size: int = fft_size
        self.level_interval: float = level_interval

        self._stream: sd.InputStream | None = None
        self._chunks: list[np.ndarray] = []
        self._lock: threading.Lock = threading.Lock()
        self._on_level: LevelCallback | None = None
        self._last_level_at: float | None = None

    @property
    def is_capturing(self) -> bool:
        return self._stream is not None

    def _candidate_devices(self) -> list[int | None]:
        """試行する入力デバイスのリストを作成（デフォルト→その他→None）"""
        candidates: list[int | None] = []

        # 1. デフォルトデバイス
        try:
            default_input = sd.default.device[0]
            if default_input is not None and default_input >= 0:
                candidates.append(default_input)
        except Exception as e:
            logger.debug("デフォルト入力デバイスを取得できません: %s", e)

        # 2. その他の入力可能なデバイス
        try:
            for i, device in enumerate(sd.query_devices()):
                if device["max_input_channels"] > 0 and i not in candidates:
                    candidates.append(i)
        except Exception as e:
            logger.debug("デバイス一覧を取得できません: %s", e)

        # 最後にNoneを追加（デフォルトの挙動を試す）
        if None not in candidates:
            candidates.append(None)
        return candidates

    def start(self, on_level: LevelCallback | None = None) -> None:
        """
        録音を開始

        Args:
            on_level: スペクトラムを受け取るコールバック（PortAudioのスレッドから呼ばれる）

        Raises:
            InvalidStateError: 既に録音中の場合
            DeviceUnavailableError: 使用できるマイクがない場合
        """
        if self.is_capturing:
            raise InvalidStateError("既に録音中です")

        last_error: Exception | None = None
        for device_index in self._candidate_devices():
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype=self.dtype,
                    blocksize=self.chunk_size,
                    callback=self._audio_callback,
                    device=device_index,
                )
            except Exception as e:
                logger.warning("デバイス %s を開けませんでした: %s", device_index, e)
                last_error = e
                continue

            # コールバックが走る前に状態を整える
            with self._lock:
                self._chunks = []
            self._on_level = on_level
            self._last_level_at = None
            try:
                stream.start()
            except Exception as e:
                logger.warning("デバイス %s で録音を開始できませんでした: %s", device_index, e)
                last_error = e
                stream.close()
                self._on_level = None
                continue

            self._stream = stream
            logger.info("録音を開始しました (Device Index: %s)", device_index)
            return

        logger.error("すべてのデバイスで録音の開始に失敗しました: %s", last_error)
        raise DeviceUnavailableError(f"マイクを使用できません: {last_error}")

    def _audio_callback(
        self, indata: np.ndarray, frames: int, time_info: object, status: sd.CallbackFlags
    ) -> None:
        """sounddeviceのコールバック関数"""
        if status:
            logger.debug("Audio callback status: %s", status)
        samples = indata[:, 0].copy() if indata.ndim > 1 else indata.flatten().copy()
        with self._lock:
            self._chunks.append(samples)

        callback = self._on_level
        if callback is None:
            return
        now = time.monotonic()
        if self._last_level_at is not None and now - self._last_level_at < self.level_interval:
            return
        self._last_level_at = now
        try:
            callback(compute_spectrum(samples, self.fft_size))
        except Exception as e:
            # 波形表示の失敗は録音に影響させない
            logger.debug("スペクトラム通知エラー: %s", e)

    def _close_stream(self) -> None:
        """ストリームを停止してマイクを解放"""
        stream = self._stream
        self._stream = None
        self._on_level = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()

    def stop(self) -> AudioClip:
        """
        録音を停止してクリップを確定

        Returns:
            WAV形式の音声クリップ

        Raises:
            InvalidStateError: 録音中でない場合
        """
        if not self.is_capturing:
            raise InvalidStateError("録音中ではありません")

        self._close_stream()
        with self._lock:
            chunks = self._chunks
            self._chunks = []

        samples = np.concatenate(chunks) if chunks else np.array([], dtype=np.float32)
        clip = encode_wav(samples, self.sample_rate)
        logger.info("録音を停止しました (%.2f秒, %d bytes)", clip.duration, len(clip.data))
        return clip

    def abort(self) -> None:
        """録音を破棄してマイクを解放（録音中でなければ何もしない）"""
        if not self.is_capturing:
            return
        self._close_stream()
        with self._lock:
            self._chunks = []
        logger.info("録音を破棄しました")


def encode_wav(samples: np.ndarray, sample_rate: int) -> AudioClip:
    """
    float32サンプルを16bit PCMのWAVクリップに変換

    Args:
        samples: モノラルのfloat32サンプル
        sample_rate: サンプリングレート

    Returns:
        音声クリップ
    """
    if samples.size == 0:
        # ヘッダーだけのWAVは作らず空クリップを返す
        return AudioClip(data=b"", mime_type=CLIP_MIME_TYPE, sample_rate=sample_rate)
    pcm = (np.clip(samples, -1.0, 1.0) * 32767).astype(np.int16)
    buffer = io.BytesIO()
    wavfile.write(buffer, sample_rate, pcm)
    return AudioClip(
        data=buffer.getvalue(),
        mime_type=CLIP_MIME_TYPE,
        sample_rate=sample_rate,
        duration=len(pcm) / sample_rate if sample_rate else 0.0,
    )
