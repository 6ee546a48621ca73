"""
読み上げサービス
質問文を音声合成して再生する（失敗しても無音になるだけ）
"""

import asyncio
import io
import logging
import threading
from typing import Protocol

import numpy as np
import sounddevice as sd
from openai import OpenAI
from pydub import AudioSegment

logger = logging.getLogger(__name__)


class Narrator(Protocol):
    """コントローラーが依存する読み上げ機能のインターフェース"""

    async def speak(self, text: str) -> None: ...


class SilentNarrator:
    """読み上げ機能が使えない環境用（何もしない）"""

    async def speak(self, text: str) -> None:
        logger.debug("読み上げ無効: %s", text)


class OpenAINarrator:
    """OpenAIの音声合成で質問を読み上げるサービスクラス"""

    def __init__(
        self,
        api_key: str,
        model: str = "tts-1",
        voice: str = "alloy",
        rate: float = 0.9,
        client: OpenAI | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            api_key: OpenAI APIキー
            model: 音声合成モデル
            voice: 声の種類
            rate: 読み上げ速度（子供向けに少しゆっくり）
            client: テスト用に差し替えるクライアント
        """
        self.client: OpenAI = client or OpenAI(api_key=api_key)
        self.model: str = model
        self.voice: str = voice
        self.rate: float = rate
        self._cache: dict[str, AudioSegment] = {}
        self._playback_lock: threading.Lock = threading.Lock()

    def _synthesize(self, text: str) -> AudioSegment:
        """テキストから音声を生成（同じ質問はキャッシュを再利用）"""
        cached = self._cache.get(text)
        if cached is not None:
            return cached
        response = self.client.audio.speech.create(
            model=self.model,
            voice=self.voice,
            input=text,
            speed=self.rate,
            response_format="wav",
        )
        segment = AudioSegment.from_file(io.BytesIO(response.content), format="wav")
        self._cache[text] = segment
        return segment

    def _play(self, text: str, cancelled: threading.Event) -> None:
        segment = self._synthesize(text)
        samples = np.array(segment.get_array_of_samples(), dtype=np.float32)
        samples /= float(1 << (8 * segment.sample_width - 1))
        if segment.channels > 1:
            samples = samples.reshape((-1, segment.channels))
        with self._playback_lock:
            if cancelled.is_set():
                # 合成中に取り消された読み上げは再生しない
                return
            sd.play(samples, samplerate=segment.frame_rate)
        sd.wait()  # 再生が完了するまで待機

    async def speak(self, text: str) -> None:
        """
        テキストを読み上げる

        取り消された場合、合成中なら再生せず、再生中なら止める。

        Args:
            text: 読み上げるテキスト
        """
        cancelled = threading.Event()
        try:
            await asyncio.to_thread(self._play, text, cancelled)
        except asyncio.CancelledError:
            with self._playback_lock:
                cancelled.set()
                sd.stop()
            raise
        except Exception as e:
            logger.warning("読み上げに失敗しました: %s", e)
