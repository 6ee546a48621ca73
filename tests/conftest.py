"""
テスト共通のフィクスチャとテスト用ダブル
"""
import asyncio
import threading
from datetime import datetime, timedelta

import pytest

from speaking_coach.errors import DeviceUnavailableError, InvalidStateError
from speaking_coach.models.schemas import Assessment, AudioClip, Prompt, Unit
from speaking_coach.services.session_service import SessionController


def make_assessment(pronunciation: int = 5, grammar: int = 4, relevance: int = 5) -> Assessment:
    """テスト用の評価結果を作成"""
    return Assessment(
        pronunciation_score=pronunciation,
        grammar_score=grammar,
        relevance_score=relevance,
        transcription="I am seven",
        feedback="Great job!",
        sticker="🌟",
    )


class FakeAudioSource:
    """マイクの代わりに固定のクリップを返す録音機能"""

    def __init__(self, fail: bool = False, stop_error: Exception | None = None) -> None:
        self.fail = fail
        self.stop_error = stop_error
        # セットするとstart()がワーカースレッドで待機する
        self.start_gate: threading.Event | None = None
        self.start_entered = threading.Event()
        self.is_capturing = False
        self.start_calls = 0
        self.aborted = 0
        self.on_level = None

    def start(self, on_level=None) -> None:
        self.start_calls += 1
        self.start_entered.set()
        if self.start_gate is not None:
            self.start_gate.wait(2)
        if self.is_capturing:
            raise InvalidStateError("既に録音中です")
        if self.fail:
            raise DeviceUnavailableError("permission denied")
        self.on_level = on_level
        self.is_capturing = True

    def stop(self) -> AudioClip:
        if not self.is_capturing:
            raise InvalidStateError("録音中ではありません")
        self.is_capturing = False
        if self.stop_error is not None:
            raise self.stop_error
        return AudioClip(data=b"RIFF....WAVE", mime_type="audio/wav", sample_rate=16000, duration=1.0)

    def abort(self) -> None:
        self.is_capturing = False
        self.aborted += 1


class FakeAssessmentClient:
    """順番に結果（または例外）を返す採点クライアント"""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[AudioClip, str]] = []
        self.gate: asyncio.Event | None = None
        self.closed = False

    async def assess(self, clip: AudioClip, prompt_text: str) -> Assessment:
        self.calls.append((clip, prompt_text))
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else make_assessment()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self) -> None:
        self.closed = True


class FakeNarrator:
    """読み上げたテキストを記録する"""

    def __init__(self) -> None:
        self.spoken: list[str] = []

    async def speak(self, text: str) -> None:
        self.spoken.append(text)


class StepClock:
    """呼ばれるたびに1秒進む時計"""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 19, 9, 0, 0)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


@pytest.fixture
def units():
    """テスト用カリキュラム（ユニット1は4問、ユニット9は問題なし）"""
    return {
        1: Unit(
            id=1,
            title="Unit 1",
            prompts=(
                Prompt(id=1, text="How old are you?", hint="I am..."),
                Prompt(id=2, text="What color is the house?", hint="The house is..."),
                Prompt(id=3, text="What is your mom's name?", hint="My mom's name is..."),
                Prompt(id=4, text="What is your dad's name?", hint="My dad's name is..."),
            ),
        ),
        9: Unit(id=9, title="Unit 9", prompts=()),
    }


@pytest.fixture
def audio():
    return FakeAudioSource()


@pytest.fixture
def client():
    return FakeAssessmentClient()


@pytest.fixture
def narrator():
    return FakeNarrator()


@pytest.fixture
def controller(audio, client, narrator, units, tmp_path):
    """テスト用ダブルで組み立てたSessionController"""
    from speaking_coach.services.report_service import ReportExporter

    return SessionController(
        audio=audio,
        client=client,
        narrator=narrator,
        exporter=ReportExporter(tmp_path),
        units=units,
        narration_delay=0.01,
        working_message_interval=0.01,
        clock=StepClock(),
    )
