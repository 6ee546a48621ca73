"""
データモデル（スキーマ定義）
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

# スコアの範囲（1〜5の星）
MIN_SCORE: int = 1
MAX_SCORE: int = 5


class Prompt(BaseModel):
    """問題（読み上げる質問）のデータモデル"""

    model_config = ConfigDict(frozen=True)

    id: int  # ユニット内で一意
    text: str
    hint: str | None = None


class Unit(BaseModel):
    """ユニット（問題のまとまり）のデータモデル"""

    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    prompts: tuple[Prompt, ...] = ()


class AudioClip(BaseModel):
    """録音済み音声クリップのデータモデル"""

    model_config = ConfigDict(frozen=True)

    data: bytes  # エンコード済み音声（WAV）
    mime_type: str = "audio/wav"
    sample_rate: int = 16000
    duration: float = 0.0  # 秒

    @property
    def is_empty(self) -> bool:
        return len(self.data) == 0


class Assessment(BaseModel):
    """採点結果のデータモデル"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pronunciation_score: StrictInt = Field(ge=MIN_SCORE, le=MAX_SCORE, alias="pronunciationScore")
    grammar_score: StrictInt = Field(ge=MIN_SCORE, le=MAX_SCORE, alias="grammarScore")
    relevance_score: StrictInt = Field(ge=MIN_SCORE, le=MAX_SCORE, alias="relevanceScore")
    transcription: StrictStr  # 空文字も可
    feedback: StrictStr = Field(min_length=1)
    sticker: StrictStr = Field(min_length=1)


class HistoryEntry(Assessment):
    """履歴エントリ（採点結果＋完了時点のコンテキスト）"""

    prompt_id: int
    prompt_text: str
    timestamp: datetime  # 採点完了時刻
    learner_name: str
    unit_id: int

    @classmethod
    def from_assessment(
        cls,
        assessment: Assessment,
        prompt: Prompt,
        learner_name: str,
        unit_id: int,
        timestamp: datetime,
    ) -> "HistoryEntry":
        """採点結果に問題・学習者情報を付与して履歴エントリを作成"""
        return cls(
            **assessment.model_dump(),
            prompt_id=prompt.id,
            prompt_text=prompt.text,
            timestamp=timestamp,
            learner_name=learner_name,
            unit_id=unit_id,
        )


class SessionState(str, Enum):
    """セッションの状態"""

    ENTRY = "entry"  # 名前・ユニット入力中
    READY = "ready"  # 録音待ち
    CAPTURING = "capturing"  # 録音中
    SCORING = "scoring"  # 採点中
    SCORED = "scored"  # 結果表示中
    FAILED = "failed"  # 採点失敗


class SessionSnapshot(BaseModel):
    """画面に通知するセッション状態のスナップショット"""

    model_config = ConfigDict(frozen=True)

    state: SessionState = SessionState.ENTRY
    learner_name: str | None = None
    unit_id: int | None = None
    prompt_index: int = 0
    prompt: Prompt | None = None
    prompt_count: int = 0
    no_prompts: bool = False
    assessment: Assessment | None = None
    working_message: str | None = None
    notice: str | None = None  # 画面に表示する案内・エラー文
    history_count: int = 0
