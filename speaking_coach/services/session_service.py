"""
セッション管理サービス
問題の進行・録音・採点・履歴の追加をひとつの状態機械で管理する
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable

from speaking_coach.curriculum import UNITS, get_unit
from speaking_coach.errors import (
    AssessmentError,
    DeviceUnavailableError,
    InvalidStateError,
    NoDataError,
    ValidationError,
)
from speaking_coach.models.schemas import (
    Assessment,
    HistoryEntry,
    Prompt,
    SessionSnapshot,
    SessionState,
    Unit,
)
from speaking_coach.services.assessment_service import AssessmentClient
from speaking_coach.services.audio_service import AudioSource
from speaking_coach.services.history_service import HistoryStore
from speaking_coach.services.narration_service import Narrator, SilentNarrator
from speaking_coach.services.report_service import ReportExporter

logger = logging.getLogger(__name__)

# 採点中に順番に表示するメッセージ
WORKING_MESSAGES: tuple[str, ...] = (
    "Listening closely...",
    "Checking grammar...",
    "Preparing stickers...",
)

# 画面に表示する案内文
MSG_NAME_REQUIRED: str = "Please type your name first!"
MSG_UNKNOWN_UNIT: str = "Please choose a unit."
MSG_NO_PROMPTS: str = "This unit has no questions yet."
MSG_MICROPHONE: str = "We need your microphone to hear your beautiful voice! Please allow access."
MSG_FAILED: str = "Something went wrong. Let's try that again."
MSG_NO_DATA: str = "No results to export yet!"

SnapshotListener = Callable[[SessionSnapshot], None]
LevelListener = Callable[[list[int]], None]


class SessionController:
    """セッションの状態機械（セッションと履歴を変更できる唯一のクラス）"""

    def __init__(
        self,
        audio: AudioSource,
        client: AssessmentClient,
        narrator: Narrator | None = None,
        history: HistoryStore | None = None,
        exporter: ReportExporter | None = None,
        units: dict[int, Unit] | None = None,
        narration_delay: float = 0.5,
        working_message_interval: float = 1.5,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        初期化処理

        Args:
            audio: 録音機能
            client: 採点クライアント
            narrator: 読み上げ機能（省略時は無音）
            history: 履歴ストア
            exporter: レポート出力（省略時はエクスポート不可）
            units: カリキュラム（省略時は組み込みデータ）
            narration_delay: READYになってから質問を読み上げるまでの待ち時間（秒）
            working_message_interval: 採点中メッセージの切り替え間隔（秒）
            clock: 履歴のタイムスタンプに使う時計
        """
        self._audio: AudioSource = audio
        self._client: AssessmentClient = client
        self._narrator: Narrator = narrator or SilentNarrator()
        self._history: HistoryStore = history or HistoryStore()
        self._exporter: ReportExporter | None = exporter
        self._units: dict[int, Unit] = units if units is not None else UNITS
        self.narration_delay: float = narration_delay
        self.working_message_interval: float = working_message_interval
        self._clock: Callable[[], datetime] = clock

        self._state: SessionState = SessionState.ENTRY
        self._learner_name: str | None = None
        self._unit: Unit | None = None
        self._prompt_index: int = 0
        self._assessment: Assessment | None = None
        self._working_message: str | None = None
        self._notice: str | None = None
        # セッションが作り直されるたびに増やす（古い採点結果の破棄に使う）
        self._generation: int = 0

        # 読み上げ待ち・採点中メッセージのどちらか一つだけ
        self._pending_task: asyncio.Task | None = None
        # マイクを開いている途中（二重タップ防止）
        self._starting: bool = False

        self._listeners: list[SnapshotListener] = []
        self._level_listeners: list[LevelListener] = []

    # ------------------------------------------------------------------
    # 状態の参照・通知
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def prompt_index(self) -> int:
        return self._prompt_index

    @property
    def current_prompt(self) -> Prompt | None:
        if self._unit is None or not self._unit.prompts:
            return None
        return self._unit.prompts[self._prompt_index]

    @property
    def history(self) -> tuple[HistoryEntry, ...]:
        return self._history.snapshot()

    @property
    def pending_task(self) -> asyncio.Task | None:
        return self._pending_task

    def snapshot(self) -> SessionSnapshot:
        """現在の状態のスナップショットを作成"""
        prompts = self._unit.prompts if self._unit is not None else ()
        return SessionSnapshot(
            state=self._state,
            learner_name=self._learner_name,
            unit_id=self._unit.id if self._unit is not None else None,
            prompt_index=self._prompt_index,
            prompt=self.current_prompt,
            prompt_count=len(prompts),
            no_prompts=self._unit is not None and not prompts,
            assessment=self._assessment,
            working_message=self._working_message,
            notice=self._notice,
            history_count=len(self._history),
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        状態変化の通知を登録

        Returns:
            登録解除用の関数
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def subscribe_levels(self, listener: LevelListener) -> Callable[[], None]:
        """録音中のスペクトラム通知を登録"""
        self._level_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._level_listeners:
                self._level_listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("状態通知の処理でエラーが発生しました")

    def _publish_levels(self, levels: list[int]) -> None:
        if self._state is not SessionState.CAPTURING:
            return
        for listener in list(self._level_listeners):
            try:
                listener(levels)
            except Exception:
                logger.exception("スペクトラム通知の処理でエラーが発生しました")

    # ------------------------------------------------------------------
    # バックグラウンドタスク（常に一つまで）
    # ------------------------------------------------------------------

    def _cancel_pending(self) -> None:
        task = self._pending_task
        self._pending_task = None
        if task is not None and not task.done():
            task.cancel()

    def _schedule(self, coro: Awaitable[None]) -> asyncio.Task:
        self._cancel_pending()
        task = asyncio.get_running_loop().create_task(coro)
        self._pending_task = task
        return task

    def _set_state(self, state: SessionState) -> None:
        # 状態が変わるたびに保留中のタスクは無効になる
        self._cancel_pending()
        if state is not SessionState.SCORING:
            self._working_message = None
        logger.debug("状態遷移: %s -> %s", self._state.value, state.value)
        self._state = state

    def _enter_ready(self) -> None:
        self._set_state(SessionState.READY)
        self._assessment = None
        prompt = self.current_prompt
        if prompt is not None:
            self._schedule(self._narrate_after_delay(prompt.text))
        self._notify()

    async def _narrate_after_delay(self, text: str) -> None:
        await asyncio.sleep(self.narration_delay)
        await self._narrator.speak(text)

    async def _cycle_working_messages(self) -> None:
        index = 0
        while True:
            await asyncio.sleep(self.working_message_interval)
            index = (index + 1) % len(WORKING_MESSAGES)
            self._working_message = WORKING_MESSAGES[index]
            self._notify()

    # ------------------------------------------------------------------
    # 操作
    # ------------------------------------------------------------------

    def start_session(self, learner_name: str, unit_id: int | None) -> bool:
        """
        名前とユニットを確定してセッションを開始

        Args:
            learner_name: 学習者名（前後の空白は除去）
            unit_id: 選択したユニットID

        Returns:
            開始できた場合True（失敗時はENTRYのまま案内文を表示）
        """
        if self._state is not SessionState.ENTRY:
            raise InvalidStateError("セッションは既に開始されています")

        name = (learner_name or "").strip()
        unit = get_unit(unit_id, self._units) if unit_id is not None else None
        if not name or unit is None:
            self._notice = MSG_NAME_REQUIRED if not name else MSG_UNKNOWN_UNIT
            logger.info("セッション開始の入力が不正です: %s", self._notice)
            self._notify()
            return False

        self._generation += 1
        self._learner_name = name
        self._unit = unit
        self._prompt_index = 0
        self._history.clear()
        self._notice = MSG_NO_PROMPTS if not unit.prompts else None
        if not unit.prompts:
            logger.warning("ユニット %s に問題がありません", unit.id)
        logger.info("セッションを開始しました: %s (Unit %s)", name, unit.id)
        self._enter_ready()
        return True

    async def start_recording(self) -> bool:
        """
        録音を開始

        Returns:
            録音を開始できた場合True（マイクが使えない場合はREADYのまま）

        Raises:
            InvalidStateError: READY以外（録音中・採点中など）から呼ばれた場合
        """
        if self._state is not SessionState.READY or self._starting:
            raise InvalidStateError(f"録音を開始できない状態です: {self._state.value}")
        if self.current_prompt is None:
            self._notice = MSG_NO_PROMPTS
            self._notify()
            return False

        loop = asyncio.get_running_loop()

        def on_level(levels: list[int]) -> None:
            # PortAudioのスレッドからイベントループへ渡す
            loop.call_soon_threadsafe(self._publish_levels, levels)

        # 読み上げ待ちはここで止める
        self._cancel_pending()
        generation = self._generation
        self._starting = True
        try:
            # デバイスを順に開くので時間がかかることがある
            await asyncio.to_thread(self._audio.start, on_level)
        except DeviceUnavailableError as e:
            logger.warning("マイクを使用できません: %s", e)
            self._notice = MSG_MICROPHONE
            self._notify()
            return False
        finally:
            self._starting = False

        if generation != self._generation or self._state is not SessionState.READY:
            logger.info("マイクを開いている間にセッションが変わったため録音を破棄しました")
            self._audio.abort()
            return False

        self._notice = None
        self._set_state(SessionState.CAPTURING)
        self._notify()
        return True

    async def stop_recording(self) -> None:
        """
        録音を停止して採点する（採点が終わるまで待つ）

        Raises:
            InvalidStateError: 録音中でない場合
        """
        if self._state is not SessionState.CAPTURING:
            raise InvalidStateError(f"録音中ではありません: {self._state.value}")

        try:
            clip = self._audio.stop()
        except Exception:
            logger.exception("録音の停止に失敗しました")
            self._audio.abort()
            self._notice = MSG_MICROPHONE
            self._enter_ready()
            return
        prompt = self.current_prompt
        generation = self._generation

        self._set_state(SessionState.SCORING)
        self._working_message = WORKING_MESSAGES[0]
        self._notify()
        ticker = self._schedule(self._cycle_working_messages())

        assessment: Assessment | None = None
        try:
            assessment = await self._client.assess(clip, prompt.text)
        except (AssessmentError, ValidationError) as e:
            kind = getattr(e, "kind", "validation")
            logger.error("採点に失敗しました [%s]: %s", kind, e)
        except Exception:
            logger.exception("採点中に予期しないエラーが発生しました")
        finally:
            # 採点が終わったらメッセージの切り替えを止める
            if self._pending_task is ticker:
                self._cancel_pending()

        if generation != self._generation or self._state is not SessionState.SCORING:
            logger.info("セッションが変わったため採点結果を破棄しました")
            return

        if assessment is None:
            self._notice = MSG_FAILED
            self._set_state(SessionState.FAILED)
            self._notify()
            return

        self._append_history(assessment, prompt)
        self._assessment = assessment
        self._set_state(SessionState.SCORED)
        self._notify()

    def _append_history(self, assessment: Assessment, prompt: Prompt) -> None:
        timestamp = self._clock()
        previous = self._history.snapshot()
        if previous and timestamp < previous[-1].timestamp:
            # 時計が戻っても完了順を崩さない
            timestamp = previous[-1].timestamp
        entry = HistoryEntry.from_assessment(
            assessment,
            prompt,
            learner_name=self._learner_name,
            unit_id=self._unit.id,
            timestamp=timestamp,
        )
        self._history.append(entry)
        logger.info(
            "採点完了: Q%s P%s/G%s/R%s",
            prompt.id,
            assessment.pronunciation_score,
            assessment.grammar_score,
            assessment.relevance_score,
        )

    def retry(self) -> None:
        """同じ問題をもう一度（結果表示・失敗からREADYへ）"""
        if self._state not in (SessionState.SCORED, SessionState.FAILED):
            raise InvalidStateError(f"やり直しできない状態です: {self._state.value}")
        self._notice = None
        self._enter_ready()

    def next_prompt(self) -> None:
        """次の問題へ（最後の問題の次は最初に戻る）"""
        if self._state is not SessionState.SCORED:
            raise InvalidStateError(f"次の問題へ進めない状態です: {self._state.value}")
        self._prompt_index = (self._prompt_index + 1) % len(self._unit.prompts)
        self._notice = None
        self._enter_ready()

    def speak_prompt(self) -> None:
        """現在の問題をすぐに読み上げる"""
        prompt = self.current_prompt
        if self._state is not SessionState.READY or prompt is None:
            return
        self._schedule(self._narrator.speak(prompt.text))

    def dismiss_notice(self) -> None:
        """案内文を閉じる"""
        if self._notice is None:
            return
        self._notice = None
        self._notify()

    def go_home(self) -> None:
        """セッションを終了して最初の画面へ（履歴もすべて破棄）"""
        if self._audio.is_capturing:
            self._audio.abort()
        self._generation += 1
        self._set_state(SessionState.ENTRY)
        self._learner_name = None
        self._unit = None
        self._prompt_index = 0
        self._assessment = None
        self._notice = None
        self._history.clear()
        logger.info("セッションを終了しました")
        self._notify()

    def export_report(self, output_dir: Path | None = None) -> Path | None:
        """
        履歴をExcelレポートとして出力

        Args:
            output_dir: 出力先（省略時はエクスポーターの既定ディレクトリ）

        Returns:
            書き出したファイルのパス、履歴が空の場合はNone（案内文を表示）
        """
        if self._exporter is None:
            raise InvalidStateError("レポート出力が設定されていません")
        exporter = self._exporter if output_dir is None else ReportExporter(output_dir)
        try:
            path = exporter.export(
                self._history.snapshot(),
                learner_name=self._learner_name or "",
                unit_id=self._unit.id if self._unit is not None else 0,
            )
        except NoDataError:
            logger.info("エクスポートする履歴がありません")
            self._notice = MSG_NO_DATA
            self._notify()
            return None
        return path

    async def shutdown(self) -> None:
        """アプリ終了時の後片付け（マイクと採点クライアントを解放）"""
        self._generation += 1
        self._cancel_pending()
        if self._audio.is_capturing:
            self._audio.abort()
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("採点クライアントを閉じられませんでした: %s", e)
