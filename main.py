"""
子供向けスピーキング練習アプリ - メインエントリーポイント
"""
import logging
import sys
from pathlib import Path

import flet as ft
from dotenv import load_dotenv

from speaking_coach.config import APP_DATA_DIR, REPORTS_DIR, load_settings, setup_logging
from speaking_coach.gui.home_window import HomeWindow
from speaking_coach.gui.practice_window import PracticeWindow
from speaking_coach.models.schemas import SessionSnapshot, SessionState
from speaking_coach.services.assessment_service import create_assessment_client
from speaking_coach.services.audio_service import AudioCaptureService
from speaking_coach.services.narration_service import Narrator, OpenAINarrator, SilentNarrator
from speaking_coach.services.report_service import ReportExporter
from speaking_coach.services.session_service import SessionController

# .envファイルの読み込み（実行ファイルのディレクトリまたはカレントディレクトリから）
if getattr(sys, "frozen", False):
    # PyInstallerでビルドされた場合
    application_path = Path(sys.executable).parent
else:
    application_path = Path(__file__).parent

env_path = application_path / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()

logger = logging.getLogger(__name__)


class App:
    """アプリケーションのメインクラス"""

    def __init__(self, page: ft.Page) -> None:
        """
        初期化処理

        Args:
            page: Fletのページオブジェクト
        """
        self.page = page
        self.page.title = "Little TOEs"
        self.page.theme_mode = ft.ThemeMode.LIGHT
        self.page.bgcolor = ft.Colors.LIGHT_BLUE_50
        self.page.window.min_width = 480
        self.page.window.min_height = 720

        # アプリケーションデータディレクトリの作成
        APP_DATA_DIR.mkdir(parents=True, exist_ok=True)

        settings = load_settings()
        setup_logging(settings.log_level)

        narrator: Narrator
        if settings.openai_api_key:
            narrator = OpenAINarrator(
                settings.openai_api_key,
                model=settings.tts_model,
                voice=settings.tts_voice,
                rate=settings.narration_rate,
            )
        else:
            logger.warning("OpenAI APIキーが設定されていないため、質問の読み上げは無効です")
            narrator = SilentNarrator()

        self.controller = SessionController(
            audio=AudioCaptureService(),
            client=create_assessment_client(settings),
            narrator=narrator,
            exporter=ReportExporter(REPORTS_DIR),
            narration_delay=settings.narration_delay,
            working_message_interval=settings.working_message_interval,
        )
        self.controller.subscribe(self._on_snapshot)
        self.controller.subscribe_levels(self._on_levels)
        self.page.on_disconnect = self._on_disconnect

        self.window: HomeWindow | PracticeWindow | None = None
        self.showing_home: bool = False
        self.show_home()

    def show_home(self) -> None:
        """ホーム画面を表示"""
        self.page.clean()
        self.window = HomeWindow(self.page, self.controller)
        self.window.build()
        self.showing_home = True
        self.page.update()

    def show_practice(self) -> None:
        """練習画面を表示"""
        self.page.clean()
        self.window = PracticeWindow(self.page, self.controller)
        self.window.build()
        self.showing_home = False

    def _on_snapshot(self, snapshot: SessionSnapshot) -> None:
        """状態変化に合わせて画面を切り替える"""
        is_entry = snapshot.state is SessionState.ENTRY
        if is_entry and not self.showing_home:
            self.show_home()
        elif not is_entry and self.showing_home:
            self.show_practice()
        if self.window is not None:
            self.window.render(snapshot)

    def _on_levels(self, levels: list[int]) -> None:
        if isinstance(self.window, PracticeWindow):
            self.window.render_levels(levels)

    async def _on_disconnect(self, e: ft.ControlEvent) -> None:
        """ウィンドウが閉じられたときにマイクと保留中のタスクを片付ける"""
        await self.controller.shutdown()


def main(page: ft.Page) -> None:
    """アプリケーションの起動"""
    App(page)


if __name__ == "__main__":
    ft.app(target=main)
