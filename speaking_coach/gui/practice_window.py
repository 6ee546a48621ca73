"""
練習画面のGUIコンポーネント
質問の表示・録音・採点中・結果・エラーの各状態を描画する
"""
import flet as ft

from speaking_coach.models.schemas import Assessment, SessionSnapshot, SessionState
from speaking_coach.services.session_service import SessionController

# スペクトラム表示のバー本数
BAR_COUNT: int = 32


class PracticeWindow:
    """練習画面のウィンドウクラス"""

    def __init__(self, page: ft.Page, controller: SessionController) -> None:
        """
        初期化処理

        Args:
            page: Fletのページオブジェクト
            controller: セッション管理
        """
        self.page = page
        self.controller = controller

        self.card: ft.Container | None = None
        self.footer_text: ft.Text | None = None
        self.bars: list[ft.Container] = []
        self.max_bar_height: int = 80

    def build(self) -> None:
        """ウィジェットの構築"""
        header = ft.Row(
            [
                ft.Text("Little TOEs 👣", size=28, weight=ft.FontWeight.BOLD, color=ft.Colors.DEEP_PURPLE_700),
                ft.IconButton(icon=ft.Icons.HOME, tooltip="Home", on_click=self._on_home_clicked),
            ],
            alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
        )
        self.card = ft.Container(width=440, padding=30, border_radius=24, bgcolor=ft.Colors.WHITE)
        self.footer_text = ft.Text("", size=12, color=ft.Colors.GREY_500)
        footer = ft.Row(
            [
                self.footer_text,
                ft.TextButton("Download Report", icon=ft.Icons.TABLE_CHART, on_click=self._on_export_clicked),
            ],
            alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
            width=440,
        )
        self.bars = [
            ft.Container(width=6, height=2, bgcolor=ft.Colors.DEEP_PURPLE_300, border_radius=3)
            for _ in range(BAR_COUNT)
        ]

        self.page.add(
            ft.Container(
                content=ft.Column(
                    [header, ft.Container(height=10), self.card, footer],
                    horizontal_alignment=ft.CrossAxisAlignment.CENTER,
                ),
                padding=30,
                expand=True,
            )
        )

    # ------------------------------------------------------------------
    # 描画
    # ------------------------------------------------------------------

    def render(self, snapshot: SessionSnapshot) -> None:
        """スナップショットに合わせてカードの中身を作り直す"""
        if self.card is None:
            return

        if snapshot.state in (SessionState.READY, SessionState.CAPTURING):
            self.card.content = self._build_prompt_view(snapshot)
        elif snapshot.state is SessionState.SCORING:
            self.card.content = self._build_scoring_view(snapshot)
        elif snapshot.state is SessionState.SCORED and snapshot.assessment is not None:
            self.card.content = self._build_result_view(snapshot.assessment)
        elif snapshot.state is SessionState.FAILED:
            self.card.content = self._build_error_view(snapshot)

        if self.footer_text is not None:
            self.footer_text.value = f"{snapshot.learner_name or ''} · {snapshot.history_count} answers"
        self.page.update()

    def render_levels(self, levels: list[int]) -> None:
        """録音中のスペクトラムをバーの高さに反映"""
        if not self.bars or not levels:
            return
        step = max(1, len(levels) // len(self.bars))
        for i, bar in enumerate(self.bars):
            value = levels[min(i * step, len(levels) - 1)]
            bar.height = max(2, int(value / 255 * self.max_bar_height))
        self.page.update()

    def _build_prompt_view(self, snapshot: SessionSnapshot) -> ft.Column:
        """質問と録音ボタンの表示"""
        if snapshot.no_prompts or snapshot.prompt is None:
            return ft.Column(
                [ft.Text("📭", size=48), ft.Text("This unit has no questions yet.", size=18)],
                horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            )

        prompt = snapshot.prompt
        capturing = snapshot.state is SessionState.CAPTURING
        controls: list[ft.Control] = [
            ft.Container(
                content=ft.Text(f"Question {prompt.id}", weight=ft.FontWeight.BOLD, color=ft.Colors.DEEP_PURPLE_700),
                bgcolor=ft.Colors.DEEP_PURPLE_50,
                padding=ft.padding.symmetric(4, 14),
                border_radius=20,
            ),
            ft.Text(prompt.text, size=26, weight=ft.FontWeight.BOLD, text_align=ft.TextAlign.CENTER),
            ft.IconButton(
                icon=ft.Icons.VOLUME_UP,
                icon_size=32,
                tooltip="Listen to question",
                on_click=self._on_speak_clicked,
                disabled=capturing,
            ),
        ]
        if prompt.hint:
            controls.append(ft.Text(f'Hint: "{prompt.hint}"', size=13, color=ft.Colors.GREY_500))

        if capturing:
            visual: ft.Control = ft.Row(self.bars, alignment=ft.MainAxisAlignment.CENTER, spacing=2, height=self.max_bar_height)
        else:
            visual = ft.Text("Tap the mic to start!", color=ft.Colors.GREY_400)
        controls.append(ft.Container(content=visual, height=self.max_bar_height + 20, alignment=ft.alignment.center))

        controls.append(
            ft.IconButton(
                icon=ft.Icons.STOP if capturing else ft.Icons.MIC,
                icon_size=48,
                bgcolor=ft.Colors.RED_400 if capturing else ft.Colors.DEEP_PURPLE_400,
                icon_color=ft.Colors.WHITE,
                on_click=self._on_record_clicked,
            )
        )
        controls.append(ft.Text("Listening..." if capturing else "Ready to record", weight=ft.FontWeight.BOLD))
        if snapshot.notice:
            controls.append(ft.Text(snapshot.notice, color=ft.Colors.RED_400, text_align=ft.TextAlign.CENTER))
        return ft.Column(controls, horizontal_alignment=ft.CrossAxisAlignment.CENTER, spacing=12)

    def _build_scoring_view(self, snapshot: SessionSnapshot) -> ft.Column:
        """採点中の表示"""
        return ft.Column(
            [
                ft.ProgressRing(width=64, height=64),
                ft.Text(snapshot.working_message or "Thinking...", size=22, weight=ft.FontWeight.BOLD),
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            spacing=20,
        )

    @staticmethod
    def _stars(score: int) -> ft.Row:
        return ft.Row(
            [
                ft.Icon(ft.Icons.STAR if i < score else ft.Icons.STAR_BORDER, color=ft.Colors.AMBER_400)
                for i in range(5)
            ],
            spacing=2,
        )

    def _build_result_view(self, assessment: Assessment) -> ft.Column:
        """採点結果の表示"""
        rows = [
            ("Sound", assessment.pronunciation_score),
            ("Grammar", assessment.grammar_score),
            ("Answer", assessment.relevance_score),
        ]
        return ft.Column(
            [
                ft.Text(assessment.sticker, size=56),
                ft.Text("Great Job!", size=24, weight=ft.FontWeight.BOLD, color=ft.Colors.LIGHT_GREEN_700),
                ft.Text("You said:", size=12, color=ft.Colors.GREY_500),
                ft.Text(f'"{assessment.transcription}"', italic=True, size=18),
                *[
                    ft.Row([ft.Text(label, weight=ft.FontWeight.W_600), self._stars(score)],
                           alignment=ft.MainAxisAlignment.SPACE_BETWEEN)
                    for label, score in rows
                ],
                ft.Container(
                    content=ft.Text(assessment.feedback, text_align=ft.TextAlign.CENTER, color=ft.Colors.BLUE_900),
                    bgcolor=ft.Colors.LIGHT_BLUE_50,
                    padding=14,
                    border_radius=12,
                ),
                ft.Row(
                    [
                        ft.OutlinedButton("Try Again", icon=ft.Icons.REPLAY, on_click=self._on_retry_clicked),
                        ft.ElevatedButton("Next", icon=ft.Icons.ARROW_FORWARD, on_click=self._on_next_clicked),
                    ],
                    alignment=ft.MainAxisAlignment.CENTER,
                ),
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            spacing=12,
        )

    def _build_error_view(self, snapshot: SessionSnapshot) -> ft.Column:
        """採点失敗の表示"""
        return ft.Column(
            [
                ft.Text("😕", size=48),
                ft.Text("Oops!", size=24, weight=ft.FontWeight.BOLD, color=ft.Colors.RED_400),
                ft.Text(snapshot.notice or "", text_align=ft.TextAlign.CENTER),
                ft.ElevatedButton("Try Again", on_click=self._on_retry_clicked, width=300),
            ],
            horizontal_alignment=ft.CrossAxisAlignment.CENTER,
            spacing=12,
        )

    # ------------------------------------------------------------------
    # イベント
    # ------------------------------------------------------------------

    async def _on_record_clicked(self, e: ft.ControlEvent) -> None:
        """マイクボタン：録音開始、録音中なら停止して採点"""
        state = self.controller.state
        if state is SessionState.READY:
            await self.controller.start_recording()
        elif state is SessionState.CAPTURING:
            await self.controller.stop_recording()

    async def _on_speak_clicked(self, e: ft.ControlEvent) -> None:
        self.controller.speak_prompt()

    async def _on_retry_clicked(self, e: ft.ControlEvent) -> None:
        self.controller.retry()

    async def _on_next_clicked(self, e: ft.ControlEvent) -> None:
        self.controller.next_prompt()

    async def _on_home_clicked(self, e: ft.ControlEvent) -> None:
        self.controller.go_home()

    async def _on_export_clicked(self, e: ft.ControlEvent) -> None:
        """レポートを出力して結果をスナックバーで通知"""
        path = self.controller.export_report()
        if path is not None:
            self.page.open(ft.SnackBar(content=ft.Text(f"Report saved: {path}")))
            return
        # スナックバーが閉じたら画面の案内文も消す
        self.page.open(
            ft.SnackBar(
                content=ft.Text(self.controller.snapshot().notice or ""),
                on_dismiss=self._on_notice_dismissed,
            )
        )

    async def _on_notice_dismissed(self, e: ft.ControlEvent) -> None:
        self.controller.dismiss_notice()
