"""
ホーム画面のGUIコンポーネント
学習者の名前とユニットを入力してセッションを開始する
"""
import flet as ft

from speaking_coach.curriculum import UNITS
from speaking_coach.models.schemas import SessionSnapshot
from speaking_coach.services.session_service import SessionController


class HomeWindow:
    """ホーム画面のウィンドウクラス"""

    def __init__(self, page: ft.Page, controller: SessionController) -> None:
        """
        初期化処理

        Args:
            page: Fletのページオブジェクト
            controller: セッション管理
        """
        self.page = page
        self.controller = controller

        # UIコンポーネント
        self.name_field: ft.TextField | None = None
        self.unit_dropdown: ft.Dropdown | None = None
        self.notice_text: ft.Text | None = None

    def build(self) -> None:
        """ウィジェットの構築"""
        title = ft.Text(
            "Little TOEs 👣",
            size=36,
            weight=ft.FontWeight.BOLD,
            text_align=ft.TextAlign.CENTER,
            color=ft.Colors.DEEP_PURPLE_700,
        )

        self.name_field = ft.TextField(
            label="What is your name?",
            width=320,
            autofocus=True,
            on_submit=self._on_start_clicked,
        )
        self.unit_dropdown = ft.Dropdown(
            label="Unit",
            width=320,
            value="1",
            options=[ft.dropdown.Option(key=str(unit.id), text=unit.title) for unit in UNITS.values()],
        )
        self.notice_text = ft.Text("", color=ft.Colors.RED_400, size=14)

        start_button = ft.ElevatedButton(
            "Let's start!",
            on_click=self._on_start_clicked,
            style=ft.ButtonStyle(padding=20),
            width=320,
            height=50,
        )

        self.page.add(
            ft.Container(
                content=ft.Column(
                    [
                        title,
                        ft.Container(height=20),
                        self.name_field,
                        self.unit_dropdown,
                        self.notice_text,
                        ft.Container(height=10),
                        start_button,
                    ],
                    horizontal_alignment=ft.CrossAxisAlignment.CENTER,
                    alignment=ft.MainAxisAlignment.CENTER,
                ),
                padding=40,
                expand=True,
            )
        )

    def render(self, snapshot: SessionSnapshot) -> None:
        """入力エラーなどの案内文を反映"""
        if self.notice_text is None:
            return
        self.notice_text.value = snapshot.notice or ""
        self.page.update()

    async def _on_start_clicked(self, e: ft.ControlEvent) -> None:
        """開始ボタンがクリックされたときの処理"""
        name = self.name_field.value if self.name_field else ""
        unit_value = self.unit_dropdown.value if self.unit_dropdown else None
        unit_id = int(unit_value) if unit_value else None
        self.controller.start_session(name or "", unit_id)
