"""
レポート出力サービス
セッション履歴から平均スコアと詳細をExcelファイルに書き出す
"""
import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Sequence

from openpyxl import Workbook

from speaking_coach.errors import NoDataError
from speaking_coach.models.schemas import HistoryEntry

logger = logging.getLogger(__name__)

SUMMARY_SHEET_TITLE: str = "Chart Data"
DETAIL_SHEET_TITLE: str = "Detailed Results"

SUMMARY_HEADERS: tuple[str, ...] = ("Criteria", "Average Score")
DETAIL_HEADERS: tuple[str, ...] = (
    "Question",
    "Pronunciation",
    "Grammar",
    "Relevance",
    "Student Said",
    "Feedback",
    "Time",
)
SCOPE_HEADERS: tuple[str, ...] = ("Learner", "Unit")

# 列幅（文字数）
SUMMARY_WIDTHS: tuple[int, ...] = (25, 15)
DETAIL_WIDTHS: tuple[int, ...] = (30, 15, 15, 15, 40, 40, 20)
SCOPE_WIDTHS: tuple[int, ...] = (20, 8)

TIMESTAMP_FORMAT: str = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class ReportDocument:
    """2シート構成のレポート内容"""

    summary_rows: tuple[tuple[Any, ...], ...]
    detail_headers: tuple[str, ...]
    detail_rows: tuple[tuple[Any, ...], ...]

    def averages(self) -> dict[str, float]:
        """評価観点ごとの平均スコア"""
        return {criteria: score for criteria, score in self.summary_rows}


def _mean(values: Sequence[int]) -> float:
    return round(sum(values) / len(values), 2)


def build_report(history: Sequence[HistoryEntry]) -> ReportDocument:
    """
    履歴からレポート内容を作成（毎回全件から計算し直す）

    Args:
        history: セッション履歴（完了順）

    Returns:
        レポート内容

    Raises:
        NoDataError: 履歴が空の場合
    """
    if not history:
        raise NoDataError("No results to export yet!")

    summary_rows = (
        ("Pronunciation", _mean([e.pronunciation_score for e in history])),
        ("Grammar", _mean([e.grammar_score for e in history])),
        ("Relevance (Right Answer)", _mean([e.relevance_score for e in history])),
    )

    # 複数の学習者・ユニットにまたがる場合だけ列を追加
    scoped = len({(e.learner_name, e.unit_id) for e in history}) > 1
    headers = DETAIL_HEADERS + SCOPE_HEADERS if scoped else DETAIL_HEADERS

    detail_rows: list[tuple[Any, ...]] = []
    for entry in history:
        row: tuple[Any, ...] = (
            entry.prompt_text,
            entry.pronunciation_score,
            entry.grammar_score,
            entry.relevance_score,
            entry.transcription,
            entry.feedback,
            entry.timestamp.strftime(TIMESTAMP_FORMAT),
        )
        if scoped:
            row += (entry.learner_name, entry.unit_id)
        detail_rows.append(row)

    return ReportDocument(
        summary_rows=summary_rows,
        detail_headers=headers,
        detail_rows=tuple(detail_rows),
    )


def sanitize_name(name: str) -> str:
    """ファイル名用に英数字以外を取り除く"""
    return re.sub(r"[^A-Za-z0-9]", "", name)


def report_filename(learner_name: str, unit_id: int, today: date) -> str:
    """
    レポートのファイル名を作成

    Args:
        learner_name: 学習者名
        unit_id: ユニットID
        today: 出力日

    Returns:
        例: LittleTOEs_Report_Minh_Unit1_2026-10-19.xlsx
    """
    safe_name = sanitize_name(learner_name) or "Student"
    return f"LittleTOEs_Report_{safe_name}_Unit{unit_id}_{today.isoformat()}.xlsx"


def _set_widths(sheet: Any, widths: Sequence[int]) -> None:
    for index, width in enumerate(widths):
        column = sheet.cell(row=1, column=index + 1).column_letter
        sheet.column_dimensions[column].width = width


def build_workbook(document: ReportDocument) -> Workbook:
    """レポート内容からワークブックを作成（平均スコアのシートを先頭にする）"""
    workbook = Workbook()
    summary = workbook.active
    summary.title = SUMMARY_SHEET_TITLE
    summary.append(SUMMARY_HEADERS)
    for row in document.summary_rows:
        summary.append(row)
    _set_widths(summary, SUMMARY_WIDTHS)

    detail = workbook.create_sheet(DETAIL_SHEET_TITLE)
    detail.append(document.detail_headers)
    for row in document.detail_rows:
        detail.append(row)
    widths = DETAIL_WIDTHS + SCOPE_WIDTHS if len(document.detail_headers) > len(DETAIL_HEADERS) else DETAIL_WIDTHS
    _set_widths(detail, widths)
    return workbook


class ReportExporter:
    """セッション履歴をExcelレポートとして出力するサービスクラス"""

    def __init__(self, output_dir: Path) -> None:
        """
        初期化処理

        Args:
            output_dir: レポートの出力先ディレクトリ
        """
        self.output_dir: Path = output_dir

    def export(
        self,
        history: Sequence[HistoryEntry],
        learner_name: str,
        unit_id: int,
        today: date | None = None,
    ) -> Path:
        """
        レポートを書き出す

        Args:
            history: セッション履歴のスナップショット
            learner_name: ファイル名に使う学習者名
            unit_id: ファイル名に使うユニットID
            today: 出力日（省略時は今日）

        Returns:
            書き出したファイルのパス

        Raises:
            NoDataError: 履歴が空の場合（ファイルは作成しない）
        """
        document = build_report(history)
        workbook = build_workbook(document)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        file_path: Path = self.output_dir / report_filename(learner_name, unit_id, today or date.today())
        workbook.save(file_path)
        logger.info("レポートを保存しました: %s (%d件)", file_path, len(document.detail_rows))
        return file_path
