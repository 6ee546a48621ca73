"""
セッション履歴サービス
採点結果をセッション中だけメモリに保持する（追記のみ）
"""
from speaking_coach.models.schemas import HistoryEntry


class HistoryStore:
    """追記専用の履歴ストア"""

    def __init__(self) -> None:
        self._entries: list[HistoryEntry] = []

    def append(self, entry: HistoryEntry) -> None:
        """履歴の末尾にエントリを追加"""
        self._entries.append(entry)

    def clear(self) -> None:
        """セッション終了時に履歴をすべて破棄"""
        self._entries = []

    def snapshot(self) -> tuple[HistoryEntry, ...]:
        """完了順の履歴のコピーを取得"""
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
