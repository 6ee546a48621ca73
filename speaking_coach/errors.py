"""
アプリケーション共通の例外クラス
"""


class SpeakingCoachError(Exception):
    """アプリケーション例外の基底クラス"""


class DeviceUnavailableError(SpeakingCoachError):
    """マイクが見つからない、またはアクセスが拒否された"""


class InvalidStateError(SpeakingCoachError):
    """現在の状態では実行できない操作が呼ばれた"""


class ValidationError(SpeakingCoachError):
    """入力値が不正（空の名前、問題のないユニットなど）"""


class NoDataError(SpeakingCoachError):
    """エクスポートする履歴がない"""


class AssessmentError(SpeakingCoachError):
    """採点サービス呼び出しの失敗（種類はサブクラスで区別する）"""

    kind: str = "assessment"


class TransportError(AssessmentError):
    """ネットワーク・HTTPレベルの失敗、またはタイムアウト"""

    kind = "transport"


class ServiceError(AssessmentError):
    """採点サービスが明示的にエラーを返した（APIキー未設定など）"""

    kind = "service"


class MalformedResponseError(AssessmentError):
    """レスポンスが評価結果の形式を満たしていない"""

    kind = "malformed_response"
