"""
アプリケーション設定
"""
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path


def get_app_data_dir() -> Path:
    """
    アプリケーションのデータディレクトリを取得

    Returns:
        アプリケーションデータディレクトリのパス
    """
    if sys.platform == "win32":
        # Windowsの場合、AppData\Local\SpeakingCoachを使用
        app_data: str | None = os.getenv("LOCALAPPDATA")
        if app_data:
            return Path(app_data) / "SpeakingCoach"
    elif sys.platform == "darwin":
        # macOSの場合、~/Library/Application Support/SpeakingCoachを使用
        return Path.home() / "Library" / "Application Support" / "SpeakingCoach"
    # その他のOSまたはフォールバック
    return Path.home() / ".speaking_coach"


def get_log_file() -> Path:
    """
    ログファイルのパスを取得

    Returns:
        ログファイルのパス
    """
    return get_app_data_dir() / "app.log"


def get_reports_dir() -> Path:
    """
    レポート（Excel）の出力先ディレクトリを取得

    Returns:
        レポート出力ディレクトリのパス
    """
    return get_app_data_dir() / "reports"


# アプリケーションデータディレクトリ
APP_DATA_DIR = get_app_data_dir()

# ログファイル
LOG_FILE = get_log_file()

# レポート出力先
REPORTS_DIR = get_reports_dir()


def _float_env(name: str, default: float) -> float:
    """環境変数を浮動小数として読み込む（不正値はデフォルト）"""
    raw: str | None = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logging.getLogger(__name__).warning(
            "環境変数 %s の値が不正です (%r)。デフォルト値 %s を使用します", name, raw, default
        )
        return default


@dataclass(frozen=True)
class Settings:
    """環境変数から読み込んだ実行時設定"""

    openai_api_key: str | None = None
    assessment_backend: str = "openai"  # openai | http
    assessment_model: str = "gpt-4o-audio-preview"
    assessment_endpoint_url: str | None = None
    assessment_timeout: float = 30.0
    tts_model: str = "tts-1"
    tts_voice: str = "alloy"
    narration_rate: float = 0.9  # 子供向けに少しゆっくり
    narration_delay: float = 0.5
    working_message_interval: float = 1.5
    log_level: str = "INFO"


def load_settings() -> Settings:
    """
    環境変数から設定を読み込む

    .envファイルの読み込みはエントリーポイント（main.py）で済ませておくこと

    Returns:
        Settingsオブジェクト
    """
    # OPENAI_API_KEYまたはOPENAI_APIのどちらかをサポート
    api_key: str | None = os.getenv("OPENAI_API_KEY") or os.getenv("OPENAI_API")
    return Settings(
        openai_api_key=api_key,
        assessment_backend=os.getenv("ASSESSMENT_BACKEND", "openai").lower(),
        assessment_model=os.getenv("OPENAI_ASSESSMENT_MODEL", "gpt-4o-audio-preview"),
        assessment_endpoint_url=os.getenv("ASSESSMENT_ENDPOINT_URL") or None,
        assessment_timeout=_float_env("ASSESSMENT_TIMEOUT_SECONDS", 30.0),
        tts_model=os.getenv("OPENAI_TTS_MODEL", "tts-1"),
        tts_voice=os.getenv("OPENAI_TTS_VOICE", "alloy"),
        narration_rate=_float_env("NARRATION_RATE", 0.9),
        narration_delay=_float_env("NARRATION_DELAY_SECONDS", 0.5),
        working_message_interval=_float_env("WORKING_MESSAGE_INTERVAL_SECONDS", 1.5),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def setup_logging(level: str = "INFO", log_file: Path | None = LOG_FILE) -> None:
    """
    ロギングを設定する（コンソール＋ログファイル）

    Args:
        level: ログレベル名
        log_file: ログファイルのパス（Noneの場合はコンソールのみ）
    """
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s", datefmt="%H:%M:%S"
    )
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    # 二重登録を防ぐ
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as e:
            root.warning("ログファイルを開けませんでした %s: %s", log_file, e)
