"""
設定のテスト
"""
import logging
import os
from unittest.mock import patch

from speaking_coach.config import Settings, load_settings, setup_logging


class TestLoadSettings:
    """load_settingsのテストクラス"""

    @patch.dict(os.environ, {}, clear=True)
    def test_defaults(self):
        """環境変数がなければデフォルト値"""
        settings = load_settings()

        assert settings == Settings()
        assert settings.openai_api_key is None
        assert settings.narration_rate == 0.9
        assert settings.narration_delay == 0.5
        assert settings.working_message_interval == 1.5
        assert settings.assessment_timeout == 30.0

    @patch.dict(os.environ, {"OPENAI_API": "legacy_key"}, clear=True)
    def test_legacy_key_name(self):
        """OPENAI_APIもサポート"""
        assert load_settings().openai_api_key == "legacy_key"

    @patch.dict(
        os.environ,
        {
            "OPENAI_API_KEY": "test_key",
            "ASSESSMENT_BACKEND": "HTTP",
            "ASSESSMENT_ENDPOINT_URL": "https://example.test/api/gemini",
            "ASSESSMENT_TIMEOUT_SECONDS": "12.5",
            "NARRATION_RATE": "1.1",
            "LOG_LEVEL": "debug",
        },
        clear=True,
    )
    def test_overrides(self):
        """環境変数で上書きできる"""
        settings = load_settings()

        assert settings.assessment_backend == "http"
        assert settings.assessment_endpoint_url == "https://example.test/api/gemini"
        assert settings.assessment_timeout == 12.5
        assert settings.narration_rate == 1.1
        assert settings.log_level == "DEBUG"

    @patch.dict(os.environ, {"ASSESSMENT_TIMEOUT_SECONDS": "soon"}, clear=True)
    def test_invalid_number_falls_back(self):
        """数値でなければデフォルト値"""
        assert load_settings().assessment_timeout == 30.0


class TestSetupLogging:
    """setup_loggingのテストクラス"""

    def test_file_handler(self, tmp_path):
        """ログファイルに書き出される"""
        log_file = tmp_path / "logs" / "app.log"
        root = logging.getLogger()
        saved = list(root.handlers)
        try:
            setup_logging("INFO", log_file)
            logging.getLogger("speaking_coach.test").info("hello")
            for handler in root.handlers:
                handler.flush()

            assert log_file.exists()
            assert "hello" in log_file.read_text(encoding="utf-8")
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in saved:
                root.addHandler(handler)
