"""
採点サービス
録音クリップと質問文を採点APIに送信し、検証済みの評価結果を返す
"""

import asyncio
import base64
import json
import logging
import re
from typing import Any, Protocol

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI
from pydantic import ValidationError as PydanticValidationError

from speaking_coach.config import Settings
from speaking_coach.curriculum import POSITIVE_STICKERS
from speaking_coach.errors import (
    MalformedResponseError,
    ServiceError,
    TransportError,
    ValidationError,
)
from speaking_coach.models.schemas import Assessment, AudioClip
from speaking_coach.services.audio_service import CLIP_MIME_TYPE

logger = logging.getLogger(__name__)

# 採点APIに渡す指示文
EXAMINER_INSTRUCTIONS: str = """
You are a friendly, encouraging English examiner for young children (GrapeSEED style).

The child was asked: "{question}"

Context: The student is a Vietnamese child learning English.

Please listen to the audio and evaluate:
1. Pronunciation & Intonation (Is it clear? Is the stress natural?)
2. Grammar (Are basic structures correct?)
3. Relevance (Did they answer the question asked?)

IMPORTANT INSTRUCTION FOR VIETNAMESE NAMES:
- The students will likely use Vietnamese names (e.g., Lan, Minh, Tuan, Huong, Vy, Dung, Bao, etc.) especially when answering "What is your mom's/dad's name?".
- Please recognize these as valid proper nouns.
- Do NOT mark them as incorrect English words or pronunciation errors.
- Example: "My mom's name is Lan" is a perfect sentence. "My dad's name is Dung" is correct.

If the audio is silent or unintelligible, give low scores and ask them to try again nicely.

Respond with a single JSON object and nothing else:
{{
    "pronunciationScore": 1-5,  // clarity and intonation
    "grammarScore": 1-5,  // basic grammar suitable for children
    "relevanceScore": 1-5,  // did the answer address the question
    "transcription": "what the student actually said",
    "feedback": "a short, friendly, encouraging sentence for a child",
    "sticker": "a single reward emoji, for example one of {stickers}"
}}
"""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

# スネークケースのキーもキャメルケースに揃える
_FIELD_ALIASES: dict[str, str] = {
    "pronunciation_score": "pronunciationScore",
    "grammar_score": "grammarScore",
    "relevance_score": "relevanceScore",
}


class AssessmentClient(Protocol):
    """コントローラーが依存する採点機能のインターフェース"""

    async def assess(self, clip: AudioClip, prompt_text: str) -> Assessment: ...

    async def aclose(self) -> None: ...


def parse_assessment(payload: str | dict[str, Any]) -> Assessment:
    """
    採点APIのレスポンスを検証して評価結果に変換

    Args:
        payload: JSON文字列、またはデコード済みの辞書

    Returns:
        評価結果

    Raises:
        MalformedResponseError: 必須項目の欠落、型の不一致、スコアが1〜5の範囲外の場合
    """
    if isinstance(payload, str):
        text = payload.strip()
        fenced = _CODE_FENCE.match(text)
        if fenced:
            text = fenced.group(1)
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"JSON解析エラー: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedResponseError("レスポンスがJSONオブジェクトではありません")

    data = {_FIELD_ALIASES.get(key, key): value for key, value in payload.items()}
    try:
        return Assessment.model_validate(data)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedResponseError(f"評価結果の形式が不正です: {fields}") from e


def validate_request(clip: AudioClip, prompt_text: str) -> None:
    """
    送信前に入力を検証

    Raises:
        ValidationError: クリップが空、形式が異なる、または質問文が空の場合
    """
    if clip.is_empty:
        raise ValidationError("録音データが空です")
    if clip.mime_type != CLIP_MIME_TYPE:
        raise ValidationError(f"未対応の音声形式です: {clip.mime_type}")
    if not prompt_text or not prompt_text.strip():
        raise ValidationError("質問文が空です")


class OpenAIAssessmentClient:
    """OpenAIの音声対応モデルで採点するクライアント"""

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-audio-preview",
        timeout: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            api_key: OpenAI APIキー（Noneの場合、採点時にServiceErrorになる）
            model: 音声入力に対応したモデル名
            timeout: リクエストのタイムアウト（秒）
            client: テスト用に差し替えるクライアント
        """
        self.model: str = model
        self.timeout: float = timeout
        self.client: AsyncOpenAI | None = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def assess(self, clip: AudioClip, prompt_text: str) -> Assessment:
        """
        音声クリップを採点

        Args:
            clip: 録音クリップ（WAV）
            prompt_text: 子供に出した質問

        Returns:
            検証済みの評価結果

        Raises:
            ValidationError: 入力が不正な場合
            TransportError: 接続失敗・タイムアウト・サーバー側の一時的な障害
            ServiceError: APIキー未設定・リクエスト拒否など
            MalformedResponseError: レスポンスが評価結果の形式を満たさない場合
        """
        validate_request(clip, prompt_text)
        if self.client is None:
            raise ServiceError("OPENAI_API_KEYまたはOPENAI_API環境変数が設定されていません")

        audio_b64: str = base64.b64encode(clip.data).decode("ascii")
        instructions: str = EXAMINER_INSTRUCTIONS.format(
            question=prompt_text, stickers=" ".join(POSITIVE_STICKERS)
        )
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    modalities=["text"],
                    temperature=0.4,
                    messages=[
                        {
                            "role": "system",
                            "content": "You are an English speaking examiner for children. Always respond in valid JSON format.",
                        },
                        {
                            "role": "user",
                            "content": [
                                {"type": "text", "text": instructions},
                                {"type": "input_audio", "input_audio": {"data": audio_b64, "format": "wav"}},
                            ],
                        },
                    ],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransportError(f"採点APIがタイムアウトしました ({self.timeout}秒)") from e
        except APIConnectionError as e:
            # APITimeoutErrorもここに含まれる
            raise TransportError(f"採点APIに接続できません: {e}") from e
        except APIStatusError as e:
            if e.status_code == 429 or e.status_code >= 500:
                raise TransportError(f"採点APIの一時的なエラー (HTTP {e.status_code})") from e
            raise ServiceError(f"採点APIがエラーを返しました (HTTP {e.status_code}): {e.message}") from e

        if not response.choices:
            raise MalformedResponseError("レスポンスが空")
        content: str | None = response.choices[0].message.content
        if not content:
            raise MalformedResponseError("レスポンスが空")
        return parse_assessment(content)

    async def aclose(self) -> None:
        """APIクライアントを閉じる"""
        if self.client is not None:
            await self.client.close()


class HttpAssessmentClient:
    """採点プロキシ（/api/gemini 形式）にHTTPで問い合わせるクライアント"""

    def __init__(
        self,
        endpoint_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        初期化処理

        Args:
            endpoint_url: 採点エンドポイントのURL
            timeout: リクエストのタイムアウト（秒）
            client: テスト用に差し替えるHTTPクライアント
        """
        self.endpoint_url: str = endpoint_url
        self.timeout: float = timeout
        self._client: httpx.AsyncClient = client or httpx.AsyncClient(timeout=timeout)

    async def assess(self, clip: AudioClip, prompt_text: str) -> Assessment:
        """
        音声クリップを採点

        Raises:
            ValidationError / TransportError / ServiceError / MalformedResponseError
        """
        validate_request(clip, prompt_text)
        body: dict[str, Any] = {
            "audioBase64": base64.b64encode(clip.data).decode("ascii"),
            "question": prompt_text,
            "mimeType": clip.mime_type,
        }
        try:
            response = await self._client.post(self.endpoint_url, json=body, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise TransportError(f"採点APIがタイムアウトしました ({self.timeout}秒)") from e
        except httpx.HTTPError as e:
            raise TransportError(f"採点APIに接続できません: {e}") from e

        try:
            payload: Any = response.json()
        except ValueError as e:
            if response.is_success:
                raise MalformedResponseError("レスポンスがJSONではありません") from e
            raise TransportError(f"採点APIのHTTPエラー (HTTP {response.status_code})") from e

        if not response.is_success:
            if isinstance(payload, dict) and payload.get("error"):
                raise ServiceError(f"採点APIがエラーを返しました: {payload['error']}")
            raise TransportError(f"採点APIのHTTPエラー (HTTP {response.status_code})")
        if isinstance(payload, dict) and payload.get("error"):
            raise ServiceError(f"採点APIがエラーを返しました: {payload['error']}")
        return parse_assessment(payload)

    async def aclose(self) -> None:
        """HTTPクライアントを閉じる"""
        await self._client.aclose()


def create_assessment_client(settings: Settings) -> AssessmentClient:
    """
    設定に応じて採点クライアントを作成

    Args:
        settings: 実行時設定

    Returns:
        採点クライアント
    """
    if settings.assessment_backend == "http":
        if not settings.assessment_endpoint_url:
            raise ValueError("ASSESSMENT_ENDPOINT_URL環境変数が設定されていません")
        logger.info("HTTP採点クライアントを使用します: %s", settings.assessment_endpoint_url)
        return HttpAssessmentClient(settings.assessment_endpoint_url, timeout=settings.assessment_timeout)

    if not settings.openai_api_key:
        logger.warning("OpenAI APIキーが設定されていません。採点はエラーになります。")
    return OpenAIAssessmentClient(
        settings.openai_api_key,
        model=settings.assessment_model,
        timeout=settings.assessment_timeout,
    )
