"""Gemini Reflection Analyzer Adapter

ReflectionAnalyzer ABCの実装。

vertexai.init() はコンストラクタから分離されており、
呼び出し側（deps等）が事前に初期化した GenerativeModel を渡す。

Gemini の応答は構造化出力が保証されないため、
コードブロック除去 → 最初の `{` から最後の `}` までを切り出し → JSON パース
の順で抽出する。パース失敗は途中切れ（IncompleteResponseError）と
それ以外（MalformedResponseError）に分類する。リトライは行わない。
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING

from vertexai.generative_models import GenerationConfig, GenerativeModel

from mindmirror.domain.errors import IncompleteResponseError, MalformedResponseError
from mindmirror.domain.models import (
    ReflectionAnalysis,
    ReflectionSummary,
    WeeklyAnalysis,
)
from mindmirror.domain.ports import ReflectionAnalyzer

if TYPE_CHECKING:
    from mindmirror.services.usage_recorder import UsageRecorder

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_INTENSITIES = ("low", "medium", "high")


def extract_json(text: str) -> dict:
    """
    LLM の自由形式テキストから JSON オブジェクトを取り出す。

    Args:
        text: Gemini の生レスポンス

    Returns:
        dict: パース済み JSON オブジェクト

    Raises:
        IncompleteResponseError: 応答が途中で切れている場合
        MalformedResponseError: それ以外の理由でパースできない場合
    """
    cleaned = _CODE_FENCE.sub("", text).strip()

    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        cleaned = cleaned[first : last + 1]
    # 開き括弧だけあって閉じ括弧が無い
    unclosed = first != -1 and last < first

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse JSON response: %s", e)
        logger.error("Raw response: %s", text)
        logger.error("Cleaned string: %s", cleaned)
        if unclosed or _looks_truncated(e, cleaned):
            raise IncompleteResponseError(
                "Gemini response was incomplete - try again"
            ) from e
        raise MalformedResponseError(
            "Invalid AI response format - could not parse JSON"
        ) from e

    if not isinstance(parsed, dict):
        raise MalformedResponseError(
            f"Invalid AI response format - expected a JSON object, got {type(parsed).__name__}"
        )
    return parsed


def _looks_truncated(error: json.JSONDecodeError, doc: str) -> bool:
    """デコードエラーが入力末尾で起きた（=途中切れ）かどうか"""
    if error.msg.startswith("Unterminated"):
        return True
    return error.pos >= len(doc.rstrip())


class GeminiReflectionAnalyzer(ReflectionAnalyzer):
    """
    Gemini を使ったリフレクション感情解析の実装。

    初期化済みの GenerativeModel インスタンスを受け取る。
    usage_recorder を渡すと、user_id 付きの呼び出しごとに利用状況を記録する。
    """

    def __init__(
        self,
        model: GenerativeModel,
        usage_recorder: UsageRecorder | None = None,
        temperature: float = 0.3,
        max_output_tokens: int = 2000,
    ) -> None:
        """
        Args:
            model: 初期化済みの GenerativeModel インスタンス。
                   呼び出し側で vertexai.init() を実行してから渡すこと。
            usage_recorder: 利用状況レコーダー（省略時は記録しない）
            temperature: 生成温度
            max_output_tokens: 出力トークン上限（小さすぎると JSON が途中で切れる）
        """
        if model is None:
            raise ValueError("model is required")

        self._model = model
        self._usage_recorder = usage_recorder
        self._generation_config = GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )

        logger.info("GeminiReflectionAnalyzer initialized")

    async def analyze(
        self,
        prompt: str,
        user_id: str | None = None,
        operation: str = "unknown",
        detail: str = "",
    ) -> dict:
        """プロンプトを送信し、応答から JSON オブジェクトを抽出して返す"""
        if user_id and self._usage_recorder is not None:
            # 記録はバックグラウンドで行い、失敗しても解析は続行する
            self._usage_recorder.record_in_background(user_id, operation, detail)

        response = await self._model.generate_content_async(
            prompt,
            generation_config=self._generation_config,
        )

        usage = getattr(response, "usage_metadata", None)
        if usage:
            logger.info(
                "Gemini token usage: operation=%s, input=%d, output=%d, total=%d",
                operation,
                usage.prompt_token_count,
                usage.candidates_token_count,
                usage.total_token_count,
            )

        text = response.text
        logger.debug("Raw Gemini response: %s", text)
        return extract_json(text)

    async def analyze_reflection(
        self, transcript: str, user_id: str | None = None, operation: str = "text-analysis"
    ) -> ReflectionAnalysis:
        """1件のリフレクション（テキスト/音声書き起こし）を解析"""
        detail = (
            "Voice transcript analysis" if "voice" in operation else "Daily text reflection"
        )
        raw = await self.analyze(
            self._build_reflection_prompt(transcript), user_id, operation, detail
        )
        analysis = self._convert_reflection(raw, transcript)
        logger.info(
            "Reflection analysis complete: emotion=%s, theme=%s, intensity=%s",
            analysis.primary_emotion,
            analysis.theme,
            analysis.emotional_intensity,
        )
        return analysis

    async def analyze_weekly(
        self, summaries: list[ReflectionSummary], user_id: str | None = None
    ) -> WeeklyAnalysis:
        """直近リフレクションの要約から週次パターンを解析"""
        raw = await self.analyze(
            self._build_weekly_prompt(summaries),
            user_id,
            "weekly-analysis",
            "Weekly pattern analysis",
        )
        return WeeklyAnalysis.from_dict(raw)

    def _build_reflection_prompt(self, transcript: str) -> str:
        """日次リフレクション解析のプロンプトを構築"""
        transcript_json = json.dumps(transcript, ensure_ascii=False)
        return f"""You are an emotional reflection and journaling AI for MindMirror.

Analyze the following transcript and return ONLY a valid JSON object (no markdown, no code blocks, no explanations).

Transcript:
{transcript_json}

IMPORTANT: Return ONLY the JSON object below, nothing else. Do NOT wrap it in markdown code blocks.

{{
  "dailyInsight": "string (2-3 reflective sentences)",
  "primaryEmotion": "string",
  "secondaryEmotion": "string",
  "emotionalIntensity": "low | medium | high",
  "theme": "self | relationships | work | growth | health"
}}"""

    def _build_weekly_prompt(self, summaries: list[ReflectionSummary]) -> str:
        """週次パターン解析のプロンプトを構築"""
        summary_str = json.dumps(
            [s.to_dict() for s in summaries], ensure_ascii=False, indent=2
        )
        return f"""You are an emotional pattern analyst for MindMirror.

Analyze the following reflections and respond ONLY with valid JSON:

{summary_str}

Return EXACTLY:
{{
  "dominantEmotions": ["emotion1", "emotion2"],
  "dominantThemes": ["theme1", "theme2"],
  "emotionalPattern": "brief description of patterns noticed",
  "weeklyInsight": "2-3 sentence reflective observation",
  "reflectiveQuestion": "one open-ended question"
}}

Rules:
- Descriptive only
- No advice
- No diagnosis
- Gentle, neutral tone
"""

    def _convert_reflection(self, raw: dict, transcript: str) -> ReflectionAnalysis:
        """
        生のJSON辞書をドメインモデル（ReflectionAnalysis）に変換。

        primaryEmotion が無い応答は completed にできないため不正扱いとする。
        """
        primary = str(raw.get("primaryEmotion") or "").strip()
        if not primary:
            raise MalformedResponseError("AI response is missing primaryEmotion")

        intensity = str(raw.get("emotionalIntensity") or "").strip().lower()
        if intensity not in _INTENSITIES:
            logger.warning("Invalid emotionalIntensity: %r, using medium", intensity)
            intensity = "medium"

        return ReflectionAnalysis(
            primary_emotion=primary,
            secondary_emotion=str(raw.get("secondaryEmotion") or ""),
            theme=str(raw.get("theme") or "self"),
            emotional_intensity=intensity,
            daily_insight=str(raw.get("dailyInsight") or ""),
            transcript=str(raw.get("transcript") or transcript),
        )
