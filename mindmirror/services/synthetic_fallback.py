"""合成フォールバック - Gemini を使わない週次解析

週次解析の Gemini 呼び出しがタイムアウト・失敗した場合に使う。
リフレクション要約の単純な集計のみで結果を組み立てるため、外部呼び出しはなく失敗しない。
"""

from __future__ import annotations

from collections.abc import Iterable

from mindmirror.domain.models import ReflectionSummary, WeeklyAnalysis

DEFAULT_EMOTION = "neutral"
DEFAULT_THEME = "self"
TOP_N = 2

FALLBACK_PATTERN = "Your reflections show a consistent pattern of self-awareness."
FALLBACK_QUESTION = (
    "What would you like to explore more deeply in your next reflection?"
)


def top_values(values: Iterable[str], n: int = TOP_N) -> list[str]:
    """出現回数の多い順に上位 n 件。同数は先に出現した方を優先"""
    counts: dict[str, int] = {}
    for v in values:
        counts[v] = counts.get(v, 0) + 1
    # sorted は安定ソートなので、同数の場合は dict の挿入順（初出順）が保たれる
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [value for value, _ in ranked[:n]]


def build_fallback_analysis(summaries: list[ReflectionSummary]) -> WeeklyAnalysis:
    """リフレクション要約から決定的な WeeklyAnalysis を生成"""
    emotions = top_values(s.primary_emotion or DEFAULT_EMOTION for s in summaries)
    themes = top_values(s.theme or DEFAULT_THEME for s in summaries)

    theme_phrase = " and ".join(themes) or "personal growth"

    return WeeklyAnalysis(
        dominant_emotions=emotions or [DEFAULT_EMOTION],
        dominant_themes=themes or [DEFAULT_THEME],
        emotional_pattern=FALLBACK_PATTERN,
        weekly_insight=(
            f"This week you've reflected {len(summaries)} times, "
            f"exploring themes of {theme_phrase}."
        ),
        reflective_question=FALLBACK_QUESTION,
    )
