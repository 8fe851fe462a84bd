"""設定管理 - 環境変数の型安全な読み込み"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass(frozen=True)
class AppConfig:
    """アプリケーション設定"""
    project_id: str = ""
    vertex_ai_location: str = "us-central1"
    gemini_model: str = "gemini-2.5-flash"
    gemini_temperature: float = 0.3
    gemini_max_output_tokens: int = 2000
    weekly_analysis_timeout_seconds: float = 15.0
    weekly_cache_ttl_hours: float = 24.0
    environment: str = "production"
    cors_origins: list[str] = field(default_factory=list)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """環境変数から設定を読み込む"""
        load_dotenv()

        try:
            temperature = float(os.getenv("GEMINI_TEMPERATURE", "0.3"))
            max_output_tokens = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "2000"))
            timeout = float(os.getenv("WEEKLY_ANALYSIS_TIMEOUT_SECONDS", "15"))
            ttl_hours = float(os.getenv("WEEKLY_CACHE_TTL_HOURS", "24"))
        except ValueError as e:
            raise ValueError(f"Invalid numeric setting in environment: {e}") from e

        if timeout <= 0:
            raise ValueError("WEEKLY_ANALYSIS_TIMEOUT_SECONDS must be positive")

        # CORS_ORIGINS はカンマ区切り（FRONTEND_URL も後方互換で受け付ける）
        origins = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "").split(",") + [os.getenv("FRONTEND_URL", "")]
            if o.strip()
        ]

        return cls(
            project_id=os.getenv("PROJECT_ID", ""),
            vertex_ai_location=os.getenv("VERTEX_AI_LOCATION", "us-central1"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            gemini_temperature=temperature,
            gemini_max_output_tokens=max_output_tokens,
            weekly_analysis_timeout_seconds=timeout,
            weekly_cache_ttl_hours=ttl_hours,
            environment=os.getenv("ENVIRONMENT", "production"),
            cors_origins=origins,
        )
