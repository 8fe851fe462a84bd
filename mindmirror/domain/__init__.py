"""Domain layer - 外部依存なしのドメインモデルとインターフェース定義"""

from mindmirror.domain.errors import (
    AnalysisError,
    IncompleteResponseError,
    MalformedResponseError,
    MindMirrorError,
    ReflectionConflictError,
    StoreUnavailableError,
    ValidationError,
)
from mindmirror.domain.models import (
    AnalysisStatus,
    InputType,
    Reflection,
    ReflectionAnalysis,
    ReflectionSummary,
    UsageStats,
    WeeklyAnalysis,
    WeeklyCacheEntry,
    WeeklyResult,
)
from mindmirror.domain.ports import (
    ReflectionAnalyzer,
    ReflectionRepository,
    UserRepository,
)

__all__ = [
    # Models
    "AnalysisStatus",
    "InputType",
    "Reflection",
    "ReflectionAnalysis",
    "ReflectionSummary",
    "WeeklyAnalysis",
    "WeeklyCacheEntry",
    "WeeklyResult",
    "UsageStats",
    # Errors
    "MindMirrorError",
    "ValidationError",
    "AnalysisError",
    "IncompleteResponseError",
    "MalformedResponseError",
    "StoreUnavailableError",
    "ReflectionConflictError",
    # Ports
    "ReflectionAnalyzer",
    "ReflectionRepository",
    "UserRepository",
]
