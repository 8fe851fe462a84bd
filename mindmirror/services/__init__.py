"""Services layer - ビジネスロジック"""

from mindmirror.services.reflection_lifecycle import ReflectionLifecycle
from mindmirror.services.synthetic_fallback import build_fallback_analysis
from mindmirror.services.usage_recorder import UsageRecorder
from mindmirror.services.weekly_cache import WeeklyCacheManager

__all__ = [
    "ReflectionLifecycle",
    "WeeklyCacheManager",
    "UsageRecorder",
    "build_fallback_analysis",
]
