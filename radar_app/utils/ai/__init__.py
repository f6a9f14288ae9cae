"""Entry advice for radar candidates."""

from .advisor import AdvisorInput, AdvisorVerdict, RadarAdvisor, TradingPlan, build_trading_plan, confirm_trend
from .llm_adapter import LLMAdapter, LLMAnalysis

__all__ = [
    "AdvisorInput",
    "AdvisorVerdict",
    "LLMAdapter",
    "LLMAnalysis",
    "RadarAdvisor",
    "TradingPlan",
    "build_trading_plan",
    "confirm_trend",
]
