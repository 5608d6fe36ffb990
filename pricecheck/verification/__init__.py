"""Horizon windows, deterministic verification and LLM judgment."""

from .context import HorizonWindow, VerificationContext, VerificationOutcome
from .engine import VerificationEngine, check_hit
from .horizon import calculate_horizon_date_range
from .judgment import AIJudge, Judgment

__all__ = [
    "AIJudge",
    "HorizonWindow",
    "Judgment",
    "VerificationContext",
    "VerificationEngine",
    "VerificationOutcome",
    "calculate_horizon_date_range",
    "check_hit",
]
