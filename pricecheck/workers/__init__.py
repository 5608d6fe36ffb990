"""Background workers."""

from .prediction_checker import PredictionChecker

__all__ = ["PredictionChecker"]
