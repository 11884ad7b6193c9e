"""Strategy package exports."""

from .classifier import SwapClassifier
from .safety import SafetyGate, roll_window
from .sizing import TradeSizer

__all__ = [
    "SafetyGate",
    "SwapClassifier",
    "TradeSizer",
    "roll_window",
]
