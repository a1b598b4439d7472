"""
Model-backed agents used by the orchestrator (intent classification).
"""
from .intent import IntentClassifier

__all__ = ["IntentClassifier"]
