"""
Indicator evaluators.

Provides:
- SignalEvaluator: Base class every indicator family implements
- EvaluationContext: Per-call inputs and signal builders
- EvaluatorRegistry: Auto-discovery and lookup of evaluators
"""

from .base import EvaluationContext, SignalEvaluator
from .registry import EvaluatorRegistry, get_evaluator_registry

__all__ = [
    "EvaluationContext",
    "SignalEvaluator",
    "EvaluatorRegistry",
    "get_evaluator_registry",
]
