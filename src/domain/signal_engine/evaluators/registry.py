"""
Evaluator Registry - Auto-discovery and management of evaluators.

Provides:
- Auto-discovery of evaluator classes from the family modules
- Registration and lookup by name
- Filtering by category
"""

from __future__ import annotations

import importlib
import inspect
from typing import Dict, List, Optional

from src.utils.logging_setup import get_logger

from ..exceptions import UnknownEvaluatorError
from ..models import SignalCategory
from .base import SignalEvaluator

logger = get_logger(__name__)

FAMILY_MODULES = ["trend", "volatility", "volume", "structure", "momentum", "pattern"]


class EvaluatorRegistry:
    """
    Registry for evaluator discovery and management.

    Keeps registration order, which is also the order SignalEngine reports
    results in.
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._evaluators: Dict[str, SignalEvaluator] = {}

    def clear(self) -> None:
        """Clear all registered evaluators."""
        self._evaluators.clear()

    def discover(self) -> int:
        """
        Auto-discover evaluators from the family modules.

        Returns:
            Number of evaluators discovered
        """
        discovered = 0
        for family in FAMILY_MODULES:
            module_name = f"{__package__}.{family}"
            try:
                module = importlib.import_module(module_name)
            except ImportError as e:
                logger.warning(f"Failed to import {module_name}: {e}")
                continue

            # Definition order inside each module, not alphabetical
            classes = sorted(
                (obj for obj in vars(module).values() if self._is_evaluator_class(obj, module.__name__)),
                key=lambda cls: inspect.getsourcelines(cls)[1],
            )
            for cls in classes:
                self.register(cls())
                discovered += 1

        logger.info(f"Discovered {discovered} evaluators across {len(FAMILY_MODULES)} families")
        return discovered

    @staticmethod
    def _is_evaluator_class(obj: object, module_name: str) -> bool:
        """Concrete SignalEvaluator subclasses defined in `module_name`."""
        if not isinstance(obj, type):
            return False
        return (
            issubclass(obj, SignalEvaluator)
            and obj.__module__ == module_name
            and not inspect.isabstract(obj)
            and bool(obj.name)
        )

    def register(self, evaluator: SignalEvaluator) -> None:
        """
        Register an evaluator instance, replacing any with the same name.

        Args:
            evaluator: Evaluator to register
        """
        name = evaluator.name
        if name in self._evaluators:
            logger.warning(f"Evaluator {name} already registered, overwriting")

        self._evaluators[name] = evaluator
        logger.debug(f"Registered evaluator: {name} ({evaluator.category.value})")

    def get(self, name: str) -> SignalEvaluator:
        """
        Get evaluator by name.

        Raises:
            UnknownEvaluatorError: If no evaluator is registered under `name`
        """
        evaluator = self._evaluators.get(name)
        if evaluator is None:
            raise UnknownEvaluatorError(name, self._evaluators)
        return evaluator

    def get_all(self) -> List[SignalEvaluator]:
        return list(self._evaluators.values())

    def get_by_category(self, category: SignalCategory) -> List[SignalEvaluator]:
        return [e for e in self._evaluators.values() if e.category == category]

    def get_names(self) -> List[str]:
        return list(self._evaluators.keys())

    def __len__(self) -> int:
        """Return number of registered evaluators."""
        return len(self._evaluators)

    def __contains__(self, name: str) -> bool:
        """Check if evaluator is registered."""
        return name in self._evaluators


# Global registry instance
_global_registry: Optional[EvaluatorRegistry] = None


def get_evaluator_registry() -> EvaluatorRegistry:
    """
    Get the global evaluator registry.

    Creates and populates the registry on first call.
    """
    global _global_registry
    if _global_registry is None:
        _global_registry = EvaluatorRegistry()
        _global_registry.discover()
    return _global_registry
