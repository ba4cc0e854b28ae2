"""
Exceptions for the signal evaluation core.

Data-quality problems (missing series, warmup, NaN) never raise; they yield
empty results. Only contract violations by the caller raise, all derived
from SignalEngineError.
"""


class SignalEngineError(Exception):
    """Base class for all signal engine exceptions."""
    pass


class UnknownEvaluatorError(SignalEngineError, KeyError):
    """An evaluator was requested by a name nobody registered."""

    def __init__(self, name: str, available=()):
        self.name = name
        self.available = sorted(available)
        super().__init__(f"No evaluator registered for '{name}' (available: {', '.join(self.available)})")

    def __str__(self) -> str:
        return self.args[0]


class UnknownPatternError(SignalEngineError, KeyError):
    """A pattern detector or reliability table was requested for an undefined pattern name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown pattern '{name}'")

    def __str__(self) -> str:
        return self.args[0]
