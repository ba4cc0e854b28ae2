"""
Trace context for correlating logs across a single evaluation run.

Provides:
- Unique run IDs (6-char hex) for each batch evaluation
- Context propagation via contextvars (thread and async safe)
- Easy access to current run ID from any module

Usage:
    # In the engine (start of a batch)
    with new_run():
        engine.evaluate_all(candles, series, index)

    # In any module
    from src.utils.trace_context import get_run_id
    logger.info(f"[{get_run_id()}] Evaluating...")
"""

from __future__ import annotations

import secrets
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)

# Runs started in this session
_run_counter: int = 0


def generate_run_id() -> str:
    """Generate a new 6-character hex run ID."""
    return secrets.token_hex(3)


def get_run_id() -> str:
    """
    Get the current run ID.

    Returns:
        Current run ID, or "------" if no run is active.
    """
    run_id = _run_id.get()
    return run_id if run_id else "------"


def set_run_id(run_id: str) -> None:
    """Set the current run ID."""
    _run_id.set(run_id)


def clear_run_id() -> None:
    """Clear the current run ID."""
    _run_id.set(None)


@contextmanager
def new_run(run_id: Optional[str] = None) -> Generator[str, None, None]:
    """
    Context manager scoping a new evaluation run.

    Sets a fresh run ID for the duration of the block and restores the
    previous one on exit, so nested runs keep their own IDs.

    Args:
        run_id: Explicit ID to use instead of a generated one.

    Yields:
        The active run ID.
    """
    global _run_counter
    _run_counter += 1

    token = _run_id.set(run_id or generate_run_id())
    try:
        yield _run_id.get()
    finally:
        _run_id.reset(token)


def get_run_counter() -> int:
    """Total number of runs created in this session."""
    return _run_counter


def reset_run_counter() -> None:
    """Reset the run counter (for testing)."""
    global _run_counter
    _run_counter = 0
