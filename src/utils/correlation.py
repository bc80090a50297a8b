"""
Correlation IDs for Reconciliation Cycles

Every "counts" or "resync" run gets one correlation id so its log lines,
alerts and worker threads can be tied together.
"""

import uuid
import logging
import contextvars
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)


def generate_correlation_id() -> str:
    """Return a new UUID4 string."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """
    Set the correlation ID for the current context.

    Raises:
        ValueError: If correlation_id is empty or not a string
    """
    if not correlation_id or not isinstance(correlation_id, str):
        raise ValueError("Correlation ID must be a non-empty string")

    _correlation_id.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id.set(None)


def submit_with_correlation(executor, func, *args, **kwargs):
    """
    Submit ``func`` to ``executor`` in a copy of the caller's context.

    Thread-pool workers start with an empty context; the copy is taken here,
    in the submitting thread, once per submit, so the cycle's correlation id
    reaches the worker.

    Returns:
        The Future of the submitted call
    """
    context = contextvars.copy_context()
    return executor.submit(context.run, func, *args, **kwargs)


class CorrelationContext:
    """
    Context manager scoping a correlation ID to one reconciliation cycle.

    Restores the previous ID on exit.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self.previous_id = None

    def __enter__(self) -> str:
        self.previous_id = get_correlation_id()

        if not self.correlation_id:
            self.correlation_id = generate_correlation_id()
        set_correlation_id(self.correlation_id)

        logger.debug(f"Entered correlation context: {self.correlation_id}")
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.previous_id:
            set_correlation_id(self.previous_id)
        else:
            clear_correlation_id()


def correlation_id_filter(record):
    """Logging filter stamping ``record.correlation_id``; never drops records."""
    record.correlation_id = get_correlation_id() or "N/A"
    return True


def setup_correlation_logging(handler: logging.Handler) -> None:
    handler.addFilter(correlation_id_filter)


def attach_correlation_id(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a copy of an alert payload carrying the current correlation ID.

    Payloads without an active correlation ID are returned unchanged.
    """
    correlation_id = get_correlation_id()
    if not correlation_id:
        return dict(payload)
    return {**payload, "correlation_id": correlation_id}
