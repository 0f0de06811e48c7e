"""Per-call correlation context shared by log records and spans.

The context is a plain dict held in a ContextVar: ``trace_id`` and
``span_id`` identify the active span, ``entity_id`` and ``operation`` are
bound by the engine around each write so every log line of that write can
be tied back to the entity.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4


trace_context: ContextVar[dict | None] = ContextVar("trace_context", default=None)


def get_trace_context() -> dict:
    """Return the current context, starting a fresh trace id when none is set."""
    ctx = trace_context.get()
    if ctx is None or not ctx.get("trace_id"):
        ctx = {"trace_id": uuid4().hex, "span_id": uuid4().hex[:16]}
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


def update_span_id(span_id: str) -> None:
    """Point the context at a new span, keeping the trace and bound entity."""
    ctx = trace_context.get() or {}
    trace_context.set({**ctx, "span_id": span_id})


@contextmanager
def bind_entity(entity_id: str, operation: str) -> Iterator[dict]:
    """Attach ``entity_id`` and ``operation`` to the context for one call."""
    token = trace_context.set({**get_trace_context(), "entity_id": entity_id, "operation": operation})
    try:
        yield trace_context.get()
    finally:
        trace_context.reset(token)
