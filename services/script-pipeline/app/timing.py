"""Transparent timing for pipeline stages.

Provides a ``@timed_node`` decorator and a ``collect_metrics()`` context
manager.  Stage modules stay free of bookkeeping; every decorated stage
records its duration (and whether it raised) into the active collection.

Usage in a stage module::

    from ..timing import timed_node

    @timed_node("heuristic_parser", "programmatic")
    def extract_lines(text: str) -> list[DialogueLine]:
        ...

Usage in the pipeline::

    with collect_metrics() as metrics:
        extraction = await extractor.extract(data, mime_type)
        result = reconciler.reconcile(extraction.lines, extraction.text)
    report = build_report(metrics)
"""

from __future__ import annotations

import contextvars
import functools
import inspect
import logging
import time

from .models import NodeMetrics

log = logging.getLogger(__name__)

_current_metrics: contextvars.ContextVar[list[NodeMetrics] | None] = (
    contextvars.ContextVar("_current_metrics", default=None)
)


class collect_metrics:
    """Context manager that activates metric collection for ``@timed_node``.

    Yields a ``list[NodeMetrics]`` that decorated functions append to.
    Collections are per-context, so concurrent pipeline runs for different
    projects never see each other's metrics.
    """

    def __enter__(self) -> list[NodeMetrics]:
        self._metrics: list[NodeMetrics] = []
        self._token = _current_metrics.set(self._metrics)
        return self._metrics

    def __exit__(self, *exc) -> None:
        _current_metrics.reset(self._token)


def timed_node(name: str, node_type: str):
    """Decorator that records the duration of a pipeline stage.

    Works with both sync and async functions.  A stage that raises is still
    recorded, with ``ok=False``.  Outside ``collect_metrics`` the function
    runs without recording.
    """

    def decorator(fn):
        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def wrapper(*args, **kwargs):
                metrics = _current_metrics.get(None)
                t0 = time.monotonic_ns()
                ok = False
                try:
                    result = await fn(*args, **kwargs)
                    ok = True
                    return result
                finally:
                    _record(metrics, name, node_type, t0, ok)

        else:

            @functools.wraps(fn)
            def wrapper(*args, **kwargs):
                metrics = _current_metrics.get(None)
                t0 = time.monotonic_ns()
                ok = False
                try:
                    result = fn(*args, **kwargs)
                    ok = True
                    return result
                finally:
                    _record(metrics, name, node_type, t0, ok)

        return wrapper

    return decorator


def build_report(metrics: list[NodeMetrics]) -> dict:
    """Summarise collected stage metrics."""
    total_ms = sum(m.duration_ms for m in metrics)
    prog_ms = sum(m.duration_ms for m in metrics if m.node_type == "programmatic")
    ext_ms = sum(m.duration_ms for m in metrics if m.node_type == "external")

    return {
        "total_duration_ms": total_ms,
        "programmatic_duration_ms": prog_ms,
        "external_duration_ms": ext_ms,
        "stages": [
            {
                "stage": m.node_name,
                "type": m.node_type,
                "duration_ms": m.duration_ms,
                "ok": m.ok,
            }
            for m in metrics
        ],
    }


def _record(
    metrics: list[NodeMetrics] | None,
    name: str,
    node_type: str,
    t0: int,
    ok: bool,
) -> None:
    duration_ms = (time.monotonic_ns() - t0) // 1_000_000
    log.info("%s: %d ms%s", name, duration_ms, "" if ok else " (failed)")
    if metrics is not None:
        metrics.append(NodeMetrics(name, node_type, duration_ms, ok))
