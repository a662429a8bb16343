"""
Tracers injected into migration services.

Services never call OpenTelemetry directly. They hold a ``Tracer`` and
open spans through it, so tests can swap in ``MockTracer`` and operators
can switch tracing off with ``enable_tracing=False``.

Example:
    >>> from workspace_migration.observability import create_tracer
    >>>
    >>> class IntegrityScanner:
    ...     def __init__(self, tracer=None, enable_tracing=True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...
    ...     async def scan(self) -> None:
    ...         with self._tracer.span("workspace_migration.scanner.scan"):
    ...             ...
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from opentelemetry import trace

if TYPE_CHECKING:
    from opentelemetry.trace import Span

SpanAttributes = dict[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a span around a block of migration work."""

    def span(
        self, name: str, attributes: SpanAttributes | None = None
    ) -> AbstractContextManager[Span | None]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Tracer used when tracing is switched off. Spans yield None."""

    @contextlib.contextmanager
    def span(self, name: str, attributes: SpanAttributes | None = None) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Opens real spans on the globally configured tracer provider.

    Without an SDK provider installed, the OpenTelemetry API returns
    non-recording spans, so this is safe to use unconditionally.
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self, name: str, attributes: SpanAttributes | None = None
    ) -> AbstractContextManager[Span]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockTracer:
    """
    Records ``(name, attributes)`` for every span opened, for assertions.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("workspace_migration.engine.migrate", {"dry_run": False}):
        ...     pass
        >>> tracer.span_names
        ['workspace_migration.engine.migrate']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, SpanAttributes | None]] = []

    @contextlib.contextmanager
    def span(self, name: str, attributes: SpanAttributes | None = None) -> Iterator[None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """Return an ``OpenTelemetryTracer`` when enabled, otherwise a ``NullTracer``."""
    return OpenTelemetryTracer(name) if enable_tracing else NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
]
