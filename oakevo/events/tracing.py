"""Run tracing — one trace per evolution run, one span per generation phase.

A tracer is created per run (or injected by the caller), so concurrent runs
and test harnesses never interleave their spans.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from oakevo.types import new_id


class Span(BaseModel):
    """One phase of one generation."""

    id: str = Field(default_factory=new_id)
    trace_id: str = ""
    name: str = ""  # "oak_cycle", "evaluation", "selection"
    generation: int = 0
    started_at: datetime = Field(default_factory=datetime.utcnow)
    ended_at: datetime | None = None
    duration_ms: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = "ok"  # "ok", "error"
    error: str = ""


class Trace(BaseModel):
    """A full run trace: its phase spans in order."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    spans: list[Span] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def duration_ms(self) -> float:
        if not self.spans:
            return 0.0
        started = min(s.started_at for s in self.spans)
        ended = max(s.ended_at or s.started_at for s in self.spans)
        return (ended - started).total_seconds() * 1000

    @property
    def span_count(self) -> int:
        return len(self.spans)

    @property
    def error_count(self) -> int:
        return sum(1 for s in self.spans if s.status == "error")

    def phase(self, name: str) -> list[Span]:
        return [s for s in self.spans if s.name == name]


class Tracer:
    """Creates and manages run traces."""

    def __init__(self, trace_limit: int = 50) -> None:
        self._traces: dict[str, Trace] = {}
        self._active_spans: dict[str, Span] = {}
        self._trace_limit = trace_limit

    def start_trace(self, name: str = "") -> Trace:
        """Begin a new trace, dropping the oldest ones past the limit."""
        trace = Trace(name=name)
        self._traces[trace.id] = trace
        while len(self._traces) > self._trace_limit:
            oldest = self._traces.pop(next(iter(self._traces)))
            for span in oldest.spans:
                self._active_spans.pop(span.id, None)
        return trace

    def start_span(
        self,
        trace_id: str,
        name: str,
        generation: int = 0,
        metadata: dict | None = None,
    ) -> Span:
        """Start a new span within a trace."""
        span = Span(
            trace_id=trace_id,
            name=name,
            generation=generation,
            metadata=metadata or {},
        )

        trace = self._traces.get(trace_id)
        if trace:
            trace.spans.append(span)

        self._active_spans[span.id] = span
        return span

    def end_span(self, span_id: str, status: str = "ok", error: str = "") -> Span | None:
        """End a span and record its duration."""
        span = self._active_spans.pop(span_id, None)
        if span is None:
            return None

        span.ended_at = datetime.utcnow()
        span.duration_ms = (span.ended_at - span.started_at).total_seconds() * 1000
        span.status = status
        span.error = error
        return span

    def get_trace(self, trace_id: str) -> Trace | None:
        return self._traces.get(trace_id)

    def list_traces(self, limit: int = 20) -> list[Trace]:
        """Get recent traces, newest first."""
        traces = sorted(
            self._traces.values(),
            key=lambda t: t.created_at,
            reverse=True,
        )
        return traces[:limit]

    @property
    def active_span_count(self) -> int:
        return len(self._active_spans)
