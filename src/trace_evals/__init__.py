"""Trace-aware evaluation for LLM applications.

Runs test cases through a task and a set of scorers under bounded
parallelism, records every step as OTEL spans, and lets scorers read back
their own case's trace.
"""

from trace_evals.register import register
from trace_evals.evals import (
    Case,
    EvaluationResult,
    EvaluationRunner,
    Scorer,
    evaluate,
    scorer,
)
from trace_evals.errors import (
    EvalError,
    InvalidCaseError,
    InvalidParallelism,
    SpanStoreError,
    UnsupportedScorerArity,
)
from trace_evals.span_cache import SpanCache
from trace_evals.span_store import HTTPSpanStore, SpanQuery, SpanQueryResult, SpanStore
from trace_evals.trace_context import TraceContext

__all__ = [
    # Setup
    "register",
    # Evals
    "evaluate",
    "EvaluationRunner",
    "EvaluationResult",
    "Case",
    "Scorer",
    "scorer",
    # Trace access
    "TraceContext",
    "SpanCache",
    "SpanStore",
    "SpanQuery",
    "SpanQueryResult",
    "HTTPSpanStore",
    # Errors
    "EvalError",
    "InvalidCaseError",
    "InvalidParallelism",
    "SpanStoreError",
    "UnsupportedScorerArity",
]
