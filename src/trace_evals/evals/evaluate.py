"""One-call evaluation entry point.

Runs a task function across a dataset, applies scorers to each output,
and records OTEL spans for every case through the configured tracer
provider.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from opentelemetry import trace

from trace_evals.evals.result import CaseResult, EvaluationResult
from trace_evals.evals.runner import EvaluationRunner
from trace_evals.span_cache import SpanCache
from trace_evals.span_store import SpanStore

logger = logging.getLogger(__name__)


def evaluate(
    name: str,
    data: Union[Iterable[Any], Callable[[], Iterable[Any]]],
    task: Callable[[Any], Any],
    scorers: Sequence[Any],
    *,
    parallelism: int = 1,
    project_name: Optional[str] = None,
    experiment_id: Optional[str] = None,
    parent: Optional[str] = None,
    span_store: Optional[SpanStore] = None,
    tracer_provider: Optional[trace.TracerProvider] = None,
    on_progress: Optional[Callable[[CaseResult], Any]] = None,
) -> EvaluationResult:
    """Run an evaluation: dataset -> task -> scorers -> OTEL spans.

    Args:
        name: Experiment name for this run.
        data: Cases (dicts with ``input`` and optional ``expected``,
            ``tags``, ``metadata``, ``origin``; or Case objects), or a
            zero-argument callable returning them.
        task: Function that takes an input and returns output.
        scorers: Scorer objects or callables accepting
            ``(input, expected, output[, metadata[, trace]])``.
        parallelism: Number of cases run concurrently (1 to 50).
        project_name: Project the experiment belongs to.
        experiment_id: Id spans are logged under. Needed for scorers to
            query their trace from a span store.
        parent: Override for the ``eval.parent`` span attribute.
        span_store: Enables ``trace`` access for 5-argument scorers.
        tracer_provider: Defaults to the global provider.
        on_progress: Called with a CaseResult after every case.

    Returns:
        EvaluationResult with errors, raw scores, and duration.

    Example:
        from trace_evals import evaluate

        result = evaluate(
            name="qa-eval",
            data=[
                {"input": "Capital of France?", "expected": "Paris"},
                {"input": "2+2?", "expected": "4"},
            ],
            task=lambda input: my_llm_call(input),
            scorers=[exact_match],
            parallelism=4,
        )
        print(result)
    """
    if not name:
        raise ValueError("name is required")
    if not callable(task):
        raise TypeError("task must be callable")
    if isinstance(scorers, (str, bytes)) or not isinstance(scorers, Sequence):
        raise TypeError("scorers must be a list of scorers")

    cases = data() if callable(data) else data

    span_cache = SpanCache()
    runner = EvaluationRunner(
        task,
        scorers,
        experiment_id=experiment_id,
        experiment_name=name,
        project_name=project_name,
        parent=parent,
        span_store=span_store,
        span_cache=span_cache,
        tracer_provider=tracer_provider,
        on_progress=on_progress,
    )

    try:
        result = runner.run(cases, parallelism=parallelism)
    finally:
        span_cache.clear()

    logger.info(
        "Eval %s finished: %d error(s), %.3fs, averages=%s",
        name,
        len(result.errors),
        result.duration,
        {k: round(v, 3) for k, v in result.averages.items()},
    )
    return result
