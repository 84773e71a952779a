"""Evaluation runner: task, then scorers, for every case.

Each case gets its own trace::

    eval                 (root span, one per case)
    ├── task             (task execution)
    └── score            (all scorers of the case, purpose=scorer)

Failures are isolated per case. A failed task skips scoring for that
case. A failed scorer does not stop the remaining scorers; the case is
recorded as failed once, after the successful scores have been kept.
"""

from __future__ import annotations

import json
import logging
import numbers
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import StatusCode

from trace_evals import worker_pool
from trace_evals.evals.case import Case, Cases
from trace_evals.evals.result import CaseResult, EvaluationResult
from trace_evals.evals.scorer import Scorer, normalize_scorers
from trace_evals.span_cache import SpanCache
from trace_evals.span_store import SpanStore
from trace_evals.trace_context import TraceContext

logger = logging.getLogger(__name__)

_TRACER_NAME = "trace-evals"

MAX_PARALLELISM = worker_pool.MAX_PARALLELISM

# Larger attribute values are truncated.
_MAX_ATTRIBUTE_LENGTH = 10_000


class _RunState:
    """Cross-worker mutable state of one run()."""

    def __init__(self, span_cache: SpanCache) -> None:
        self.span_cache = span_cache
        self.scores: Dict[str, List[float]] = {}
        self.errors: List[str] = []
        self._lock = threading.Lock()

    def add_score(self, name: str, value: float) -> None:
        with self._lock:
            self.scores.setdefault(name, []).append(value)

    def add_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)


class EvaluationRunner:
    """Runs cases through a task and scorers, recording OTEL spans.

    Args:
        task: Called with each case's input; its return value is scored.
        scorers: Scorer objects or plain callables taking 3, 4, or 5
            positional parameters. Adapted once, here.
        experiment_id: Id of the experiment spans are logged to.
        experiment_name: Experiment name, reported on the result.
        project_id: Project id, reported on the result.
        project_name: Project name, reported on the result.
        parent: Value of the ``eval.parent`` attribute on every span.
            Defaults to ``experiment_id:<experiment_id>``.
        span_store: Where scorers' TraceContext reads spans from. Scorers
            receive ``trace=None`` when not set.
        span_cache: Cache shared by all TraceContexts of a run. A fresh one
            is created for every run() when not given.
        tracer_provider: Defaults to the global provider.
        on_progress: Called with a CaseResult after every case.

    Raises:
        TypeError: If task is not callable.
        UnsupportedScorerArity: If a scorer has an unsupported signature.

    Example:
        runner = EvaluationRunner(
            task=lambda input: input.upper(),
            scorers=[Scorer("exact", lambda i, e, o: 1.0 if o == e else 0.0)],
            experiment_name="shout",
        )
        result = runner.run([{"input": "a", "expected": "A"}], parallelism=4)
    """

    def __init__(
        self,
        task: Callable[[Any], Any],
        scorers: Sequence[Any],
        *,
        experiment_id: Optional[str] = None,
        experiment_name: Optional[str] = None,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
        parent: Optional[str] = None,
        span_store: Optional[SpanStore] = None,
        span_cache: Optional[SpanCache] = None,
        tracer_provider: Optional[trace.TracerProvider] = None,
        on_progress: Optional[Callable[[CaseResult], Any]] = None,
    ) -> None:
        if not callable(task):
            raise TypeError("task must be callable")

        self._task = task
        self._scorers: List[Scorer] = normalize_scorers(scorers)
        self.experiment_id = experiment_id
        self.experiment_name = experiment_name
        self.project_id = project_id
        self.project_name = project_name
        self._parent = parent or (f"experiment_id:{experiment_id}" if experiment_id else None)
        self._span_store = span_store
        self._span_cache = span_cache
        self._tracer_provider = tracer_provider or trace.get_tracer_provider()
        self._tracer = self._tracer_provider.get_tracer(_TRACER_NAME)
        self._on_progress = on_progress

    @property
    def scorers(self) -> List[Scorer]:
        return list(self._scorers)

    def run(self, cases: Iterable[Any], parallelism: int = 1) -> EvaluationResult:
        """Run every case and return the aggregated result.

        Args:
            cases: Case objects or dicts with at least an ``input`` key.
            parallelism: Worker threads, 1 to MAX_PARALLELISM. With 1, cases
                are streamed through in input order on the calling thread.

        Raises:
            InvalidParallelism: If parallelism is out of range.
            InvalidCaseError: If a case cannot be normalized.
        """
        worker_pool.validate_parallelism(parallelism)
        normalized = Cases(cases)

        start = time.perf_counter()
        state = _RunState(self._span_cache if self._span_cache is not None else SpanCache())

        if parallelism == 1:
            for case in normalized:
                self._run_case(case, state)
        else:
            worker_pool.each(normalized, lambda case: self._run_case(case, state), parallelism=parallelism)

        duration = time.perf_counter() - start
        logger.debug(
            "Evaluation run finished in %.3fs with %d error(s)", duration, len(state.errors)
        )

        return EvaluationResult(
            errors=state.errors,
            scores=state.scores,
            duration=duration,
            experiment_id=self.experiment_id,
            experiment_name=self.experiment_name,
            project_id=self.project_id,
            project_name=self.project_name,
        )

    def _run_case(self, case: Case, state: _RunState) -> None:
        result = CaseResult(input=case.input, expected=case.expected)

        # A fresh context makes every case the root of its own trace.
        with self._tracer.start_as_current_span(
            "eval",
            context=Context(),
            record_exception=False,
            set_status_on_exception=False,
        ) as eval_span:
            self._set_parent(eval_span)
            if case.tags:
                eval_span.set_attribute("eval.tags", list(case.tags))

            try:
                output = self._run_task(case)
            except Exception as exc:
                eval_span.set_status(StatusCode.ERROR, str(exc))
                result.error = f"Task failed for input '{case.input}': {exc}"
                state.add_error(result.error)
                output = None
            else:
                result.output = output
                trace_context = self._create_trace_context(eval_span, state) if self._scorers else None
                try:
                    self._run_scorers(case, output, trace_context, state, result)
                except Exception as exc:
                    eval_span.set_status(StatusCode.ERROR, str(exc))
                    result.error = f"Scorers failed for input '{case.input}': {exc}"
                    state.add_error(result.error)

            _set_json_attribute(eval_span, "eval.span_attributes", {"type": "eval"})
            _set_json_attribute(eval_span, "eval.input_json", case.input)
            _set_json_attribute(eval_span, "eval.output_json", output)
            if case.expected is not None:
                _set_json_attribute(eval_span, "eval.expected_json", case.expected)
            if case.origin is not None:
                origin = case.origin if isinstance(case.origin, str) else _to_json(case.origin)
                eval_span.set_attribute("eval.origin", origin)

        self._notify(result)

    def _run_task(self, case: Case) -> Any:
        with self._tracer.start_as_current_span(
            "task",
            record_exception=False,
            set_status_on_exception=False,
        ) as task_span:
            self._set_parent(task_span)
            _set_json_attribute(task_span, "eval.span_attributes", {"type": "task"})
            _set_json_attribute(task_span, "eval.input_json", case.input)
            try:
                output = self._task(case.input)
            except Exception as exc:
                task_span.record_exception(exc)
                task_span.set_status(StatusCode.ERROR, str(exc))
                raise
            _set_json_attribute(task_span, "eval.output_json", output)
            return output

    def _run_scorers(
        self,
        case: Case,
        output: Any,
        trace_context: Optional[TraceContext],
        state: _RunState,
        result: CaseResult,
    ) -> None:
        with self._tracer.start_as_current_span(
            "score",
            record_exception=False,
            set_status_on_exception=False,
        ) as score_span:
            self._set_parent(score_span)
            _set_json_attribute(
                score_span, "eval.span_attributes", {"type": "score", "purpose": "scorer"}
            )

            first_error: Optional[Exception] = None
            for scorer in self._scorers:
                try:
                    value = scorer(case.input, case.expected, output, case.metadata or {}, trace_context)
                except Exception as exc:
                    logger.warning("Scorer %s failed on input %r: %s", scorer.name, case.input, exc)
                    score_span.record_exception(exc, attributes={"exception.type": "ScorerError"})
                    score_span.set_status(StatusCode.ERROR, str(exc))
                    if first_error is None:
                        first_error = exc
                    continue

                result.scores[scorer.name] = value
                if _is_numeric(value):
                    state.add_score(scorer.name, float(value))

            # Written before re-raising so the span shows which scorers succeeded.
            _set_json_attribute(score_span, "eval.scores", result.scores)

            if first_error is not None:
                raise first_error

    def _create_trace_context(self, eval_span: trace.Span, state: _RunState) -> Optional[TraceContext]:
        if self._span_store is None:
            return None
        root_span_id = format(eval_span.get_span_context().trace_id, "032x")
        return TraceContext(
            root_span_id,
            self._span_store,
            object_type="experiment",
            object_id=self.experiment_id,
            span_cache=state.span_cache,
            ensure_spans_flushed=self._force_flush,
        )

    def _force_flush(self) -> None:
        force_flush = getattr(self._tracer_provider, "force_flush", None)
        if force_flush is not None:
            force_flush()

    def _set_parent(self, span: trace.Span) -> None:
        if self._parent:
            span.set_attribute("eval.parent", self._parent)

    def _notify(self, result: CaseResult) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(result)
        except Exception as exc:
            logger.warning("on_progress callback failed: %s", exc)


def _is_numeric(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _to_json(value: Any) -> str:
    serialized = json.dumps(value, default=str)
    if len(serialized) > _MAX_ATTRIBUTE_LENGTH:
        serialized = serialized[:_MAX_ATTRIBUTE_LENGTH] + "...(truncated)"
    return serialized


def _set_json_attribute(span: trace.Span, key: str, value: Any) -> None:
    try:
        span.set_attribute(key, _to_json(value))
    except (TypeError, ValueError) as exc:
        logger.debug("Could not serialize %s for span attribute: %s", key, exc)
