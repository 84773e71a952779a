"""Tests for trace_evals.evals.evaluate.

Covers the evaluate() entry point: argument validation, lazy data
sources, result naming, span emission through the configured provider,
and span cache lifetime.
"""

import pytest

from fakes import FakeSpanStore, complete, make_span
from trace_evals.errors import InvalidParallelism
from trace_evals.evals.evaluate import evaluate
from trace_evals.evals.result import EvaluationResult
from trace_evals.evals.scorer import Scorer


class ExactMatch:
    """Class-based scorer; its ``name`` attribute names the score."""

    name = "exact_match"

    def __call__(self, input, expected, output):
        return 1.0 if output == expected else 0.0


def upper(input):
    return input.upper()


DATA = [
    {"input": "a", "expected": "A"},
    {"input": "b", "expected": "B"},
    {"input": "c", "expected": "x"},
]


class TestEvaluate:
    def test_basic_run(self):
        result = evaluate(name="shout", data=DATA, task=upper, scorers=[ExactMatch()], project_name="demo")

        assert isinstance(result, EvaluationResult)
        assert result.experiment_name == "shout"
        assert result.project_name == "demo"
        assert sorted(result.scores["exact_match"]) == [0.0, 1.0, 1.0]
        assert result.averages["exact_match"] == pytest.approx(2 / 3)
        assert result.success

    def test_callable_data(self):
        calls = []

        def load():
            calls.append(1)
            return iter(DATA)

        result = evaluate(name="lazy", data=load, task=upper, scorers=[ExactMatch()], parallelism=2)
        assert calls == [1]
        assert len(result.scores["exact_match"]) == 3

    def test_generator_data(self):
        result = evaluate(name="gen", data=(d for d in DATA), task=upper, scorers=[ExactMatch()])
        assert len(result.scores["exact_match"]) == 3

    def test_emits_spans(self, exporter):
        evaluate(name="spans", data=DATA[:1], task=upper, scorers=[ExactMatch()], experiment_id="exp-9")

        names = sorted(s.name for s in exporter.get_finished_spans())
        assert names == ["eval", "score", "task"]
        assert all(
            s.attributes["eval.parent"] == "experiment_id:exp-9" for s in exporter.get_finished_spans()
        )

    def test_errors_collected(self):
        def flaky(input):
            if input == "b":
                raise RuntimeError("boom")
            return input.upper()

        result = evaluate(name="flaky", data=DATA, task=flaky, scorers=[ExactMatch()])
        assert result.errors == ["Task failed for input 'b': boom"]
        assert result.failed

    def test_progress_callback(self):
        seen = []
        evaluate(name="p", data=DATA, task=upper, scorers=[], on_progress=lambda r: seen.append(r.input))
        assert sorted(seen) == ["a", "b", "c"]

    def test_trace_scorers_query_store(self):
        store = FakeSpanStore([complete(make_span("s1", "llm"))])

        def llm_spans(input, expected, output, metadata, trace):
            return float(len(trace.get_spans(span_type="llm")))

        result = evaluate(
            name="traced",
            data=DATA[:2],
            task=upper,
            scorers=[Scorer("llm_spans", llm_spans)],
            experiment_id="exp-1",
            span_store=store,
        )
        assert result.scores == {"llm_spans": [1.0, 1.0]}
        assert len(store.queries) == 2

    def test_logs_summary(self, caplog):
        with caplog.at_level("INFO", logger="trace_evals.evals.evaluate"):
            evaluate(name="logged", data=DATA, task=upper, scorers=[ExactMatch()])
        assert "Eval logged finished" in caplog.text


class TestValidation:
    def test_name_required(self):
        with pytest.raises(ValueError, match="name"):
            evaluate(name="", data=DATA, task=upper, scorers=[])

    def test_task_must_be_callable(self):
        with pytest.raises(TypeError, match="task"):
            evaluate(name="x", data=DATA, task=None, scorers=[])

    @pytest.mark.parametrize("scorers", [ExactMatch(), "exact", None])
    def test_scorers_must_be_a_list(self, scorers):
        with pytest.raises(TypeError, match="scorers"):
            evaluate(name="x", data=DATA, task=upper, scorers=scorers)

    def test_parallelism_checked_before_running(self):
        calls = []
        with pytest.raises(InvalidParallelism):
            evaluate(name="x", data=DATA, task=lambda i: calls.append(i), scorers=[], parallelism=51)
        assert calls == []
