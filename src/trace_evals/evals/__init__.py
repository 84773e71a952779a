"""Evaluation framework: cases, scorers, the runner, and evaluate().

Runs a task over test cases, scores each output with user-supplied
scorers, and records every step as OTEL spans.
"""

from trace_evals.evals.case import Case, Cases, normalize_cases
from trace_evals.evals.evaluate import evaluate
from trace_evals.evals.result import CaseResult, EvaluationResult, ScoreSummary
from trace_evals.evals.runner import MAX_PARALLELISM, EvaluationRunner
from trace_evals.evals.scorer import Scorer, scorer

__all__ = [
    "evaluate",
    "EvaluationRunner",
    "MAX_PARALLELISM",
    "Case",
    "Cases",
    "normalize_cases",
    "Scorer",
    "scorer",
    "CaseResult",
    "EvaluationResult",
    "ScoreSummary",
]
