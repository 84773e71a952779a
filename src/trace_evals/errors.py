"""Exception types raised by trace-evals.

Configuration errors fail fast, before any case executes. Task and scorer
failures never surface as exceptions from a run; they are collected into
the result's error list instead.
"""

from __future__ import annotations


class EvalError(Exception):
    """Base class for all trace-evals errors."""


class ConfigurationError(EvalError, ValueError):
    """An evaluation was configured with invalid arguments."""


class InvalidParallelism(ConfigurationError):
    """Parallelism is not a positive integer within the allowed bound."""


class InvalidCaseError(ConfigurationError):
    """A test case could not be normalized into a Case."""


class UnsupportedScorerArity(ConfigurationError):
    """A scorer callable does not accept 3, 4, or 5 positional arguments."""

    def __init__(self, scorer_name: str, detail: str) -> None:
        self.scorer_name = scorer_name
        super().__init__(
            f"Scorer '{scorer_name}' must accept 3, 4, or 5 positional "
            f"parameters (input, expected, output[, metadata[, trace]]): {detail}"
        )


class SpanStoreError(EvalError):
    """The remote span store rejected or failed a query."""
