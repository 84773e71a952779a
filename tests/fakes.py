"""Test doubles for span store interactions."""

from typing import List

from trace_evals.span_store import FRESHNESS_COMPLETE, SpanQuery, SpanQueryResult


class FakeSpanStore:
    """Span store that replays scripted responses and records every query.

    ``responses`` is consumed in order; the last one repeats once the list
    is exhausted. An Exception instance in the list is raised instead of
    returned.
    """

    def __init__(self, responses=None):
        self.responses: List = list(responses or [SpanQueryResult()])
        self.queries: List[SpanQuery] = []

    def query(self, query: SpanQuery) -> SpanQueryResult:
        self.queries.append(query)
        index = min(len(self.queries), len(self.responses)) - 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


def make_span(span_id, span_type=None, purpose=None, **fields):
    attributes = {}
    if span_type is not None:
        attributes["type"] = span_type
    if purpose is not None:
        attributes["purpose"] = purpose
    span = {"span_id": span_id, "span_attributes": attributes}
    span.update(fields)
    return span


def complete(*spans):
    return SpanQueryResult(spans=list(spans), freshness_state=FRESHNESS_COMPLETE)


def partial(*spans):
    return SpanQueryResult(spans=list(spans), freshness_state="partial")
