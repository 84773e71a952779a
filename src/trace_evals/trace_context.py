"""Read access to a case's own trace, for scorers.

Spans are exported asynchronously, so right after a task finishes the
span store may not have all of them yet. ``TraceContext`` flushes the
tracer once, then queries the store with exponential backoff until the
store reports a complete answer or the retries run out. Results are cached
so later calls from other scorers of the same case are served locally.

Example:
    def tool_calls_used(input, expected, output, metadata, trace):
        if trace is None:
            return None
        return float(len(trace.get_spans(span_type="tool")))
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from trace_evals.span_cache import SpanCache
from trace_evals.span_store import (
    FRESHNESS_COMPLETE,
    SCORER_PURPOSE,
    SpanQuery,
    SpanQueryResult,
    SpanStore,
)

logger = logging.getLogger(__name__)


class TraceContext:
    """Spans belonging to one root execution, resolved from a span store.

    Args:
        root_span_id: Trace id of the case's root span, lowercase hex.
        store: The span store to query.
        object_type: Kind of object the spans were logged to.
        object_id: Id of that object (e.g. the experiment id).
        span_cache: Cache shared with other contexts of the same run. A
            private cache is created when omitted.
        ensure_spans_flushed: Called once, before the first query, to push
            buffered spans out of the tracer.
        max_retries: Re-queries allowed while the store reports partial data.
        initial_backoff: First sleep in seconds; doubles on every retry.
        sleep: Sleep function, injectable for tests.
    """

    MAX_RETRIES = 8
    INITIAL_BACKOFF = 0.25

    def __init__(
        self,
        root_span_id: str,
        store: SpanStore,
        *,
        object_type: str = "experiment",
        object_id: Optional[str] = None,
        span_cache: Optional[SpanCache] = None,
        ensure_spans_flushed: Optional[Callable[[], Any]] = None,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self._root_span_id = root_span_id
        self._store = store
        self._object_type = object_type
        self._object_id = object_id
        self._cache = span_cache if span_cache is not None else SpanCache()
        self._ensure_spans_flushed = ensure_spans_flushed
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff
        self._sleep = sleep
        self._flush_lock = threading.Lock()
        self._flushed = False

    @property
    def root_span_id(self) -> str:
        return self._root_span_id

    @property
    def configuration(self) -> Dict[str, Optional[str]]:
        return {
            "object_type": self._object_type,
            "object_id": self._object_id,
            "root_span_id": self._root_span_id,
        }

    def get_spans(
        self, span_type: Union[str, Sequence[str], None] = None
    ) -> List[Dict[str, Any]]:
        """Return this trace's spans, excluding scorer spans.

        Args:
            span_type: A span type (e.g. ``"llm"``) or list of types to keep.
                All non-scorer spans are returned when omitted.
        """
        types = [span_type] if isinstance(span_type, str) else span_type

        spans = self._cache.get(self._root_span_id)
        if spans is None:
            spans = self._fetch_and_cache()

        spans = [s for s in spans if _span_attr(s, "purpose") != SCORER_PURPOSE]
        if types:
            spans = [s for s in spans if _span_attr(s, "type") in types]
        return spans

    def get_thread(self) -> List[Any]:
        """Reconstruct the conversation from this trace's LLM spans.

        Multi-turn calls resend earlier turns, so input messages are kept
        only the first time their content is seen. Output messages are
        always appended.
        """
        messages: List[Any] = []
        seen = set()

        for span in self.get_spans(span_type="llm"):
            span_input = span.get("input")
            if isinstance(span_input, dict) and isinstance(span_input.get("messages"), list):
                for message in span_input["messages"]:
                    digest = _content_hash(message)
                    if digest not in seen:
                        seen.add(digest)
                        messages.append(message)

            span_output = span.get("output")
            if isinstance(span_output, dict) and isinstance(span_output.get("choices"), list):
                for choice in span_output["choices"]:
                    if isinstance(choice, dict) and choice.get("message"):
                        messages.append(choice["message"])

        return messages

    def _ensure_spans_ready(self) -> None:
        with self._flush_lock:
            if self._flushed:
                return
            if self._ensure_spans_flushed is not None:
                self._ensure_spans_flushed()
            self._flushed = True

    def _fetch_and_cache(self) -> List[Dict[str, Any]]:
        self._ensure_spans_ready()

        # Type filtering happens locally so the cache holds the whole trace.
        query = SpanQuery(
            root_span_id=self._root_span_id,
            object_type=self._object_type,
            object_id=self._object_id,
            exclude_purpose=SCORER_PURPOSE,
        )

        backoff = self._initial_backoff
        retries = 0
        while True:
            result = self._query(query)
            if result.complete or retries >= self._max_retries:
                break
            logger.debug(
                "Spans for root %s not yet complete (%s); retrying in %.2fs",
                self._root_span_id,
                result.freshness_state,
                backoff,
            )
            self._sleep(backoff)
            backoff *= 2
            retries += 1

        for span in result.spans:
            span_id = span.get("span_id")
            if span_id is not None:
                self._cache.write(self._root_span_id, span_id, span)
        return list(result.spans)

    def _query(self, query: SpanQuery) -> SpanQueryResult:
        try:
            return self._store.query(query)
        except Exception as exc:
            logger.warning("Span query for root %s failed: %s", self._root_span_id, exc)
            return SpanQueryResult(spans=[], freshness_state=FRESHNESS_COMPLETE)


def _span_attr(span: Dict[str, Any], key: str) -> Any:
    attributes = span.get("span_attributes")
    if isinstance(attributes, dict):
        return attributes.get(key)
    return None


def _content_hash(message: Any) -> str:
    canonical = json.dumps(message, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
