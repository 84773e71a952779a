"""Remote span store contract and its HTTP implementation.

A span store answers one question: which spans belong to a given root
span, and is the answer complete yet? Trace backends ingest spans
asynchronously, so a query issued right after a case finishes may report
``freshness_state="partial"``. :class:`~trace_evals.trace_context.TraceContext`
retries until the store catches up.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import requests

from trace_evals.errors import SpanStoreError

logger = logging.getLogger(__name__)

FRESHNESS_COMPLETE = "complete"
FRESHNESS_PARTIAL = "partial"

SCORER_PURPOSE = "scorer"

_FRESHNESS_HEADER = "x-bt-freshness-state"
_SPAN_FIELDS = (
    "root_span_id",
    "span_id",
    "input",
    "output",
    "metadata",
    "span_parents",
    "span_attributes",
)


@dataclass(frozen=True)
class SpanQuery:
    """Spans of one root execution, minus those with an excluded purpose.

    Attributes:
        root_span_id: Root span (trace) id, as lowercase hex.
        object_type: Kind of object the spans were logged to.
        object_id: Id of that object, e.g. the experiment id.
        exclude_purpose: Spans whose ``span_attributes.purpose`` equals this
            value are left out. Scorer spans are excluded by default so a
            scorer never reads its sibling scorers' output.
        span_types: Optional ``span_attributes.type`` allow-list.
    """

    root_span_id: str
    object_type: str = "experiment"
    object_id: Optional[str] = None
    exclude_purpose: Optional[str] = SCORER_PURPOSE
    span_types: Optional[Sequence[str]] = None


@dataclass
class SpanQueryResult:
    spans: List[Dict[str, Any]] = field(default_factory=list)
    freshness_state: str = FRESHNESS_COMPLETE

    @property
    def complete(self) -> bool:
        return self.freshness_state == FRESHNESS_COMPLETE


@runtime_checkable
class SpanStore(Protocol):
    """Anything that can answer a :class:`SpanQuery`.

    Implementations may raise on transport failures; callers that must
    degrade gracefully catch and log.
    """

    def query(self, query: SpanQuery) -> SpanQueryResult: ...


def build_filter(query: SpanQuery) -> Dict[str, Any]:
    """Translate a SpanQuery into the store's filter AST."""
    operands: List[Dict[str, Any]] = [
        {"path": ["root_span_id"], "op": "=", "value": query.root_span_id},
    ]

    if query.exclude_purpose is not None:
        operands.append(
            {
                "op": "or",
                "operands": [
                    {"path": ["span_attributes", "purpose"], "op": "is null"},
                    {
                        "path": ["span_attributes", "purpose"],
                        "op": "!=",
                        "value": query.exclude_purpose,
                    },
                ],
            }
        )

    if query.span_types:
        operands.append(
            {
                "path": ["span_attributes", "type"],
                "op": "in",
                "value": list(query.span_types),
            }
        )

    return {"op": "and", "operands": operands}


def normalize_span(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the span fields scorers are given access to."""
    return {key: raw.get(key) for key in _SPAN_FIELDS}


class HTTPSpanStore:
    """Query spans over HTTP, one JSON line per span in the response.

    Args:
        api_url: Base URL of the trace API. Defaults to the
            TRACE_EVALS_API_URL env var.
        api_key: Bearer token. Defaults to the TRACE_EVALS_API_KEY env var.
        session: Optional ``requests.Session`` to reuse connections.
        timeout: Per-request timeout in seconds.
        query_path: Path of the query endpoint below ``api_url``.

    Example:
        store = HTTPSpanStore(api_url="https://api.example.com", api_key="...")
        result = store.query(SpanQuery(root_span_id="4bf92f...", object_id="exp-1"))
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        query_path: str = "/btql",
    ) -> None:
        api_url = api_url or os.environ.get("TRACE_EVALS_API_URL")
        if not api_url:
            raise ValueError(
                "No span store URL configured. Pass api_url or set TRACE_EVALS_API_URL."
            )
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key or os.environ.get("TRACE_EVALS_API_KEY")
        self._session = session or requests.Session()
        self._timeout = timeout
        self._query_path = query_path

    @property
    def url(self) -> str:
        return f"{self._api_url}{self._query_path}"

    def query(self, query: SpanQuery) -> SpanQueryResult:
        payload = {
            "query": build_filter(query),
            "object_type": query.object_type,
            "object_id": query.object_id,
            "fmt": "jsonl",
        }
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        start = time.perf_counter()
        try:
            response = self._session.post(
                self.url,
                data=json.dumps(payload, default=str),
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise SpanStoreError(f"Span query to {self.url} failed: {exc}") from exc

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            "POST %s -> %s (%.2fms, %d bytes)",
            self.url,
            response.status_code,
            elapsed_ms,
            len(response.content or b""),
        )

        if not response.ok:
            raise SpanStoreError(
                f"HTTP {response.status_code} for POST {self.url}: {response.text}"
            )

        spans = [
            normalize_span(json.loads(line))
            for line in response.text.splitlines()
            if line.strip()
        ]
        freshness = response.headers.get(_FRESHNESS_HEADER) or FRESHNESS_COMPLETE
        return SpanQueryResult(spans=spans, freshness_state=freshness)
