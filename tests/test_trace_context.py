"""Tests for trace_evals.trace_context.

Covers cache use, scorer-span exclusion, type filtering, the freshness
retry loop, failure handling, the one-time flush hook, and thread
reconstruction.
"""

import threading

import pytest

from fakes import FakeSpanStore, complete, make_span, partial
from trace_evals.errors import SpanStoreError
from trace_evals.span_cache import SpanCache
from trace_evals.trace_context import TraceContext


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture()
def sleeps():
    return SleepRecorder()


def make_context(store, sleeps, **kwargs):
    return TraceContext("root-1", store, object_id="exp-1", sleep=sleeps, **kwargs)


class TestGetSpans:
    def test_queries_store_with_scorer_exclusion(self, sleeps):
        store = FakeSpanStore([complete(make_span("s1", "task"))])
        ctx = make_context(store, sleeps)

        spans = ctx.get_spans()

        assert [s["span_id"] for s in spans] == ["s1"]
        query = store.queries[0]
        assert query.root_span_id == "root-1"
        assert query.object_type == "experiment"
        assert query.object_id == "exp-1"
        assert query.exclude_purpose == "scorer"

    def test_second_call_served_from_cache(self, sleeps):
        store = FakeSpanStore([complete(make_span("s1", "task"))])
        ctx = make_context(store, sleeps)

        ctx.get_spans()
        ctx.get_spans()

        assert len(store.queries) == 1

    def test_shared_cache_avoids_query(self, sleeps):
        cache = SpanCache()
        cache.write("root-1", "s1", make_span("s1", "llm"))
        store = FakeSpanStore()
        ctx = make_context(store, sleeps, span_cache=cache)

        assert [s["span_id"] for s in ctx.get_spans()] == ["s1"]
        assert store.queries == []

    def test_results_written_to_shared_cache(self, sleeps):
        cache = SpanCache()
        store = FakeSpanStore([complete(make_span("s1", "task"), make_span("s2", "llm"))])
        make_context(store, sleeps, span_cache=cache).get_spans()

        assert sorted(s["span_id"] for s in cache.get("root-1")) == ["s1", "s2"]

    def test_filters_scorer_spans_locally(self, sleeps):
        store = FakeSpanStore(
            [complete(make_span("s1", "task"), make_span("s2", "score", purpose="scorer"))]
        )
        spans = make_context(store, sleeps).get_spans()
        assert [s["span_id"] for s in spans] == ["s1"]

    def test_filter_by_single_type(self, sleeps):
        store = FakeSpanStore(
            [complete(make_span("s1", "task"), make_span("s2", "llm"), make_span("s3", "tool"))]
        )
        spans = make_context(store, sleeps).get_spans(span_type="llm")
        assert [s["span_id"] for s in spans] == ["s2"]

    def test_filter_by_type_list(self, sleeps):
        store = FakeSpanStore(
            [complete(make_span("s1", "task"), make_span("s2", "llm"), make_span("s3", "tool"))]
        )
        spans = make_context(store, sleeps).get_spans(span_type=["llm", "tool"])
        assert sorted(s["span_id"] for s in spans) == ["s2", "s3"]

    def test_type_filter_applies_to_cached_spans(self, sleeps):
        store = FakeSpanStore([complete(make_span("s1", "task"), make_span("s2", "llm"))])
        ctx = make_context(store, sleeps)
        ctx.get_spans()
        assert [s["span_id"] for s in ctx.get_spans(span_type="task")] == ["s1"]
        assert len(store.queries) == 1

    def test_configuration(self, sleeps):
        ctx = make_context(FakeSpanStore(), sleeps)
        assert ctx.configuration == {
            "object_type": "experiment",
            "object_id": "exp-1",
            "root_span_id": "root-1",
        }


class TestRetries:
    def test_partial_results_exhaust_retries(self, sleeps):
        """Always-partial store: initial query plus 8 retries, then give up."""
        last = partial(make_span("s1", "task"))
        store = FakeSpanStore([last])
        ctx = make_context(store, sleeps)

        spans = ctx.get_spans()

        assert len(store.queries) == 9
        assert [s["span_id"] for s in spans] == ["s1"]
        assert sleeps.calls == [0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 16.0, 32.0]

    def test_stops_when_complete(self, sleeps):
        store = FakeSpanStore(
            [partial(), partial(make_span("s1", "task")), complete(make_span("s1", "task"), make_span("s2", "llm"))]
        )
        spans = make_context(store, sleeps).get_spans()

        assert len(store.queries) == 3
        assert sleeps.calls == [0.25, 0.5]
        assert len(spans) == 2

    def test_custom_retry_settings(self, sleeps):
        store = FakeSpanStore([partial()])
        make_context(store, sleeps, max_retries=2, initial_backoff=0.1).get_spans()
        assert len(store.queries) == 3
        assert sleeps.calls == pytest.approx([0.1, 0.2])


class TestFailures:
    def test_store_error_returns_empty(self, sleeps, caplog):
        store = FakeSpanStore([SpanStoreError("HTTP 500")])
        ctx = make_context(store, sleeps)

        with caplog.at_level("WARNING", logger="trace_evals.trace_context"):
            assert ctx.get_spans() == []

        assert "HTTP 500" in caplog.text
        assert sleeps.calls == []

    def test_unexpected_error_returns_empty(self, sleeps):
        store = FakeSpanStore([RuntimeError("connection reset")])
        assert make_context(store, sleeps).get_thread() == []


class TestFlushHook:
    def test_called_once_before_first_query(self, sleeps):
        calls = []
        store = FakeSpanStore([complete()])

        def flush():
            calls.append(len(store.queries))

        ctx = make_context(store, sleeps, ensure_spans_flushed=flush)
        ctx.get_spans()
        ctx.get_spans()  # empty result is not cached, so this queries again

        assert calls == [0]
        assert len(store.queries) == 2

    def test_not_called_on_cache_hit(self, sleeps):
        cache = SpanCache()
        cache.write("root-1", "s1", make_span("s1", "task"))
        calls = []
        ctx = make_context(FakeSpanStore(), sleeps, span_cache=cache, ensure_spans_flushed=lambda: calls.append(1))
        ctx.get_spans()
        assert calls == []

    def test_concurrent_scorers_flush_once(self, sleeps):
        calls = []
        lock = threading.Lock()

        def flush():
            with lock:
                calls.append(1)

        ctx = make_context(FakeSpanStore([complete()]), sleeps, ensure_spans_flushed=flush)
        threads = [threading.Thread(target=ctx.get_spans) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert calls == [1]


class TestGetThread:
    def test_deduplicates_inputs_and_keeps_outputs(self, sleeps):
        system = {"role": "system", "content": "be brief"}
        user1 = {"role": "user", "content": "hi"}
        reply1 = {"role": "assistant", "content": "hello"}
        user2 = {"role": "user", "content": "bye"}
        reply2 = {"role": "assistant", "content": "goodbye"}

        store = FakeSpanStore(
            [
                complete(
                    make_span(
                        "s1",
                        "llm",
                        input={"messages": [system, user1]},
                        output={"choices": [{"message": reply1}]},
                    ),
                    make_span(
                        "s2",
                        "llm",
                        input={"messages": [system, user1, reply1, user2]},
                        output={"choices": [{"message": reply2}]},
                    ),
                    make_span("s3", "task", input={"messages": [{"role": "user", "content": "ignored"}]}),
                )
            ]
        )

        thread = make_context(store, sleeps).get_thread()

        # reply1 reappears: only input messages are de-duplicated against
        # earlier inputs, and it was first seen as an output.
        assert thread == [system, user1, reply1, reply1, user2, reply2]

    def test_output_messages_always_appended(self, sleeps):
        reply = {"role": "assistant", "content": "same"}
        store = FakeSpanStore(
            [
                complete(
                    make_span("s1", "llm", output={"choices": [{"message": reply}]}),
                    make_span("s2", "llm", output={"choices": [{"message": reply}]}),
                )
            ]
        )
        assert make_context(store, sleeps).get_thread() == [reply, reply]

    def test_ignores_malformed_payloads(self, sleeps):
        store = FakeSpanStore(
            [complete(make_span("s1", "llm", input="plain text", output={"choices": "nope"}))]
        )
        assert make_context(store, sleeps).get_thread() == []
