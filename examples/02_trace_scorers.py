"""Scorers that inspect the trace of the case they score.

A scorer taking five parameters receives a TraceContext. It can read
the spans the task produced (for example LLM calls) from a span store.
The runner flushes the tracer provider before the first query, and the
context retries while the store reports partial results.

Requires TRACE_EVALS_API_URL (and usually TRACE_EVALS_API_KEY) to point
at a store that serves the spans exported by register().
"""

from trace_evals import HTTPSpanStore, evaluate, register

register()


def llm_call_budget(input, expected, output, metadata, trace):
    """1.0 when the task made at most ``max_calls`` LLM calls."""
    calls = trace.get_spans(span_type="llm")
    return 1.0 if len(calls) <= metadata.get("max_calls", 2) else 0.0


def repeated_messages(input, expected, output, metadata, trace):
    """Fraction of distinct messages in the reconstructed conversation."""
    thread = trace.get_thread()
    if not thread:
        return 0.0
    unique = {str(m) for m in thread}
    return len(unique) / len(thread)


def agent(input):
    """Replace with an instrumented agent that emits llm spans."""
    return f"echo: {input}"


if __name__ == "__main__":
    result = evaluate(
        name="agent-trace-eval",
        data=[
            {"input": "Book a table for two", "metadata": {"max_calls": 3}},
            {"input": "Cancel my reservation"},
        ],
        task=agent,
        scorers=[llm_call_budget, repeated_messages],
        experiment_id="my-experiment-id",
        span_store=HTTPSpanStore(),
    )
    print(result)
