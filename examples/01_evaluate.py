"""Evaluation with trace-evals.

Shows how to run evaluate() with the three scorer shapes:
- (input, expected, output)
- (input, expected, output, metadata)
- a class with a ``name`` attribute

evaluate() records a trace per case through the tracer provider that
register() installs.
"""

from trace_evals import Scorer, evaluate, register, scorer

# --- Setup ---
register(endpoint="http://localhost:4318/v1/traces")


# --- Plain function scorer ---
def exact_match(input, expected, output):
    return 1.0 if output.strip().lower() == (expected or "").strip().lower() else 0.0


# --- Scorer that reads case metadata ---
@scorer("weighted_contains")
def weighted_contains(input, expected, output, metadata):
    found = (expected or "").lower() in output.lower()
    return metadata.get("weight", 1.0) if found else 0.0


# --- Class-based scorer ---
class AnswerLength:
    name = "answer_length"

    def __call__(self, input, expected, output):
        return min(len(output) / 20, 1.0)


dataset = [
    {"input": "What is the capital of France?", "expected": "Paris", "tags": ["geo"]},
    {"input": "What is 2 + 2?", "expected": "4", "metadata": {"weight": 0.5}},
    {"input": "Who wrote Hamlet?", "expected": "Shakespeare"},
]


# --- Task function (your LLM call goes here) ---
def my_llm(input: str) -> str:
    """Replace with your actual LLM call."""
    answers = {
        "What is the capital of France?": "Paris",
        "What is 2 + 2?": "4",
        "Who wrote Hamlet?": "William Shakespeare",
    }
    return answers.get(input, "I don't know")


if __name__ == "__main__":
    result = evaluate(
        name="qa-eval",
        data=dataset,
        task=my_llm,
        scorers=[exact_match, weighted_contains, Scorer("length", AnswerLength())],
        parallelism=3,
        project_name="examples",
    )
    print(result)
    # Experiment: qa-eval
    # Project: examples
    # Duration: 0.0012s
    # Errors: 0
    #   exact_match: 0.667
    #   weighted_contains: 0.833
    #   length: 0.450

    # Span tree for each case:
    #
    #   eval        (root of its own trace)
    #   ├── task
    #   └── score   (purpose=scorer)
