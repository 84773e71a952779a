"""Bounded-parallelism execution over a finite list of items.

Two strategies decide what happens with each result:

- ``each``: run a side-effecting function for every item, return ``None``.
- ``collect``: return results in the same order as the input items.

``parallelism=1`` runs in the calling thread with no queue or threads.
Larger values start a fixed set of worker threads that pull work from a
shared queue until they receive a sentinel.

Example:
    from trace_evals.worker_pool import collect

    lengths = collect(["a", "bb", "ccc"], str.__len__, parallelism=2)
    # [1, 2, 3]

Thread limits are per call. Each concurrent caller spawns its own workers.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from trace_evals.errors import InvalidParallelism

logger = logging.getLogger(__name__)

DEFAULT_PARALLELISM = 3
MAX_PARALLELISM = 50

_DONE = object()


class Each:
    """Run the function for every item and discard results."""

    def prepare(self, items: Sequence[Any]) -> None:
        self._queue: queue.Queue = queue.Queue()
        for item in items:
            self._queue.put(item)

    def enqueue_sentinel(self, count: int) -> None:
        for _ in range(count):
            self._queue.put(_DONE)

    def next_work(self) -> Any:
        return self._queue.get()

    def handle(self, work: Any, fn: Callable[[Any], Any]) -> None:
        fn(work)

    def result(self) -> None:
        return None

    def empty_result(self) -> None:
        return None

    def sequential_run(self, items: Sequence[Any], fn: Callable[[Any], Any]) -> None:
        for item in items:
            fn(item)
        return None


class Collect:
    """Run the function for every item and keep results in input order."""

    def prepare(self, items: Sequence[Any]) -> None:
        self._results: List[Any] = [None] * len(items)
        self._queue: queue.Queue = queue.Queue()
        for index, item in enumerate(items):
            self._queue.put((index, item))

    def enqueue_sentinel(self, count: int) -> None:
        for _ in range(count):
            self._queue.put(_DONE)

    def next_work(self) -> Any:
        return self._queue.get()

    def handle(self, work: Any, fn: Callable[[Any], Any]) -> None:
        index, item = work
        self._results[index] = fn(item)

    def result(self) -> List[Any]:
        return self._results

    def empty_result(self) -> List[Any]:
        return []

    def sequential_run(self, items: Sequence[Any], fn: Callable[[Any], Any]) -> List[Any]:
        return [fn(item) for item in items]


STRATEGIES = {
    "each": Each,
    "collect": Collect,
}


def each(
    items: Iterable[Any],
    fn: Callable[[Any], Any],
    *,
    parallelism: int = DEFAULT_PARALLELISM,
) -> None:
    """Call ``fn`` for every item, discarding results."""
    return run(items, fn, parallelism=parallelism, strategy="each")


def collect(
    items: Iterable[Any],
    fn: Callable[[Any], Any],
    *,
    parallelism: int = DEFAULT_PARALLELISM,
) -> List[Any]:
    """Call ``fn`` for every item and return results in input order."""
    return run(items, fn, parallelism=parallelism, strategy="collect")


def run(
    items: Iterable[Any],
    fn: Callable[[Any], Any],
    *,
    strategy: Union[str, Any],
    parallelism: int = DEFAULT_PARALLELISM,
) -> Optional[List[Any]]:
    """Execute ``fn`` over ``items`` with the given strategy.

    Prefer :func:`each` or :func:`collect`.

    Args:
        items: Any finite iterable. It is materialized into a list first so
            index-based result placement is well defined.
        fn: Called once per item. An exception raised by ``fn`` is re-raised
            from ``run`` once all workers have stopped; callers that need
            per-item failure isolation must catch inside ``fn``.
        strategy: ``"each"``, ``"collect"``, or a strategy instance.
        parallelism: Number of worker threads, 1 to ``MAX_PARALLELISM``.

    Raises:
        InvalidParallelism: If parallelism is out of range.
        ValueError: If the strategy name is unknown.
    """
    validate_parallelism(parallelism)

    executor = _strategy_instance(strategy)
    all_items = list(items)

    if parallelism == 1:
        return executor.sequential_run(all_items, fn)
    if not all_items:
        return executor.empty_result()

    worker_count = min(parallelism, len(all_items))
    executor.prepare(all_items)
    executor.enqueue_sentinel(worker_count)

    failures: List[Exception] = []
    failed = threading.Event()

    def work_loop() -> None:
        while True:
            work = executor.next_work()
            if work is _DONE:
                return
            # Drain remaining work without running it once any worker failed.
            if failed.is_set():
                continue
            try:
                executor.handle(work, fn)
            except Exception as exc:
                failures.append(exc)
                failed.set()

    threads = [
        threading.Thread(target=work_loop, name=f"trace-evals-worker-{i}", daemon=True)
        for i in range(worker_count)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    if failures:
        logger.debug("Worker pool stopped after %d failure(s)", len(failures))
        raise failures[0]

    return executor.result()


def _strategy_instance(strategy: Union[str, Any]) -> Any:
    if isinstance(strategy, str):
        try:
            return STRATEGIES[strategy]()
        except KeyError:
            valid = ", ".join(STRATEGIES)
            raise ValueError(f"Unknown strategy: {strategy}. Valid: {valid}") from None
    return strategy


def validate_parallelism(parallelism: Any) -> None:
    """Raise InvalidParallelism unless 1 <= parallelism <= MAX_PARALLELISM."""
    if isinstance(parallelism, bool) or not isinstance(parallelism, int) or parallelism < 1:
        raise InvalidParallelism("parallelism must be a positive integer")
    if parallelism > MAX_PARALLELISM:
        raise InvalidParallelism(f"parallelism cannot exceed {MAX_PARALLELISM}")
