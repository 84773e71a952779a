"""Scorers and the adapter that gives them one call signature.

A scoring function may declare any of these positional signatures::

    def exact(input, expected, output): ...
    def thresholded(input, expected, output, metadata): ...
    def uses_trace(input, expected, output, metadata, trace): ...

:class:`Scorer` inspects the callable once, at construction, and builds a
wrapper that always takes all five arguments. The runner never inspects a
scorer again.

A scorer returns a number, a ``{"name": ..., "score": ...}`` dict, or a
list of such dicts. Only plain numbers are aggregated into run summaries;
everything a scorer returns is recorded on the score span.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from trace_evals.errors import UnsupportedScorerArity

logger = logging.getLogger(__name__)

ScoreResult = Union[float, int, Dict[str, Any], List[Dict[str, Any]], None]
ScorerFn = Callable[[Any, Any, Any, Dict[str, Any], Any], ScoreResult]

SUPPORTED_ARITIES = (3, 4, 5)

_POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


class Scorer:
    """A named scoring function with a uniform 5-argument call.

    Both ``Scorer("exact", fn)`` and ``Scorer(fn, name="exact")`` work. When
    no name is given, the callable's ``name`` attribute or ``__name__`` is
    used.

    Args:
        name_or_fn: The scorer name, or the callable itself.
        fn: The callable, when the first argument is a name.
        name: Explicit name (keyword form).
        arity: Declare the callable's signature (3, 4, or 5) instead of
            having it inspected.

    Raises:
        UnsupportedScorerArity: If the callable cannot accept 3, 4, or 5
            positional arguments.
        TypeError: If no callable is given.

    Example:
        def exact(input, expected, output):
            return 1.0 if output == expected else 0.0

        scorer = Scorer(exact)
        scorer("q", "a", "a", {}, None)  # 1.0
    """

    def __init__(
        self,
        name_or_fn: Union[str, Callable[..., Any], None] = None,
        fn: Optional[Callable[..., Any]] = None,
        *,
        name: Optional[str] = None,
        arity: Optional[int] = None,
    ) -> None:
        if isinstance(name_or_fn, str):
            name = name or name_or_fn
            callable_ = fn
        else:
            callable_ = name_or_fn if name_or_fn is not None else fn

        if callable_ is None or not callable(callable_):
            raise TypeError("Scorer requires a callable")

        self._fn = callable_
        self.name: str = name or detect_name(callable_) or "scorer"
        self.arity: int = arity if arity is not None else detect_arity(callable_, self.name)
        if self.arity not in SUPPORTED_ARITIES:
            raise UnsupportedScorerArity(self.name, f"declared arity {self.arity}")
        self._call = _wrap(callable_, self.arity)

    @property
    def fn(self) -> Callable[..., Any]:
        return self._fn

    def __call__(
        self,
        input: Any,
        expected: Any,
        output: Any,
        metadata: Optional[Dict[str, Any]] = None,
        trace: Any = None,
    ) -> ScoreResult:
        return self._call(input, expected, output, metadata if metadata is not None else {}, trace)

    def __repr__(self) -> str:
        return f"Scorer(name={self.name!r}, arity={self.arity})"


def scorer(name: Optional[str] = None, *, arity: Optional[int] = None) -> Callable[[Callable[..., Any]], Scorer]:
    """Decorator that turns a function into a :class:`Scorer`.

    Example:
        @scorer("exact_match")
        def exact(input, expected, output):
            return 1.0 if output == expected else 0.0
    """

    def decorator(fn: Callable[..., Any]) -> Scorer:
        return Scorer(fn, name=name, arity=arity)

    return decorator


def as_scorer(obj: Any, index: int) -> Scorer:
    """Coerce a scorer-like object, naming unnamed ones ``scorer_<index>``."""
    if isinstance(obj, Scorer):
        return obj
    if not callable(obj):
        raise TypeError(f"Scorer at position {index} is not callable: {obj!r}")
    return Scorer(obj, name=detect_name(obj) or f"scorer_{index}")


def normalize_scorers(scorers: Sequence[Any]) -> List[Scorer]:
    return [as_scorer(obj, index) for index, obj in enumerate(scorers)]


def detect_name(fn: Any) -> Optional[str]:
    """Best-effort name for a callable, or None if it has none worth using."""
    explicit = getattr(fn, "name", None)
    if isinstance(explicit, str) and explicit:
        return explicit

    dunder = getattr(fn, "__name__", None)
    if isinstance(dunder, str) and dunder and dunder != "<lambda>":
        return dunder

    # functools.partial and similar wrappers
    inner = getattr(fn, "func", None)
    if inner is not None and inner is not fn:
        return detect_name(inner)
    return None


def detect_arity(fn: Callable[..., Any], scorer_name: str) -> int:
    """Return the largest supported positional arity ``fn`` accepts."""
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError) as exc:
        raise UnsupportedScorerArity(scorer_name, f"signature cannot be inspected ({exc})") from exc

    params = signature.parameters.values()
    positional = [p for p in params if p.kind in _POSITIONAL_KINDS]
    required = sum(1 for p in positional if p.default is inspect.Parameter.empty)
    variadic = any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params)
    required_kwonly = [
        p.name
        for p in params
        if p.kind is inspect.Parameter.KEYWORD_ONLY and p.default is inspect.Parameter.empty
    ]

    if required_kwonly:
        raise UnsupportedScorerArity(
            scorer_name, f"required keyword-only parameters {required_kwonly}"
        )

    for arity in sorted(SUPPORTED_ARITIES, reverse=True):
        if required <= arity and (variadic or len(positional) >= arity):
            return arity

    raise UnsupportedScorerArity(
        scorer_name,
        f"declares {len(positional)} positional parameter(s), {required} required",
    )


def _wrap(fn: Callable[..., Any], arity: int) -> ScorerFn:
    if arity == 3:
        return lambda input, expected, output, metadata, trace: fn(input, expected, output)
    if arity == 4:
        return lambda input, expected, output, metadata, trace: fn(input, expected, output, metadata)
    return fn
