"""Test cases and their normalization.

Cases can be given as :class:`Case` instances or as plain dicts. Dicts
are converted lazily while the runner iterates, so a large dataset can be
streamed without building a second copy of it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from trace_evals.errors import InvalidCaseError

logger = logging.getLogger(__name__)

# Accepted dict keys, mapped to Case fields.
_FIELD_ALIASES = {
    "input": "input",
    "expected": "expected",
    "expected_output": "expected",
    "tags": "tags",
    "metadata": "metadata",
    "meta": "metadata",
    "origin": "origin",
}


@dataclass(frozen=True)
class Case:
    """A single evaluation test case.

    Attributes:
        input: What the task is called with. Required.
        expected: The expected output, if any.
        tags: Optional tags for filtering and grouping.
        metadata: Optional metadata, passed to 4- and 5-argument scorers.
        origin: Opaque provenance token (e.g. a pointer to the dataset row
            the case came from). Passed through unmodified.
    """

    input: Any
    expected: Any = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    origin: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Case":
        fields: Dict[str, Any] = {}
        for key, value in data.items():
            target = _FIELD_ALIASES.get(key)
            if target is None:
                logger.debug("Ignoring unrecognized case field %r", key)
                continue
            # Canonical keys take precedence over aliases.
            if key != target and target in fields:
                continue
            fields[target] = value

        if "input" not in fields:
            raise InvalidCaseError(f"Case is missing required field 'input': {dict(data)!r}")

        tags = fields.get("tags")
        if tags is not None:
            fields["tags"] = [str(t) for t in tags]
        return cls(**fields)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_case(item: Any) -> Case:
    """Convert one case-like item into a Case."""
    if isinstance(item, Case):
        return item
    if isinstance(item, Mapping):
        return Case.from_dict(item)
    raise InvalidCaseError(
        f"Case must be a dict or Case object, got {type(item).__name__}"
    )


def normalize_cases(items: Iterable[Any]) -> Iterator[Case]:
    """Yield a Case for each item, converting lazily."""
    for item in items:
        yield normalize_case(item)


class Cases:
    """Re-iterable, lazily normalizing view over case-like items.

    Args:
        items: Any iterable of Case objects or dicts. Strings, bytes, and
            mappings are rejected because iterating them never yields cases.
    """

    def __init__(self, items: Iterable[Any]) -> None:
        if isinstance(items, (str, bytes, Mapping)) or not isinstance(items, Iterable):
            raise InvalidCaseError(
                f"cases must be an iterable of dicts or Case objects, got {type(items).__name__}"
            )
        self._items = items

    def __iter__(self) -> Iterator[Case]:
        return normalize_cases(self._items)

    def __len__(self) -> int:
        try:
            return len(self._items)  # type: ignore[arg-type]
        except TypeError:
            raise TypeError("length of a streamed case source is unknown") from None
