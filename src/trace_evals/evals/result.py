"""Result types for evaluation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class CaseResult:
    """Outcome of a single case, passed to ``on_progress`` callbacks.

    Attributes:
        input: The input given to the task.
        output: The task's output (None if the task failed).
        expected: The expected output, if provided.
        scores: Scorer name to whatever that scorer returned.
        error: The error recorded for this case, if any.
    """

    input: Any
    output: Any = None
    expected: Any = None
    scores: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class ScoreSummary:
    name: str
    score: float
    count: int

    @classmethod
    def from_values(cls, name: str, values: List[float]) -> "ScoreSummary":
        if not values:
            return cls(name=name, score=0.0, count=0)
        return cls(name=name, score=sum(values) / len(values), count=len(values))


@dataclass
class EvaluationResult:
    """Summary of an evaluation run.

    Attributes:
        errors: One message per failed case. Order is unspecified when the
            run was parallel.
        scores: Scorer name to every numeric score it produced.
        duration: Wall-clock seconds for the whole run.
        experiment_id: Id of the experiment the spans were logged to.
        experiment_name: Human-readable experiment name.
        project_id: Id of the owning project.
        project_name: Name of the owning project.
    """

    errors: List[str] = field(default_factory=list)
    scores: Dict[str, List[float]] = field(default_factory=dict)
    duration: float = 0.0
    experiment_id: Optional[str] = None
    experiment_name: Optional[str] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def summary(self) -> Dict[str, ScoreSummary]:
        return {name: ScoreSummary.from_values(name, values) for name, values in self.scores.items()}

    @property
    def averages(self) -> Dict[str, float]:
        return {name: s.score for name, s in self.summary.items()}

    def __str__(self) -> str:
        parts = [f"Experiment: {self.experiment_name or '(unnamed)'}"]
        if self.project_name:
            parts.append(f"Project: {self.project_name}")
        if self.experiment_id:
            parts.append(f"ID: {self.experiment_id}")
        parts.append(f"Duration: {self.duration:.4f}s")
        parts.append(f"Errors: {len(self.errors)}")
        for scorer_name, avg in self.averages.items():
            parts.append(f"  {scorer_name}: {avg:.3f}")
        return "\n".join(parts)
