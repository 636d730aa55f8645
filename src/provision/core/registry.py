"""Step definitions and the dependency graph.

Steps are registered in order; a step may only depend on steps that are
already registered. ``register_all`` accepts a batch declared as a graph,
where members may reference each other in any order.
"""

import heapq
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from ..errors import CycleDetectedError, DuplicateStepError, UnknownDependencyError
from ..models import CommandResult
from .context import StepContext
from .retry import NO_RETRY, RetryPolicy

Action = Callable[[StepContext], CommandResult | None]
Check = Callable[[StepContext], bool]


@dataclass(frozen=True)
class Step:
    """A named unit of provisioning work.

    Attributes:
        name: Unique identifier, stable across runs.
        action: Work to perform; returns a CommandResult or None on success.
        depends_on: Steps that must be resolved before this one is eligible.
        check: Idempotency predicate; True means the effect is already present.
        retry: Attempt bound, backoff and failure classification.
        timeout: Maximum seconds for one attempt (None for unbounded).
        description: One-line summary shown in plans and banners.
    """

    name: str
    action: Action
    depends_on: tuple[str, ...] = ()
    check: Check | None = None
    retry: RetryPolicy = field(default=NO_RETRY)
    timeout: float | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Step name must not be empty")
        # Accept any iterable for depends_on but store a tuple
        object.__setattr__(self, "depends_on", tuple(self.depends_on))

    @property
    def title(self) -> str:
        return self.description or self.name.replace("_", " ").capitalize()


class StepRegistry:
    """Holds steps and orders them by their dependencies."""

    def __init__(self, steps: Iterable[Step] = ()) -> None:
        self._steps: dict[str, Step] = {}
        for step in steps:
            self.register(step)

    def register(self, step: Step) -> Step:
        """Register one step.

        Raises:
            DuplicateStepError: If the name is already registered
            UnknownDependencyError: If a dependency is not registered yet
        """
        if step.name in self._steps:
            raise DuplicateStepError(step.name)
        for dep in step.depends_on:
            if dep not in self._steps:
                raise UnknownDependencyError(step.name, dep)
        self._steps[step.name] = step
        return step

    def register_all(self, steps: Iterable[Step]) -> None:
        """Register a batch of steps declared together.

        Dependencies may point at any member of the batch or at steps
        registered earlier. The batch is validated as a whole before any
        member is added; cycles surface from ``topological_order``.

        Raises:
            DuplicateStepError: If a name repeats or is already registered
            UnknownDependencyError: If a dependency is neither in the batch nor registered
        """
        batch: dict[str, Step] = {}
        for step in steps:
            if step.name in self._steps or step.name in batch:
                raise DuplicateStepError(step.name)
            batch[step.name] = step
        for step in batch.values():
            for dep in step.depends_on:
                if dep not in self._steps and dep not in batch:
                    raise UnknownDependencyError(step.name, dep)
        self._steps.update(batch)

    def get(self, name: str) -> Step:
        return self._steps[name]

    def names(self) -> list[str]:
        return list(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._steps

    def __iter__(self) -> Iterator[Step]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)

    def topological_order(self) -> list[Step]:
        """Order steps so every dependency precedes its dependents.

        Ties are broken by registration order, so the result is stable
        across calls and across runs.

        Raises:
            CycleDetectedError: If the graph contains a cycle
        """
        index = {name: i for i, name in enumerate(self._steps)}
        indegree = {name: len(set(step.depends_on)) for name, step in self._steps.items()}
        dependents: dict[str, list[str]] = {name: [] for name in self._steps}
        for name, step in self._steps.items():
            for dep in set(step.depends_on):
                dependents[dep].append(name)

        ready = [(index[name], name) for name, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[Step] = []
        while ready:
            _, name = heapq.heappop(ready)
            order.append(self._steps[name])
            for child in dependents[name]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (index[child], child))

        if len(order) != len(self._steps):
            stuck = sorted((n for n, d in indegree.items() if d > 0), key=index.__getitem__)
            raise CycleDetectedError(stuck)
        return order

    def dependents(self, name: str) -> set[str]:
        """Return every step that depends on ``name``, directly or transitively."""
        found: set[str] = set()
        frontier = [name]
        while frontier:
            current = frontier.pop()
            for step in self._steps.values():
                if current in step.depends_on and step.name not in found:
                    found.add(step.name)
                    frontier.append(step.name)
        return found
