"""Job dependency resolution.

Computes which jobs a run executes and in which order. Jobs are addressed by
their index in the configuration; edges follow ``depends_on``.

- close: the requested roots plus everything they transitively depend on
- order: a topological order of that set, ties broken by declaration order
"""

import logging
from typing import Iterable, Sequence

from ..__util__ import AbortError
from ..config.schema import Config, Job, RunPolicy

logger = logging.getLogger(__name__)


class ResolutionError(AbortError):
    """The requested jobs cannot be resolved into a run."""


class JobNotFoundError(ResolutionError):
    pass


class DependencyNotFoundError(ResolutionError):
    pass


class JobDisabledError(ResolutionError):
    pass


class DependencyCycleError(ResolutionError):
    pass


def unique_names(names: Iterable[str]) -> list[str]:
    """De-duplicate ``names`` keeping the first occurrence of each."""
    seen: set[str] = set()
    out = []
    for name in names:
        if name not in seen:
            seen.add(name)
            out.append(name)
    return out


class DependencyResolver:
    """Resolve job selections against one configuration."""

    def __init__(self, config: Config) -> None:
        self.jobs: list[Job] = list(config.jobs)
        self._index: dict[str, int] = {}
        for i, job in enumerate(self.jobs):
            self._index.setdefault(job.name, i)

    def _lookup(self, name: str) -> int | None:
        return self._index.get(name)

    def _dependency_indexes(self, idx: int) -> list[int]:
        job = self.jobs[idx]
        out = []
        for dep in job.depends_on:
            dep_idx = self._lookup(dep)
            if dep_idx is None:
                raise DependencyNotFoundError(
                    f"dependency {dep} not found for job {job.name}"
                )
            out.append(dep_idx)
        return out

    def default_roots(self) -> list[str]:
        """Names of the jobs selected when none are requested."""
        return [j.name for j in self.jobs if j.run_policy is RunPolicy.AUTO]

    def close(self, roots: Sequence[str] | None = None) -> set[int]:
        """Return the indexes of ``roots`` and all their dependencies.

        Args:
            roots: Requested job names; None or empty selects the auto jobs

        Raises:
            JobNotFoundError: A root names no configured job
            DependencyNotFoundError: A reached job depends on an unknown name
            JobDisabledError: A reached job has run policy off
        """
        if not roots:
            roots = self.default_roots()

        # (index, index of the job that required it or None for roots)
        stack: list[tuple[int, int | None]] = []
        for name in roots:
            idx = self._lookup(name)
            if idx is None:
                raise JobNotFoundError(f"job not found: {name}")
            stack.append((idx, None))

        included: set[int] = set()
        while stack:
            idx, parent = stack.pop()
            if idx in included:
                continue
            job = self.jobs[idx]
            if job.run_policy is RunPolicy.OFF:
                if parent is not None:
                    raise JobDisabledError(
                        f"job disabled (off): {job.name} "
                        f"(required by {self.jobs[parent].name})"
                    )
                raise JobDisabledError(f"job disabled (off): {job.name}")
            included.add(idx)
            for dep_idx in self._dependency_indexes(idx):
                stack.append((dep_idx, idx))
        return included

    def order(self, included: Iterable[int]) -> list[Job]:
        """Return the included jobs so that dependencies precede dependents.

        Each pass walks the included jobs in declaration order and emits
        every job whose dependencies have all been emitted.

        Raises:
            DependencyNotFoundError: A dependency is outside the included set
            DependencyCycleError: The included jobs depend on each other in a loop
        """
        included = set(included)
        indegree = [0] * len(self.jobs)
        dependents: list[list[int]] = [[] for _ in self.jobs]
        for i in sorted(included):
            for dep_idx in self._dependency_indexes(i):
                if dep_idx not in included:
                    raise DependencyNotFoundError(
                        f"dependency {self.jobs[dep_idx].name} not found "
                        f"for job {self.jobs[i].name}"
                    )
                indegree[i] += 1
                dependents[dep_idx].append(i)

        out: list[Job] = []
        processed: set[int] = set()
        while len(out) < len(included):
            found = False
            for i in range(len(self.jobs)):
                if i not in included or i in processed or indegree[i] != 0:
                    continue
                out.append(self.jobs[i])
                processed.add(i)
                found = True
                for j in dependents[i]:
                    indegree[j] -= 1
            if not found:
                raise DependencyCycleError("job dependencies contain a cycle")
        return out

    def resolve(self, roots: Sequence[str] | None = None) -> list[Job]:
        """Close over ``roots`` (de-duplicated) and order the result."""
        selected = unique_names(roots or [])
        jobs = self.order(self.close(selected))
        logger.debug("Resolved job order: %s", ", ".join(j.name for j in jobs))
        return jobs

    def check_graph(self) -> None:
        """Order every configured job once so a cycle anywhere is reported."""
        self.order(range(len(self.jobs)))
