"""Bounded fork-join worker pool for independent training tasks."""

import logging
from typing import Any, Callable, Iterable, List

from joblib import Parallel, delayed

from diabetes_risk.config.constants import DEFAULT_N_WORKERS

logger = logging.getLogger(__name__)


class TaskPool:
    """Run independent tasks on a fixed number of workers.

    ``run`` blocks until every task has finished and returns results in task
    order. The first task error is re-raised and the whole batch fails.
    """

    def __init__(self, n_workers: int = DEFAULT_N_WORKERS, backend: str = "loky"):
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        self.n_workers = n_workers
        self.backend = backend

    def __repr__(self) -> str:
        return f"TaskPool(n_workers={self.n_workers}, backend={self.backend!r})"

    def run(self, fn: Callable[[Any], Any], tasks: Iterable[Any]) -> List[Any]:
        """Apply ``fn`` to every task.

        Args:
            fn: Picklable callable taking one task
            tasks: Task arguments

        Returns:
            List of results in task order
        """
        tasks = list(tasks)
        logger.debug(f"{self!r} running {len(tasks)} tasks")
        if self.n_workers == 1:
            return [fn(task) for task in tasks]
        return Parallel(n_jobs=self.n_workers, backend=self.backend)(
            delayed(fn)(task) for task in tasks
        )
