"""Tests for the fork-join task pool."""

import math

import pytest

from diabetes_risk.models.task_pool import TaskPool


class TestTaskPool:
    """Test TaskPool."""

    def test_results_in_task_order(self):
        pool = TaskPool(n_workers=2)

        assert pool.run(math.factorial, range(8)) == [math.factorial(x) for x in range(8)]

    def test_single_worker_runs_inline(self):
        assert TaskPool(n_workers=1).run(abs, [-1, 2, -3]) == [1, 2, 3]

    def test_task_error_fails_batch(self):
        """Test the first failing task aborts the whole run."""
        pool = TaskPool(n_workers=2)

        with pytest.raises(ValueError):
            pool.run(math.sqrt, [4.0, 9.0, -1.0, 16.0])

    def test_worker_count_must_be_positive(self):
        with pytest.raises(ValueError):
            TaskPool(n_workers=0)

    def test_empty_batch(self):
        assert TaskPool(n_workers=2).run(abs, []) == []
