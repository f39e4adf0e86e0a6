"""Stratified train/validation/test partitioning."""

import logging
import math
from typing import List, Sequence, Tuple

import numpy as np

from diabetes_risk.config.constants import DEFAULT_RANDOM_SEED, DEFAULT_SPLIT_RATIOS
from diabetes_risk.exceptions import InvalidRatioError
from diabetes_risk.features.preprocess import EncodedMatrix

logger = logging.getLogger(__name__)

RATIO_TOLERANCE = 1e-6


def check_ratios(ratios: Sequence[float]) -> None:
    """Raise InvalidRatioError unless ratios are three positive fractions summing to 1."""
    if len(ratios) != 3:
        raise InvalidRatioError(f"Expected 3 ratios (train, validation, test), got {len(ratios)}")
    if any(r <= 0 for r in ratios):
        raise InvalidRatioError(f"Ratios must be positive, got {tuple(ratios)}")
    if abs(sum(ratios) - 1.0) > RATIO_TOLERANCE:
        raise InvalidRatioError(f"Ratios must sum to 1, got {sum(ratios):.6f}")


def normalize_ratios(ratios: Sequence[float]) -> List[float]:
    """Rescale ratios to sum to exactly 1."""
    total = math.fsum(ratios)
    return [r / total for r in ratios]


def apportion(total: int, ratios: Sequence[float]) -> List[int]:
    """Split an integer total by ratios using the largest-remainder method.

    The returned counts always sum to ``total``.
    """
    ratios = normalize_ratios(ratios)
    quotas = [total * r for r in ratios]
    counts = [math.floor(q) for q in quotas]
    order = sorted(range(len(ratios)), key=lambda k: (-(quotas[k] - counts[k]), k))
    for k in order[: max(total - sum(counts), 0)]:
        counts[k] += 1
    # Floating-point floors can overshoot by a row
    for k in reversed(order):
        if sum(counts) <= total:
            break
        counts[k] -= 1
    return counts


def stratum_allocation(stratum_sizes: Sequence[int], ratios: Sequence[float]) -> np.ndarray:
    """Number of rows each stratum contributes to each subset.

    Row sums equal the stratum sizes and column sums equal the apportioned
    subset sizes. Cells start at the floor of their quota; leftover rows go to
    the cells with the largest fractional quota first.

    Args:
        stratum_sizes: Row count per label stratum
        ratios: Subset ratios

    Returns:
        Integer array of shape (n_strata, n_subsets)
    """
    quotas = np.outer(stratum_sizes, normalize_ratios(ratios))
    alloc = np.floor(quotas).astype(int)

    row_deficit = np.asarray(stratum_sizes) - alloc.sum(axis=1)
    col_deficit = np.asarray(apportion(int(sum(stratum_sizes)), ratios)) - alloc.sum(axis=0)

    fractions = quotas - alloc
    cells = sorted(
        ((s, k) for s in range(alloc.shape[0]) for k in range(alloc.shape[1])),
        key=lambda cell: (-fractions[cell], cell),
    )
    for s, k in cells:
        if row_deficit[s] > 0 and col_deficit[k] > 0:
            alloc[s, k] += 1
            row_deficit[s] -= 1
            col_deficit[k] -= 1

    # Leftovers the remainder pass could not place
    while row_deficit.sum() > 0:
        s = int(np.flatnonzero(row_deficit > 0)[0])
        k = int(np.flatnonzero(col_deficit > 0)[0])
        alloc[s, k] += 1
        row_deficit[s] -= 1
        col_deficit[k] -= 1

    return alloc


def split(
    matrix: EncodedMatrix,
    ratios: Sequence[float] = DEFAULT_SPLIT_RATIOS,
    seed: int = DEFAULT_RANDOM_SEED,
) -> Tuple[EncodedMatrix, EncodedMatrix, EncodedMatrix]:
    """Partition a design matrix into train, validation and test subsets.

    Rows are grouped by label, shuffled within each group and dealt out so
    that every subset keeps the label proportions of the input.

    Args:
        matrix: Encoded design matrix
        ratios: Train, validation and test fractions
        seed: Random seed

    Returns:
        Tuple of (train, validation, test)

    Raises:
        InvalidRatioError: If ratios are not three positive fractions summing to 1
    """
    check_ratios(ratios)
    rng = np.random.default_rng(seed)

    y = matrix.y
    labels = sorted(y.unique())
    strata = [y.index[(y == label).to_numpy()].to_numpy() for label in labels]
    alloc = stratum_allocation([len(s) for s in strata], ratios)

    parts = [[], [], []]
    for s, stratum_index in enumerate(strata):
        shuffled = rng.permutation(stratum_index)
        bounds = np.cumsum(alloc[s])[:-1]
        for k, chunk in enumerate(np.split(shuffled, bounds)):
            parts[k].append(chunk)

    subsets = []
    for chunks in parts:
        index = np.concatenate(chunks)
        # Keep the input row order inside each subset
        ordered = matrix.frame.index[matrix.frame.index.isin(index)]
        subsets.append(matrix.subset(ordered))

    train, validation, test = subsets
    logger.info(
        f"Split sizes: train={len(train)}, validation={len(validation)}, test={len(test)}; "
        f"positive rate train={_positive_rate(train):.3f}, "
        f"validation={_positive_rate(validation):.3f}, test={_positive_rate(test):.3f}"
    )
    return train, validation, test


def _positive_rate(matrix: EncodedMatrix) -> float:
    return float(matrix.y.mean()) if len(matrix) else float("nan")
