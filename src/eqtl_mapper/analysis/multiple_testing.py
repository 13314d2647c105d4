"""Multiple testing correction over complete per-stream p-value distributions.

Correction is done in two passes. While testing, every raw p-value of a
stream goes into a ``PValueAccumulator``, including those above the
reporting threshold. After all workers have merged, ``adjust`` applies the
correction to the full distribution and looks up the adjusted value for
each retained record.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Literal

import numpy as np
from statsmodels.stats.multitest import multipletests

from eqtl_mapper.utils.logging import get_logger

logger = get_logger(__name__)

FDRMethod = Literal["bh", "qvalue", "bonferroni"]

PI0_LAMBDAS = np.arange(0.05, 0.95, 0.05)


class PValueAccumulator:
    """Collects every raw p-value produced for one stream."""

    def __init__(self) -> None:
        self._chunks: list[np.ndarray] = []
        self._n_tests = 0
        self._sorted: np.ndarray | None = None

    def __len__(self) -> int:
        return self._n_tests

    @property
    def n_tests(self) -> int:
        """Number of tests recorded."""
        return self._n_tests

    def add(self, pvalues: np.ndarray) -> None:
        """Record a batch of raw p-values."""
        values = np.asarray(pvalues, dtype=float).ravel()
        if values.size == 0:
            return
        self._chunks.append(values.copy())
        self._n_tests += values.size
        self._sorted = None

    def merge(self, other: PValueAccumulator) -> None:
        """Absorb the p-values of another accumulator."""
        for chunk in other._chunks:
            self._chunks.append(chunk)
            self._n_tests += chunk.size
        if other._chunks:
            self._sorted = None

    @classmethod
    def combine(cls, accumulators: Iterable[PValueAccumulator]) -> PValueAccumulator:
        """Merge several accumulators, in the given order, into a new one."""
        merged = cls()
        for acc in accumulators:
            merged.merge(acc)
        return merged

    def sorted_pvalues(self) -> np.ndarray:
        """All recorded p-values, ascending."""
        if self._sorted is None:
            if self._chunks:
                values = np.concatenate(self._chunks)
                self._sorted = np.sort(values, kind="stable")
                self._chunks = [self._sorted]
            else:
                self._sorted = np.empty(0, dtype=float)
        return self._sorted

    def histogram(self, bins: int = 100) -> tuple[np.ndarray, np.ndarray]:
        """Counts of p-values in equal-width bins over [0, 1]."""
        return np.histogram(self.sorted_pvalues(), bins=bins, range=(0.0, 1.0))


def estimate_pi0(pvalues: np.ndarray, lambdas: np.ndarray = PI0_LAMBDAS) -> float:
    """
    Estimate the proportion of true null hypotheses.

    Uses the median of Storey's per-lambda estimates
    ``#{p > lambda} / (n * (1 - lambda))``, capped at 1.
    """
    pvalues = np.asarray(pvalues, dtype=float)
    n = pvalues.size
    if n == 0:
        return 1.0

    sorted_p = np.sort(pvalues)
    above = n - np.searchsorted(sorted_p, lambdas, side="right")
    estimates = above / (n * (1.0 - lambdas))
    pi0 = float(min(np.median(estimates), 1.0))

    if pi0 <= 0:
        logger.warning("pi0 estimate is zero; using pi0 = 1 (Benjamini-Hochberg)")
        return 1.0
    return pi0


def bh_sorted(sorted_pvalues: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg adjusted values for an ascending p-value array."""
    if sorted_pvalues.size == 0:
        return np.empty(0, dtype=float)
    _, adjusted, _, _ = multipletests(sorted_pvalues, method="fdr_bh", is_sorted=True)
    return adjusted


def adjust(
    accumulator: PValueAccumulator,
    pvalues: np.ndarray,
    method: FDRMethod = "bh",
) -> np.ndarray:
    """
    Adjust retained p-values against the stream's full distribution.

    Args:
        accumulator: Every raw p-value of the stream.
        pvalues: Retained p-values to adjust; each must have been recorded
                 in ``accumulator``.
        method: "bh" (Benjamini-Hochberg step-up), "qvalue" (Storey q-value,
                BH scaled by the estimated pi0) or "bonferroni".

    Returns:
        Adjusted values aligned with ``pvalues``. Empty when the stream has
        no tests.
    """
    pvalues = np.asarray(pvalues, dtype=float)
    n_tests = accumulator.n_tests
    if n_tests == 0 or pvalues.size == 0:
        return np.empty(pvalues.shape, dtype=float)

    if method == "bonferroni":
        return np.minimum(pvalues * n_tests, 1.0)

    if method not in ("bh", "qvalue"):
        raise ValueError(f"Unknown FDR method: {method}")

    sorted_p = accumulator.sorted_pvalues()
    adjusted_sorted = bh_sorted(sorted_p)

    # Tied p-values share the adjusted value of the last tie
    rank = np.searchsorted(sorted_p, pvalues, side="right") - 1
    adjusted = adjusted_sorted[np.clip(rank, 0, n_tests - 1)]

    if method == "qvalue":
        pi0 = estimate_pi0(sorted_p)
        logger.info(f"Estimated pi0 = {pi0:.4f} over {n_tests:,} tests")
        # q-values never fall below the raw p-value
        adjusted = np.maximum(np.minimum(pi0 * adjusted, 1.0), pvalues)

    return adjusted
