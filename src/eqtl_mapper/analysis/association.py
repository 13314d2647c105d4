"""Covariate-adjusted association tests between genotypes and expression.

Genotype and expression rows are residualized once against the covariate
space (intercept included). Under the additive model the per-pair test then
reduces to a correlation between two residual vectors, which gives the same
slope, standard error and t-statistic as fitting

    expression ~ intercept + covariates + genotype

by ordinary least squares, with ``n - k - 2`` degrees of freedom.
The ANOVA model treats genotype classes as categories and uses an F-test on
the extra sum of squares explained by the class indicators.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy import stats

from eqtl_mapper.utils.logging import get_logger
from eqtl_mapper.utils.validators import ValidationError

logger = get_logger(__name__)

# Residual sum of squares below this fraction of the raw (centered) sum of
# squares is treated as zero variance.
DEGENERATE_TOLERANCE = 1e-10


@dataclass(frozen=True)
class PairStatistics:
    """Association statistics for one variant-gene pair."""

    slope: float
    slope_se: float
    statistic: float
    dof: int
    pval: float


@dataclass(frozen=True)
class ResidualizationContext:
    """Orthonormal basis of the covariate space, shared read-only by all tests."""

    basis: np.ndarray  # samples x (covariates + 1)
    n_samples: int
    n_covariates: int

    @classmethod
    def from_covariates(cls, covariates: np.ndarray | None, n_samples: int) -> ResidualizationContext:
        """
        Build the context from a samples x covariates matrix.

        Args:
            covariates: Covariate values (samples x covariates), or None.
            n_samples: Number of samples.

        Raises:
            ValidationError: If covariates are collinear or leave no residual
                degrees of freedom.
        """
        if covariates is None:
            covariates = np.empty((n_samples, 0))
        covariates = np.asarray(covariates, dtype=float)
        if covariates.shape[0] != n_samples:
            raise ValidationError(
                f"Covariate matrix has {covariates.shape[0]} samples, expected {n_samples}"
            )

        n_covariates = covariates.shape[1]
        dof = n_samples - n_covariates - 2
        if dof < 1:
            raise ValidationError(
                f"{n_samples} samples with {n_covariates} covariates leave no residual "
                "degrees of freedom"
            )

        design = np.column_stack([np.ones(n_samples), covariates])
        q, r = np.linalg.qr(design)
        diag = np.abs(np.diag(r))
        if diag.min() <= 1e-8 * max(diag.max(), 1.0):
            raise ValidationError("Covariate matrix is rank deficient (collinear covariates)")

        q.setflags(write=False)
        logger.debug(f"Residualization basis: {n_samples} samples, {n_covariates} covariates")
        return cls(basis=q, n_samples=n_samples, n_covariates=n_covariates)

    @property
    def dof(self) -> int:
        """Residual degrees of freedom of the additive model."""
        return self.n_samples - self.n_covariates - 2

    def residualize(self, matrix: np.ndarray) -> np.ndarray:
        """Project rows (features x samples) onto the complement of the covariate space."""
        matrix = np.atleast_2d(np.asarray(matrix, dtype=float))
        return matrix - (matrix @ self.basis) @ self.basis.T


@dataclass(frozen=True)
class ResidualizedBlock:
    """Residualized rows with their norms and a mask of usable rows."""

    residuals: np.ndarray
    norms: np.ndarray
    valid: np.ndarray

    @property
    def n_degenerate(self) -> int:
        return int((~self.valid).sum())


def residualize_rows(matrix: np.ndarray, context: ResidualizationContext) -> ResidualizedBlock:
    """
    Residualize rows and flag zero-variance rows.

    A row is degenerate when it is constant or lies (numerically) inside the
    covariate space, so nothing is left to correlate.
    """
    matrix = np.atleast_2d(np.asarray(matrix, dtype=float))
    residuals = context.residualize(matrix)
    ss_residual = np.einsum("ij,ij->i", residuals, residuals)
    centered = matrix - matrix.mean(axis=1, keepdims=True)
    ss_raw = np.einsum("ij,ij->i", centered, centered)
    valid = (ss_raw > 0) & (ss_residual > DEGENERATE_TOLERANCE * ss_raw)
    return ResidualizedBlock(residuals=residuals, norms=np.sqrt(ss_residual), valid=valid)


def compute_linear_block(
    genotypes: ResidualizedBlock,
    phenotypes: ResidualizedBlock,
    dof: int,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """
    Additive-model statistics for every gene x variant pair of two blocks.

    Degenerate rows must be excluded by the caller; their entries are
    undefined.

    Args:
        genotypes: Residualized genotype block (variants x samples).
        phenotypes: Residualized expression block (genes x samples).
        dof: Residual degrees of freedom.

    Returns:
        Tuple of (slope, slope_se, t_stat, pval), each genes x variants.
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        g_unit = genotypes.residuals / genotypes.norms[:, None]
        p_unit = phenotypes.residuals / phenotypes.norms[:, None]
        r = np.clip(p_unit @ g_unit.T, -1.0, 1.0)
        r2 = r * r
        ratio = phenotypes.norms[:, None] / genotypes.norms[None, :]

        t_stat = r * np.sqrt(dof / (1.0 - r2))
        slope = r * ratio
        slope_se = ratio * np.sqrt((1.0 - r2) / dof)

    pval = np.clip(2.0 * stats.t.sf(np.abs(t_stat), dof), 0.0, 1.0)
    return slope, slope_se, t_stat, pval


def genotype_classes(genotype: np.ndarray) -> np.ndarray:
    """Sample x (classes - 1) indicator matrix of genotype classes, first class dropped."""
    classes = np.rint(np.asarray(genotype, dtype=float))
    levels = np.unique(classes)
    if len(levels) < 2:
        return np.empty((len(classes), 0))
    return np.column_stack([(classes == level).astype(float) for level in levels[1:]])


def compute_anova_row(
    genotype: np.ndarray,
    phenotypes: ResidualizedBlock,
    context: ResidualizationContext,
) -> tuple[np.ndarray, np.ndarray, int, int] | None:
    """
    Genotype-class ANOVA of one variant against a block of genes.

    Args:
        genotype: Raw dosages for one variant (samples,).
        phenotypes: Residualized expression block (genes x samples).
        context: Residualization context.

    Returns:
        Tuple of (F statistic, pval, df1, df2), or None when the variant has
        no informative class contrast left after covariate adjustment.
    """
    indicators = genotype_classes(genotype)
    if indicators.shape[1] == 0:
        return None

    block = residualize_rows(indicators.T, context)
    if not block.valid.any():
        return None

    q, r = np.linalg.qr(block.residuals.T)
    diag = np.abs(np.diag(r))
    keep = diag > 1e-8 * max(diag.max(), 1.0)
    df1 = int(keep.sum())
    df2 = context.n_samples - context.n_covariates - 1 - df1
    if df1 == 0 or df2 < 1:
        return None

    projection = phenotypes.residuals @ q[:, keep]
    ss_model = np.einsum("ij,ij->i", projection, projection)
    ss_residual = np.maximum(phenotypes.norms**2 - ss_model, 0.0)

    with np.errstate(divide="ignore", invalid="ignore"):
        f_stat = (ss_model / df1) / (ss_residual / df2)
    f_stat = np.where(ss_residual > 0, f_stat, np.inf)
    pval = np.clip(stats.f.sf(f_stat, df1, df2), 0.0, 1.0)
    return f_stat, pval, df1, df2


def associate_pair(
    genotype: np.ndarray,
    expression: np.ndarray,
    context: ResidualizationContext,
    model: str = "linear",
) -> PairStatistics | None:
    """
    Test a single variant-gene pair.

    Args:
        genotype: Dosages (samples,).
        expression: Expression values (samples,).
        context: Residualization context built from the covariates.
        model: "linear" (additive) or "anova" (genotype classes).

    Returns:
        Pair statistics, or None if either vector is degenerate.
    """
    phenotypes = residualize_rows(expression, context)
    if not phenotypes.valid[0]:
        return None

    if model == "anova":
        result = compute_anova_row(genotype, phenotypes, context)
        if result is None:
            return None
        f_stat, pval, _, df2 = result
        return PairStatistics(
            slope=float("nan"),
            slope_se=float("nan"),
            statistic=float(f_stat[0]),
            dof=df2,
            pval=float(pval[0]),
        )

    if model != "linear":
        raise ValueError(f"Unknown model: {model}")

    genotypes = residualize_rows(genotype, context)
    if not genotypes.valid[0]:
        return None

    slope, slope_se, t_stat, pval = compute_linear_block(genotypes, phenotypes, context.dof)
    return PairStatistics(
        slope=float(slope[0, 0]),
        slope_se=float(slope_se[0, 0]),
        statistic=float(t_stat[0, 0]),
        dof=context.dof,
        pval=float(pval[0, 0]),
    )


def ols_reference(
    genotype: np.ndarray,
    expression: np.ndarray,
    covariates: np.ndarray | None = None,
) -> PairStatistics:
    """
    Fit the full regression for one pair with statsmodels.

    Much slower than the residualized path; kept as the reference the fast
    path is checked against.
    """
    import statsmodels.api as sm

    genotype = np.asarray(genotype, dtype=float)
    columns = [genotype]
    if covariates is not None and np.asarray(covariates).size:
        columns = [np.asarray(covariates, dtype=float), genotype[:, None]]
    design = sm.add_constant(np.column_stack(columns), has_constant="add")
    fit = sm.OLS(np.asarray(expression, dtype=float), design).fit()
    return PairStatistics(
        slope=float(fit.params[-1]),
        slope_se=float(fit.bse[-1]),
        statistic=float(fit.tvalues[-1]),
        dof=int(fit.df_resid),
        pval=float(fit.pvalues[-1]),
    )
