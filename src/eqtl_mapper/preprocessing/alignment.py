"""Sample alignment and input validation for eQTL mapping.

All three matrices must share one ordered sample sequence before any test
runs. By default a mismatch is fatal; with ``reorder_samples`` a single
permutation, computed from the genotype sample order, is applied to the
expression and covariate matrices.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd

from eqtl_mapper.preprocessing.covariates import CovariatePreprocessor, covariate_design
from eqtl_mapper.utils.config import CovariateConfig
from eqtl_mapper.utils.logging import get_logger
from eqtl_mapper.utils.validators import (
    AlignmentError,
    ValidationError,
    validate_finite,
    validate_genotype_values,
    validate_sample_alignment,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class AlignedDataset:
    """Validated, sample-aligned inputs for the association engine."""

    sample_ids: tuple[str, ...]
    variant_ids: tuple[str, ...]
    gene_ids: tuple[str, ...]
    genotypes: np.ndarray  # variants x samples
    expression: np.ndarray  # genes x samples
    covariates: np.ndarray  # samples x covariates
    covariate_names: tuple[str, ...]
    variant_positions: pd.DataFrame  # chrom, pos; rows follow variant_ids
    gene_positions: pd.DataFrame  # chrom, start, end, strand; rows follow gene_ids

    @property
    def n_samples(self) -> int:
        return len(self.sample_ids)

    @property
    def n_variants(self) -> int:
        return len(self.variant_ids)

    @property
    def n_genes(self) -> int:
        return len(self.gene_ids)

    @property
    def n_covariates(self) -> int:
        return self.covariates.shape[1]


def sample_permutation(reference: list[str], samples: list[str], name: str) -> np.ndarray:
    """
    Compute the column permutation that puts ``samples`` into reference order.

    Raises:
        AlignmentError: If the two sample sets are not identical.
    """
    if len(set(samples)) != len(samples):
        raise AlignmentError(f"Duplicate sample identifiers in {name} matrix")
    if set(samples) != set(reference) or len(samples) != len(reference):
        missing = sorted(set(reference) - set(samples))
        extra = sorted(set(samples) - set(reference))
        raise AlignmentError(
            f"Sample sets differ between genotype and {name} matrices: "
            f"missing {missing[:3]} ({len(missing)}), extra {extra[:3]} ({len(extra)})"
        )
    index = pd.Index(samples)
    return np.asarray(index.get_indexer(reference))


def _positions_for(
    positions: pd.DataFrame,
    row_ids: pd.Index,
    description: str,
) -> pd.DataFrame:
    positions = positions.set_axis(positions.index.astype(str), axis=0)
    if not positions.index.is_unique:
        raise ValidationError(f"Duplicate {description} IDs in position table")
    missing = row_ids.difference(positions.index)
    if len(missing) > 0:
        raise ValidationError(
            f"{len(missing)} {description}(s) have no position entry, e.g. {list(missing[:3])}"
        )
    return positions.loc[row_ids].copy()


def _as_float(df: pd.DataFrame, name: str) -> np.ndarray:
    try:
        return df.to_numpy(dtype=float, na_value=np.nan)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} matrix contains non-numeric values: {e}") from e


def align_dataset(
    genotypes: pd.DataFrame,
    expression: pd.DataFrame,
    variant_positions: pd.DataFrame,
    gene_positions: pd.DataFrame,
    covariates: pd.DataFrame | None = None,
    reorder_samples: bool = False,
    covariate_config: CovariateConfig | None = None,
    random_seed: int = 42,
) -> AlignedDataset:
    """
    Validate and align the engine inputs.

    Args:
        genotypes: Dosage matrix (variants x samples); its column order is the
                   reference sample order.
        expression: Expression matrix (genes x samples).
        variant_positions: Variant table indexed by variant id (chrom, pos).
        gene_positions: Gene table indexed by gene id (chrom, start, end, strand).
        covariates: Raw covariate matrix (covariates x samples) or None.
        reorder_samples: Permute expression/covariate columns into genotype
                         order instead of failing on an order mismatch.
        covariate_config: Categorical encodings, one-hot list and PCs.
        random_seed: Seed for genotype PCA.

    Returns:
        Aligned dataset.

    Raises:
        AlignmentError: Sample sets or orders differ.
        NonFiniteValueError: A matrix contains NaN or infinite values.
        CovariateEncodingError: A categorical covariate cannot be encoded.
        ValidationError: Missing positions or other malformed input.
    """
    for name, df in (("genotype", genotypes), ("expression", expression)):
        if not df.index.is_unique:
            raise ValidationError(f"Duplicate row IDs in {name} matrix")

    reference = [str(s) for s in genotypes.columns]

    if reorder_samples:
        perm = sample_permutation(reference, [str(s) for s in expression.columns], "expression")
        expression = expression.iloc[:, perm]
        if covariates is not None:
            perm = sample_permutation(
                reference, [str(s) for s in covariates.columns], "covariate"
            )
            covariates = covariates.iloc[:, perm]
        logger.info("Reordered expression and covariate samples to genotype order")

    named_samples = {
        "genotype": reference,
        "expression": [str(s) for s in expression.columns],
    }
    if covariates is not None:
        named_samples["covariate"] = [str(s) for s in covariates.columns]
    validate_sample_alignment(named_samples)

    geno_values = _as_float(genotypes, "Genotype")
    expr_values = _as_float(expression, "Expression")
    variant_ids = [str(v) for v in genotypes.index]
    gene_ids = [str(g) for g in expression.index]

    validate_finite(geno_values, variant_ids, "genotype")
    validate_finite(expr_values, gene_ids, "expression")
    validate_genotype_values(geno_values, variant_ids)

    preprocessor = CovariatePreprocessor(covariate_config, random_seed=random_seed)
    encoded = preprocessor.prepare(covariates, reference, genotypes=genotypes)
    cov_values = covariate_design(encoded, len(reference))
    covariate_names = [str(c) for c in encoded.index]
    validate_finite(cov_values.T, covariate_names, "covariate")

    variant_table = _positions_for(variant_positions, pd.Index(variant_ids), "variant")
    gene_table = _positions_for(gene_positions, pd.Index(gene_ids), "gene")

    logger.info(
        f"Aligned {len(reference)} samples: {len(variant_ids)} variants, "
        f"{len(gene_ids)} genes, {len(covariate_names)} covariates"
    )

    return AlignedDataset(
        sample_ids=tuple(reference),
        variant_ids=tuple(variant_ids),
        gene_ids=tuple(gene_ids),
        genotypes=geno_values,
        expression=expr_values,
        covariates=cov_values,
        covariate_names=tuple(covariate_names),
        variant_positions=variant_table,
        gene_positions=gene_table,
    )
