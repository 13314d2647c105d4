"""Pytest configuration and fixtures for eQTL mapping tests."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Generator

import numpy as np
import pandas as pd
import pytest

from eqtl_mapper.preprocessing.alignment import AlignedDataset, align_dataset

N_SAMPLES = 40
N_VARIANTS = 60
N_GENES = 20


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_ids() -> list[str]:
    """Sample identifiers shared by all matrices."""
    return [f"SAMPLE_{i:02d}" for i in range(N_SAMPLES)]


@pytest.fixture
def sample_genotype_data(sample_ids: list[str]) -> pd.DataFrame:
    """Create additive dosages (variants x samples)."""
    rng = np.random.default_rng(42)
    dosages = rng.binomial(2, 0.35, size=(N_VARIANTS, N_SAMPLES)).astype(float)
    # Keep every variant polymorphic
    dosages[:, 0] = 0.0
    dosages[:, 1] = 1.0
    dosages[:, 2] = 2.0
    variants = [f"rs{i}" for i in range(N_VARIANTS)]
    return pd.DataFrame(dosages, index=variants, columns=sample_ids)


@pytest.fixture
def sample_expression_data(
    sample_ids: list[str],
    sample_genotype_data: pd.DataFrame,
) -> pd.DataFrame:
    """
    Create expression data (genes x samples) with two planted effects.

    GENE_0000 (chromosome 1) is driven by rs0 (chromosome 1, cis) and
    GENE_0015 (chromosome 2) by rs1 (chromosome 1, trans).
    """
    rng = np.random.default_rng(7)
    data = rng.normal(loc=5, scale=1, size=(N_GENES, N_SAMPLES))
    genotypes = sample_genotype_data.to_numpy()
    data[0] += 2.0 * genotypes[0]
    data[15] += 2.0 * genotypes[1]
    genes = [f"GENE_{i:04d}" for i in range(N_GENES)]
    return pd.DataFrame(data, index=genes, columns=sample_ids)


@pytest.fixture
def sample_covariate_data(sample_ids: list[str]) -> pd.DataFrame:
    """Create raw covariates (covariates x samples) with a labelled sex row."""
    rng = np.random.default_rng(3)
    covariates = {
        "age": rng.normal(50, 10, N_SAMPLES),
        "sex": ["M" if i % 2 else "F" for i in range(N_SAMPLES)],
    }
    return pd.DataFrame(covariates, index=sample_ids).T


@pytest.fixture
def sample_variant_positions(sample_genotype_data: pd.DataFrame) -> pd.DataFrame:
    """Variants 0-29 on chromosome 1, 30-59 on chromosome 2, 10 kb apart."""
    chroms = ["1" if i < 30 else "2" for i in range(N_VARIANTS)]
    positions = [10000 * (i % 30 + 1) for i in range(N_VARIANTS)]
    return pd.DataFrame(
        {"chrom": chroms, "pos": positions},
        index=pd.Index(sample_genotype_data.index, name="variant_id"),
    )


@pytest.fixture
def sample_gene_positions(sample_expression_data: pd.DataFrame) -> pd.DataFrame:
    """Genes 0-9 on chromosome 1, 10-19 on chromosome 2."""
    chroms = ["1" if i < 10 else "2" for i in range(N_GENES)]
    starts = [10000 * (i % 10 + 1) + 500 for i in range(N_GENES)]
    return pd.DataFrame(
        {
            "chrom": chroms,
            "start": starts,
            "end": [s + 2000 for s in starts],
            "strand": ["+" if i % 3 else "-" for i in range(N_GENES)],
        },
        index=pd.Index(sample_expression_data.index, name="gene_id"),
    )


@pytest.fixture
def aligned_dataset(
    sample_genotype_data: pd.DataFrame,
    sample_expression_data: pd.DataFrame,
    sample_variant_positions: pd.DataFrame,
    sample_gene_positions: pd.DataFrame,
    sample_covariate_data: pd.DataFrame,
) -> AlignedDataset:
    """Aligned dataset built from the sample frames."""
    return align_dataset(
        sample_genotype_data,
        sample_expression_data,
        sample_variant_positions,
        sample_gene_positions,
        covariates=sample_covariate_data,
    )


@pytest.fixture
def sample_genotype_file(temp_dir: Path, sample_genotype_data: pd.DataFrame) -> Path:
    """Write the genotype matrix to disk."""
    path = temp_dir / "genotypes.tsv"
    sample_genotype_data.rename_axis("variant_id").to_csv(path, sep="\t")
    return path


@pytest.fixture
def sample_expression_file(temp_dir: Path, sample_expression_data: pd.DataFrame) -> Path:
    """Write the expression matrix to disk."""
    path = temp_dir / "expression.tsv"
    sample_expression_data.rename_axis("gene_id").to_csv(path, sep="\t")
    return path


@pytest.fixture
def sample_covariate_file(temp_dir: Path, sample_covariate_data: pd.DataFrame) -> Path:
    """Write the covariate matrix to disk."""
    path = temp_dir / "covariates.tsv"
    sample_covariate_data.rename_axis("covariate").to_csv(path, sep="\t")
    return path


@pytest.fixture
def sample_variant_positions_file(
    temp_dir: Path,
    sample_variant_positions: pd.DataFrame,
) -> Path:
    """Write the variant position table to disk."""
    path = temp_dir / "variants.tsv"
    sample_variant_positions.reset_index().to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def sample_gene_positions_file(temp_dir: Path, sample_gene_positions: pd.DataFrame) -> Path:
    """Write the gene position table to disk."""
    path = temp_dir / "genes.tsv"
    sample_gene_positions.reset_index().to_csv(path, sep="\t", index=False)
    return path
