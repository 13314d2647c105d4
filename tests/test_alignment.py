"""Tests for sample alignment."""

import numpy as np
import pandas as pd
import pytest

from eqtl_mapper.preprocessing.alignment import align_dataset, sample_permutation
from eqtl_mapper.utils.config import CovariateConfig
from eqtl_mapper.utils.validators import (
    AlignmentError,
    CovariateEncodingError,
    ValidationError,
)


class TestSamplePermutation:
    """Tests for sample_permutation."""

    def test_permutation(self) -> None:
        """Test the permutation puts samples in reference order."""
        perm = sample_permutation(["A", "B", "C"], ["C", "A", "B"], "expression")
        assert [["C", "A", "B"][i] for i in perm] == ["A", "B", "C"]

    def test_different_sets_raise(self) -> None:
        """Test a missing sample cannot be permuted away."""
        with pytest.raises(AlignmentError, match="missing"):
            sample_permutation(["A", "B", "C"], ["A", "B", "D"], "expression")

    def test_duplicates_raise(self) -> None:
        """Test duplicated samples are rejected."""
        with pytest.raises(AlignmentError, match="Duplicate"):
            sample_permutation(["A", "B"], ["A", "A"], "covariate")


class TestAlignDataset:
    """Tests for align_dataset."""

    def test_aligned_shapes(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
        sample_covariate_data: pd.DataFrame,
    ) -> None:
        """Test matrix orientation and identifiers."""
        dataset = align_dataset(
            sample_genotype_data,
            sample_expression_data,
            sample_variant_positions,
            sample_gene_positions,
            covariates=sample_covariate_data,
        )
        assert dataset.genotypes.shape == (60, 40)
        assert dataset.expression.shape == (20, 40)
        assert dataset.covariates.shape == (40, 2)
        assert dataset.covariate_names == ("age", "sex")
        assert dataset.sample_ids == tuple(sample_genotype_data.columns)
        assert list(dataset.variant_positions.index) == list(dataset.variant_ids)
        assert list(dataset.gene_positions.index) == list(dataset.gene_ids)

    def test_without_covariates(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
    ) -> None:
        """Test the covariate matrix is empty when none are given."""
        dataset = align_dataset(
            sample_genotype_data,
            sample_expression_data,
            sample_variant_positions,
            sample_gene_positions,
        )
        assert dataset.n_covariates == 0
        assert dataset.covariates.shape == (40, 0)

    def test_positions_follow_matrix_order(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
    ) -> None:
        """Test position tables are reindexed to the matrix rows."""
        dataset = align_dataset(
            sample_genotype_data,
            sample_expression_data,
            sample_variant_positions.iloc[::-1],
            sample_gene_positions.sample(frac=1.0, random_state=0),
        )
        assert list(dataset.variant_positions.index) == list(sample_genotype_data.index)
        assert list(dataset.gene_positions.index) == list(sample_expression_data.index)

    def test_reorder_samples(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
        sample_covariate_data: pd.DataFrame,
    ) -> None:
        """Test one permutation brings expression and covariates into genotype order."""
        reversed_cols = list(sample_expression_data.columns)[::-1]
        dataset = align_dataset(
            sample_genotype_data,
            sample_expression_data[reversed_cols],
            sample_variant_positions,
            sample_gene_positions,
            covariates=sample_covariate_data[reversed_cols],
            reorder_samples=True,
        )
        np.testing.assert_array_equal(dataset.expression, sample_expression_data.to_numpy())

    def test_order_mismatch_without_opt_in(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
    ) -> None:
        """Test mismatched order is fatal by default."""
        reversed_cols = list(sample_expression_data.columns)[::-1]
        with pytest.raises(AlignmentError):
            align_dataset(
                sample_genotype_data,
                sample_expression_data[reversed_cols],
                sample_variant_positions,
                sample_gene_positions,
            )

    def test_missing_position_raises(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
    ) -> None:
        """Test a variant without a position entry is named."""
        with pytest.raises(ValidationError, match="rs0"):
            align_dataset(
                sample_genotype_data,
                sample_expression_data,
                sample_variant_positions.drop(index="rs0"),
                sample_gene_positions,
            )

    def test_out_of_range_dosage_raises(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
    ) -> None:
        """Test dosages must lie in [0, 2]."""
        genotypes = sample_genotype_data.copy()
        genotypes.iloc[0, 5] = 3.0
        with pytest.raises(ValidationError, match="rs0"):
            align_dataset(
                genotypes,
                sample_expression_data,
                sample_variant_positions,
                sample_gene_positions,
            )

    def test_unknown_covariate_label_raises(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
        sample_covariate_data: pd.DataFrame,
    ) -> None:
        """Test covariate encoding errors surface from alignment."""
        covariates = sample_covariate_data.copy()
        covariates.iloc[1, 0] = "X"
        with pytest.raises(CovariateEncodingError):
            align_dataset(
                sample_genotype_data,
                sample_expression_data,
                sample_variant_positions,
                sample_gene_positions,
                covariates=covariates,
            )

    def test_genotype_pcs_added(
        self,
        sample_genotype_data: pd.DataFrame,
        sample_expression_data: pd.DataFrame,
        sample_variant_positions: pd.DataFrame,
        sample_gene_positions: pd.DataFrame,
        sample_covariate_data: pd.DataFrame,
    ) -> None:
        """Test configured genotype PCs become covariates."""
        dataset = align_dataset(
            sample_genotype_data,
            sample_expression_data,
            sample_variant_positions,
            sample_gene_positions,
            covariates=sample_covariate_data,
            covariate_config=CovariateConfig(n_genotype_pcs=2),
        )
        assert dataset.covariate_names == ("age", "sex", "genoPC1", "genoPC2")
