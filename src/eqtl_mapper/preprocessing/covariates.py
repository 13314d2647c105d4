"""Covariate preparation for eQTL mapping.

This module handles:
- Encoding categorical covariates with a declared canonical mapping
- One-hot expansion of declared multi-level covariates
- Computing genetic PCs from the genotype matrix
- Combining and scaling covariates before residualization
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from eqtl_mapper.utils.config import CovariateConfig
from eqtl_mapper.utils.logging import get_logger
from eqtl_mapper.utils.validators import CovariateEncodingError, validate_covariate_matrix

logger = get_logger(__name__)


@dataclass
class CovariateStats:
    """Statistics about prepared covariates."""

    n_input_covariates: int
    n_encoded_categorical: int
    n_one_hot_columns: int
    n_genotype_pcs: int
    n_total_covariates: int
    n_samples: int


class CovariatePreprocessor:
    """Turns a raw covariate table into the numeric matrix used for residualization."""

    def __init__(self, config: CovariateConfig | None = None, random_seed: int = 42) -> None:
        """
        Initialize covariate preprocessor.

        Args:
            config: Covariate configuration (encodings, one-hot list, PCs, scaling).
            random_seed: Seed for the PCA solver.
        """
        self.config = config or CovariateConfig()
        self.random_seed = random_seed
        self._stats: CovariateStats | None = None
        self._n_encoded = 0
        self._n_one_hot = 0

    @property
    def stats(self) -> CovariateStats | None:
        """Get statistics from last run."""
        return self._stats

    def encode_categorical_covariates(self, covariates: pd.DataFrame) -> pd.DataFrame:
        """
        Convert every covariate row to floats.

        Rows named in ``categorical_encodings`` are mapped label -> code; rows
        named in ``one_hot`` become drop-first indicator rows; every other row
        must already be numeric.

        Args:
            covariates: Covariate matrix (covariates x samples), any dtype.

        Returns:
            Numeric covariate matrix.

        Raises:
            CovariateEncodingError: On an unrecognized label or an undeclared
                non-numeric covariate.
        """
        encodings = self.config.categorical_encodings or {}
        one_hot = set(self.config.one_hot or [])
        rows: list[pd.Series] = []
        self._n_encoded = 0
        self._n_one_hot = 0

        for name in covariates.index:
            row = covariates.loc[name]
            if name in encodings:
                rows.append(self._encode_with_mapping(str(name), row, encodings[name]))
                self._n_encoded += 1
            elif name in one_hot:
                dummies = self._one_hot(str(name), row)
                rows.extend(dummies)
                self._n_one_hot += len(dummies)
            else:
                numeric = pd.to_numeric(row, errors="coerce")
                bad = numeric.isna() & row.notna()
                if bad.any():
                    labels = sorted({str(v) for v in row[bad]})
                    raise CovariateEncodingError(
                        f"Covariate '{name}' is not numeric (values {labels[:5]}); "
                        "declare it in categorical_encodings or one_hot"
                    )
                rows.append(numeric.astype(float).rename(name))

        if not rows:
            return pd.DataFrame(columns=covariates.columns, dtype=float)

        encoded = pd.DataFrame(rows)
        encoded.columns = covariates.columns
        return encoded

    @staticmethod
    def _encode_with_mapping(
        name: str,
        row: pd.Series,
        mapping: dict[str, int],
    ) -> pd.Series:
        """Encode one row through its canonical label -> code mapping.

        Values are looked up as labels first. A row is taken as already
        encoded only when none of its values is a label of the mapping and
        every value is one of the codes.
        """
        codes = {str(label).strip(): float(code) for label, code in mapping.items()}
        allowed_codes = set(codes.values())
        labels = row.astype(str).str.strip()

        if labels.isin(list(codes)).all():
            return labels.map(codes).astype(float).rename(name)

        numeric = pd.to_numeric(row, errors="coerce")
        if (
            not labels.isin(list(codes)).any()
            and numeric.notna().all()
            and set(numeric.astype(float)) <= allowed_codes
        ):
            return numeric.astype(float).rename(name)

        unknown = sorted(set(labels) - set(codes))
        raise CovariateEncodingError(
            f"Covariate '{name}' has unrecognized categories {unknown}; "
            f"expected one of {sorted(codes)}"
        )

    @staticmethod
    def _one_hot(name: str, row: pd.Series) -> list[pd.Series]:
        """Expand a multi-level covariate into drop-first indicator rows."""
        labels = row.astype(str).str.strip()
        levels = sorted(labels.unique())
        if len(levels) < 2:
            logger.warning(f"One-hot covariate '{name}' has a single level, dropped")
            return []
        return [
            (labels == level).astype(float).rename(f"{name}_{level}")
            for level in levels[1:]
        ]

    def compute_genotype_pcs(
        self,
        genotypes: pd.DataFrame,
        n_pcs: int | None = None,
    ) -> pd.DataFrame:
        """
        Compute principal components from the genotype matrix.

        Args:
            genotypes: Dosage matrix (variants x samples).
            n_pcs: Number of PCs to compute.

        Returns:
            PC matrix (PCs x samples).
        """
        n_pcs = self.config.n_genotype_pcs if n_pcs is None else n_pcs

        dosages = genotypes.to_numpy(dtype=float)
        informative = dosages.std(axis=1) > 0
        dosages = dosages[informative]

        scaler = StandardScaler()
        dosage_scaled = scaler.fit_transform(dosages.T)  # samples x variants

        n_components = min(n_pcs, min(dosage_scaled.shape) - 1)
        if n_components < 1:
            logger.warning("Too few samples or variants to compute genotype PCs")
            return pd.DataFrame(columns=genotypes.columns, dtype=float)

        pca = PCA(n_components=n_components, random_state=self.random_seed)
        pcs = pca.fit_transform(dosage_scaled)  # samples x components

        pc_df = pd.DataFrame(
            pcs.T,
            index=[f"genoPC{i + 1}" for i in range(n_components)],
            columns=genotypes.columns,
        )

        variance_explained = pca.explained_variance_ratio_.sum() * 100
        logger.info(
            f"Computed {n_components} genotype PCs from {int(informative.sum())} variants "
            f"(variance explained: {variance_explained:.1f}%)"
        )

        return pc_df

    def combine_covariates(self, *covariate_dfs: pd.DataFrame) -> pd.DataFrame:
        """
        Stack covariate matrices sharing the same sample columns.

        Raises:
            ValueError: If no matrices are given or their sample columns differ.
        """
        if len(covariate_dfs) == 0:
            raise ValueError("At least one covariate DataFrame required")

        columns = list(covariate_dfs[0].columns)
        for df in covariate_dfs[1:]:
            if list(df.columns) != columns:
                raise ValueError("Covariate matrices have different sample columns")

        combined = pd.concat(list(covariate_dfs), axis=0)

        if combined.index.duplicated().any():
            logger.warning("Duplicate covariate names detected, making unique")
            combined.index = pd.Index([
                f"{name}_{i}" if dup else name
                for i, (name, dup) in enumerate(
                    zip(combined.index, combined.index.duplicated())
                )
            ])

        return combined

    @staticmethod
    def scale_covariates(covariates: pd.DataFrame) -> pd.DataFrame:
        """Center each covariate and scale it to unit standard deviation."""
        if covariates.empty:
            return covariates
        centered = covariates.sub(covariates.mean(axis=1), axis=0)
        std = covariates.std(axis=1).replace(0, 1.0)
        return centered.div(std, axis=0)

    def prepare(
        self,
        covariates: pd.DataFrame | None,
        sample_ids: list[str],
        genotypes: pd.DataFrame | None = None,
    ) -> pd.DataFrame:
        """
        Build the numeric covariate matrix used by the engine.

        Args:
            covariates: Raw covariate matrix (covariates x samples) or None.
            sample_ids: Sample order of the genotype matrix; used for the
                        empty matrix when there are no covariates.
            genotypes: Genotype matrix, required when genotype PCs are requested.

        Returns:
            Numeric covariate matrix (possibly with zero rows).
        """
        n_input = 0 if covariates is None else len(covariates)
        parts = []

        if covariates is not None and len(covariates) > 0:
            parts.append(self.encode_categorical_covariates(covariates))

        n_pcs = 0
        if self.config.n_genotype_pcs > 0:
            if genotypes is None:
                raise ValueError("Genotype matrix required to compute genotype PCs")
            pcs = self.compute_genotype_pcs(genotypes)
            if len(pcs) > 0:
                if parts:
                    pcs = pcs[list(parts[0].columns)]
                parts.append(pcs)
            n_pcs = len(pcs)

        if parts:
            combined = self.combine_covariates(*parts)
        else:
            combined = pd.DataFrame(index=pd.Index([], dtype=str), columns=sample_ids, dtype=float)

        if self.config.scale:
            combined = self.scale_covariates(combined)

        if len(combined) > 0:
            validation = validate_covariate_matrix(combined)
            if not validation["valid"]:
                logger.warning(f"Covariate validation issues: {validation['issues']}")

        self._stats = CovariateStats(
            n_input_covariates=n_input,
            n_encoded_categorical=self._n_encoded,
            n_one_hot_columns=self._n_one_hot,
            n_genotype_pcs=n_pcs,
            n_total_covariates=len(combined),
            n_samples=combined.shape[1],
        )

        logger.info(f"Prepared {len(combined)} covariates for {combined.shape[1]} samples")
        return combined.astype(float)


def covariate_design(covariates: pd.DataFrame | None, n_samples: int) -> np.ndarray:
    """Return covariates as a float array of shape (samples, covariates)."""
    if covariates is None or len(covariates) == 0:
        return np.empty((n_samples, 0), dtype=float)
    return covariates.to_numpy(dtype=float).T
