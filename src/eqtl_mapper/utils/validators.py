"""Data validation utilities for the eQTL mapping engine."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np

from eqtl_mapper.utils.logging import get_logger

if TYPE_CHECKING:
    import pandas as pd

logger = get_logger(__name__)


class ValidationError(Exception):
    """Raised when data validation fails."""

    pass


class AlignmentError(ValidationError):
    """Raised when sample identifiers differ across the input matrices."""

    pass


class NonFiniteValueError(ValidationError):
    """Raised when a matrix contains NaN or infinite values."""

    def __init__(self, matrix: str, row_id: str, n_bad: int) -> None:
        self.matrix = matrix
        self.row_id = row_id
        self.n_bad = n_bad
        super().__init__(
            f"{matrix} matrix row '{row_id}' contains {n_bad} non-finite value(s); "
            "missing or infinite values must be removed or imputed upstream"
        )


class CovariateEncodingError(ValidationError):
    """Raised when a categorical covariate cannot be encoded."""

    pass


def validate_file_exists(
    file_path: str | Path,
    description: str = "file",
    raise_error: bool = True,
) -> bool:
    """
    Validate that a file exists.

    Args:
        file_path: Path to the file.
        description: Description of the file for error messages.
        raise_error: If True, raise an error on failure.

    Returns:
        True if file exists.

    Raises:
        FileNotFoundError: If file does not exist and raise_error is True.
    """
    path = Path(file_path)
    if not path.exists():
        msg = f"{description} not found: {file_path}"
        if raise_error:
            raise FileNotFoundError(msg)
        logger.warning(msg)
        return False
    return True


def validate_finite(
    values: np.ndarray,
    row_ids: Sequence[str],
    matrix_name: str,
) -> None:
    """
    Require every value of a 2-D matrix to be finite.

    Args:
        values: Matrix values (rows x samples).
        row_ids: Row identifiers, used to name the offending row.
        matrix_name: Matrix name for the error message.

    Raises:
        NonFiniteValueError: On the first row containing NaN or +/-inf.
    """
    if values.size == 0:
        return
    bad = ~np.isfinite(values)
    if bad.any():
        row = int(np.flatnonzero(bad.any(axis=1))[0])
        raise NonFiniteValueError(matrix_name, str(row_ids[row]), int(bad[row].sum()))


def validate_genotype_values(values: np.ndarray, row_ids: Sequence[str]) -> None:
    """
    Require additive genotype dosages within [0, 2].

    Raises:
        ValidationError: If any dosage falls outside [0, 2].
    """
    if values.size == 0:
        return
    out_of_range = (values < 0) | (values > 2)
    if out_of_range.any():
        row = int(np.flatnonzero(out_of_range.any(axis=1))[0])
        raise ValidationError(
            f"Genotype row '{row_ids[row]}' has dosages outside [0, 2]"
        )


def validate_sample_alignment(samples: Mapping[str, Sequence[str]]) -> None:
    """
    Require identical ordered sample identifiers across named matrices.

    Args:
        samples: Matrix name -> ordered sample identifiers. The first entry is
                 the reference order.

    Raises:
        AlignmentError: If any matrix has a different sample set, length or order.
    """
    items = list(samples.items())
    if not items:
        return
    ref_name, ref_samples = items[0]
    ref_list = [str(s) for s in ref_samples]

    if len(set(ref_list)) != len(ref_list):
        raise AlignmentError(f"Duplicate sample identifiers in {ref_name} matrix")

    for name, other in items[1:]:
        other_list = [str(s) for s in other]
        if other_list == ref_list:
            continue

        missing = set(ref_list) - set(other_list)
        extra = set(other_list) - set(ref_list)
        if missing or extra or len(other_list) != len(ref_list):
            raise AlignmentError(
                f"Sample sets differ between {ref_name} and {name} matrices: "
                f"{len(missing)} missing from {name} (e.g. {sorted(missing)[:3]}), "
                f"{len(extra)} extra in {name} (e.g. {sorted(extra)[:3]})"
            )

        position = next(i for i, (a, b) in enumerate(zip(ref_list, other_list)) if a != b)
        raise AlignmentError(
            f"Sample order differs between {ref_name} and {name} matrices at position "
            f"{position}: '{ref_list[position]}' vs '{other_list[position]}'"
        )


def validate_expression_matrix(
    expression_data: pd.DataFrame,
    min_genes: int = 1,
    min_samples: int = 3,
) -> dict[str, bool | int | list[str]]:
    """
    Validate a pre-normalized expression matrix.

    Args:
        expression_data: Expression matrix as DataFrame (genes x samples).
        min_genes: Minimum number of genes required.
        min_samples: Minimum number of samples required.

    Returns:
        Dictionary with validation results.
    """
    results: dict[str, bool | int | list[str]] = {
        "valid": True,
        "n_genes": expression_data.shape[0],
        "n_samples": expression_data.shape[1],
        "has_missing_values": False,
        "issues": [],
    }

    issues: list[str] = []

    if expression_data.shape[0] < min_genes:
        issues.append(f"Insufficient genes: {expression_data.shape[0]} < {min_genes}")

    if expression_data.shape[1] < min_samples:
        issues.append(f"Insufficient samples: {expression_data.shape[1]} < {min_samples}")

    if not expression_data.index.is_unique:
        issues.append("Gene IDs not unique")

    if not expression_data.columns.is_unique:
        issues.append("Sample IDs not unique")

    values = expression_data.to_numpy(dtype=float, na_value=np.nan)
    n_missing = int(np.isnan(values).sum())
    if n_missing > 0:
        results["has_missing_values"] = True
        issues.append(f"Contains {n_missing} missing values")

    if np.isinf(values).any():
        issues.append("Contains infinite values")

    constant = int((np.nanstd(values, axis=1) == 0).sum()) if values.size else 0
    if constant:
        issues.append(f"Contains {constant} constant genes")

    results["issues"] = issues
    results["valid"] = len(issues) == 0

    if not results["valid"]:
        logger.warning(f"Expression matrix validation issues: {issues}")

    return results


def validate_covariate_matrix(
    covariates: pd.DataFrame,
    sample_ids: list[str] | None = None,
    max_covariates: int | None = None,
) -> dict[str, bool | int | list[str]]:
    """
    Validate covariate matrix format.

    Args:
        covariates: Covariate matrix as DataFrame (covariates x samples).
        sample_ids: Expected sample IDs to match.
        max_covariates: Maximum allowed number of covariates.

    Returns:
        Dictionary with validation results.
    """
    results: dict[str, bool | int | list[str]] = {
        "valid": True,
        "n_covariates": covariates.shape[0],
        "n_samples": covariates.shape[1],
        "issues": [],
    }

    issues: list[str] = []

    if sample_ids is not None:
        covariate_samples = set(covariates.columns)
        expected_samples = set(sample_ids)
        missing = expected_samples - covariate_samples
        extra = covariate_samples - expected_samples

        if missing:
            issues.append(f"Missing samples in covariates: {len(missing)}")
        if extra:
            issues.append(f"Extra samples in covariates: {len(extra)}")

    if max_covariates is not None and covariates.shape[0] > max_covariates:
        issues.append(f"Too many covariates: {covariates.shape[0]} > {max_covariates}")

    for cov_name in covariates.index:
        if covariates.loc[cov_name].nunique() <= 1:
            issues.append(f"Constant covariate: {cov_name}")

    results["issues"] = issues
    results["valid"] = len(issues) == 0

    return results
