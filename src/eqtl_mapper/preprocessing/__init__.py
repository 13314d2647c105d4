"""Covariate preparation and sample alignment."""

from eqtl_mapper.preprocessing.alignment import AlignedDataset, align_dataset
from eqtl_mapper.preprocessing.covariates import CovariatePreprocessor

__all__ = [
    "AlignedDataset",
    "align_dataset",
    "CovariatePreprocessor",
]
