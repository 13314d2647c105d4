"""Utility modules for the eQTL mapping engine."""

from eqtl_mapper.utils.config import Config, load_config
from eqtl_mapper.utils.logging import get_logger, setup_logging
from eqtl_mapper.utils.validators import (
    AlignmentError,
    CovariateEncodingError,
    NonFiniteValueError,
    ValidationError,
    validate_expression_matrix,
    validate_file_exists,
)
from eqtl_mapper.utils.io import (
    read_expression_matrix,
    read_gene_positions,
    read_genotype_matrix,
    read_variant_positions,
    write_table,
)

__all__ = [
    "Config",
    "load_config",
    "setup_logging",
    "get_logger",
    "AlignmentError",
    "CovariateEncodingError",
    "NonFiniteValueError",
    "ValidationError",
    "validate_expression_matrix",
    "validate_file_exists",
    "read_expression_matrix",
    "read_gene_positions",
    "read_genotype_matrix",
    "read_variant_positions",
    "write_table",
]
