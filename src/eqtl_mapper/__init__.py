"""
eQTL Mapper.

A matrix-based engine for expression quantitative trait loci (eQTL)
mapping: covariate-adjusted association tests between genetic variants and
gene expression, split into cis and trans streams with per-stream
multiple-testing correction.
"""

from eqtl_mapper._version import __version__

__all__ = ["__version__"]
