"""Association testing, partitioning, correction and results."""

from eqtl_mapper.analysis.association import (
    PairStatistics,
    ResidualizationContext,
    associate_pair,
    compute_linear_block,
)
from eqtl_mapper.analysis.engine import EQTLEngine, map_eqtls
from eqtl_mapper.analysis.multiple_testing import PValueAccumulator, adjust
from eqtl_mapper.analysis.partition import CisTransPartitioner, GeneLocus, classify_pair
from eqtl_mapper.analysis.results import AssociationRecord, EQTLResults, StreamResults

__all__ = [
    "PairStatistics",
    "ResidualizationContext",
    "associate_pair",
    "compute_linear_block",
    "EQTLEngine",
    "map_eqtls",
    "PValueAccumulator",
    "adjust",
    "CisTransPartitioner",
    "GeneLocus",
    "classify_pair",
    "AssociationRecord",
    "EQTLResults",
    "StreamResults",
]
