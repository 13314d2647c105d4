"""Cis/trans partitioning of variant-gene pairs.

A pair is cis when the variant sits on the gene's chromosome inside the
gene's extended window ``[start - flank, end + flank]`` (bounds inclusive);
every other pair is trans.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np
import pandas as pd

from eqtl_mapper.utils.logging import get_logger

logger = get_logger(__name__)

Stream = Literal["cis", "trans"]
CIS: Stream = "cis"
TRANS: Stream = "trans"


@dataclass(frozen=True)
class GeneLocus:
    """Transcript coordinates of a gene."""

    chrom: str
    start: int
    end: int
    strand: str = "+"

    @property
    def tss(self) -> int:
        """Transcription start site, strand aware."""
        return self.end if self.strand == "-" else self.start

    def window(self, flank: int) -> tuple[int, int]:
        """Cis window bounds (inclusive)."""
        return self.start - flank, self.end + flank

    def contains(self, chrom: str, pos: int, flank: int) -> bool:
        window_start, window_end = self.window(flank)
        return str(chrom) == self.chrom and window_start <= pos <= window_end


def classify_pair(variant_chrom: str, variant_pos: int, locus: GeneLocus, flank: int) -> Stream:
    """Label a variant-gene pair as cis or trans."""
    return CIS if locus.contains(variant_chrom, variant_pos, flank) else TRANS


def signed_distance(
    variant_pos: np.ndarray | int,
    locus: GeneLocus,
    flank: int,
    reference: str = "tss",
) -> np.ndarray | int:
    """
    Distance from a gene reference point to variant position(s).

    ``tss`` measures from the transcription start site, positive downstream
    in the gene's orientation. ``window_start`` measures from the left edge
    of the flank-extended window.
    """
    if reference == "tss":
        delta = np.asarray(variant_pos) - locus.tss
        return -delta if locus.strand == "-" else delta
    if reference == "window_start":
        return np.asarray(variant_pos) - locus.window(flank)[0]
    raise ValueError(f"Unknown distance reference: {reference}")


class CisTransPartitioner:
    """Per-chromosome position index used to find each gene's cis variants."""

    def __init__(
        self,
        variant_positions: pd.DataFrame,
        gene_positions: pd.DataFrame,
        flank: int,
    ) -> None:
        """
        Build the index.

        Args:
            variant_positions: chrom and pos columns, rows in genotype-matrix order.
            gene_positions: chrom, start, end and strand columns, rows in
                            expression-matrix order.
            flank: Cis flank distance in bases.
        """
        if flank < 0:
            raise ValueError("Cis flank distance must be non-negative")
        self.flank = int(flank)
        self._variant_chrom = variant_positions["chrom"].astype(str).to_numpy()
        self._variant_pos = variant_positions["pos"].to_numpy(dtype=np.int64)

        strand = (
            gene_positions["strand"].astype(str)
            if "strand" in gene_positions.columns
            else pd.Series("+", index=gene_positions.index)
        )
        self._loci = [
            GeneLocus(str(chrom), int(start), int(end), str(s))
            for chrom, start, end, s in zip(
                gene_positions["chrom"],
                gene_positions["start"],
                gene_positions["end"],
                strand,
            )
        ]

        self._by_chrom: dict[str, tuple[np.ndarray, np.ndarray]] = {}
        for chrom in np.unique(self._variant_chrom):
            idx = np.flatnonzero(self._variant_chrom == chrom)
            order = np.argsort(self._variant_pos[idx], kind="stable")
            self._by_chrom[str(chrom)] = (idx[order], self._variant_pos[idx][order])

        self._cis = [self._find_cis(g) for g in range(len(self._loci))]

    @property
    def n_genes(self) -> int:
        return len(self._loci)

    @property
    def n_variants(self) -> int:
        return len(self._variant_pos)

    def locus(self, gene_index: int) -> GeneLocus:
        return self._loci[gene_index]

    def classify(self, variant_index: int, gene_index: int) -> Stream:
        """Label one pair by row indices."""
        return classify_pair(
            self._variant_chrom[variant_index],
            int(self._variant_pos[variant_index]),
            self._loci[gene_index],
            self.flank,
        )

    def cis_variant_indices(self, gene_index: int) -> np.ndarray:
        """Variant row indices inside the gene's cis window, ascending."""
        return self._cis[gene_index]

    def _find_cis(self, gene_index: int) -> np.ndarray:
        locus = self._loci[gene_index]
        entry = self._by_chrom.get(locus.chrom)
        if entry is None:
            result = np.empty(0, dtype=np.int64)
        else:
            indices, positions = entry
            window_start, window_end = locus.window(self.flank)
            lo = np.searchsorted(positions, window_start, side="left")
            hi = np.searchsorted(positions, window_end, side="right")
            result = np.sort(indices[lo:hi])
        return result

    def cis_mask(self, gene_indices: np.ndarray, variant_start: int, variant_stop: int) -> np.ndarray:
        """
        Boolean genes x variants mask of cis pairs for a contiguous variant range.

        Args:
            gene_indices: Gene row indices of the block.
            variant_start: First variant row of the range.
            variant_stop: One past the last variant row of the range.
        """
        mask = np.zeros((len(gene_indices), variant_stop - variant_start), dtype=bool)
        for row, gene_index in enumerate(gene_indices):
            cis = self.cis_variant_indices(int(gene_index))
            cis = cis[(cis >= variant_start) & (cis < variant_stop)]
            mask[row, cis - variant_start] = True
        return mask

    def distances(
        self,
        gene_index: int,
        variant_indices: np.ndarray,
        reference: str = "tss",
    ) -> np.ndarray:
        """Distances for one gene; NaN where the variant is on another chromosome."""
        locus = self._loci[gene_index]
        variant_indices = np.asarray(variant_indices, dtype=np.int64)
        result = np.full(len(variant_indices), np.nan)
        same = self._variant_chrom[variant_indices] == locus.chrom
        if same.any():
            result[same] = signed_distance(
                self._variant_pos[variant_indices[same]], locus, self.flank, reference
            )
        return result

    def count_cis_pairs(self) -> int:
        """Total number of cis pairs over all genes."""
        return int(sum(len(self.cis_variant_indices(g)) for g in range(self.n_genes)))
