"""Blocked, multi-threaded cis/trans association engine.

Genotype and expression rows are residualized once against the covariates.
Genes are then split into contiguous blocks that are processed by a thread
pool; within a block, variants are visited in batches so that one matrix
product yields every gene x variant correlation of the batch. Each worker
fills private p-value accumulators and candidate arrays, which are merged in
block order before the per-stream multiple-testing correction.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from eqtl_mapper.analysis.association import (
    ResidualizationContext,
    ResidualizedBlock,
    compute_anova_row,
    compute_linear_block,
    residualize_rows,
)
from eqtl_mapper.analysis.multiple_testing import PValueAccumulator, adjust
from eqtl_mapper.analysis.partition import CIS, TRANS, CisTransPartitioner, Stream
from eqtl_mapper.analysis.results import AssociationRecord, EQTLResults, StreamResults
from eqtl_mapper.preprocessing.alignment import AlignedDataset, align_dataset
from eqtl_mapper.utils.config import (
    DISTANCE_REFERENCES,
    FDR_METHODS,
    MODELS,
    MODES,
    CovariateConfig,
    EngineConfig,
)
from eqtl_mapper.utils.logging import get_logger, log_step, log_summary, timed

logger = get_logger(__name__)


@dataclass
class _StreamPartial:
    """Per-block output of one stream."""

    pvalues: PValueAccumulator = field(default_factory=PValueAccumulator)
    gene_idx: list[np.ndarray] = field(default_factory=list)
    variant_idx: list[np.ndarray] = field(default_factory=list)
    slope: list[np.ndarray] = field(default_factory=list)
    statistic: list[np.ndarray] = field(default_factory=list)
    pval: list[np.ndarray] = field(default_factory=list)
    n_skipped: int = 0


@dataclass
class _BlockResult:
    gene_start: int
    gene_min: dict[str, np.ndarray]
    streams: dict[str, _StreamPartial]


class EQTLEngine:
    """Cis/trans association mapping over an aligned dataset."""

    def __init__(self, config: EngineConfig | None = None, n_jobs: int = 1) -> None:
        """
        Initialize the engine.

        Args:
            config: Engine settings. If None, uses defaults.
            n_jobs: Number of worker threads.

        Raises:
            ValueError: If a setting is out of range.
        """
        self.config = config or EngineConfig()
        self.n_jobs = max(1, int(n_jobs))
        self._check_config()

    def _check_config(self) -> None:
        cfg = self.config
        if cfg.mode not in MODES:
            raise ValueError(f"Unknown mode: {cfg.mode}. Choose from {MODES}")
        if cfg.model not in MODELS:
            raise ValueError(f"Unknown model: {cfg.model}. Choose from {MODELS}")
        if cfg.fdr_method not in FDR_METHODS:
            raise ValueError(f"Unknown FDR method: {cfg.fdr_method}. Choose from {FDR_METHODS}")
        if cfg.distance_reference not in DISTANCE_REFERENCES:
            raise ValueError(f"Unknown distance reference: {cfg.distance_reference}")
        if cfg.cis_window < 0:
            raise ValueError("cis_window must be non-negative")
        if cfg.gene_block_size < 1 or cfg.variant_batch_size < 1:
            raise ValueError("gene_block_size and variant_batch_size must be positive")

    @property
    def streams(self) -> tuple[Stream, ...]:
        """Streams computed under the configured mode."""
        if self.config.mode == CIS:
            return (CIS,)
        if self.config.mode == TRANS:
            return (TRANS,)
        return (CIS, TRANS)

    def _threshold(self, stream: str) -> float:
        if stream == CIS:
            return self.config.pval_threshold_cis
        return self.config.pval_threshold_trans

    def run(self, dataset: AlignedDataset) -> EQTLResults:
        """
        Map eQTLs for every variant-gene pair of the dataset.

        Args:
            dataset: Aligned, validated inputs.

        Returns:
            Cis and trans results. A stream not selected by the mode is empty.

        Raises:
            ValidationError: If the covariates leave no residual degrees of
                freedom or are collinear.
        """
        cfg = self.config
        log_step(f"Mapping {cfg.mode} eQTLs ({cfg.model} model)", logger)

        context = ResidualizationContext.from_covariates(dataset.covariates, dataset.n_samples)
        partitioner = CisTransPartitioner(
            dataset.variant_positions, dataset.gene_positions, cfg.cis_window
        )

        with timed("Residualization", logger):
            genotypes = residualize_rows(dataset.genotypes, context)
            phenotypes = residualize_rows(dataset.expression, context)

        if phenotypes.n_degenerate:
            logger.warning(
                f"{phenotypes.n_degenerate} gene(s) have zero residual variance and are skipped"
            )
        if genotypes.n_degenerate and cfg.model == "linear":
            logger.warning(
                f"{genotypes.n_degenerate} variant(s) have zero residual variance and are skipped"
            )

        block_size = cfg.gene_block_size
        starts = list(range(0, dataset.n_genes, block_size))
        n_workers = min(self.n_jobs, max(len(starts), 1))
        logger.info(
            f"Testing {dataset.n_genes:,} genes x {dataset.n_variants:,} variants "
            f"in {len(starts)} block(s) on {n_workers} thread(s)"
        )

        def work(start: int) -> _BlockResult:
            stop = min(start + block_size, dataset.n_genes)
            return self._process_block(
                start, stop, dataset, context, genotypes, phenotypes, partitioner
            )

        with timed("Association testing", logger):
            if n_workers > 1:
                with concurrent.futures.ThreadPoolExecutor(max_workers=n_workers) as executor:
                    blocks = list(executor.map(work, starts))
            else:
                blocks = [work(start) for start in starts]

        stream_results = {
            stream: self._finalize_stream(stream, blocks, dataset, partitioner)
            for stream in self.streams
        }
        cis = stream_results.get(CIS, StreamResults.empty(CIS))
        trans = stream_results.get(TRANS, StreamResults.empty(TRANS))

        results = EQTLResults(
            cis=cis,
            trans=trans,
            fdr_threshold=cfg.fdr_threshold,
            run_info={
                "samples": dataset.n_samples,
                "variants": dataset.n_variants,
                "genes": dataset.n_genes,
                "covariates": dataset.n_covariates,
                "mode": cfg.mode,
                "model": cfg.model,
                "fdr_method": cfg.fdr_method,
                "cis_window": cfg.cis_window,
                "cis_pairs": partitioner.count_cis_pairs(),
            },
            streams=self.streams,
        )

        for stream, summary in results.summary().items():
            log_summary(
                f"{stream.capitalize()} eQTLs",
                {
                    "Tests": f"{summary.n_tests:,}",
                    "Skipped (zero variance)": f"{summary.n_skipped:,}",
                    "Reported": f"{summary.n_reported:,}",
                    f"Significant (FDR < {summary.fdr_threshold})": f"{summary.n_significant:,}",
                    "eGenes": f"{summary.n_egenes:,}",
                },
                logger,
            )
            if summary.n_skipped:
                logger.warning(f"{summary.n_skipped:,} {stream} pair(s) skipped as degenerate")

        return results

    def _variant_range(
        self,
        gene_indices: np.ndarray,
        n_variants: int,
        partitioner: CisTransPartitioner,
    ) -> tuple[int, int]:
        """Variant rows a block needs to visit."""
        if self.config.mode != CIS:
            return 0, n_variants
        cis = [partitioner.cis_variant_indices(int(g)) for g in gene_indices]
        cis = [c for c in cis if len(c)]
        if not cis:
            return 0, 0
        return int(min(c[0] for c in cis)), int(max(c[-1] for c in cis)) + 1

    def _batch_statistics(
        self,
        dataset: AlignedDataset,
        context: ResidualizationContext,
        genotypes: ResidualizedBlock,
        block_phenotypes: ResidualizedBlock,
        variant_start: int,
        variant_stop: int,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Slope, statistic, p-value (genes x variants) and usable-variant mask."""
        n_genes = block_phenotypes.residuals.shape[0]
        width = variant_stop - variant_start

        if self.config.model == "linear":
            batch = ResidualizedBlock(
                residuals=genotypes.residuals[variant_start:variant_stop],
                norms=genotypes.norms[variant_start:variant_stop],
                valid=genotypes.valid[variant_start:variant_stop],
            )
            slope, _, t_stat, pval = compute_linear_block(batch, block_phenotypes, context.dof)
            return slope, t_stat, pval, batch.valid

        slope = np.full((n_genes, width), np.nan)
        f_stat = np.full((n_genes, width), np.nan)
        pval = np.full((n_genes, width), np.nan)
        usable = np.zeros(width, dtype=bool)
        for col in range(width):
            result = compute_anova_row(
                dataset.genotypes[variant_start + col], block_phenotypes, context
            )
            if result is None:
                continue
            f_stat[:, col], pval[:, col] = result[0], result[1]
            usable[col] = True
        return slope, f_stat, pval, usable

    def _process_block(
        self,
        gene_start: int,
        gene_stop: int,
        dataset: AlignedDataset,
        context: ResidualizationContext,
        genotypes: ResidualizedBlock,
        phenotypes: ResidualizedBlock,
        partitioner: CisTransPartitioner,
    ) -> _BlockResult:
        """Test one gene block against all variant batches it needs."""
        gene_indices = np.arange(gene_start, gene_stop)
        gene_valid = phenotypes.valid[gene_start:gene_stop]
        block_phenotypes = ResidualizedBlock(
            residuals=phenotypes.residuals[gene_start:gene_stop],
            norms=phenotypes.norms[gene_start:gene_stop],
            valid=gene_valid,
        )

        partials = {stream: _StreamPartial() for stream in self.streams}
        gene_min = {stream: np.full(len(gene_indices), np.inf) for stream in self.streams}

        first, last = self._variant_range(gene_indices, dataset.n_variants, partitioner)
        batch_size = self.config.variant_batch_size

        for variant_start in range(first, last, batch_size):
            variant_stop = min(variant_start + batch_size, last)
            cis_mask = partitioner.cis_mask(gene_indices, variant_start, variant_stop)
            slope, statistic, pval, usable = self._batch_statistics(
                dataset, context, genotypes, block_phenotypes, variant_start, variant_stop
            )
            tested = gene_valid[:, None] & usable[None, :]

            for stream in self.streams:
                in_stream = cis_mask if stream == CIS else ~cis_mask
                partial = partials[stream]
                partial.n_skipped += int((in_stream & ~tested).sum())

                mask = in_stream & tested
                if not mask.any():
                    continue
                partial.pvalues.add(pval[mask])
                gene_min[stream] = np.minimum(
                    gene_min[stream], np.where(mask, pval, np.inf).min(axis=1)
                )

                rows, cols = np.nonzero(mask & (pval <= self._threshold(stream)))
                if len(rows):
                    partial.gene_idx.append(gene_indices[rows])
                    partial.variant_idx.append(variant_start + cols)
                    partial.slope.append(slope[rows, cols])
                    partial.statistic.append(statistic[rows, cols])
                    partial.pval.append(pval[rows, cols])

        return _BlockResult(gene_start=gene_start, gene_min=gene_min, streams=partials)

    def _finalize_stream(
        self,
        stream: Stream,
        blocks: list[_BlockResult],
        dataset: AlignedDataset,
        partitioner: CisTransPartitioner,
    ) -> StreamResults:
        """Merge block partials, correct, and build ordered records."""
        partials = [block.streams[stream] for block in blocks]
        accumulator = PValueAccumulator.combine(p.pvalues for p in partials)
        n_skipped = sum(p.n_skipped for p in partials)

        gene_min = np.concatenate([np.empty(0)] + [block.gene_min[stream] for block in blocks])
        tested_genes = np.isfinite(gene_min)
        gene_min_pvalues = pd.Series(
            gene_min[tested_genes],
            index=pd.Index(np.asarray(dataset.gene_ids, dtype=object)[tested_genes], name="gene_id"),
            name="min_pval",
            dtype=float,
        )

        def collect(name: str, dtype: type) -> np.ndarray:
            arrays = [a for p in partials for a in getattr(p, name)]
            return np.concatenate(arrays) if arrays else np.empty(0, dtype=dtype)

        gene_idx = collect("gene_idx", np.int64)
        variant_idx = collect("variant_idx", np.int64)
        slope = collect("slope", float)
        statistic = collect("statistic", float)
        pval = collect("pval", float)

        fdr = adjust(accumulator, pval, self.config.fdr_method)

        distance = np.full(len(gene_idx), np.nan)
        for g in np.unique(gene_idx):
            rows = np.flatnonzero(gene_idx == g)
            distance[rows] = partitioner.distances(
                int(g), variant_idx[rows], self.config.distance_reference
            )

        records = [
            AssociationRecord(
                variant_id=dataset.variant_ids[v],
                gene_id=dataset.gene_ids[g],
                slope=float(s),
                statistic=float(t),
                pval=float(p),
                fdr=float(q),
                stream=stream,
                distance=None if np.isnan(d) else int(d),
            )
            for g, v, s, t, p, q, d in zip(
                gene_idx, variant_idx, slope, statistic, pval, fdr, distance
            )
        ]

        return StreamResults(
            stream,
            records,
            accumulator,
            n_skipped=n_skipped,
            gene_min_pvalues=gene_min_pvalues,
        )


def map_eqtls(
    genotypes: pd.DataFrame,
    expression: pd.DataFrame,
    variant_positions: pd.DataFrame,
    gene_positions: pd.DataFrame,
    covariates: pd.DataFrame | None = None,
    config: EngineConfig | None = None,
    covariate_config: CovariateConfig | None = None,
    n_jobs: int = 1,
    random_seed: int = 42,
) -> EQTLResults:
    """
    Align raw data frames and run the engine.

    Args:
        genotypes: Dosage matrix (variants x samples).
        expression: Expression matrix (genes x samples).
        variant_positions: Variant table indexed by variant id (chrom, pos).
        gene_positions: Gene table indexed by gene id (chrom, start, end[, strand]).
        covariates: Covariate matrix (covariates x samples) or None.
        config: Engine settings.
        covariate_config: Covariate encoding settings.
        n_jobs: Number of worker threads.
        random_seed: Seed for genotype PCA.

    Returns:
        Cis and trans results.
    """
    config = config or EngineConfig()
    engine = EQTLEngine(config, n_jobs=n_jobs)
    dataset = align_dataset(
        genotypes,
        expression,
        variant_positions,
        gene_positions,
        covariates=covariates,
        reorder_samples=config.reorder_samples,
        covariate_config=covariate_config,
        random_seed=random_seed,
    )
    return engine.run(dataset)
