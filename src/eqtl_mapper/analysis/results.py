"""Result aggregation and diagnostics for eQTL mapping.

This module provides:
- Immutable association records and per-stream result sets
- Summary counts (tests, skipped pairs, significant pairs, eGenes)
- Calibration diagnostics (QQ data, genomic inflation, p-value histogram)
- Writing result tables and a plain text report
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Literal

import numpy as np
import pandas as pd
from scipy import stats

from eqtl_mapper.analysis.multiple_testing import PValueAccumulator
from eqtl_mapper.analysis.partition import CIS, TRANS, Stream
from eqtl_mapper.utils.io import ensure_directory, write_table
from eqtl_mapper.utils.logging import get_logger
from eqtl_mapper.utils.validators import validate_file_exists

logger = get_logger(__name__)

RESULT_COLUMNS = ["variant_id", "gene_id", "slope", "statistic", "pval", "fdr", "stream", "distance"]

_CHI2_MEDIAN = stats.chi2.ppf(0.5, df=1)


@dataclass(frozen=True)
class AssociationRecord:
    """One reported variant-gene association."""

    variant_id: str
    gene_id: str
    slope: float
    statistic: float
    pval: float
    fdr: float
    stream: Stream
    distance: int | None = None


@dataclass
class EQTLSummary:
    """Summary counts for one stream."""

    stream: str
    n_tests: int
    n_skipped: int
    n_reported: int
    n_significant: int
    n_egenes: int
    fdr_threshold: float
    lambda_gc: float | None


class StreamResults:
    """Ordered association records and p-value distribution of one stream."""

    def __init__(
        self,
        stream: Stream,
        records: list[AssociationRecord],
        pvalues: PValueAccumulator,
        n_skipped: int = 0,
        gene_min_pvalues: pd.Series | None = None,
    ) -> None:
        """
        Initialize stream results.

        Args:
            stream: Stream label.
            records: Reported records; sorted here by ascending p-value.
            pvalues: Every raw p-value of the stream.
            n_skipped: Pairs skipped as degenerate.
            gene_min_pvalues: Smallest raw p-value per gene over all tests.
        """
        self.stream = stream
        self._records = tuple(
            sorted(records, key=lambda rec: (rec.pval, rec.gene_id, rec.variant_id))
        )
        self._pvalues = pvalues
        self.n_skipped = n_skipped
        self._gene_min_pvalues = (
            gene_min_pvalues if gene_min_pvalues is not None else pd.Series(dtype=float)
        )

    @classmethod
    def empty(cls, stream: Stream) -> StreamResults:
        return cls(stream, [], PValueAccumulator())

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[AssociationRecord, ...]:
        """Reported records, ascending raw p-value."""
        return self._records

    @property
    def n_tests(self) -> int:
        """Number of tests performed in this stream."""
        return self._pvalues.n_tests

    @property
    def pvalues(self) -> PValueAccumulator:
        """Full raw p-value distribution."""
        return self._pvalues

    @property
    def gene_min_pvalues(self) -> pd.Series:
        """Smallest raw p-value per tested gene, over all tests."""
        return self._gene_min_pvalues

    def significant(self, fdr_threshold: float) -> list[AssociationRecord]:
        """Reported records with FDR below the threshold."""
        return [rec for rec in self._records if rec.fdr < fdr_threshold]

    def n_significant(self, fdr_threshold: float) -> int:
        return len(self.significant(fdr_threshold))

    def egenes(self, fdr_threshold: float) -> set[str]:
        """Genes with at least one pair below the FDR threshold."""
        return {rec.gene_id for rec in self._records if rec.fdr < fdr_threshold}

    def n_egenes(self, fdr_threshold: float) -> int:
        return len(self.egenes(fdr_threshold))

    def lead_variants(self, fdr_threshold: float) -> list[AssociationRecord]:
        """Best (smallest p-value) significant record per eGene."""
        lead: dict[str, AssociationRecord] = {}
        for rec in self.significant(fdr_threshold):
            lead.setdefault(rec.gene_id, rec)
        return list(lead.values())

    def to_dataframe(self) -> pd.DataFrame:
        """Records as a table with the standard result columns."""
        if not self._records:
            return pd.DataFrame(columns=RESULT_COLUMNS)
        return pd.DataFrame([asdict(rec) for rec in self._records], columns=RESULT_COLUMNS)

    def qq_data(self, max_points: int = 10000, tail: int = 1000) -> pd.DataFrame:
        """
        Expected vs observed -log10 p-values for a QQ diagnostic.

        Expected quantiles use ``i / (n + 1)``. With more than ``max_points``
        tests, the ``tail`` smallest p-values are kept and the rest is thinned
        to evenly spaced ranks.

        Returns:
            DataFrame with columns rank, expected_neg_log10_p, observed_neg_log10_p.
        """
        columns = ["rank", "expected_neg_log10_p", "observed_neg_log10_p"]
        observed = self._pvalues.sorted_pvalues()
        n = observed.size
        if n == 0:
            return pd.DataFrame(columns=columns)

        if n <= max_points:
            ranks = np.arange(n)
        else:
            tail = min(tail, max_points)
            spread = np.linspace(tail, n - 1, max(max_points - tail, 2)).astype(np.int64)
            ranks = np.unique(np.concatenate([np.arange(tail), spread]))

        expected = (ranks + 1) / (n + 1)
        return pd.DataFrame({
            "rank": ranks + 1,
            "expected_neg_log10_p": -np.log10(expected),
            "observed_neg_log10_p": -np.log10(np.clip(observed[ranks], 1e-300, 1.0)),
        })

    def lambda_gc(self) -> float | None:
        """Genomic inflation factor, or None with fewer than two tests."""
        observed = self._pvalues.sorted_pvalues()
        if observed.size < 2:
            return None
        chi2_obs = stats.chi2.isf(np.clip(observed, 1e-300, 1.0), df=1)
        return float(np.median(chi2_obs) / _CHI2_MEDIAN)

    def pvalue_histogram(self, bins: int = 100) -> pd.DataFrame:
        """P-value histogram as bin_start, bin_end, count."""
        counts, edges = self._pvalues.histogram(bins)
        return pd.DataFrame({"bin_start": edges[:-1], "bin_end": edges[1:], "count": counts})

    def summary(self, fdr_threshold: float) -> EQTLSummary:
        return EQTLSummary(
            stream=self.stream,
            n_tests=self.n_tests,
            n_skipped=self.n_skipped,
            n_reported=len(self._records),
            n_significant=self.n_significant(fdr_threshold),
            n_egenes=self.n_egenes(fdr_threshold),
            fdr_threshold=fdr_threshold,
            lambda_gc=self.lambda_gc(),
        )


class EQTLResults:
    """Cis and trans results of one engine run."""

    def __init__(
        self,
        cis: StreamResults,
        trans: StreamResults,
        fdr_threshold: float = 0.05,
        run_info: dict[str, str | int | float] | None = None,
        streams: tuple[Stream, ...] = (CIS, TRANS),
    ) -> None:
        """
        Initialize results.

        Args:
            cis: Cis stream results.
            trans: Trans stream results.
            fdr_threshold: Default FDR threshold for summaries.
            run_info: Run metadata (sample, variant and gene counts, settings).
            streams: Streams the run computed; only these are summarized and saved.
        """
        self.cis = cis
        self.trans = trans
        self.streams = tuple(streams)
        self.fdr_threshold = fdr_threshold
        self.run_info = dict(run_info or {})

    def stream(self, name: Stream) -> StreamResults:
        if name == CIS:
            return self.cis
        if name == TRANS:
            return self.trans
        raise ValueError(f"Unknown stream: {name}")

    def summary(self, fdr_threshold: float | None = None) -> dict[str, EQTLSummary]:
        """Per-stream summary at the given (or default) FDR threshold."""
        threshold = self.fdr_threshold if fdr_threshold is None else fdr_threshold
        return {name: self.stream(name).summary(threshold) for name in self.streams}

    def to_dataframe(self, stream: Stream | None = None) -> pd.DataFrame:
        """Records of one stream, or both streams stacked (cis first)."""
        if stream is not None:
            return self.stream(stream).to_dataframe()
        return pd.concat(
            [self.cis.to_dataframe(), self.trans.to_dataframe()],
            ignore_index=True,
        )

    def save(
        self,
        output_dir: str | Path,
        file_format: Literal["tsv", "csv", "parquet"] = "tsv",
        qq_points: int = 10000,
    ) -> dict[str, Path]:
        """
        Write result tables, diagnostics and the report.

        Args:
            output_dir: Output directory.
            file_format: Format of the result tables.
            qq_points: Maximum QQ points per stream.

        Returns:
            Mapping of output name to path.
        """
        output_dir = ensure_directory(output_dir)
        suffix = "parquet" if file_format == "parquet" else file_format
        paths: dict[str, Path] = {}

        for name in self.streams:
            stream = self.stream(name)
            paths[f"{name}_results"] = write_table(
                stream.to_dataframe(), output_dir / f"{name}_eqtls.{suffix}", file_format
            )
            paths[f"{name}_qq"] = write_table(
                stream.qq_data(max_points=qq_points), output_dir / f"{name}_qq.tsv"
            )
            paths[f"{name}_histogram"] = write_table(
                stream.pvalue_histogram(), output_dir / f"{name}_pvalue_histogram.tsv"
            )
            gene_min = stream.gene_min_pvalues.rename("min_pval").rename_axis("gene_id")
            paths[f"{name}_gene_min_pvalues"] = write_table(
                gene_min.reset_index(), output_dir / f"{name}_gene_min_pvalues.tsv"
            )

        paths["report"] = self.generate_report(output_dir / "eqtl_report.txt")
        return paths

    def generate_report(self, output_path: str | Path) -> Path:
        """
        Write a plain text summary report.

        Args:
            output_path: Output file path.

        Returns:
            Path to report file.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        summaries = self.summary()

        with open(output_path, "w", encoding="utf-8") as f:
            f.write("=" * 60 + "\n")
            f.write("eQTL Mapping Report\n")
            f.write("=" * 60 + "\n\n")

            if self.run_info:
                f.write("Run\n")
                f.write("-" * 40 + "\n")
                for key, value in self.run_info.items():
                    f.write(f"{key}: {value}\n")
                f.write("\n")

            for name, summary in summaries.items():
                f.write(f"{name.capitalize()} associations\n")
                f.write("-" * 40 + "\n")
                f.write(f"Tests performed: {summary.n_tests:,}\n")
                f.write(f"Pairs skipped (zero variance): {summary.n_skipped:,}\n")
                f.write(f"Reported pairs: {summary.n_reported:,}\n")
                f.write(
                    f"Significant pairs (FDR < {summary.fdr_threshold}): "
                    f"{summary.n_significant:,}\n"
                )
                f.write(f"eGenes: {summary.n_egenes:,}\n")
                if summary.lambda_gc is not None:
                    f.write(f"Genomic inflation (lambda GC): {summary.lambda_gc:.3f}\n")
                f.write("\n")

        logger.info(f"Generated report: {output_path}")
        return output_path


def load_results_table(results_file: str | Path) -> pd.DataFrame:
    """Read a result table written by ``EQTLResults.save``."""
    results_file = Path(results_file)
    validate_file_exists(results_file, "Results file")

    if results_file.suffix.lower() == ".parquet":
        df = pd.read_parquet(results_file)
    elif results_file.suffix.lower() == ".csv":
        df = pd.read_csv(results_file)
    else:
        df = pd.read_csv(results_file, sep="\t")

    missing = [c for c in ("gene_id", "pval", "fdr") if c not in df.columns]
    if missing:
        raise ValueError(f"Results file missing columns: {missing}")

    logger.info(f"Loaded {len(df)} results from {results_file}")
    return df


def summarize_table(df: pd.DataFrame, fdr_threshold: float) -> pd.DataFrame:
    """
    Significant pairs and eGenes per stream of a loaded result table.

    Returns:
        DataFrame indexed by stream with columns reported, significant, egenes.
    """
    if "stream" not in df.columns:
        df = df.assign(stream="all")

    rows = []
    for stream, group in df.groupby("stream", sort=True):
        sig = group[group["fdr"] < fdr_threshold]
        rows.append({
            "stream": stream,
            "reported": len(group),
            "significant": len(sig),
            "egenes": sig["gene_id"].nunique(),
        })
    return pd.DataFrame(rows, columns=["stream", "reported", "significant", "egenes"]).set_index(
        "stream"
    )
