"""Tests for results handling."""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from eqtl_mapper.analysis.multiple_testing import PValueAccumulator, adjust
from eqtl_mapper.analysis.results import (
    RESULT_COLUMNS,
    AssociationRecord,
    EQTLResults,
    StreamResults,
    load_results_table,
    summarize_table,
)


def _make_stream(stream: str, n_tests: int = 2000, n_genes: int = 50) -> StreamResults:
    """Build a stream from uniform p-values with a few strong signals."""
    rng = np.random.default_rng(42)
    pvalues = rng.uniform(size=n_tests)
    pvalues[:40] = rng.uniform(0, 1e-6, size=40)
    genes = [f"GENE_{i % n_genes:04d}" for i in range(n_tests)]

    acc = PValueAccumulator()
    acc.add(pvalues)
    retained = np.flatnonzero(pvalues <= 0.01)
    fdr = adjust(acc, pvalues[retained], "bh")

    records = [
        AssociationRecord(
            variant_id=f"rs{i}",
            gene_id=genes[i],
            slope=float(rng.normal()),
            statistic=float(rng.normal()),
            pval=float(pvalues[i]),
            fdr=float(q),
            stream=stream,
            distance=int(i) if stream == "cis" else None,
        )
        for i, q in zip(retained, fdr)
    ]
    gene_min = pd.Series(pvalues).groupby(genes).min()
    return StreamResults(stream, records, acc, n_skipped=3, gene_min_pvalues=gene_min)


@pytest.fixture
def cis_stream() -> StreamResults:
    """Cis stream with planted signals."""
    return _make_stream("cis")


@pytest.fixture
def eqtl_results(cis_stream: StreamResults) -> EQTLResults:
    """Results with a populated cis stream and an empty trans stream."""
    return EQTLResults(
        cis=cis_stream,
        trans=StreamResults.empty("trans"),
        fdr_threshold=0.05,
        run_info={"samples": 40, "mode": "both"},
    )


class TestStreamResults:
    """Tests for StreamResults."""

    def test_records_sorted_by_pvalue(self, cis_stream: StreamResults) -> None:
        """Test records are ordered by ascending p-value."""
        pvals = [rec.pval for rec in cis_stream.records]
        assert pvals == sorted(pvals)

    def test_counts(self, cis_stream: StreamResults) -> None:
        """Test test and skip counts."""
        assert cis_stream.n_tests == 2000
        assert cis_stream.n_skipped == 3
        assert len(cis_stream) == len(cis_stream.records)

    def test_egene_count_consistency(self, cis_stream: StreamResults) -> None:
        """Test eGenes equal distinct genes among significant records."""
        for threshold in (0.01, 0.05, 0.2):
            significant = cis_stream.significant(threshold)
            assert cis_stream.n_egenes(threshold) == len({r.gene_id for r in significant})
            assert cis_stream.n_significant(threshold) == len(significant)
            assert all(r.fdr < threshold for r in significant)

    def test_planted_signals_significant(self, cis_stream: StreamResults) -> None:
        """Test the planted signals pass the FDR threshold."""
        assert cis_stream.n_significant(0.05) >= 40

    def test_lead_variants(self, cis_stream: StreamResults) -> None:
        """Test one lead record per eGene with that gene's smallest p-value."""
        leads = cis_stream.lead_variants(0.05)
        assert len(leads) == cis_stream.n_egenes(0.05)
        for lead in leads:
            gene_pvals = [r.pval for r in cis_stream.significant(0.05) if r.gene_id == lead.gene_id]
            assert lead.pval == min(gene_pvals)

    def test_to_dataframe(self, cis_stream: StreamResults) -> None:
        """Test table conversion."""
        df = cis_stream.to_dataframe()
        assert list(df.columns) == RESULT_COLUMNS
        assert len(df) == len(cis_stream)
        assert (df["stream"] == "cis").all()

    def test_empty_stream(self) -> None:
        """Test an empty stream has empty outputs and no exceptions."""
        stream = StreamResults.empty("trans")
        assert stream.n_tests == 0
        assert stream.n_egenes(0.05) == 0
        assert list(stream.to_dataframe().columns) == RESULT_COLUMNS
        assert stream.qq_data().empty
        assert stream.lambda_gc() is None

    def test_gene_min_pvalues(self, cis_stream: StreamResults) -> None:
        """Test per-gene minima cover every gene."""
        assert len(cis_stream.gene_min_pvalues) == 50
        assert cis_stream.gene_min_pvalues.min() < 1e-6


class TestDiagnostics:
    """Tests for calibration diagnostics."""

    def test_qq_data_full(self, cis_stream: StreamResults) -> None:
        """Test QQ data without downsampling."""
        qq = cis_stream.qq_data(max_points=5000)
        assert len(qq) == 2000
        assert qq["expected_neg_log10_p"].iloc[0] == pytest.approx(-np.log10(1 / 2001))
        assert qq["observed_neg_log10_p"].is_monotonic_decreasing

    def test_qq_data_downsampled_keeps_tail(self, cis_stream: StreamResults) -> None:
        """Test downsampling keeps the smallest p-values."""
        qq = cis_stream.qq_data(max_points=300, tail=100)
        assert len(qq) <= 300
        assert qq["rank"].iloc[:100].tolist() == list(range(1, 101))
        assert qq["rank"].iloc[-1] == 2000

    def test_lambda_gc_null(self) -> None:
        """Test genomic inflation of null p-values is close to 1."""
        rng = np.random.default_rng(1)
        acc = PValueAccumulator()
        acc.add(rng.uniform(size=20000))
        stream = StreamResults("trans", [], acc)
        assert stream.lambda_gc() == pytest.approx(1.0, abs=0.05)

    def test_pvalue_histogram(self, cis_stream: StreamResults) -> None:
        """Test histogram bins cover all tests."""
        hist = cis_stream.pvalue_histogram(bins=20)
        assert len(hist) == 20
        assert hist["count"].sum() == 2000


class TestEQTLResults:
    """Tests for EQTLResults."""

    def test_summary(self, eqtl_results: EQTLResults) -> None:
        """Test per-stream summaries."""
        summary = eqtl_results.summary()
        assert summary["cis"].n_tests == 2000
        assert summary["cis"].n_egenes == eqtl_results.cis.n_egenes(0.05)
        assert summary["trans"].n_tests == 0
        assert summary["trans"].n_significant == 0

    def test_stream_lookup(self, eqtl_results: EQTLResults) -> None:
        """Test stream access by name."""
        assert eqtl_results.stream("cis") is eqtl_results.cis
        with pytest.raises(ValueError):
            eqtl_results.stream("other")

    def test_save(self, temp_dir: Path, eqtl_results: EQTLResults) -> None:
        """Test writing all outputs."""
        paths = eqtl_results.save(temp_dir)
        for path in paths.values():
            assert Path(path).exists()

        cis = pd.read_csv(paths["cis_results"], sep="\t")
        assert len(cis) == len(eqtl_results.cis)
        trans = pd.read_csv(paths["trans_results"], sep="\t")
        assert trans.empty

    def test_save_cis_only(self, temp_dir: Path, cis_stream: StreamResults) -> None:
        """Test only computed streams are summarized and written."""
        results = EQTLResults(
            cis=cis_stream,
            trans=StreamResults.empty("trans"),
            streams=("cis",),
        )
        assert list(results.summary()) == ["cis"]

        paths = results.save(temp_dir)
        assert "trans_results" not in paths
        assert not (temp_dir / "trans_eqtls.tsv").exists()
        assert "Trans associations" not in paths["report"].read_text()

    def test_generate_report(self, temp_dir: Path, eqtl_results: EQTLResults) -> None:
        """Test report generation."""
        report_path = eqtl_results.generate_report(temp_dir / "report.txt")
        content = report_path.read_text()
        assert "eQTL Mapping Report" in content
        assert "Cis associations" in content
        assert "eGenes" in content

    def test_load_and_summarize_table(self, temp_dir: Path, eqtl_results: EQTLResults) -> None:
        """Test re-summarizing a written table at a new cutoff."""
        paths = eqtl_results.save(temp_dir)
        df = load_results_table(paths["cis_results"])
        summary = summarize_table(df, 0.05)
        assert summary.loc["cis", "significant"] == eqtl_results.cis.n_significant(0.05)
        assert summary.loc["cis", "egenes"] == eqtl_results.cis.n_egenes(0.05)

    def test_load_missing_columns(self, temp_dir: Path) -> None:
        """Test tables without the required columns are rejected."""
        path = temp_dir / "bad.tsv"
        pd.DataFrame({"gene_id": ["G"]}).to_csv(path, sep="\t", index=False)
        with pytest.raises(ValueError):
            load_results_table(path)
