"""Command-line interface for the eQTL mapping engine."""

from __future__ import annotations

import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from eqtl_mapper import __version__
from eqtl_mapper.utils.config import FDR_METHODS, MODELS, MODES, Config, load_config
from eqtl_mapper.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)


def print_banner() -> None:
    """Print application banner."""
    console.print(
        "\n[bold blue]eQTL Mapper[/bold blue] "
        f"[dim]v{__version__}[/dim]\n"
    )


def _fail(ctx: click.Context, error: Exception) -> None:
    console.print(f"[red]Error:[/red] {error}")
    if ctx.obj.get("verbose"):
        import traceback
        console.print(traceback.format_exc())
    sys.exit(1)


def _resolve_path(value: Optional[str], fallback: Optional[str], name: str) -> str:
    path = value or fallback
    if not path:
        raise click.UsageError(f"Missing {name} file (pass it as an option or in the config)")
    return path


@click.group()
@click.version_option(version=__version__, prog_name="eqtl-mapper")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file. Without it, EQTL_* environment variables are used.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose output.",
)
@click.option(
    "--quiet", "-q",
    is_flag=True,
    help="Suppress non-error output.",
)
@click.option(
    "--log-file",
    type=click.Path(),
    help="Path to log file.",
)
@click.pass_context
def main(
    ctx: click.Context,
    config: Optional[str],
    verbose: bool,
    quiet: bool,
    log_file: Optional[str],
) -> None:
    """
    eQTL Mapper.

    Test genotypes against gene expression, split variant-gene pairs into
    cis and trans streams, and write FDR-corrected results.
    """
    ctx.ensure_object(dict)

    log_level = "DEBUG" if verbose else "WARNING" if quiet else "INFO"
    setup_logging(level=log_level, log_file=log_file)

    ctx.obj["config"] = load_config(config) if config else Config.from_env()
    ctx.obj["verbose"] = verbose

    if not quiet:
        print_banner()


@main.command()
@click.option("--genotypes", "-g", type=click.Path(exists=True),
              help="Genotype dosage matrix (variants x samples).")
@click.option("--expression", "-e", type=click.Path(exists=True),
              help="Expression matrix (genes x samples).")
@click.option("--covariates", "-k", type=click.Path(exists=True),
              help="Covariate matrix (covariates x samples).")
@click.option("--variant-positions", type=click.Path(exists=True),
              help="Variant positions (variant_id, chrom, pos).")
@click.option("--gene-positions", type=click.Path(exists=True),
              help="Gene positions (gene_id, chrom, start, end[, strand]).")
@click.option("--output-dir", "-o", type=click.Path(), help="Output directory.")
@click.option("--mode", type=click.Choice(list(MODES)), help="Streams to compute.")
@click.option("--model", type=click.Choice(list(MODELS)), help="Association model.")
@click.option("--cis-window", type=int, help="Cis flank distance (bp).")
@click.option("--pval-threshold-cis", type=float, help="Reporting threshold for cis pairs.")
@click.option("--pval-threshold-trans", type=float, help="Reporting threshold for trans pairs.")
@click.option("--fdr-method", type=click.Choice(list(FDR_METHODS)), help="Correction method.")
@click.option("--fdr-threshold", type=float, help="FDR threshold for significance.")
@click.option("--reorder-samples", is_flag=True, default=None,
              help="Reorder expression and covariate samples to genotype order.")
@click.option("--n-jobs", "-j", type=int, help="Number of worker threads.")
@click.option("--format", "file_format", type=click.Choice(["tsv", "csv", "parquet"]),
              default="tsv", help="Format of the result tables.")
@click.pass_context
def run(
    ctx: click.Context,
    genotypes: Optional[str],
    expression: Optional[str],
    covariates: Optional[str],
    variant_positions: Optional[str],
    gene_positions: Optional[str],
    output_dir: Optional[str],
    mode: Optional[str],
    model: Optional[str],
    cis_window: Optional[int],
    pval_threshold_cis: Optional[float],
    pval_threshold_trans: Optional[float],
    fdr_method: Optional[str],
    fdr_threshold: Optional[float],
    reorder_samples: Optional[bool],
    n_jobs: Optional[int],
    file_format: str,
) -> None:
    """
    Map cis and trans eQTLs.

    Reads genotypes, expression, covariates and position tables, runs the
    association engine and writes the results to the output directory.
    """
    from eqtl_mapper.analysis.engine import EQTLEngine
    from eqtl_mapper.preprocessing.alignment import align_dataset
    from eqtl_mapper.utils.io import (
        read_covariate_matrix,
        read_expression_matrix,
        read_gene_positions,
        read_genotype_matrix,
        read_variant_positions,
    )

    config: Config = ctx.obj["config"]
    pipeline = config.pipeline
    engine_config = config.engine

    overrides = {
        "mode": mode,
        "model": model,
        "cis_window": cis_window,
        "pval_threshold_cis": pval_threshold_cis,
        "pval_threshold_trans": pval_threshold_trans,
        "fdr_method": fdr_method,
        "fdr_threshold": fdr_threshold,
        "reorder_samples": reorder_samples,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(engine_config, key, value)

    genotype_file = _resolve_path(genotypes, pipeline.genotype_file, "genotype")
    expression_file = _resolve_path(expression, pipeline.expression_file, "expression")
    variant_file = _resolve_path(
        variant_positions, pipeline.variant_positions_file, "variant positions"
    )
    gene_file = _resolve_path(gene_positions, pipeline.gene_positions_file, "gene positions")
    covariate_file = covariates or pipeline.covariate_file
    output_dir = output_dir or pipeline.output_dir

    pipeline.genotype_file = genotype_file
    pipeline.expression_file = expression_file
    pipeline.variant_positions_file = variant_file
    pipeline.gene_positions_file = gene_file
    pipeline.covariate_file = covariate_file
    if n_jobs is not None:
        pipeline.n_jobs = n_jobs

    errors = config.validate()
    if errors:
        console.print("[red]Invalid configuration:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    try:
        dataset = align_dataset(
            read_genotype_matrix(genotype_file),
            read_expression_matrix(expression_file),
            read_variant_positions(variant_file),
            read_gene_positions(gene_file),
            covariates=read_covariate_matrix(covariate_file) if covariate_file else None,
            reorder_samples=engine_config.reorder_samples,
            covariate_config=config.covariates,
            random_seed=pipeline.random_seed,
        )
        engine = EQTLEngine(engine_config, n_jobs=pipeline.n_jobs)
        results = engine.run(dataset)
        paths = results.save(output_dir, file_format=file_format)
    except Exception as e:
        _fail(ctx, e)
        return

    table = Table(title="eQTL Mapping Summary")
    table.add_column("Metric", style="cyan")
    for stream in engine.streams:
        table.add_column(stream.capitalize(), justify="right")

    summaries = results.summary()
    rows = [
        ("Tests performed", "n_tests"),
        ("Pairs skipped", "n_skipped"),
        ("Reported pairs", "n_reported"),
        (f"Significant (FDR < {engine_config.fdr_threshold})", "n_significant"),
        ("eGenes", "n_egenes"),
    ]
    for label, attr in rows:
        table.add_row(label, *[f"{getattr(summaries[s], attr):,}" for s in engine.streams])
    table.add_row(
        "Lambda GC",
        *[
            f"{summaries[s].lambda_gc:.3f}" if summaries[s].lambda_gc is not None else "-"
            for s in engine.streams
        ],
    )
    console.print(table)

    console.print("\n[green]Output files:[/green]")
    for name, path in paths.items():
        console.print(f"  {name}: {path}")


@main.command()
@click.option("--genotypes", "-g", type=click.Path(exists=True), help="Genotype dosage matrix.")
@click.option("--expression", "-e", type=click.Path(exists=True), help="Expression matrix.")
@click.option("--covariates", "-k", type=click.Path(exists=True), help="Covariate matrix.")
@click.option("--variant-positions", type=click.Path(exists=True), help="Variant positions.")
@click.option("--gene-positions", type=click.Path(exists=True), help="Gene positions.")
@click.pass_context
def validate(
    ctx: click.Context,
    genotypes: Optional[str],
    expression: Optional[str],
    covariates: Optional[str],
    variant_positions: Optional[str],
    gene_positions: Optional[str],
) -> None:
    """
    Validate input files.

    Check format and integrity of the inputs, and their sample alignment
    when all required files are given, without running any test.
    """
    from eqtl_mapper.preprocessing.alignment import align_dataset
    from eqtl_mapper.utils.io import (
        read_covariate_matrix,
        read_expression_matrix,
        read_gene_positions,
        read_genotype_matrix,
        read_variant_positions,
    )
    from eqtl_mapper.utils.validators import (
        validate_covariate_matrix,
        validate_expression_matrix,
    )

    config: Config = ctx.obj["config"]
    all_valid = True
    frames = {}

    if genotypes:
        console.print(f"\n[cyan]Validating genotypes:[/cyan] {genotypes}")
        try:
            frames["genotypes"] = read_genotype_matrix(genotypes)
            console.print("  [green]Valid format[/green]")
            console.print(f"  Variants: {frames['genotypes'].shape[0]}")
            console.print(f"  Samples: {frames['genotypes'].shape[1]}")
        except Exception as e:
            console.print(f"  [red]Error:[/red] {e}")
            all_valid = False

    if expression:
        console.print(f"\n[cyan]Validating expression:[/cyan] {expression}")
        try:
            frames["expression"] = read_expression_matrix(expression)
            result = validate_expression_matrix(frames["expression"])
            if result["valid"]:
                console.print("  [green]Valid format[/green]")
                console.print(f"  Genes: {result['n_genes']}")
                console.print(f"  Samples: {result['n_samples']}")
            else:
                console.print(f"  [yellow]Issues:[/yellow] {result['issues']}")
                all_valid = False
        except Exception as e:
            console.print(f"  [red]Error:[/red] {e}")
            all_valid = False

    if covariates:
        console.print(f"\n[cyan]Validating covariates:[/cyan] {covariates}")
        try:
            frames["covariates"] = read_covariate_matrix(covariates)
            result = validate_covariate_matrix(frames["covariates"])
            if result["valid"]:
                console.print("  [green]Valid format[/green]")
                console.print(f"  Covariates: {result['n_covariates']}")
                console.print(f"  Samples: {result['n_samples']}")
            else:
                console.print(f"  [yellow]Issues:[/yellow] {result['issues']}")
        except Exception as e:
            console.print(f"  [red]Error:[/red] {e}")
            all_valid = False

    for name, path, reader in (
        ("variant_positions", variant_positions, read_variant_positions),
        ("gene_positions", gene_positions, read_gene_positions),
    ):
        if not path:
            continue
        console.print(f"\n[cyan]Validating {name.replace('_', ' ')}:[/cyan] {path}")
        try:
            frames[name] = reader(path)
            console.print(f"  [green]Valid format[/green] ({len(frames[name])} entries)")
        except Exception as e:
            console.print(f"  [red]Error:[/red] {e}")
            all_valid = False

    required = ("genotypes", "expression", "variant_positions", "gene_positions")
    if all_valid and all(name in frames for name in required):
        console.print("\n[cyan]Checking sample alignment[/cyan]")
        try:
            dataset = align_dataset(
                frames["genotypes"],
                frames["expression"],
                frames["variant_positions"],
                frames["gene_positions"],
                covariates=frames.get("covariates"),
                reorder_samples=config.engine.reorder_samples,
                covariate_config=config.covariates,
                random_seed=config.pipeline.random_seed,
            )
            console.print(
                f"  [green]Aligned[/green] {dataset.n_samples} samples, "
                f"{dataset.n_covariates} covariates"
            )
        except Exception as e:
            console.print(f"  [red]Error:[/red] {e}")
            all_valid = False

    if all_valid:
        console.print("\n[green]All validations passed![/green]")
    else:
        console.print("\n[red]Some validations failed.[/red]")
        sys.exit(1)


@main.command()
@click.option(
    "--results", "-r",
    type=click.Path(exists=True),
    required=True,
    help="Results table written by the run command.",
)
@click.option(
    "--fdr-threshold",
    type=float,
    default=0.05,
    help="FDR threshold for significance.",
)
@click.pass_context
def summarize(
    ctx: click.Context,
    results: str,
    fdr_threshold: float,
) -> None:
    """
    Summarize an eQTL results table.

    Count significant pairs and eGenes per stream at an FDR threshold.
    """
    from eqtl_mapper.analysis.results import load_results_table, summarize_table

    try:
        summary = summarize_table(load_results_table(results), fdr_threshold)
    except Exception as e:
        _fail(ctx, e)
        return

    table = Table(title=f"eQTL Results Summary (FDR < {fdr_threshold})")
    table.add_column("Stream", style="cyan")
    table.add_column("Reported", justify="right")
    table.add_column("Significant", justify="right")
    table.add_column("eGenes", justify="right")
    for stream, row in summary.iterrows():
        table.add_row(
            str(stream),
            f"{int(row['reported']):,}",
            f"{int(row['significant']):,}",
            f"{int(row['egenes']):,}",
        )
    console.print(table)


@main.command()
@click.option(
    "--output", "-o",
    type=click.Path(),
    default="config.yaml",
    help="Output configuration file path.",
)
def init_config(output: str) -> None:
    """
    Generate a default configuration file.

    Creates a YAML configuration file with all available options.
    """
    config = Config()
    config.save(output)
    console.print(f"[green]Configuration saved to:[/green] {output}")


if __name__ == "__main__":
    main()
