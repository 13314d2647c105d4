"""I/O utilities for the eQTL mapping engine.

Inputs are already QC'd and normalized; these readers only load
tab- or comma-separated tables with identifiers in the first column.
"""

from __future__ import annotations

import gzip
from pathlib import Path
from typing import Literal

import pandas as pd

from eqtl_mapper.utils.logging import get_logger
from eqtl_mapper.utils.validators import ValidationError, validate_file_exists

logger = get_logger(__name__)

VARIANT_POSITION_COLUMNS = ("variant_id", "chrom", "pos")
GENE_POSITION_COLUMNS = ("gene_id", "chrom", "start", "end", "strand")

_COMMON_ALIASES = {
    "chr": "chrom",
    "#chr": "chrom",
    "chromosome": "chrom",
}

_VARIANT_ALIASES = {
    **_COMMON_ALIASES,
    "snp": "variant_id",
    "snpid": "variant_id",
    "id": "variant_id",
    "position": "pos",
}

_GENE_ALIASES = {
    **_COMMON_ALIASES,
    "id": "gene_id",
    "geneid": "gene_id",
    "phenotype_id": "gene_id",
    "left": "start",
    "s1": "start",
    "right": "end",
    "s2": "end",
}


def _detect_separator(file_path: Path) -> str:
    """Pick a column separator from the suffix or the first line."""
    name = file_path.name.lower().removesuffix(".gz")
    if name.endswith(".csv"):
        return ","
    if name.endswith((".tsv", ".txt", ".bed")):
        return "\t"

    opener = gzip.open if file_path.name.endswith(".gz") else open
    with opener(file_path, "rt", encoding="utf-8") as f:
        first_line = f.readline()
    return "\t" if "\t" in first_line else ","


def _normalize_columns(df: pd.DataFrame, aliases: dict[str, str]) -> pd.DataFrame:
    renamed = {}
    for col in df.columns:
        key = str(col).strip().lower()
        renamed[col] = aliases.get(key, key)
    return df.rename(columns=renamed)


def read_matrix(
    file_path: str | Path,
    description: str = "Matrix",
    sep: str | None = None,
) -> pd.DataFrame:
    """
    Read a features x samples matrix.

    The first column holds the row identifiers; the header holds sample IDs.

    Args:
        file_path: Path to the matrix file (optionally gzipped).
        description: Matrix name for log and error messages.
        sep: Column separator. If None, auto-detect.

    Returns:
        Matrix as DataFrame with string index and columns.
    """
    file_path = Path(file_path)
    validate_file_exists(file_path, f"{description} file")

    if sep is None:
        sep = _detect_separator(file_path)

    df = pd.read_csv(file_path, sep=sep, index_col=0)
    df.index = df.index.astype(str)
    df.columns = df.columns.astype(str)

    if not df.index.is_unique:
        duplicated = df.index[df.index.duplicated()].unique().tolist()
        raise ValidationError(f"{description} has duplicate row IDs: {duplicated[:5]}")

    logger.info(f"Read {description.lower()}: {df.shape[0]} rows x {df.shape[1]} samples")
    return df


def read_expression_matrix(file_path: str | Path, sep: str | None = None) -> pd.DataFrame:
    """Read an expression matrix (genes x samples)."""
    return read_matrix(file_path, description="Expression", sep=sep)


def read_genotype_matrix(file_path: str | Path, sep: str | None = None) -> pd.DataFrame:
    """Read an additive genotype dosage matrix (variants x samples)."""
    return read_matrix(file_path, description="Genotype", sep=sep)


def read_covariate_matrix(file_path: str | Path, sep: str | None = None) -> pd.DataFrame:
    """Read a covariate matrix (covariates x samples).

    Values are left as read; categorical rows are encoded later.
    """
    return read_matrix(file_path, description="Covariate", sep=sep)


def read_variant_positions(file_path: str | Path) -> pd.DataFrame:
    """
    Read the variant position table.

    Args:
        file_path: Table with variant_id, chrom and pos columns.

    Returns:
        DataFrame indexed by variant_id with columns chrom (str) and pos (int).
    """
    file_path = Path(file_path)
    validate_file_exists(file_path, "Variant position file")

    df = _normalize_columns(
        pd.read_csv(file_path, sep=_detect_separator(file_path)), _VARIANT_ALIASES
    )
    missing = [c for c in VARIANT_POSITION_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(f"Variant position file missing columns: {missing}")

    df = df[list(VARIANT_POSITION_COLUMNS)].copy()
    df["variant_id"] = df["variant_id"].astype(str)
    df["chrom"] = df["chrom"].astype(str)
    df["pos"] = df["pos"].astype(int)

    logger.info(f"Read {len(df)} variant positions")
    return df.set_index("variant_id")


def read_gene_positions(file_path: str | Path) -> pd.DataFrame:
    """
    Read the gene position table.

    Args:
        file_path: Table with gene_id, chrom, start, end and optional strand.

    Returns:
        DataFrame indexed by gene_id with columns chrom, start, end, strand.
    """
    file_path = Path(file_path)
    validate_file_exists(file_path, "Gene position file")

    df = _normalize_columns(
        pd.read_csv(file_path, sep=_detect_separator(file_path)), _GENE_ALIASES
    )
    if "strand" not in df.columns:
        df["strand"] = "+"

    missing = [c for c in GENE_POSITION_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(f"Gene position file missing columns: {missing}")

    df = df[list(GENE_POSITION_COLUMNS)].copy()
    df["gene_id"] = df["gene_id"].astype(str)
    df["chrom"] = df["chrom"].astype(str)
    df["start"] = df["start"].astype(int)
    df["end"] = df["end"].astype(int)
    df["strand"] = df["strand"].fillna("+").astype(str)

    bad = df[df["end"] < df["start"]]
    if len(bad) > 0:
        raise ValidationError(f"Gene '{bad['gene_id'].iloc[0]}' has end < start")

    logger.info(f"Read {len(df)} gene positions")
    return df.set_index("gene_id")


def write_table(
    df: pd.DataFrame,
    output_path: str | Path,
    file_format: Literal["tsv", "csv", "parquet"] = "tsv",
    index: bool = False,
) -> Path:
    """
    Write a table to disk.

    Args:
        df: Table to write.
        output_path: Output file path. A ``.gz`` suffix compresses text output.
        file_format: Output format.
        index: Whether to write the index.

    Returns:
        Path to written file.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if file_format == "parquet":
        df.to_parquet(output_path, index=index)
    elif file_format == "csv":
        df.to_csv(output_path, index=index)
    else:
        df.to_csv(output_path, sep="\t", index=index)

    logger.info(f"Wrote {len(df)} rows to {output_path}")
    return output_path


def ensure_directory(path: str | Path) -> Path:
    """
    Ensure directory exists, creating if necessary.

    Args:
        path: Directory path.

    Returns:
        Path object.
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
