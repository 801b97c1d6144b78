"""
Input table loading for the cyanobacterial multi-omics pipeline.

Reads the five delimited input tables into DataFrames, validating that every
required column is present by name. Columns are never accessed by position.

Tables:
- transcriptomics design: sequence_id, channel, purpose
- raw counts (long format): sequence_id, gene, counts
- gene-id matching: ncbi_id, gene_name, kegg_id
- proteomics: description, protein, avg_ratio, ratio_count
- GO terms: organism, go_term, gene_id
"""

from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Dict, List, Optional, Union
import logging
import pandas as pd
import numpy as np

from errors import SchemaValidationError
from identifiers import strip_accession_prefix

logger = logging.getLogger(__name__)

PURPOSE_LEVELS = ("control", "treatment")

DESIGN_COLUMNS = ["sequence_id", "channel", "purpose"]
COUNT_COLUMNS = ["sequence_id", "gene", "counts"]
GENE_ID_MAP_COLUMNS = ["ncbi_id", "gene_name", "kegg_id"]
PROTEOMICS_COLUMNS = ["description", "protein", "avg_ratio", "ratio_count"]
GO_TERM_COLUMNS = ["organism", "go_term", "gene_id"]

TAB_SUFFIXES = {".tsv", ".txt", ".tab"}


@dataclass
class OmicsTables:
    """All input tables for one run. Optional tables are None when not configured."""

    design: pd.DataFrame
    counts: pd.DataFrame
    gene_id_map: pd.DataFrame
    proteomics: Optional[pd.DataFrame] = None
    go_terms: Optional[pd.DataFrame] = None


def load_table(
    path: Union[str, PathLike],
    required_columns: List[str],
    sep: Optional[str] = None,
    dtypes: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """
    Read a delimited table and check its header.

    Args:
        path: CSV or TSV file
        required_columns: Column names that must be present
        sep: Separator; inferred from the suffix when None (.tsv/.txt/.tab → tab)
        dtypes: Optional pandas dtypes by column name

    Returns:
        DataFrame with the file's columns (extra columns are kept)

    Raises:
        SchemaValidationError: file missing, empty or unparseable, or a required column absent
    """
    file_path = Path(path)
    if not file_path.exists():
        raise SchemaValidationError(
            f"Input file not found: {file_path}", {"path": str(file_path)}
        )
    if sep is None:
        sep = "\t" if file_path.suffix.lower() in TAB_SUFFIXES else ","

    try:
        df = pd.read_csv(file_path, sep=sep, dtype=dtypes)
    except pd.errors.EmptyDataError:
        raise SchemaValidationError(
            f"{file_path.name} is empty", {"path": str(file_path)}
        )
    except pd.errors.ParserError as e:
        raise SchemaValidationError(
            f"{file_path.name} could not be parsed: {str(e)}",
            {"path": str(file_path), "error": str(e)},
        )
    except UnicodeDecodeError as e:
        raise SchemaValidationError(
            f"{file_path.name} is not a readable text file",
            {"path": str(file_path), "error": str(e)},
        )
    df.columns = [str(c).strip() for c in df.columns]

    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise SchemaValidationError(
            f"{file_path.name}: missing required column(s) {missing}. "
            f"Found columns: {', '.join(df.columns.tolist())}",
            {"path": str(file_path), "missing": missing},
        )
    logger.info(f"Loaded {file_path.name}: {len(df)} rows")
    return df


def load_design(path: Union[str, PathLike]) -> pd.DataFrame:
    """Load the sample design; purpose is lower-cased and must be control/treatment."""
    df = load_table(path, DESIGN_COLUMNS, dtypes={"sequence_id": str, "channel": str})
    df = df[DESIGN_COLUMNS].copy()
    df["purpose"] = df["purpose"].astype(str).str.strip().str.lower()

    bad = sorted(set(df["purpose"]) - set(PURPOSE_LEVELS))
    if bad:
        raise SchemaValidationError(
            f"Design purpose must be one of {PURPOSE_LEVELS}, found {bad}",
            {"invalid_purpose": bad},
        )
    duplicated = df["sequence_id"][df["sequence_id"].duplicated()].tolist()
    if duplicated:
        raise SchemaValidationError(
            f"Design has duplicate sequence_id values: {duplicated}",
            {"duplicates": duplicated},
        )
    return df.reset_index(drop=True)


def load_raw_counts(
    path: Union[str, PathLike], accession_prefix: Optional[str] = None
) -> pd.DataFrame:
    """
    Load long-format raw counts (one row per gene × sample).

    Args:
        path: counts table
        accession_prefix: Prefix stripped from gene ids (e.g. "gene-")

    Returns:
        DataFrame with columns sequence_id, gene, counts (int64)
    """
    df = load_table(path, COUNT_COLUMNS, dtypes={"sequence_id": str, "gene": str})
    df = df[COUNT_COLUMNS].copy()

    counts = pd.to_numeric(df["counts"], errors="coerce")
    invalid = counts.isna() | (counts < 0) | (counts != np.floor(counts))
    if invalid.any():
        examples = df.loc[invalid, "gene"].head(5).tolist()
        raise SchemaValidationError(
            f"counts must be non-negative integers; {int(invalid.sum())} invalid row(s)",
            {"examples": examples},
        )
    df["counts"] = counts.astype(np.int64)

    if accession_prefix:
        df["gene"] = [
            strip_accession_prefix(g, accession_prefix) or g for g in df["gene"]
        ]
    return df


def load_gene_id_map(path: Union[str, PathLike]) -> pd.DataFrame:
    """Load the ncbi_id / gene_name / kegg_id cross-reference."""
    df = load_table(path, GENE_ID_MAP_COLUMNS, dtypes={c: str for c in GENE_ID_MAP_COLUMNS})
    return df[GENE_ID_MAP_COLUMNS].copy()


def load_proteomics(path: Union[str, PathLike]) -> pd.DataFrame:
    """Load proteomics measurements; avg_ratio and ratio_count are made numeric."""
    df = load_table(path, PROTEOMICS_COLUMNS, dtypes={"description": str, "protein": str})
    df = df[PROTEOMICS_COLUMNS].copy()
    df["avg_ratio"] = pd.to_numeric(df["avg_ratio"], errors="coerce")
    df["ratio_count"] = pd.to_numeric(df["ratio_count"], errors="coerce").astype("Int64")
    return df


def load_go_terms(path: Union[str, PathLike]) -> pd.DataFrame:
    """Load the GO annotation table (organism, go_term, gene_id)."""
    df = load_table(path, GO_TERM_COLUMNS, dtypes={c: str for c in GO_TERM_COLUMNS})
    return df[GO_TERM_COLUMNS].copy()


def load_all(config) -> OmicsTables:
    """
    Load every configured table up front.

    Any schema problem raises before the pipeline writes output.
    """
    for key in ("counts_path", "design_path", "gene_id_map_path"):
        if getattr(config, key) is None:
            raise SchemaValidationError(f"Config is missing required input '{key}'")

    return OmicsTables(
        design=load_design(config.design_path),
        counts=load_raw_counts(config.counts_path, config.accession_prefix),
        gene_id_map=load_gene_id_map(config.gene_id_map_path),
        proteomics=(
            load_proteomics(config.proteomics_path)
            if config.proteomics_path is not None
            else None
        ),
        go_terms=(
            load_go_terms(config.go_terms_path)
            if config.go_terms_path is not None
            else None
        ),
    )
