"""
Count filtering: separates non-coding features and drops low-count genes.

Input is the long-format raw count table (sequence_id, gene, counts).
Output is a rectangular samples × genes matrix of coding genes.
"""

from dataclasses import dataclass
from typing import List
import logging
import pandas as pd

from errors import DesignMismatch, SchemaValidationError

logger = logging.getLogger(__name__)


@dataclass
class CountFilterResult:
    """Result of CountFilter.apply."""

    counts: pd.DataFrame  # samples × genes, coding genes passing the threshold
    noncoding: pd.DataFrame  # long-format side-table of non-coding rows
    gene_totals: pd.Series  # per-gene total over all samples (coding genes, pre-filter)
    dropped_genes: List[str]  # coding genes removed as low-count

    def coverage_report(self) -> pd.DataFrame:
        """
        Per-sample share of reads assigned to non-coding features.

        Returns:
            DataFrame indexed by sequence_id with columns
            coding_reads, noncoding_reads, noncoding_fraction
        """
        coding = self.counts.sum(axis=1)
        if self.noncoding.empty:
            noncoding = pd.Series(0, index=coding.index)
        else:
            noncoding = (
                self.noncoding.groupby("sequence_id")["counts"].sum().reindex(coding.index, fill_value=0)
            )
        total = coding + noncoding
        report = pd.DataFrame(
            {
                "coding_reads": coding,
                "noncoding_reads": noncoding,
                "noncoding_fraction": (noncoding / total.where(total > 0)).fillna(0.0),
            }
        )
        report.index.name = "sequence_id"
        return report


def to_count_matrix(long_counts: pd.DataFrame) -> pd.DataFrame:
    """
    Pivot long counts to samples × genes.

    Raises:
        SchemaValidationError: a (gene, sample) pair appears more than once
        DesignMismatch: some gene is missing a record for some sample
    """
    dup_mask = long_counts.duplicated(subset=["gene", "sequence_id"], keep=False)
    if dup_mask.any():
        examples = long_counts.loc[dup_mask, "gene"].unique()[:5].tolist()
        raise SchemaValidationError(
            f"Duplicate (gene, sequence_id) records for {len(examples)}+ gene(s)",
            {"examples": examples},
        )

    matrix = long_counts.pivot(index="sequence_id", columns="gene", values="counts")
    incomplete = matrix.columns[matrix.isna().any(axis=0)].tolist()
    if incomplete:
        raise DesignMismatch(
            "count_matrix",
            incomplete,
            f"{len(incomplete)} gene(s) lack a count for every sample",
        )
    matrix = matrix.astype("int64")
    matrix.columns.name = None
    return matrix


class CountFilter:
    """
    Remove non-coding rows and genes that never exceed the low-count threshold.

    A gene is dropped only when its count is at or below the threshold in
    every sample; a single sample above the threshold keeps it.
    """

    def __init__(self, threshold: int = 24, noncoding_pattern: str = r"__|rRNA|tRNA"):
        self.threshold = threshold
        self.noncoding_pattern = noncoding_pattern

    def split_noncoding(self, long_counts: pd.DataFrame):
        """Return (coding rows, non-coding rows)."""
        is_noncoding = long_counts["gene"].astype(str).str.contains(
            self.noncoding_pattern, regex=True
        )
        return long_counts[~is_noncoding].copy(), long_counts[is_noncoding].copy()

    def apply(self, long_counts: pd.DataFrame) -> CountFilterResult:
        coding, noncoding = self.split_noncoding(long_counts)
        matrix = to_count_matrix(coding)
        totals = matrix.sum(axis=0)

        keep = (matrix > self.threshold).any(axis=0)
        dropped = matrix.columns[~keep].tolist()
        filtered = matrix.loc[:, keep]

        logger.info(
            f"Count filter: {noncoding['gene'].nunique()} non-coding features set aside, "
            f"{len(dropped)} low-count genes dropped, {filtered.shape[1]} genes retained"
        )
        return CountFilterResult(
            counts=filtered,
            noncoding=noncoding,
            gene_totals=totals,
            dropped_genes=dropped,
        )
