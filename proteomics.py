"""
Proteomics parsing and integration with differential expression results.

Each proteomics row carries its gene identifier inside the free-text
description. Rows are parsed into (gene_id, protein_name, avg_ratio,
ratio_count) records, then inner-joined with the DE results. Rows with no
transcriptomic counterpart stay in the standalone view only.
"""

from dataclasses import dataclass
from typing import Dict, Optional
import logging
import numpy as np
import pandas as pd
from scipy import stats

from de_analysis import classify_regulation
from errors import ExclusionReport, UnmappedIdentifier
from identifiers import LOCUS_TAG_PATTERN, IdentifierMap, extract_embedded_id

logger = logging.getLogger(__name__)

PROTEOMICS_RECORD_COLUMNS = ["gene_id", "protein_name", "avg_ratio", "ratio_count", "log2_ratio"]


@dataclass
class IntegrationResult:
    """Standalone and integrated proteomics views."""

    standalone: pd.DataFrame  # every parsed proteomics record
    integrated: pd.DataFrame  # records with a DE counterpart, annotated
    correlation: Dict[str, float]

    @property
    def n_unmatched(self) -> int:
        return len(self.standalone) - len(self.integrated)


def parse_proteomics(
    proteomics: pd.DataFrame,
    pattern: str = LOCUS_TAG_PATTERN,
    id_map: Optional[IdentifierMap] = None,
    namespace: str = "ncbi_id",
    ratio_is_log2: bool = False,
    report: Optional[ExclusionReport] = None,
) -> pd.DataFrame:
    """
    Turn raw proteomics rows into ProteomicsRecords.

    Args:
        proteomics: table with description, protein, avg_ratio, ratio_count
        pattern: regex whose first group is the embedded gene id
        id_map: translator used when the embedded id is not an ncbi_id
        namespace: namespace of the embedded id
        ratio_is_log2: avg_ratio is already on log2 scale
        report: exclusion report for rows whose id cannot be resolved

    Returns:
        DataFrame with PROTEOMICS_RECORD_COLUMNS; gene_id is None where
        the id could not be extracted or translated
    """
    embedded = [extract_embedded_id(d, pattern) for d in proteomics["description"]]
    no_id = [str(p) for p, e in zip(proteomics["protein"], embedded) if e is None]
    if report is not None:
        report.record(UnmappedIdentifier("proteomics_description", no_id))

    gene_ids = embedded
    if namespace != "ncbi_id":
        if id_map is None:
            raise ValueError(f"Translating proteomics ids from '{namespace}' needs an IdentifierMap")
        found = [e for e in embedded if e is not None]
        translation = id_map.translate(found, namespace, "ncbi_id")
        if report is not None:
            report.record(UnmappedIdentifier(f"proteomics_{namespace}_to_ncbi_id", translation.unmapped))
        gene_ids = [translation.mapped.get(e) if e is not None else None for e in embedded]

    ratio = proteomics["avg_ratio"].astype(float)
    if ratio_is_log2:
        log2_ratio = ratio
    else:
        log2_ratio = np.log2(ratio.where(ratio > 0))

    records = pd.DataFrame(
        {
            "gene_id": gene_ids,
            "protein_name": proteomics["protein"].to_numpy(),
            "avg_ratio": ratio.to_numpy(),
            "ratio_count": proteomics["ratio_count"].to_numpy(),
            "log2_ratio": np.asarray(log2_ratio, dtype=float),
        }
    )
    logger.info(
        f"Parsed {len(records)} proteomics rows, "
        f"{int(records['gene_id'].isna().sum())} without a resolvable gene id"
    )
    return records[PROTEOMICS_RECORD_COLUMNS]


def classify_quadrant(log2_ratio: pd.Series, log2_fold_change: pd.Series) -> pd.Series:
    """
    "concordant" when protein and transcript changes share a sign and both
    exceed 1 in magnitude; otherwise "discordant". Annotation only.
    """
    protein = log2_ratio.to_numpy(dtype=float)
    transcript = log2_fold_change.to_numpy(dtype=float)
    with np.errstate(invalid="ignore"):
        concordant = (
            (np.sign(protein) == np.sign(transcript))
            & (np.abs(protein) > 1)
            & (np.abs(transcript) > 1)
        )
    return pd.Series(
        np.where(concordant, "concordant", "discordant"), index=log2_ratio.index, name="quadrant"
    )


def fold_change_correlation(integrated: pd.DataFrame) -> Dict[str, float]:
    """Pearson and Spearman correlation between protein and transcript log2 changes."""
    finite = integrated[["log2_ratio", "log2FoldChange"]].replace([np.inf, -np.inf], np.nan).dropna()
    if len(finite) < 3:
        return {"n": float(len(finite)), "pearson_r": np.nan, "pearson_p": np.nan,
                "spearman_rho": np.nan, "spearman_p": np.nan}
    pearson = stats.pearsonr(finite["log2_ratio"], finite["log2FoldChange"])
    spearman = stats.spearmanr(finite["log2_ratio"], finite["log2FoldChange"])
    return {
        "n": float(len(finite)),
        "pearson_r": float(pearson[0]),
        "pearson_p": float(pearson[1]),
        "spearman_rho": float(spearman[0]),
        "spearman_p": float(spearman[1]),
    }


class ProteomicsIntegrator:
    """Join proteomics records to DE results on gene_id."""

    def __init__(self, p_threshold: float = 0.1, fold_change: float = 2.0):
        self.p_threshold = p_threshold
        self.fold_change = fold_change

    def integrate(self, records: pd.DataFrame, de_results: pd.DataFrame) -> IntegrationResult:
        """
        Args:
            records: output of parse_proteomics
            de_results: DE results with gene, log2FoldChange, pvalue

        Returns:
            IntegrationResult; integrated rows carry log2FoldChange, pvalue,
            regulation and quadrant
        """
        de = de_results[["gene", "log2FoldChange", "pvalue"]].copy()
        de["regulation"] = classify_regulation(de, self.p_threshold, self.fold_change)

        integrated = records.dropna(subset=["gene_id"]).merge(
            de, left_on="gene_id", right_on="gene", how="inner"
        ).drop(columns=["gene"])
        integrated["quadrant"] = classify_quadrant(
            integrated["log2_ratio"], integrated["log2FoldChange"]
        )
        correlation = fold_change_correlation(integrated)

        result = IntegrationResult(standalone=records, integrated=integrated, correlation=correlation)
        logger.info(
            f"Proteomics integration: {len(integrated)} of {len(records)} rows matched DE results"
        )
        return result
