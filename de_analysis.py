"""
Differential expression analysis using PyDESeq2.

Fits one negative-binomial GLM of treatment vs control per gene, extracts
Wald-test log2 fold changes and p-values, adds Storey q-values and attaches
shrunk fold changes from each requested shrinkage method.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.ds import DeseqStats

from errors import DesignMismatch, ExclusionReport
from lfc_shrinkage import SHRINKAGE_METHODS, apeglm_shrinkage, normal_shrinkage
from multiple_testing import add_qvalues

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["gene", "baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj", "qvalue"]


def classify_regulation(
    results_df: pd.DataFrame,
    p_threshold: float = 0.1,
    fold_change: float = 2.0,
    lfc_column: str = "log2FoldChange",
) -> pd.Series:
    """
    Label each gene "up", "down" or "ns".

    Significant means -log10(pvalue) > -log10(p_threshold) on the raw
    p-value; q- and s-values are not consulted. Up additionally needs
    log2FC >= log2(fold_change), down needs log2FC <= -log2(fold_change).
    """
    with np.errstate(divide="ignore", invalid="ignore"):
        neg_log_p = -np.log10(results_df["pvalue"].to_numpy(dtype=float))
    significant = neg_log_p > -np.log10(p_threshold)
    lfc = results_df[lfc_column].to_numpy(dtype=float)
    cutoff = np.log2(fold_change)
    up = significant & (lfc >= cutoff)
    down = significant & (lfc <= -cutoff)
    labels = np.select([up, down], ["up", "down"], default="ns")
    return pd.Series(labels, index=results_df.index, name="regulation")


@dataclass(frozen=True)
class DEResult:
    """Result of one treatment vs control contrast."""

    results_df: pd.DataFrame  # RESULT_COLUMNS, one row per gene
    normalized_counts: pd.DataFrame  # samples × genes
    size_factors: pd.Series
    comparison: Tuple[str, str]  # (test_condition, reference_condition)
    shrunk: Dict[str, pd.DataFrame] = field(default_factory=dict)  # method -> SHRINKAGE_COLUMNS
    warnings: List[str] = field(default_factory=list)

    def regulation(self, p_threshold: float = 0.1, fold_change: float = 2.0) -> pd.Series:
        return classify_regulation(self.results_df, p_threshold, fold_change)

    def upregulated(self, p_threshold: float = 0.1, fold_change: float = 2.0) -> pd.DataFrame:
        mask = self.regulation(p_threshold, fold_change) == "up"
        return self.results_df[mask]

    def downregulated(self, p_threshold: float = 0.1, fold_change: float = 2.0) -> pd.DataFrame:
        mask = self.regulation(p_threshold, fold_change) == "down"
        return self.results_df[mask]

    def n_significant(self, p_threshold: float = 0.1, fold_change: float = 2.0) -> int:
        return int((self.regulation(p_threshold, fold_change) != "ns").sum())

    def without_undefined_pvalues(self) -> "DEResult":
        """
        Drop genes whose -log10(pvalue) is not finite (p of 0 or NaN) and
        recompute q-values over the remaining p-values.
        """
        p = self.results_df["pvalue"].to_numpy(dtype=float)
        with np.errstate(divide="ignore", invalid="ignore"):
            finite = np.isfinite(-np.log10(p))
        kept = self.results_df.loc[finite].drop(columns=["qvalue"])
        n_dropped = int((~finite).sum())
        if n_dropped:
            logger.info(f"Dropped {n_dropped} gene(s) with undefined -log10(p); q-values recomputed")
        return replace(self, results_df=add_qvalues(kept).reset_index(drop=True))

    def with_normalized_counts(self) -> pd.DataFrame:
        """Results joined with each sample's normalized count."""
        per_gene = self.normalized_counts.T
        per_gene.columns = [f"norm_{s}" for s in per_gene.columns]
        return self.results_df.merge(per_gene, left_on="gene", right_index=True, how="left")


def align_design(
    counts_df: pd.DataFrame,
    design_df: pd.DataFrame,
    report: Optional[ExclusionReport] = None,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Restrict counts and design to the samples they share.

    Samples found in only one table are dropped and recorded as a
    DesignMismatch on the report.
    """
    design_ids = design_df["sequence_id"].astype(str)
    shared = [s for s in counts_df.index if s in set(design_ids)]
    dropped = sorted(set(counts_df.index).symmetric_difference(design_ids))
    if dropped and report is not None:
        report.record(DesignMismatch("design_alignment", dropped))
    aligned_design = design_df[design_ids.isin(shared)].reset_index(drop=True)
    return counts_df.loc[shared], aligned_design


class DEAnalysisEngine:
    """Differential expression analysis using PyDESeq2."""

    def __init__(
        self,
        design_factor: str = "purpose",
        reference_level: str = "control",
        refit_cooks: bool = True,
    ):
        self.design_factor = design_factor
        self.reference_level = reference_level
        self.refit_cooks = refit_cooks

    def _metadata(self, counts_df: pd.DataFrame, design_df: pd.DataFrame) -> pd.DataFrame:
        design_ids = design_df["sequence_id"].astype(str).tolist()
        count_ids = [str(s) for s in counts_df.index]
        if len(design_ids) != len(count_ids) or set(design_ids) != set(count_ids):
            mismatched = sorted(set(design_ids).symmetric_difference(count_ids))
            raise DesignMismatch(
                "fit",
                mismatched,
                f"Count matrix has {len(count_ids)} samples but design has "
                f"{len(design_ids)}; mismatched: {mismatched}",
            )
        metadata = design_df.set_index(design_df["sequence_id"].astype(str))
        metadata = metadata.loc[count_ids, [self.design_factor]]
        levels = set(metadata[self.design_factor])
        if self.reference_level not in levels or len(levels) < 2:
            raise DesignMismatch(
                "fit",
                sorted(levels),
                f"Design needs '{self.reference_level}' and a second "
                f"{self.design_factor} level, found {sorted(levels)}",
            )
        return metadata

    def fit(self, counts_df: pd.DataFrame, design_df: pd.DataFrame) -> DeseqDataSet:
        """
        Fit the DESeq2 model once.

        Args:
            counts_df: samples × genes DataFrame with integer counts
            design_df: sample design with sequence_id and the design factor column

        Returns:
            Fitted DeseqDataSet

        Raises:
            DesignMismatch: samples disagree between counts and design
        """
        metadata = self._metadata(counts_df, design_df)
        counts = counts_df.copy()
        counts.index = metadata.index

        dds = DeseqDataSet(
            counts=counts,
            metadata=metadata,
            design=f"~{self.design_factor}",
            refit_cooks=self.refit_cooks,
            quiet=True,
        )
        dds.deseq2()
        logger.info(f"Fitted DESeq2 model on {counts.shape[0]} samples × {counts.shape[1]} genes")
        return dds

    def contrast(self, dds: DeseqDataSet, comparison: Tuple[str, str]) -> DEResult:
        """
        Wald test for (test_condition, reference_condition).

        The reference must be the control level, so positive log2 fold
        changes mean higher expression under treatment.
        """
        test_level, reference_level = comparison
        if reference_level != self.reference_level:
            raise ValueError(
                f"Reference level must be '{self.reference_level}', got '{reference_level}'"
            )

        stat_res = DeseqStats(
            dds, contrast=[self.design_factor, test_level, reference_level], quiet=True
        )
        stat_res.summary()

        results_df = stat_res.results_df.copy()
        results_df.index.name = None
        results_df = results_df.reset_index().rename(columns={"index": "gene"})
        results_df["gene"] = results_df["gene"].astype(str)
        results_df = add_qvalues(results_df)

        normalized = pd.DataFrame(
            dds.layers["normed_counts"], index=dds.obs_names, columns=dds.var_names
        )
        size_factors = pd.Series(
            np.asarray(dds.obs["size_factors"]), index=dds.obs_names, name="size_factor"
        )
        return DEResult(
            results_df=results_df[RESULT_COLUMNS],
            normalized_counts=normalized,
            size_factors=size_factors,
            comparison=(test_level, reference_level),
        )

    def shrink(self, dds: DeseqDataSet, de_result: DEResult, method: str) -> pd.DataFrame:
        """Shrunk log2 fold changes and s-values for one method."""
        if method == "normal":
            return normal_shrinkage(de_result.results_df)
        if method == "apeglm":
            return apeglm_shrinkage(dds, self.design_factor, de_result.comparison)
        raise ValueError(f"Unknown shrinkage method '{method}'; choose from {SHRINKAGE_METHODS}")

    def run(
        self,
        counts_df: pd.DataFrame,
        design_df: pd.DataFrame,
        test_level: str = "treatment",
        shrinkage_methods: Sequence[str] = SHRINKAGE_METHODS,
    ) -> DEResult:
        """
        Main entry point: fit, contrast, then shrink with every method.

        A failing shrinkage method is logged and noted in warnings; the
        contrast results are still returned.
        """
        dds = self.fit(counts_df, design_df)
        result = self.contrast(dds, (test_level, self.reference_level))

        shrunk: Dict[str, pd.DataFrame] = {}
        warnings: List[str] = []
        for method in shrinkage_methods:
            try:
                shrunk[method] = self.shrink(dds, result, method)
            except (ValueError, RuntimeError, KeyError) as e:
                logger.error(f"LFC shrinkage ({method}) failed: {str(e)}", exc_info=True)
                warnings.append(f"Shrinkage '{method}' failed: {str(e)}")

        result = replace(result, shrunk=shrunk, warnings=warnings)
        logger.info(
            f"{test_level} vs {self.reference_level}: "
            f"{len(result.upregulated())} up, {len(result.downregulated())} down"
        )
        return result
