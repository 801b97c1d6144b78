"""
Gene-set enrichment analysis with GSEApy prerank.

One parameterized routine tests any gene-set universe (KEGG pathways, GO
terms) against any ranked gene list (all genes, significant genes only).

Classes:
    GeneSetEnrichment: ranking preparation and prerank GSEA
    EnrichmentRun: results of one universe × gene-list run
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import numpy as np
import pandas as pd
import gseapy as gp
from statsmodels.stats.multitest import multipletests

from errors import ExclusionReport, UnmappedIdentifier
from gene_sets import GeneSetUniverse
from identifiers import IdentifierMap
from multiple_testing import qvalues

logger = logging.getLogger(__name__)

ENRICHMENT_COLUMNS = [
    "pathID",
    "pathName",
    "enrichScore",
    "pvalue",
    "padj",
    "qvalue",
    "rank",
    "coreEnrich",
    "setSize",
    "NES",
]


@dataclass
class EnrichmentRun:
    """Enrichment results for one gene-set universe and one ranked list."""

    universe: str
    gene_list: str  # e.g. "all", "significant"
    results: pd.DataFrame  # ENRICHMENT_COLUMNS, sorted by pvalue
    n_ranked: int
    excluded_by_size: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.universe}_{self.gene_list}"


class GeneSetEnrichment:
    """
    Pre-ranked gene-set enrichment.

    Supports:
    - ranking DE results by effect size, optionally translated to another
      identifier namespace (e.g. ncbi_id → kegg_id)
    - size bounds on eligible sets (sets outside are excluded, not scored)
    - graceful handling of GSEApy failures
    """

    def __init__(self, permutation_num: int = 1000, seed: int = 42):
        self.permutation_num = permutation_num
        self.seed = seed

    def prepare_ranking(
        self,
        de_results: pd.DataFrame,
        score_column: str = "log2FoldChange",
        id_map: Optional[IdentifierMap] = None,
        source: str = "ncbi_id",
        target: str = "ncbi_id",
        report: Optional[ExclusionReport] = None,
    ) -> pd.Series:
        """
        Build a descending gene → score ranking.

        NaN scores are removed before ranking. When several genes map to
        the same target id, the one with the largest |score| is kept.
        """
        df = de_results[["gene", score_column]].dropna(subset=[score_column])
        genes = df["gene"].astype(str)
        if id_map is not None and source != target:
            translation = id_map.translate(genes.tolist(), source, target)
            if report is not None:
                report.record(UnmappedIdentifier(f"ranking_{source}_to_{target}", translation.unmapped))
            genes = genes.map(translation.mapped)
        ranked = pd.DataFrame(
            {"gene": genes.to_numpy(), "score": df[score_column].to_numpy(dtype=float)}
        ).dropna(subset=["gene"])
        ranked["magnitude"] = ranked["score"].abs()
        ranked = ranked.sort_values("magnitude", ascending=False, kind="mergesort")
        ranked = ranked.drop_duplicates("gene", keep="first")

        ranking = ranked.set_index("gene")["score"].sort_values(ascending=False, kind="mergesort")
        ranking.index.name = None
        ranking.name = score_column
        return ranking

    @staticmethod
    def eligible_sets(
        ranking: pd.Series, universe: GeneSetUniverse, min_size: int, max_size: int
    ):
        """Split sets into those within [min_size, max_size] after matching the ranking."""
        ranked = set(ranking.index)
        eligible: Dict[str, List[str]] = {}
        excluded = []
        for set_id, genes in universe.gene_sets.items():
            matched = sorted(genes & ranked)
            if min_size <= len(matched) <= max_size:
                eligible[set_id] = matched
            else:
                excluded.append(set_id)
        return eligible, excluded

    def run(
        self,
        ranking: pd.Series,
        universe: GeneSetUniverse,
        min_size: int = 10,
        max_size: int = 500,
        gene_list: str = "all",
    ) -> EnrichmentRun:
        """
        Run prerank GSEA of universe against ranking.

        Args:
            ranking: gene → score, sorted descending, unique, no NaN
            universe: gene sets in the ranking's namespace
            min_size: smallest eligible set (matched genes)
            max_size: largest eligible set (matched genes)
            gene_list: label for the ranked list

        Returns:
            EnrichmentRun; error is set when GSEApy fails
        """
        eligible, excluded = self.eligible_sets(ranking, universe, min_size, max_size)
        if excluded:
            logger.info(
                f"{universe.name}/{gene_list}: {len(excluded)} set(s) outside size "
                f"bounds [{min_size}, {max_size}] excluded"
            )
        run = EnrichmentRun(
            universe=universe.name,
            gene_list=gene_list,
            results=pd.DataFrame(columns=ENRICHMENT_COLUMNS),
            n_ranked=len(ranking),
            excluded_by_size=excluded,
        )
        if not eligible:
            logger.warning(f"{universe.name}/{gene_list}: no gene sets eligible for testing")
            return run

        try:
            pre_res = gp.prerank(
                rnk=ranking,
                gene_sets=eligible,
                min_size=min_size,
                max_size=max_size,
                permutation_num=self.permutation_num,
                seed=self.seed,
                outdir=None,
                no_plot=True,
                verbose=False,
            )
            run.results = self.format_results(pre_res, universe, eligible)
        except Exception as e:
            logger.error(f"Enrichment {universe.name}/{gene_list} failed: {str(e)}", exc_info=True)
            run.error = f"Enrichment analysis failed: {str(e)}"
        return run

    def format_results(
        self, pre_res, universe: GeneSetUniverse, eligible: Dict[str, List[str]]
    ) -> pd.DataFrame:
        """
        Standardize GSEApy prerank output.

        Returns:
            DataFrame with ENRICHMENT_COLUMNS sorted by pvalue; padj is
            Benjamini-Hochberg and qvalue Storey over the tested sets
        """
        res = pre_res.res2d
        details = getattr(pre_res, "results", {}) or {}
        table = pd.DataFrame(
            {
                "pathID": res["Term"].astype(str).to_numpy(),
                "enrichScore": pd.to_numeric(res["ES"], errors="coerce").to_numpy(),
                "NES": pd.to_numeric(res["NES"], errors="coerce").to_numpy(),
                "pvalue": pd.to_numeric(res["NOM p-val"], errors="coerce").to_numpy(),
                "coreEnrich": res["Lead_genes"].fillna("").astype(str).str.replace(";", "/").to_numpy(),
            }
        )
        table["pathName"] = table["pathID"].map(universe.descriptions).fillna("")
        table["setSize"] = table["pathID"].map(lambda t: len(eligible.get(t, [])))
        table["rank"] = table["pathID"].map(lambda t: _peak_rank(details.get(t)))

        tested = table["pvalue"].notna()
        table["padj"] = np.nan
        if tested.any():
            _, padj, _, _ = multipletests(table.loc[tested, "pvalue"], method="fdr_bh")
            table.loc[tested, "padj"] = padj
        table["qvalue"] = qvalues(table["pvalue"].to_numpy())
        return table[ENRICHMENT_COLUMNS].sort_values("pvalue", kind="mergesort").reset_index(drop=True)


def _peak_rank(detail) -> float:
    """1-based position in the ranking where the running score peaks."""
    if not detail:
        return np.nan
    running = detail.get("RES") if isinstance(detail, dict) else None
    if running is None or len(running) == 0:
        return np.nan
    running = np.asarray(running, dtype=float)
    return float(np.argmax(np.abs(running)) + 1)


def significant_ranking(ranking: pd.Series, significant_genes) -> pd.Series:
    """Restrict a ranking to a set of significant genes, keeping order."""
    keep = set(significant_genes)
    return ranking[[g in keep for g in ranking.index]]
