"""
Multi-omics pipeline orchestrator and command-line entry point.

Stages run once, in order, over one in-memory snapshot of the inputs:

    load → count filter → design alignment → normalization (both strategies)
    → QC projection → differential expression → gene-set enrichment
    (KEGG and GO × all and significant genes) → proteomics integration

Usage:
    from config import load_config
    from pipeline import CyanoOmicsPipeline

    pipeline = CyanoOmicsPipeline(load_config("config/analysis.yaml"))
    run = pipeline.run()
    pipeline.save_results(run)

    # or from the shell
    python pipeline.py --config config/analysis.yaml
    python pipeline.py --demo --output-dir demo_results
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence
import argparse
import logging
import sys
import pandas as pd
import plotly.graph_objects as go

from config import AnalysisConfig, load_config
from count_filter import CountFilter, CountFilterResult
from de_analysis import DEAnalysisEngine, DEResult, align_design
from errors import AnalysisError, ExclusionReport, SchemaValidationError
from export_engine import ExportData, ExportEngine
from gene_sets import (
    GeneSetUniverse,
    KeggClient,
    KeggRequestError,
    build_go_gene_sets,
    load_kegg_gene_sets,
    translate_universe,
)
from identifiers import NAMESPACES, IdentifierMap
from normalization import NORMALIZERS, NormalizationResult, normalize_all, size_factor_table
from omics_loader import OmicsTables, load_all
from pathway_enrichment import ENRICHMENT_COLUMNS, EnrichmentRun, GeneSetEnrichment, significant_ranking
from proteomics import IntegrationResult, ProteomicsIntegrator, parse_proteomics
from qc_projection import ProjectionResult, QCProjector
import qc_plots
import visualizations

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).resolve().parent / "config" / "analysis.yaml"


@dataclass
class AnalysisRun:
    """Everything one pipeline run produced."""

    config: AnalysisConfig
    tables: OmicsTables
    filtered: CountFilterResult
    design: pd.DataFrame  # aligned to the count matrix
    normalization: Dict[str, NormalizationResult]
    projection: ProjectionResult
    outliers: List[str]
    de_result: DEResult  # as fitted
    de_filtered: DEResult  # undefined p-values dropped, q-values recomputed
    enrichment_runs: List[EnrichmentRun] = field(default_factory=list)
    integration: Optional[IntegrationResult] = None
    report: ExclusionReport = field(default_factory=ExclusionReport)

    @property
    def sample_conditions(self) -> Dict[str, str]:
        return dict(zip(self.design["sequence_id"].astype(str), self.design["purpose"]))

    def significant_genes(self, de_result: Optional[DEResult] = None) -> List[str]:
        """Genes passing the raw-p rule in de_result (default: de_filtered)."""
        result = self.de_filtered if de_result is None else de_result
        regulation = result.regulation(self.config.p_threshold, self.config.fold_change)
        return result.results_df.loc[regulation != "ns", "gene"].tolist()


class CyanoOmicsPipeline:
    """Runs every analysis stage for one configuration."""

    def __init__(self, config: AnalysisConfig, kegg_client: Optional[KeggClient] = None):
        self.config = config
        self.kegg_client = kegg_client

    def _validate_settings(self) -> None:
        if self.config.qc_normalization not in NORMALIZERS:
            raise SchemaValidationError(
                f"qc_normalization must be one of {sorted(NORMALIZERS)}, "
                f"got '{self.config.qc_normalization}'"
            )
        for key in ("go_id_namespace", "proteomics_id_namespace"):
            value = getattr(self.config, key)
            if value not in NAMESPACES:
                raise SchemaValidationError(f"{key} must be one of {list(NAMESPACES)}, got '{value}'")

    def run(self) -> AnalysisRun:
        """
        Execute the full pipeline.

        Raises:
            SchemaValidationError: an input table is malformed (nothing is written)
            DesignMismatch: no usable treatment vs control design remains
        """
        cfg = self.config
        self._validate_settings()
        report = ExclusionReport()
        tables = load_all(cfg)

        filtered = CountFilter(cfg.low_count_threshold, cfg.noncoding_pattern).apply(tables.counts)
        counts, design = align_design(filtered.counts, tables.design, report)

        normalization = normalize_all(counts, report)
        projection = QCProjector().project(normalization[cfg.qc_normalization].normalized)
        outliers, _ = projection.detect_outliers()
        if outliers:
            logger.warning(f"Possible outlier samples on PC1/PC2: {outliers}")

        engine = DEAnalysisEngine(cfg.design_factor, cfg.reference_level)
        de_result = engine.run(counts, design, cfg.treatment_level, cfg.shrinkage_methods)
        de_filtered = de_result.without_undefined_pvalues()

        run = AnalysisRun(
            config=cfg,
            tables=tables,
            filtered=filtered,
            design=design,
            normalization=normalization,
            projection=projection,
            outliers=outliers,
            de_result=de_result,
            de_filtered=de_filtered,
            report=report,
        )

        id_map = IdentifierMap(tables.gene_id_map, organism=cfg.kegg_organism)
        run.enrichment_runs = self.run_enrichment(run, id_map)
        if tables.proteomics is not None:
            run.integration = self.run_proteomics(run, id_map)

        logger.info(
            f"Pipeline finished: {len(de_filtered.results_df)} genes tested, "
            f"{len(run.significant_genes())} significant, "
            f"{report.count()} item(s) excluded"
        )
        return run

    def gene_set_universes(self, tables: OmicsTables, id_map: IdentifierMap, report: ExclusionReport):
        """
        Build the universes to test, in the count-matrix (ncbi_id) namespace.

        Returns:
            (list of GeneSetUniverse, list of failed EnrichmentRun placeholders)
        """
        cfg = self.config
        universes: List[GeneSetUniverse] = []
        failed: List[EnrichmentRun] = []

        kegg = None
        if cfg.kegg_gene_sets_path is not None:
            kegg = load_kegg_gene_sets(cfg.kegg_gene_sets_path)
        elif cfg.kegg_organism:
            client = self.kegg_client or KeggClient()
            try:
                kegg = client.pathway_gene_sets(cfg.kegg_organism)
            except KeggRequestError as e:
                logger.error(f"KEGG gene sets unavailable: {str(e)}", exc_info=True)
                for subset in ("all", "significant"):
                    failed.append(
                        EnrichmentRun(
                            universe="KEGG",
                            gene_list=subset,
                            results=pd.DataFrame(columns=ENRICHMENT_COLUMNS),
                            n_ranked=0,
                            error=str(e),
                        )
                    )
        if kegg is not None:
            universes.append(translate_universe(kegg, id_map, "kegg_id", "ncbi_id", report))

        if tables.go_terms is not None:
            universes.append(
                build_go_gene_sets(
                    tables.go_terms,
                    id_map=id_map,
                    source=cfg.go_id_namespace,
                    target="ncbi_id",
                    organism=cfg.go_organism,
                    report=report,
                )
            )
        return universes, failed

    def run_enrichment(self, run: AnalysisRun, id_map: IdentifierMap) -> List[EnrichmentRun]:
        """{universes} × {all genes, significant genes}, one routine for every pair."""
        cfg = self.config
        universes, runs = self.gene_set_universes(run.tables, id_map, run.report)
        enrichment = GeneSetEnrichment(cfg.permutation_num, cfg.seed)

        # both lists come from the fitted result so p = 0 genes stay in each
        ranking = enrichment.prepare_ranking(run.de_result.results_df)
        rankings = {
            "all": ranking,
            "significant": significant_ranking(ranking, run.significant_genes(run.de_result)),
        }
        for universe in universes:
            for subset, ranked in rankings.items():
                runs.append(
                    enrichment.run(
                        ranked,
                        universe,
                        min_size=cfg.min_set_size,
                        max_size=cfg.max_set_size,
                        gene_list=subset,
                    )
                )
        return runs

    def run_proteomics(self, run: AnalysisRun, id_map: IdentifierMap) -> IntegrationResult:
        cfg = self.config
        records = parse_proteomics(
            run.tables.proteomics,
            pattern=cfg.proteomics_id_pattern,
            id_map=id_map,
            namespace=cfg.proteomics_id_namespace,
            ratio_is_log2=cfg.proteomics_ratio_is_log2,
            report=run.report,
        )
        return ProteomicsIntegrator(cfg.p_threshold, cfg.fold_change).integrate(
            records, run.de_filtered.results_df
        )

    def build_figures(self, run: AnalysisRun) -> Dict[str, go.Figure]:
        """Every diagnostic figure for a finished run."""
        cfg = self.config
        raw = run.filtered.counts.loc[run.design["sequence_id"].astype(str)]
        de = run.de_filtered
        figures = {
            "library_size": qc_plots.create_library_size_barplot(raw, run.design),
            "count_distribution": qc_plots.create_count_distribution_boxplot(raw, run.design),
            "gene_totals": qc_plots.create_gene_total_histogram(
                run.filtered.gene_totals, cfg.low_count_threshold
            ),
            "noncoding_coverage": qc_plots.create_noncoding_coverage_plot(
                run.filtered.coverage_report()
            ),
            "sample_similarity": qc_plots.create_sample_similarity_heatmap(
                run.normalization[cfg.qc_normalization].log2(), run.design
            ),
            "normalization_comparison": visualizations.create_normalization_comparison_plot(
                raw, {name: r.normalized for name, r in run.normalization.items()}, run.design
            ),
            "size_factors": visualizations.create_size_factor_comparison_plot(
                size_factor_table(run.normalization)
            ),
            "pca": visualizations.create_pca_plot(run.projection, run.design),
            "scree": visualizations.create_scree_plot(run.projection),
            f"loadings_{cfg.qc_component}": visualizations.create_loading_contribution_plot(
                run.projection, cfg.qc_component, cfg.top_n_loadings
            ),
            "volcano": visualizations.create_volcano_plot(de.results_df, cfg.p_threshold, cfg.fold_change),
            "ma": visualizations.create_ma_plot(de.results_df, cfg.p_threshold, cfg.fold_change),
            "shrinkage": visualizations.create_shrinkage_comparison_plot(de.results_df, de.shrunk),
        }
        for method, shrunk in de.shrunk.items():
            shrunk_with_p = shrunk.merge(de.results_df[["gene", "pvalue"]], on="gene")
            figures[f"volcano_{method}"] = visualizations.create_volcano_plot(
                shrunk_with_p, cfg.p_threshold, cfg.fold_change,
                title=f"Volcano Plot ({method} shrinkage)",
            )
        for enrichment_run in run.enrichment_runs:
            if enrichment_run.error is None:
                figures[f"enrichment_{enrichment_run.label}"] = visualizations.create_enrichment_dotplot(
                    enrichment_run.results,
                    title=f"{enrichment_run.universe} enrichment ({enrichment_run.gene_list} genes)",
                )
        if run.integration is not None:
            figures["proteomics_distribution"] = visualizations.create_proteomics_distribution_plot(
                run.integration.standalone
            )
            figures["proteomics_correlation"] = visualizations.create_proteomics_correlation_plot(
                run.integration.integrated, run.integration.correlation
            )
        return figures

    def export_data(self, run: AnalysisRun) -> ExportData:
        cfg = self.config
        return ExportData(
            de_result=run.de_filtered,
            p_threshold=cfg.p_threshold,
            fold_change=cfg.fold_change,
            size_factors=size_factor_table(run.normalization),
            noncoding_coverage=run.filtered.coverage_report(),
            enrichment_runs=run.enrichment_runs,
            integration=run.integration,
            exclusions=run.report.to_frame(),
            loadings=run.projection.top_contributors(cfg.qc_component, cfg.top_n_loadings),
            settings={
                "Low-count Threshold": cfg.low_count_threshold,
                "Shrinkage Methods": ", ".join(cfg.shrinkage_methods),
                "QC Normalization": cfg.qc_normalization,
                "Gene Set Size Bounds": f"{cfg.min_set_size}-{cfg.max_set_size}",
                "Permutations": cfg.permutation_num,
                "Outlier Samples": ", ".join(run.outliers) or "none",
            },
            sample_conditions=run.sample_conditions,
        )

    def save_results(
        self, run: AnalysisRun, output_dir: Optional[Path] = None, figures: bool = True
    ) -> Path:
        """
        Write tables, the Excel workbook and (optionally) HTML figures.

        Returns:
            Output directory
        """
        target = Path(output_dir or self.config.output_dir)
        engine = ExportEngine()
        data = self.export_data(run)
        engine.write_tables(target, data)
        engine.export_excel(target / "analysis_results.xlsx", data)
        if figures:
            engine.export_figures(self.build_figures(run), target / "figures")
        return target


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cyanobacterial RNA-seq and proteomics exploratory analysis"
    )
    parser.add_argument("--config", "-c", help=f"YAML config file (default: {DEFAULT_CONFIG})")
    parser.add_argument("--output-dir", "-o", help="Directory for result tables and figures")
    parser.add_argument(
        "--demo", action="store_true", help="Generate the synthetic demo dataset and analyse it"
    )
    parser.add_argument("--no-figures", action="store_true", help="Skip HTML figure export")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config_path = args.config
    if args.demo:
        from demo_data import write_demo_dataset

        demo_dir = Path(args.output_dir or "demo_results") / "demo_data"
        config_path = str(write_demo_dataset(demo_dir))
        logger.info(f"Demo dataset written to {demo_dir}")
    elif config_path is None:
        config_path = str(DEFAULT_CONFIG)

    try:
        config = load_config(config_path, overrides={"output_dir": args.output_dir})
        pipeline = CyanoOmicsPipeline(config)
        run = pipeline.run()
        output = pipeline.save_results(run, figures=not args.no_figures)
    except AnalysisError as e:
        logger.error(f"Analysis aborted: {e.message}")
        if e.details:
            logger.error(f"Details: {e.details}")
        return 1

    logger.info(f"Results written to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
